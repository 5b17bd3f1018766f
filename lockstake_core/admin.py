"""
Administrative configuration for a Lockstake ledger.

Holds the fixed tier→lockup table, the mutable tier→multiplier table,
the reward-asset reference and the new-stakes toggle.  Every mutation
passes the ``AuthorizationGate`` first and runs inside the owning
ledger's transaction, so it is serialised with user operations and
rolls back with them.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from types import MappingProxyType
from typing import TYPE_CHECKING, Callable, ContextManager, Iterable, Mapping, Optional

from lockstake_core.authorization import (
    OP_SET_MULTIPLIERS,
    OP_SET_REWARD_ASSET,
    OP_SET_STAKING_PERMITTED,
    OP_SWEEP,
    AuthorizationGate,
)
from lockstake_core.errors import (
    AmountOutOfRange,
    InvalidMultiplier,
    MismatchedLengths,
    ZeroAmount,
)
from lockstake_core.staking import (
    DEFAULT_EXCHANGE_RATE,
    DEFAULT_MULTIPLIERS,
    DENOMINATOR,
    TIER_LOCKUP,
    TIER_NAMES,
    StakeTier,
    parse_tier,
)

if TYPE_CHECKING:
    from lockstake_core.assets import FungibleAsset

logger = logging.getLogger("lockstake_admin")


class AdminConfig:
    """
    Tier tables, reward wiring and the staking toggle.

    ``address`` is the ledger's own account on both assets: it holds
    staked principal and the reward treasury, and it is the target the
    authorization gate checks against.
    """

    def __init__(
        self,
        gate: AuthorizationGate,
        base_asset: FungibleAsset,
        address: str = "lockstake",
        *,
        multipliers: Optional[Mapping[StakeTier | int | str, int]] = None,
        reward_asset: Optional[FungibleAsset] = None,
        staking_permitted: bool = True,
        exchange_rate: int = DEFAULT_EXCHANGE_RATE,
    ):
        if exchange_rate <= 0:
            raise ValueError("exchange_rate must be positive")
        self.gate = gate
        self.base_asset = base_asset
        self.address = address
        self.exchange_rate = exchange_rate
        self.denominator = DENOMINATOR
        self._lockups: Mapping[StakeTier, int] = MappingProxyType(dict(TIER_LOCKUP))
        self.multipliers: dict[StakeTier, int] = dict(DEFAULT_MULTIPLIERS)
        if multipliers:
            for tier, mult in multipliers.items():
                self.multipliers[parse_tier(tier)] = _check_multiplier(mult)
        self.reward_asset = reward_asset
        self.staking_permitted = staking_permitted
        self.lock = threading.RLock()
        self._transaction: Callable[[], ContextManager] = self._locked

    def bind_transaction(self, factory: Callable[[], ContextManager]) -> None:
        """Route admin mutations through the owning ledger's transaction."""
        self._transaction = factory

    @contextlib.contextmanager
    def _locked(self):
        with self.lock:
            yield

    # ── reads ───────────────────────────────────────────────────────

    @property
    def lockups(self) -> Mapping[StakeTier, int]:
        return self._lockups

    def lockup_seconds(self, tier: StakeTier | int) -> int:
        return self._lockups[parse_tier(tier)]

    def multiplier(self, tier: StakeTier | int) -> int:
        return self.multipliers[parse_tier(tier)]

    def tiers(self) -> list[StakeTier]:
        return list(self._lockups)

    def tier_info(self) -> list[dict]:
        return [
            {
                "tier": int(tier),
                "name": TIER_NAMES[tier],
                "lockup_seconds": lockup,
                "lock_days": lockup // 86_400,
                "multiplier": self.multipliers[tier],
                "multiplier_x": self.multipliers[tier] / self.denominator,
            }
            for tier, lockup in self._lockups.items()
        ]

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "staking_permitted": self.staking_permitted,
            "reward_asset": self.reward_asset.symbol if self.reward_asset else None,
            "base_asset": self.base_asset.symbol,
            "exchange_rate": self.exchange_rate,
            "denominator": self.denominator,
            "tiers": self.tier_info(),
        }

    # ── snapshots ───────────────────────────────────────────────────

    def snapshot(self) -> tuple:
        return dict(self.multipliers), self.staking_permitted, self.reward_asset

    def restore(self, snap: tuple) -> None:
        multipliers, permitted, reward_asset = snap
        self.multipliers = dict(multipliers)
        self.staking_permitted = permitted
        self.reward_asset = reward_asset

    # ── gated mutations ─────────────────────────────────────────────

    def set_multipliers(
        self,
        caller: str,
        tiers: Iterable[StakeTier | int | str],
        multipliers: Iterable[int],
    ) -> None:
        """Overwrite the multiplier of each listed tier, pairwise."""
        self.gate.authorize(caller, OP_SET_MULTIPLIERS)
        tiers = [parse_tier(t) for t in tiers]
        multipliers = [_check_multiplier(m) for m in multipliers]
        if len(tiers) != len(multipliers):
            raise MismatchedLengths(
                f"{len(tiers)} tiers but {len(multipliers)} multipliers"
            )
        with self._transaction():
            for tier, mult in zip(tiers, multipliers):
                self.multipliers[tier] = mult
        logger.info(
            f"Multipliers set by {caller}: "
            + ", ".join(f"{TIER_NAMES[t]}={m}" for t, m in zip(tiers, multipliers)),
            extra={"operation": OP_SET_MULTIPLIERS, "owner": caller},
        )

    def set_staking_permitted(self, caller: str, enabled: bool) -> None:
        self.gate.authorize(caller, OP_SET_STAKING_PERMITTED)
        with self._transaction():
            self.staking_permitted = bool(enabled)
        logger.info(
            f"New stakes {'enabled' if enabled else 'disabled'} by {caller}",
            extra={"operation": OP_SET_STAKING_PERMITTED, "owner": caller},
        )

    def set_reward_asset(self, caller: str, asset: Optional[FungibleAsset]) -> None:
        self.gate.authorize(caller, OP_SET_REWARD_ASSET)
        with self._transaction():
            self.reward_asset = asset
        logger.info(
            f"Reward asset set to {asset.symbol if asset else 'unset'} by {caller}",
            extra={"operation": OP_SET_REWARD_ASSET, "owner": caller},
        )

    def sweep(self, caller: str, amount: int) -> None:
        """Move *amount* of the base asset out of the ledger account to *caller*."""
        self.gate.authorize(caller, OP_SWEEP)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise AmountOutOfRange(f"Invalid sweep amount: {amount!r}")
        if amount == 0:
            raise ZeroAmount("Sweep amount must be positive")
        with self._transaction():
            self.base_asset.transfer(self.address, caller, amount)
        logger.info(
            f"Swept {amount} {self.base_asset.symbol} to {caller}",
            extra={"operation": OP_SWEEP, "owner": caller, "amount": amount},
        )


def _check_multiplier(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidMultiplier(f"Multiplier must be a non-negative integer, got {value!r}")
    return value
