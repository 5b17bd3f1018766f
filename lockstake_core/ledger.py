"""
The stake ledger: stake, restake, withdraw and claim.

State owned here:
  ``stakes``            stake_id -> StakeRecord (ids shared by all owners)
  ``stakes_by_owner``   owner -> [stake_id, ...], append-only
  ``claimed``           owner -> reward units ever claimed
  ``last_stake_id``     global counter, ids start at 1

Every public mutation runs inside ``transaction()``:

  1. take the ledger lock (re-entrant, so a recipient hook may call back in)
  2. snapshot ledger, config and asset balances
  3. validate, then mutate state, then make the outbound transfer
  4. on any exception restore the snapshot and re-raise
  5. on the outermost commit, flush staged events to the ``EventLog``

State is always written before the outbound transfer.  A call that
re-enters during the transfer sees the withdrawn flag or the raised
claimed total and is rejected by the normal checks.
"""

from __future__ import annotations

import contextlib
import logging
import time
from typing import Callable, Iterator, Optional

from lockstake_core.accrual import AccrualCalculator
from lockstake_core.admin import AdminConfig
from lockstake_core.errors import (
    AlreadyWithdrawn,
    AmountOutOfRange,
    InsufficientClaimable,
    InvalidStakeId,
    InvariantViolation,
    LockupNotElapsed,
    RewardAssetUnset,
    StakingDisabled,
    ZeroClaim,
)
from lockstake_core.events import (
    EventLog,
    FundsReceived,
    LedgerEvent,
    RewardsClaimed,
    StakeCreated,
    StakeWithdrawn,
)
from lockstake_core.invariants import InvariantChecker
from lockstake_core.staking import (
    StakeRecord,
    StakeTier,
    check_amount,
    check_timestamp,
    parse_tier,
)

logger = logging.getLogger("lockstake_ledger")


class StakeLedger:
    """Per-owner stake records, the global id counter and claimed totals."""

    def __init__(
        self,
        config: AdminConfig,
        *,
        clock: Callable[[], float] = time.time,
        events: Optional[EventLog] = None,
        check_invariants: bool = True,
    ):
        self.config = config
        self.address = config.address
        self.calculator = AccrualCalculator(config)
        self.events = events if events is not None else EventLog(clock=clock)
        self.stakes: dict[int, StakeRecord] = {}
        self.stakes_by_owner: dict[str, list[int]] = {}
        self.claimed: dict[str, int] = {}
        self.last_stake_id: int = 0
        self._clock = clock
        self._lock = config.lock
        self._depth = 0
        self._pending: list[LedgerEvent] = []
        self._commit_hooks: list[Callable[[list[LedgerEvent]], None]] = []
        self._checker = InvariantChecker() if check_invariants else None
        config.bind_transaction(self.transaction)

    # ── transactional wrapper ───────────────────────────────────────

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """All-or-nothing scope.  Nested scopes roll back independently."""
        with self._lock:
            snap = self._snapshot()
            mark = len(self._pending)
            outermost = self._depth == 0
            if outermost and self._checker is not None:
                self._checker.capture(self)
            self._depth += 1
            try:
                yield
                if outermost and self._checker is not None:
                    ok, msg = self._checker.verify(self, self.now())
                    if not ok:
                        raise InvariantViolation(msg)
            except BaseException as exc:
                self._restore(snap)
                del self._pending[mark:]
                logger.debug(f"Rolled back ({type(exc).__name__}: {exc})")
                raise
            finally:
                self._depth -= 1
            if outermost:
                batch, self._pending = self._pending, []
                self.events.emit(batch)
                for hook in list(self._commit_hooks):
                    hook(batch)

    def on_commit(self, hook: Callable[[list[LedgerEvent]], None]) -> None:
        """
        Call *hook* after every outermost commit, with that commit's events.

        Admin changes commit with an empty batch.  Unlike event
        subscribers, a failing hook propagates to the caller.
        """
        self._commit_hooks.append(hook)

    def _assets(self) -> list:
        assets = [self.config.base_asset]
        reward = self.config.reward_asset
        if reward is not None and reward is not self.config.base_asset:
            assets.append(reward)
        return assets

    def _snapshot(self) -> tuple:
        # Only ``withdrawn`` is mutable on a record; keep the objects and
        # remember the flags.
        return (
            {sid: (r, r.withdrawn) for sid, r in self.stakes.items()},
            {owner: list(ids) for owner, ids in self.stakes_by_owner.items()},
            dict(self.claimed),
            self.last_stake_id,
            self.config.snapshot(),
            [(asset, asset.snapshot()) for asset in self._assets()],
        )

    def _restore(self, snap: tuple) -> None:
        records, index, claimed, last_id, config_snap, balances = snap
        self.stakes = {}
        for sid, (record, withdrawn) in records.items():
            record.withdrawn = withdrawn
            self.stakes[sid] = record
        self.stakes_by_owner = {owner: list(ids) for owner, ids in index.items()}
        self.claimed = claimed
        self.last_stake_id = last_id
        self.config.restore(config_snap)
        for asset, bal in balances:
            asset.restore(bal)

    def _stage(self, event: LedgerEvent) -> None:
        self._pending.append(event)

    def _now(self) -> int:
        return check_timestamp(self._clock())

    def now(self) -> int:
        """Current time on the ledger's clock."""
        return int(self._clock())

    def _read_time(self, now: Optional[float]) -> int:
        return self.now() if now is None else int(now)

    # ── core operations ─────────────────────────────────────────────

    def stake(self, caller: str, tier: StakeTier | int, amount: int) -> int:
        """Lock *amount* of the base asset from *caller* for *tier*.  Returns the new id."""
        check_amount(amount)
        tier = parse_tier(tier)
        with self.transaction():
            now = self._now()
            if not self.config.staking_permitted:
                raise StakingDisabled("New stakes are not permitted")
            self.config.base_asset.transfer(caller, self.address, amount)
            stake_id = self._create(caller, amount, now, tier)
        logger.info(
            f"Stake {stake_id} created: {caller} locked {amount} for {tier.name}",
            extra={"owner": caller, "stake_id": stake_id, "amount": amount},
        )
        return stake_id

    def restake(self, caller: str, stake_id: int, new_tier: StakeTier | int) -> int:
        """
        Roll an unlocked stake into a new one with the same amount.

        The source record is marked withdrawn and no asset moves.
        """
        new_tier = parse_tier(new_tier)
        with self.transaction():
            now = self._now()
            record = self._withdrawable(caller, stake_id, now)
            if not self.config.staking_permitted:
                raise StakingDisabled("New stakes are not permitted")
            record.withdrawn = True
            new_id = self._create(caller, record.amount, now, new_tier)
        logger.info(
            f"Stake {stake_id} restaked as {new_id} ({new_tier.name}) by {caller}",
            extra={"owner": caller, "stake_id": new_id, "amount": record.amount},
        )
        return new_id

    def withdraw(self, caller: str, stake_id: int) -> int:
        """Return the principal of an unlocked stake to *caller*.  Returns the amount."""
        with self.transaction():
            now = self._now()
            record = self._withdrawable(caller, stake_id, now)
            record.withdrawn = True
            self.config.base_asset.transfer(self.address, caller, record.amount)
            self._stage(StakeWithdrawn(
                owner=caller,
                stake_id=record.stake_id,
                amount=record.amount,
                start_time=record.start_time,
                tier=int(record.tier),
            ))
        logger.info(
            f"Stake {stake_id} withdrawn: {record.amount} returned to {caller}",
            extra={"owner": caller, "stake_id": stake_id, "amount": record.amount},
        )
        return record.amount

    def claim(self, caller: str, amount: int) -> None:
        """Pay *amount* reward units to *caller* out of their claimable balance."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise AmountOutOfRange(f"Invalid claim amount: {amount!r}")
        if amount == 0:
            raise ZeroClaim("Claim amount must be positive")
        with self.transaction():
            now = self._now()
            available = self.claimable(caller, now)
            if amount > available:
                raise InsufficientClaimable(
                    f"Requested {amount}, claimable {available}"
                )
            self.claimed[caller] = self.claimed.get(caller, 0) + amount
            asset = self.config.reward_asset
            if asset is None:
                raise RewardAssetUnset("Reward asset is not configured")
            asset.transfer(self.address, caller, amount)
            self._stage(RewardsClaimed(owner=caller, amount=amount))
        logger.info(
            f"{caller} claimed {amount} {asset.symbol}",
            extra={"owner": caller, "amount": amount},
        )

    def deposit(self, caller: str, amount: int) -> None:
        """Plain receipt of base-asset funds into the ledger account."""
        check_amount(amount)
        with self.transaction():
            self._now()
            self.config.base_asset.transfer(caller, self.address, amount)
            self._stage(FundsReceived(sender=caller, amount=amount))
        logger.info(
            f"Received {amount} {self.config.base_asset.symbol} from {caller}",
            extra={"owner": caller, "amount": amount},
        )

    # ── internals ───────────────────────────────────────────────────

    def _create(self, owner: str, amount: int, now: int, tier: StakeTier) -> int:
        self.last_stake_id += 1
        stake_id = self.last_stake_id
        self.stakes[stake_id] = StakeRecord(
            stake_id=stake_id,
            owner=owner,
            amount=amount,
            start_time=now,
            tier=tier,
        )
        self.stakes_by_owner.setdefault(owner, []).append(stake_id)
        self._stage(StakeCreated(
            owner=owner,
            stake_id=stake_id,
            amount=amount,
            start_time=now,
            tier=int(tier),
        ))
        return stake_id

    def _withdrawable(self, caller: str, stake_id: int, now: int) -> StakeRecord:
        record = self.stake_of(caller, stake_id)
        if record is None:
            raise InvalidStakeId(f"No stake {stake_id!r} for {caller}")
        if record.withdrawn:
            raise AlreadyWithdrawn(f"Stake {stake_id} already withdrawn")
        lockup = self.config.lockup_seconds(record.tier)
        if not record.is_unlocked(lockup, now):
            raise LockupNotElapsed(
                f"Stake {stake_id} unlocks at {record.unlock_time(lockup)}, now {now}"
            )
        return record

    # ── queries ─────────────────────────────────────────────────────

    def get_stake(self, stake_id: int) -> Optional[StakeRecord]:
        if isinstance(stake_id, bool) or not isinstance(stake_id, int):
            return None
        return self.stakes.get(stake_id)

    def stake_of(self, owner: str, stake_id: int) -> Optional[StakeRecord]:
        """The record, if it exists and belongs to *owner*."""
        record = self.get_stake(stake_id)
        if record is None or record.owner != owner:
            return None
        return record

    def stake_ids(self, owner: str) -> list[int]:
        return list(self.stakes_by_owner.get(owner, []))

    def stakes_of(self, owner: str) -> list[StakeRecord]:
        return [self.stakes[sid] for sid in self.stakes_by_owner.get(owner, [])]

    def active_stakes(self, owner: str) -> list[StakeRecord]:
        return [r for r in self.stakes_of(owner) if r.is_active]

    def claimed_of(self, owner: str) -> int:
        return self.claimed.get(owner, 0)

    def accrued_for(self, record: StakeRecord, now: Optional[float] = None) -> int:
        return self.calculator.for_stake(record, self._read_time(now))

    def accrued(self, owner: str, now: Optional[float] = None) -> int:
        """Lifetime reward accrual over every stake *owner* ever made."""
        return self.calculator.for_records(self.stakes_of(owner), self._read_time(now))

    def claimable(self, owner: str, now: Optional[float] = None) -> int:
        return self.calculator.claimable(self.accrued(owner, now), self.claimed_of(owner))

    def summary(self, owner: str, now: Optional[float] = None) -> dict:
        ts = self._read_time(now)
        records = self.stakes_of(owner)
        accrued = self.calculator.for_records(records, ts)
        claimed = self.claimed_of(owner)
        return {
            "owner": owner,
            "stakes": [
                dict(
                    r.to_dict(self.config.lockup_seconds(r.tier), ts),
                    accrued=self.calculator.for_stake(r, ts),
                )
                for r in records
            ],
            "total_locked": sum(r.amount for r in records if r.is_active),
            "accrued": accrued,
            "claimed": claimed,
            "claimable": self.calculator.claimable(accrued, claimed),
        }

    def pool_summary(self, now: Optional[float] = None) -> dict:
        active = [r for r in self.stakes.values() if r.is_active]
        reward = self.config.reward_asset
        return {
            "last_stake_id": self.last_stake_id,
            "total_stakes": len(self.stakes),
            "active_stakes": len(active),
            "total_locked": sum(r.amount for r in active),
            "total_claimed": sum(self.claimed.values()),
            "owners": len(self.stakes_by_owner),
            "base_held": self.config.base_asset.balance_of(self.address),
            "reward_treasury": reward.balance_of(self.address) if reward else 0,
            "staking_permitted": self.config.staking_permitted,
            "time": self._read_time(now),
        }
