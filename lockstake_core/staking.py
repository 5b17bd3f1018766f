"""
Tier definitions and stake records for Lockstake.

A stake locks an amount of the base asset for one of three fixed
tiers.  Rewards in the secondary asset vest linearly over the lockup:

    vested   = min(now − start_time, lockup)
    nominal  = vested × amount // lockup
    reward   = nominal × exchange_rate × multiplier // DENOMINATOR

Multipliers are expressed against ``DENOMINATOR`` (10 000 = 1.0×).
Baseline multipliers are 1.0× / 1.5× / 3.0× for the three tiers.

Amounts and timestamps are plain ints.  The historical storage widths
(224-bit amount, 32-bit timestamp) are kept as explicit bounds and
checked at the boundary instead of truncating silently.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from lockstake_core.errors import (
    AmountOutOfRange,
    TimestampOutOfRange,
    UnknownTier,
    ZeroAmount,
)


# ── Tier definitions ────────────────────────────────────────────────────

class StakeTier(IntEnum):
    THREE_MONTHS = 0
    SIX_MONTHS   = 1
    ONE_YEAR     = 2


SECONDS_PER_DAY: int = 86_400

# Fixed at construction of every ledger; not governable.
TIER_LOCKUP: dict[StakeTier, int] = {
    StakeTier.THREE_MONTHS: 90  * SECONDS_PER_DAY,   # 7_776_000
    StakeTier.SIX_MONTHS:   180 * SECONDS_PER_DAY,   # 15_552_000
    StakeTier.ONE_YEAR:     360 * SECONDS_PER_DAY,   # 31_104_000
}

TIER_NAMES: dict[StakeTier, str] = {
    StakeTier.THREE_MONTHS: "Three Months",
    StakeTier.SIX_MONTHS:   "Six Months",
    StakeTier.ONE_YEAR:     "One Year",
}

# Config keys used in the ``[tiers.multipliers]`` TOML table
TIER_KEYS: dict[str, StakeTier] = {
    "three_months": StakeTier.THREE_MONTHS,
    "six_months":   StakeTier.SIX_MONTHS,
    "one_year":     StakeTier.ONE_YEAR,
}

# ── Reward scaling ─────────────────────────────────────────────────────

DENOMINATOR: int = 10_000
DEFAULT_EXCHANGE_RATE: int = 1

DEFAULT_MULTIPLIERS: dict[StakeTier, int] = {
    StakeTier.THREE_MONTHS: 10_000,
    StakeTier.SIX_MONTHS:   15_000,
    StakeTier.ONE_YEAR:     30_000,
}

# ── Boundary limits ────────────────────────────────────────────────────

UNITS_PER_TOKEN: int = 10 ** 18
MAX_STAKE_AMOUNT: int = 2 ** 224 - 1
MAX_TIMESTAMP: int = 2 ** 32 - 1      # 2106-02-07


def parse_tier(value: StakeTier | int | str) -> StakeTier:
    """Coerce an int, enum or config key into a ``StakeTier``."""
    if isinstance(value, str):
        key = value.strip().lower()
        if key in TIER_KEYS:
            return TIER_KEYS[key]
        try:
            value = int(key)
        except ValueError:
            raise UnknownTier(f"Unknown tier: {value!r}") from None
    if isinstance(value, bool):
        raise UnknownTier(f"Unknown tier: {value!r}")
    try:
        return StakeTier(value)
    except ValueError:
        raise UnknownTier(f"Unknown tier: {value!r}") from None


def check_amount(amount: int) -> int:
    """Validate a deposit amount against the storage bound."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise AmountOutOfRange(f"Amount must be an integer, got {type(amount).__name__}")
    if amount == 0:
        raise ZeroAmount("Amount must be positive")
    if amount < 0 or amount > MAX_STAKE_AMOUNT:
        raise AmountOutOfRange(f"Amount {amount} outside 1..{MAX_STAKE_AMOUNT}")
    return amount


def check_timestamp(now: float) -> int:
    """Truncate the clock to whole seconds and check the 32-bit bound."""
    ts = int(now)
    if ts < 0 or ts > MAX_TIMESTAMP:
        raise TimestampOutOfRange(f"Timestamp {ts} outside 0..{MAX_TIMESTAMP}")
    return ts


# ── StakeRecord ─────────────────────────────────────────────────────────

@dataclass
class StakeRecord:
    """
    One stake instance.

    Only ``withdrawn`` changes after creation, and only from False to
    True.  Withdrawn records stay in the ledger because accrual is
    computed over every stake an owner ever made.
    """
    stake_id: int
    owner: str
    amount: int
    start_time: int
    tier: StakeTier
    withdrawn: bool = False

    def unlock_time(self, lockup: int) -> int:
        return self.start_time + lockup

    def is_unlocked(self, lockup: int, now: int) -> bool:
        """True once the full lockup has elapsed."""
        return now >= self.start_time + lockup

    @property
    def is_active(self) -> bool:
        return not self.withdrawn

    def to_dict(self, lockup: Optional[int] = None, now: Optional[int] = None) -> dict:
        d = {
            "stake_id": self.stake_id,
            "owner": self.owner,
            "amount": self.amount,
            "start_time": self.start_time,
            "tier": int(self.tier),
            "tier_name": TIER_NAMES[self.tier],
            "withdrawn": self.withdrawn,
        }
        if lockup is not None:
            d["unlock_time"] = self.unlock_time(lockup)
            if self.withdrawn:
                d["status"] = "Withdrawn"
            elif now is not None and self.is_unlocked(lockup, now):
                d["status"] = "Unlocked"
            else:
                d["status"] = "Locked"
        return d
