"""
Reward accrual arithmetic.

Everything here is a pure function of a stake's original terms, the
current tier tables and "now".  Integer floor division is applied at
both steps, so accrual is never overstated by rounding:

    nominal = min(elapsed, lockup) * amount // lockup
    reward  = nominal * exchange_rate * multiplier // DENOMINATOR

An owner's accrual is summed over every stake they ever created,
withdrawn or not.  Claims are counted against that lifetime total.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

from lockstake_core.errors import InvariantViolation
from lockstake_core.staking import DENOMINATOR, StakeRecord

if TYPE_CHECKING:
    from lockstake_core.admin import AdminConfig


def vested_seconds(start_time: int, now: int, lockup: int) -> int:
    """Seconds of the lockup that have elapsed, clamped to ``[0, lockup]``."""
    return max(0, min(now - start_time, lockup))


def nominal_accrued(amount: int, start_time: int, now: int, lockup: int) -> int:
    """Base-asset-denominated accrual before the multiplier is applied."""
    if lockup <= 0:
        return amount
    return vested_seconds(start_time, now, lockup) * amount // lockup


def reward_units(
    nominal: int,
    multiplier: int,
    exchange_rate: int = 1,
    denominator: int = DENOMINATOR,
) -> int:
    """Convert a nominal accrual into reward-asset units."""
    return nominal * exchange_rate * multiplier // denominator


def max_reward(amount: int, multiplier: int, exchange_rate: int = 1) -> int:
    """Reward once a stake is fully vested.  Further time adds nothing."""
    return reward_units(amount, multiplier, exchange_rate)


class AccrualCalculator:
    """Binds the pure helpers to a ledger's tier tables.

    Multipliers are read from ``config`` on every call, so an admin
    change applies to all stakes from that point on.
    """

    def __init__(self, config: AdminConfig):
        self.config = config

    @property
    def exchange_rate(self) -> int:
        return self.config.exchange_rate

    def for_stake(self, record: StakeRecord, now: int) -> int:
        lockup = self.config.lockup_seconds(record.tier)
        nominal = nominal_accrued(record.amount, record.start_time, now, lockup)
        return reward_units(nominal, self.config.multiplier(record.tier), self.exchange_rate)

    def for_records(self, records: Iterable[StakeRecord], now: int) -> int:
        return sum(self.for_stake(r, now) for r in records)

    def cap_for_stake(self, record: StakeRecord) -> int:
        return max_reward(record.amount, self.config.multiplier(record.tier), self.exchange_rate)

    @staticmethod
    def claimable(accrued: int, claimed: int) -> int:
        """``accrued - claimed``.  Negative means the books are broken."""
        if claimed > accrued:
            raise InvariantViolation(
                f"Claimed rewards {claimed} exceed lifetime accrual {accrued}"
            )
        return accrued - claimed
