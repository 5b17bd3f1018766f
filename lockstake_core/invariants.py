"""
Post-operation invariant checks for the stake ledger.

The ledger captures a snapshot when an outermost operation starts and
verifies it just before committing.  If any invariant fails, the
operation is rolled back and ``InvariantViolation`` is raised:

  - The stake-id counter never decreases
  - Records are never deleted
  - Amount, owner, start time and tier never change
  - A withdrawn record never becomes active again
  - Claimed totals never decrease
  - Every indexed id exists and belongs to its owner
  - No owner has claimed more than their lifetime accrual
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lockstake_core.ledger import StakeLedger


@dataclass
class LedgerSnapshot:
    """Snapshot of the bookkeeping fields before an operation."""
    last_stake_id: int = 0
    records: dict[int, tuple] = field(default_factory=dict)
    claimed: dict[str, int] = field(default_factory=dict)


class InvariantChecker:

    def __init__(self):
        self._snapshot: LedgerSnapshot | None = None

    def capture(self, ledger: StakeLedger) -> None:
        snap = LedgerSnapshot(last_stake_id=ledger.last_stake_id)
        for sid, r in ledger.stakes.items():
            snap.records[sid] = (r.owner, r.amount, r.start_time, r.tier, r.withdrawn)
        snap.claimed = dict(ledger.claimed)
        self._snapshot = snap

    def verify(self, ledger: StakeLedger, now: int) -> tuple[bool, str]:
        """Returns ``(passed, error_message)``."""
        if self._snapshot is None:
            return True, ""

        errors: list[str] = []
        for check in (
            self._check_counter,
            self._check_records,
            self._check_claimed,
            self._check_index,
        ):
            ok, msg = check(ledger)
            if not ok:
                errors.append(msg)

        ok, msg = self._check_claims_covered(ledger, now)
        if not ok:
            errors.append(msg)

        self._snapshot = None
        if errors:
            return False, "; ".join(errors)
        return True, ""

    def _check_counter(self, ledger) -> tuple[bool, str]:
        old = self._snapshot.last_stake_id
        if ledger.last_stake_id < old:
            return False, f"Stake id counter decreased: {old} -> {ledger.last_stake_id}"
        if ledger.stakes and max(ledger.stakes) > ledger.last_stake_id:
            return False, "Stake id above counter"
        return True, ""

    def _check_records(self, ledger) -> tuple[bool, str]:
        for sid, (owner, amount, start, tier, withdrawn) in self._snapshot.records.items():
            r = ledger.stakes.get(sid)
            if r is None:
                return False, f"Stake {sid} disappeared"
            if (r.owner, r.amount, r.start_time, r.tier) != (owner, amount, start, tier):
                return False, f"Stake {sid} terms changed"
            if withdrawn and not r.withdrawn:
                return False, f"Stake {sid} reverted to active"
        return True, ""

    def _check_claimed(self, ledger) -> tuple[bool, str]:
        for owner, old in self._snapshot.claimed.items():
            new = ledger.claimed.get(owner, 0)
            if new < old:
                return False, f"Claimed total decreased for {owner}: {old} -> {new}"
        return True, ""

    def _check_index(self, ledger) -> tuple[bool, str]:
        for owner, ids in ledger.stakes_by_owner.items():
            for sid in ids:
                r = ledger.stakes.get(sid)
                if r is None or r.owner != owner:
                    return False, f"Index entry {sid} for {owner} is dangling"
        return True, ""

    def _check_claims_covered(self, ledger, now: int) -> tuple[bool, str]:
        """Only owners whose claimed total moved in this operation are checked."""
        for owner, claimed in ledger.claimed.items():
            if claimed == self._snapshot.claimed.get(owner, 0):
                continue
            accrued = ledger.accrued(owner, now)
            if claimed > accrued:
                return False, f"Claimed {claimed} exceeds accrual {accrued} for {owner}"
        return True, ""
