"""
Tests for InvariantChecker (capture / verify against a live ledger).
"""

from lockstake_core.invariants import InvariantChecker
from lockstake_core.staking import TIER_LOCKUP, StakeTier

ALICE = "lsAlice"
BOB = "lsBob"
ONE = 10 ** 18
LOCK3 = TIER_LOCKUP[StakeTier.THREE_MONTHS]


def _checked(ledger, mutate, now=None):
    checker = InvariantChecker()
    checker.capture(ledger)
    mutate()
    return checker.verify(ledger, now if now is not None else ledger._read_time(None))


class TestInvariantChecker:
    def test_verify_without_capture_passes(self, ledger):
        assert InvariantChecker().verify(ledger, 0) == (True, "")

    def test_normal_operations_pass(self, ledger, clock):
        ok, msg = _checked(ledger, lambda: ledger.stake(ALICE, 0, ONE))
        assert ok, msg

    def test_counter_decrease(self, ledger):
        ledger.stake(ALICE, 0, ONE)

        def mutate():
            ledger.last_stake_id = 0

        ok, msg = _checked(ledger, mutate)
        assert not ok
        assert "counter decreased" in msg

    def test_record_terms_changed(self, ledger):
        sid = ledger.stake(ALICE, 0, ONE)

        def mutate():
            ledger.stakes[sid].tier = StakeTier.ONE_YEAR

        ok, msg = _checked(ledger, mutate)
        assert not ok
        assert "terms changed" in msg

    def test_record_deleted(self, ledger):
        sid = ledger.stake(ALICE, 0, ONE)
        ok, msg = _checked(ledger, lambda: ledger.stakes.pop(sid))
        assert not ok
        assert "disappeared" in msg

    def test_claimed_decrease(self, ledger, clock):
        ledger.stake(ALICE, 0, ONE)
        clock.advance(LOCK3)
        ledger.claim(ALICE, 10)

        def mutate():
            ledger.claimed[ALICE] = 5

        ok, msg = _checked(ledger, mutate)
        assert not ok
        assert "decreased" in msg

    def test_dangling_index(self, ledger):
        sid = ledger.stake(ALICE, 0, ONE)

        def mutate():
            ledger.stakes_by_owner.setdefault(BOB, []).append(sid)

        ok, msg = _checked(ledger, mutate)
        assert not ok
        assert "dangling" in msg

    def test_over_claim(self, ledger):
        ledger.stake(ALICE, 0, ONE)

        def mutate():
            ledger.claimed[ALICE] = 1

        ok, msg = _checked(ledger, mutate)
        assert not ok
        assert "exceeds accrual" in msg

    def test_multiple_errors_joined(self, ledger):
        sid = ledger.stake(ALICE, 0, ONE)

        def mutate():
            ledger.last_stake_id = 0
            ledger.stakes[sid].amount = 1

        ok, msg = _checked(ledger, mutate)
        assert not ok
        assert "; " in msg
