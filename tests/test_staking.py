"""
Tests for tier definitions and stake records.

Covers:
  - Fixed lockup table and baseline multipliers
  - parse_tier coercion from enums, ints and config keys
  - Amount and timestamp boundary checks
  - StakeRecord unlock arithmetic and status reporting
"""

import pytest

from lockstake_core.errors import (
    AmountOutOfRange,
    TimestampOutOfRange,
    UnknownTier,
    ZeroAmount,
)
from lockstake_core.staking import (
    DEFAULT_MULTIPLIERS,
    DENOMINATOR,
    MAX_STAKE_AMOUNT,
    MAX_TIMESTAMP,
    TIER_KEYS,
    TIER_LOCKUP,
    StakeRecord,
    StakeTier,
    check_amount,
    check_timestamp,
    parse_tier,
)


class TestTierTables:
    def test_lockups_in_seconds(self):
        assert TIER_LOCKUP[StakeTier.THREE_MONTHS] == 7_776_000
        assert TIER_LOCKUP[StakeTier.SIX_MONTHS] == 15_552_000
        assert TIER_LOCKUP[StakeTier.ONE_YEAR] == 31_104_000

    def test_baseline_multipliers(self):
        assert DENOMINATOR == 10_000
        assert DEFAULT_MULTIPLIERS[StakeTier.THREE_MONTHS] == 10_000
        assert DEFAULT_MULTIPLIERS[StakeTier.SIX_MONTHS] == 15_000
        assert DEFAULT_MULTIPLIERS[StakeTier.ONE_YEAR] == 30_000

    def test_every_tier_has_a_config_key(self):
        assert set(TIER_KEYS.values()) == set(StakeTier)


class TestParseTier:
    def test_enum_passthrough(self):
        assert parse_tier(StakeTier.ONE_YEAR) is StakeTier.ONE_YEAR

    def test_int(self):
        assert parse_tier(1) is StakeTier.SIX_MONTHS

    def test_config_key(self):
        assert parse_tier("three_months") is StakeTier.THREE_MONTHS
        assert parse_tier(" One_Year ") is StakeTier.ONE_YEAR

    def test_numeric_string(self):
        assert parse_tier("2") is StakeTier.ONE_YEAR

    @pytest.mark.parametrize("bad", [3, -1, "weekly", True, 1.5])
    def test_unknown(self, bad):
        with pytest.raises(UnknownTier):
            parse_tier(bad)

    def test_unknown_tier_is_value_error(self):
        with pytest.raises(ValueError):
            parse_tier(99)


class TestAmountChecks:
    def test_zero(self):
        with pytest.raises(ZeroAmount):
            check_amount(0)

    def test_negative(self):
        with pytest.raises(AmountOutOfRange):
            check_amount(-1)

    def test_upper_bound_inclusive(self):
        assert check_amount(MAX_STAKE_AMOUNT) == MAX_STAKE_AMOUNT
        with pytest.raises(AmountOutOfRange):
            check_amount(MAX_STAKE_AMOUNT + 1)

    def test_non_integer(self):
        with pytest.raises(AmountOutOfRange):
            check_amount(1.0)
        with pytest.raises(AmountOutOfRange):
            check_amount(True)


class TestTimestampChecks:
    def test_truncates_fraction(self):
        assert check_timestamp(1_700_000_000.9) == 1_700_000_000

    def test_bounds(self):
        assert check_timestamp(MAX_TIMESTAMP) == MAX_TIMESTAMP
        with pytest.raises(TimestampOutOfRange):
            check_timestamp(MAX_TIMESTAMP + 1)
        with pytest.raises(TimestampOutOfRange):
            check_timestamp(-1)


class TestStakeRecord:
    def _record(self, **kw):
        fields = dict(stake_id=1, owner="lsA", amount=10, start_time=1000,
                      tier=StakeTier.THREE_MONTHS)
        fields.update(kw)
        return StakeRecord(**fields)

    def test_unlock_boundary(self):
        r = self._record()
        assert r.unlock_time(500) == 1500
        assert not r.is_unlocked(500, 1499)
        assert r.is_unlocked(500, 1500)

    def test_active_until_withdrawn(self):
        r = self._record()
        assert r.is_active
        r.withdrawn = True
        assert not r.is_active

    def test_to_dict_without_lockup(self):
        d = self._record().to_dict()
        assert d["tier"] == 0
        assert d["tier_name"] == "Three Months"
        assert "status" not in d

    @pytest.mark.parametrize("now,withdrawn,status", [
        (1200, False, "Locked"),
        (1500, False, "Unlocked"),
        (1200, True, "Withdrawn"),
    ])
    def test_to_dict_status(self, now, withdrawn, status):
        d = self._record(withdrawn=withdrawn).to_dict(500, now)
        assert d["status"] == status
        assert d["unlock_time"] == 1500
