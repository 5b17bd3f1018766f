"""
Tests for ledger notifications and the EventLog.
"""

import dataclasses
import logging

import pytest

from lockstake_core.events import (
    EventLog,
    FundsReceived,
    RewardsClaimed,
    StakeCreated,
    StakeWithdrawn,
    event_to_dict,
)


class TestEventTypes:
    def test_names(self):
        assert FundsReceived("lsA", 1).name == "FundsReceived"
        assert StakeCreated("lsA", 1, 5, 100, 0).name == "StakeCreated"
        assert StakeWithdrawn("lsA", 1, 5, 100, 0).name == "StakeWithdrawn"
        assert RewardsClaimed("lsA", 3).name == "RewardsClaimed"

    def test_frozen(self):
        ev = RewardsClaimed("lsA", 3)
        with pytest.raises(dataclasses.FrozenInstanceError):
            ev.amount = 4

    def test_to_dict(self):
        d = event_to_dict(StakeCreated("lsA", 7, 5, 100, 2))
        assert d == {
            "owner": "lsA", "stake_id": 7, "amount": 5,
            "start_time": 100, "tier": 2, "name": "StakeCreated",
        }


class TestEventLog:
    def test_emit_records_history(self):
        log = EventLog()
        log.emit([FundsReceived("lsA", 1), RewardsClaimed("lsA", 2)])
        assert len(log) == 2
        assert [e.name for e in log.events()] == ["FundsReceived", "RewardsClaimed"]
        assert log.events("RewardsClaimed") == [RewardsClaimed("lsA", 2)]

    def test_history_stamped_by_injected_clock(self):
        log = EventLog(clock=lambda: 1234.0)
        log.emit([FundsReceived("lsA", 1)])
        assert log.history == [(1234.0, FundsReceived("lsA", 1))]

    def test_ledger_history_uses_ledger_clock(self, ledger, clock):
        clock.advance(42)
        ledger.deposit("lsAlice", 5)
        ((ts, event),) = ledger.events.history
        assert ts == clock.now
        assert event == FundsReceived("lsAlice", 5)

    def test_empty_batch_ignored(self):
        log = EventLog()
        calls = []
        log.subscribe(calls.append)
        log.emit([])
        assert calls == []
        assert len(log) == 0

    def test_subscribers_receive_batches(self):
        log = EventLog()
        batches = []
        log.subscribe(batches.append)
        log.emit([FundsReceived("lsA", 1)])
        log.emit([FundsReceived("lsB", 2), FundsReceived("lsC", 3)])
        assert [len(b) for b in batches] == [1, 2]

    def test_unsubscribe(self):
        log = EventLog()
        batches = []
        log.subscribe(batches.append)
        log.unsubscribe(batches.append)
        log.unsubscribe(batches.append)
        log.emit([FundsReceived("lsA", 1)])
        assert batches == []

    def test_failing_subscriber_isolated(self, caplog):
        log = EventLog()
        good = []

        def bad(batch):
            raise RuntimeError("boom")

        log.subscribe(bad)
        log.subscribe(good.append)
        with caplog.at_level(logging.WARNING, logger="lockstake_events"):
            log.emit([FundsReceived("lsA", 1)])
        assert len(good) == 1
        assert "subscriber failed" in caplog.text

    def test_history_bounded(self):
        log = EventLog(max_history=3)
        log.emit([FundsReceived("lsA", i) for i in range(5)])
        assert [e.amount for e in log.events()] == [2, 3, 4]
