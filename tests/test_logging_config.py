"""
Tests for structured logging setup.
"""

import json
import logging

from lockstake_core.logging_config import _HumanFormatter, _JSONFormatter, setup_logging


def _record(msg="hello", **extra):
    record = logging.LogRecord("lockstake_ledger", logging.INFO, __file__, 1, msg, None, None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


class TestFormatters:
    def test_json_includes_structured_fields(self):
        out = json.loads(_JSONFormatter().format(_record(owner="lsA", stake_id=3, amount=10**30)))
        assert out["msg"] == "hello"
        assert out["logger"] == "lockstake_ledger"
        assert out["owner"] == "lsA"
        assert out["stake_id"] == 3
        assert out["amount"] == 10 ** 30
        assert "operation" not in out

    def test_human_appends_stake_id(self):
        line = _HumanFormatter().format(_record(stake_id=7))
        assert "hello" in line
        assert "(stake #7)" in line


class TestSetup:
    def test_file_handler_writes_json(self, tmp_path):
        path = tmp_path / "logs" / "ls.log"
        root = logging.getLogger()
        saved = list(root.handlers), root.level
        try:
            setup_logging("DEBUG", "human", str(path))
            logging.getLogger("lockstake_test").info("written", extra={"stake_id": 1})
            for h in root.handlers:
                h.flush()
            entry = json.loads(path.read_text().strip().splitlines()[-1])
            assert entry["msg"] == "written"
            assert entry["stake_id"] == 1
        finally:
            for h in root.handlers:
                h.close()
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])
