"""
Tests for lockstake_core.config - TOML configuration and environment overrides.

Covers:
  - Default values for all dataclass sections
  - TOML parsing and section merging
  - Partial [tiers.multipliers] overlay
  - Environment variable overrides (precedence over TOML)
  - _merge helper edge cases
  - Missing TOML files
"""

from __future__ import annotations

import os
import textwrap
import unittest
from unittest.mock import patch

from lockstake_core.config import (
    APIConfig,
    GenesisConfig,
    LedgerConfig,
    LockstakeConfig,
    LoggingConfig,
    StorageConfig,
    _merge,
    load_config,
)

_CLEAN_ENV = {k: v for k, v in os.environ.items() if not k.startswith("LOCKSTAKE_")}


# ═══════════════════════════════════════════════════════════════════
#  Defaults
# ═══════════════════════════════════════════════════════════════════

class TestDefaults(unittest.TestCase):
    def test_ledger_defaults(self):
        cfg = LedgerConfig()
        self.assertEqual(cfg.address, "lockstake")
        self.assertTrue(cfg.staking_enabled)
        self.assertEqual(cfg.exchange_rate, 1)
        self.assertTrue(cfg.check_invariants)

    def test_tier_defaults(self):
        cfg = LockstakeConfig()
        self.assertEqual(
            cfg.tiers.multipliers,
            {"three_months": 10_000, "six_months": 15_000, "one_year": 30_000},
        )

    def test_tier_defaults_not_shared(self):
        a, b = LockstakeConfig(), LockstakeConfig()
        a.tiers.multipliers["one_year"] = 1
        self.assertEqual(b.tiers.multipliers["one_year"], 30_000)

    def test_api_defaults(self):
        cfg = APIConfig()
        self.assertFalse(cfg.enabled)
        self.assertEqual(cfg.port, 8080)
        self.assertEqual(cfg.api_key, "")
        self.assertEqual(cfg.rate_limit_rpm, 120)
        self.assertEqual(cfg.max_body_bytes, 1_048_576)

    def test_misc_defaults(self):
        self.assertFalse(StorageConfig().enabled)
        self.assertEqual(LoggingConfig().format, "human")
        self.assertEqual(GenesisConfig().balances, {})
        self.assertEqual(LockstakeConfig().admin.operators, [])


# ═══════════════════════════════════════════════════════════════════
#  _merge
# ═══════════════════════════════════════════════════════════════════

class TestMerge(unittest.TestCase):
    def test_known_keys_set(self):
        cfg = LedgerConfig()
        _merge(cfg, {"address": "vault", "exchange_rate": 3})
        self.assertEqual(cfg.address, "vault")
        self.assertEqual(cfg.exchange_rate, 3)

    def test_unknown_keys_ignored(self):
        cfg = LedgerConfig()
        _merge(cfg, {"bogus": 1})
        self.assertFalse(hasattr(cfg, "bogus"))

    def test_hyphenated_keys(self):
        cfg = LedgerConfig()
        _merge(cfg, {"staking-enabled": False})
        self.assertFalse(cfg.staking_enabled)


# ═══════════════════════════════════════════════════════════════════
#  TOML loading
# ═══════════════════════════════════════════════════════════════════

_TOML = textwrap.dedent("""
    [node]
    node_id = "stake-7"

    [ledger]
    address = "vault"
    staking_enabled = false

    [tiers.multipliers]
    one_year = 45000

    [admin]
    operators = ["lsOp1", "lsOp2"]

    [genesis]
    reward_treasury = "1000000000000000000000000"
    [genesis.balances]
    lsAlice = 5000000000000000000

    [api]
    enabled = true
    port = 9100
    cors_origins = ["https://app.example"]

    [storage]
    enabled = true
    path = "/tmp/ls.db"

    [logging]
    level = "DEBUG"
    format = "json"
""")


@patch.dict(os.environ, _CLEAN_ENV, clear=True)
class TestLoadConfig(unittest.TestCase):
    def _write(self, tmpdir, text=_TOML):
        path = os.path.join(tmpdir, "lockstake.toml")
        with open(path, "w") as f:
            f.write(text)
        return path

    def test_no_path_gives_defaults(self):
        cfg = load_config(None)
        self.assertEqual(cfg.node.node_id, "lockstake-1")

    def test_missing_file_gives_defaults(self):
        cfg = load_config("/nonexistent/lockstake.toml")
        self.assertEqual(cfg.ledger.address, "lockstake")

    def test_sections_loaded(self):
        import tempfile
        with tempfile.TemporaryDirectory() as d:
            cfg = load_config(self._write(d))
        self.assertEqual(cfg.node.node_id, "stake-7")
        self.assertEqual(cfg.ledger.address, "vault")
        self.assertFalse(cfg.ledger.staking_enabled)
        self.assertEqual(cfg.admin.operators, ["lsOp1", "lsOp2"])
        self.assertEqual(int(cfg.genesis.reward_treasury), 10 ** 24)
        self.assertEqual(cfg.genesis.balances["lsAlice"], 5 * 10 ** 18)
        self.assertTrue(cfg.api.enabled)
        self.assertEqual(cfg.api.port, 9100)
        self.assertEqual(cfg.api.cors_origins, ["https://app.example"])
        self.assertEqual(cfg.storage.path, "/tmp/ls.db")
        self.assertEqual(cfg.logging.format, "json")

    def test_partial_multipliers_overlay(self):
        import tempfile
        with tempfile.TemporaryDirectory() as d:
            cfg = load_config(self._write(d))
        self.assertEqual(cfg.tiers.multipliers["one_year"], 45_000)
        self.assertEqual(cfg.tiers.multipliers["three_months"], 10_000)


# ═══════════════════════════════════════════════════════════════════
#  Environment overrides
# ═══════════════════════════════════════════════════════════════════

class TestEnvOverrides(unittest.TestCase):
    def _load(self, env):
        with patch.dict(os.environ, {**_CLEAN_ENV, **env}, clear=True):
            return load_config(None)

    def test_node_id(self):
        self.assertEqual(self._load({"LOCKSTAKE_NODE_ID": "n9"}).node.node_id, "n9")

    def test_api_port_enables_api(self):
        cfg = self._load({"LOCKSTAKE_API_PORT": "7000"})
        self.assertEqual(cfg.api.port, 7000)
        self.assertTrue(cfg.api.enabled)

    def test_api_key(self):
        self.assertEqual(self._load({"LOCKSTAKE_API_KEY": "s3"}).api.api_key, "s3")

    def test_logging(self):
        cfg = self._load({"LOCKSTAKE_LOG_LEVEL": "debug", "LOCKSTAKE_LOG_FMT": "json"})
        self.assertEqual(cfg.logging.level, "DEBUG")
        self.assertEqual(cfg.logging.format, "json")

    def test_db_path_enables_storage(self):
        cfg = self._load({"LOCKSTAKE_DB_PATH": "/tmp/x.db"})
        self.assertEqual(cfg.storage.path, "/tmp/x.db")
        self.assertTrue(cfg.storage.enabled)

    def test_lists_split_on_commas(self):
        cfg = self._load({
            "LOCKSTAKE_OPERATORS": "lsA, lsB,,",
            "LOCKSTAKE_CORS_ORIGINS": "https://a.example",
        })
        self.assertEqual(cfg.admin.operators, ["lsA", "lsB"])
        self.assertEqual(cfg.api.cors_origins, ["https://a.example"])

    def test_env_beats_toml(self):
        import tempfile
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "c.toml")
            with open(path, "w") as f:
                f.write('[node]\nnode_id = "from-file"\n')
            with patch.dict(os.environ, {**_CLEAN_ENV, "LOCKSTAKE_NODE_ID": "from-env"}, clear=True):
                cfg = load_config(path)
        self.assertEqual(cfg.node.node_id, "from-env")
