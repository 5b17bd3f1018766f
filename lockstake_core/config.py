"""
TOML-based configuration for Lockstake nodes.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from lockstake_core.config import load_config
    cfg = load_config("lockstake.toml")

Example file:

    [ledger]
    address = "lockstake"
    staking_enabled = true

    [tiers.multipliers]
    three_months = 10000
    six_months = 15000
    one_year = 30000

    [admin]
    operators = ["ls3f2a..."]

    [genesis]
    reward_treasury = "1000000000000000000000000"   # strings for values past 2**63
    [genesis.balances]
    "ls9c1e..." = 5_000000000000000000
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from lockstake_core.staking import DEFAULT_MULTIPLIERS, TIER_KEYS


@dataclass
class NodeConfig:
    """Identity of this node in logs and status output."""
    node_id: str = "lockstake-1"


@dataclass
class LedgerConfig:
    """Ledger account and staking behaviour."""
    address: str = "lockstake"
    base_symbol: str = "ETH"
    reward_symbol: str = "RWD"
    staking_enabled: bool = True
    exchange_rate: int = 1
    check_invariants: bool = True


def _default_multipliers() -> dict[str, int]:
    return {key: DEFAULT_MULTIPLIERS[tier] for key, tier in TIER_KEYS.items()}


@dataclass
class TiersConfig:
    """Initial multipliers, keyed ``three_months`` / ``six_months`` / ``one_year``."""
    multipliers: dict[str, int] = field(default_factory=_default_multipliers)


@dataclass
class AdminConfigSection:
    """Addresses granted every gated admin operation on the local registry."""
    operators: list[str] = field(default_factory=list)


@dataclass
class GenesisConfig:
    """
    Starting balances.

    ``balances`` maps address → base-asset units.  ``reward_treasury``
    is credited to the ledger account on the reward asset.
    """
    balances: dict[str, int | str] = field(default_factory=dict)
    reward_treasury: int | str = 0


@dataclass
class APIConfig:
    """REST API settings."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)
    max_body_bytes: int = 1_048_576


@dataclass
class StorageConfig:
    """Persistence settings."""
    enabled: bool = False
    path: str = "data/lockstake.db"


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class LockstakeConfig:
    """Top-level configuration container."""
    node: NodeConfig = field(default_factory=NodeConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    tiers: TiersConfig = field(default_factory=TiersConfig)
    admin: AdminConfigSection = field(default_factory=AdminConfigSection)
    genesis: GenesisConfig = field(default_factory=GenesisConfig)
    api: APIConfig = field(default_factory=APIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _split(value: str) -> list[str]:
    return [p.strip() for p in value.split(",") if p.strip()]


def load_config(path: str | None = None) -> LockstakeConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        LOCKSTAKE_NODE_ID      -> node.node_id
        LOCKSTAKE_API_PORT     -> api.port (and enables the API)
        LOCKSTAKE_API_KEY      -> api.api_key
        LOCKSTAKE_LOG_LEVEL    -> logging.level
        LOCKSTAKE_LOG_FMT      -> logging.format
        LOCKSTAKE_DB_PATH      -> storage.path (and enables storage)
        LOCKSTAKE_OPERATORS    -> admin.operators (comma-separated)
        LOCKSTAKE_CORS_ORIGINS -> api.cors_origins (comma-separated)
    """
    cfg = LockstakeConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("node", cfg.node),
                ("ledger", cfg.ledger),
                ("admin", cfg.admin),
                ("genesis", cfg.genesis),
                ("api", cfg.api),
                ("storage", cfg.storage),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])
            # Partial multiplier tables overlay the defaults
            mults = data.get("tiers", {}).get("multipliers", {})
            for key, value in mults.items():
                cfg.tiers.multipliers[key.replace("-", "_")] = value

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("LOCKSTAKE_NODE_ID"):
        cfg.node.node_id = v
    if v := os.environ.get("LOCKSTAKE_API_PORT"):
        cfg.api.port = int(v)
        cfg.api.enabled = True
    if v := os.environ.get("LOCKSTAKE_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("LOCKSTAKE_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("LOCKSTAKE_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("LOCKSTAKE_DB_PATH"):
        cfg.storage.path = v
        cfg.storage.enabled = True
    if v := os.environ.get("LOCKSTAKE_OPERATORS"):
        cfg.admin.operators = _split(v)
    if v := os.environ.get("LOCKSTAKE_CORS_ORIGINS"):
        cfg.api.cors_origins = _split(v)

    return cfg
