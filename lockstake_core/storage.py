"""
SQLite-based persistence layer for Lockstake ledger state.

Stores stake records, claimed totals, counters, admin settings, asset
balances and the highest accepted request nonce per address so that a
node can recover after restart.  Amounts can exceed SQLite's 64-bit
INTEGER range (stakes are bounded at 2**224), so every amount column is
TEXT holding a decimal string.

Usage:
    store = LedgerStore("data/lockstake.db")
    store.save_ledger(ledger)
    ...
    store.load_ledger(ledger)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING, Any

from lockstake_core.events import LedgerEvent, event_to_dict
from lockstake_core.staking import StakeRecord, StakeTier

if TYPE_CHECKING:
    from lockstake_core.ledger import StakeLedger

logger = logging.getLogger("lockstake_storage")

# table -> (key columns, value columns) for diffed saves
_COLUMNS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "stakes": (("stake_id",), ("owner", "amount", "start_time", "tier", "withdrawn")),
    "claims": (("owner",), ("claimed",)),
    "balances": (("asset", "address"), ("balance",)),
    "meta": (("key",), ("value",)),
}


class LedgerStore:
    """Thin SQLite wrapper for persisting ledger state."""

    CURRENT_SCHEMA_VERSION = 1

    def __init__(self, db_path: str = "data/lockstake.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        # rows written by the last save_ledger; None until the first one
        self._saved: dict[str, dict[tuple, tuple]] | None = None
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Storage opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS stakes (
                stake_id   INTEGER PRIMARY KEY,
                owner      TEXT NOT NULL,
                amount     TEXT NOT NULL,
                start_time INTEGER NOT NULL,
                tier       INTEGER NOT NULL,
                withdrawn  INTEGER NOT NULL DEFAULT 0
            )
        """)
        c.execute("CREATE INDEX IF NOT EXISTS idx_stakes_owner ON stakes (owner, stake_id)")
        c.execute("""
            CREATE TABLE IF NOT EXISTS claims (
                owner   TEXT PRIMARY KEY,
                claimed TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS balances (
                asset   TEXT NOT NULL,
                address TEXT NOT NULL,
                balance TEXT NOT NULL,
                PRIMARY KEY (asset, address)
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key   TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id      INTEGER PRIMARY KEY AUTOINCREMENT,
                name    TEXT NOT NULL,
                payload TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS nonces (
                address TEXT PRIMARY KEY,
                nonce   TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)
        c.commit()

    def _ensure_schema_version(self) -> None:
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            self._conn.commit()
        elif row["version"] > self.CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema v{row['version']} is newer than this software "
                f"(v{self.CURRENT_SCHEMA_VERSION}).  Upgrade Lockstake."
            )

    @property
    def schema_version(self) -> int:
        row = self._conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
        return row["version"]

    # ── full-state save / load ───────────────────────────────────

    def _rows(self, ledger: StakeLedger) -> dict[str, dict[tuple, tuple]]:
        cfg = ledger.config
        assets = [cfg.base_asset]
        if cfg.reward_asset is not None and cfg.reward_asset is not cfg.base_asset:
            assets.append(cfg.reward_asset)
        meta = {
            "last_stake_id": str(ledger.last_stake_id),
            "staking_permitted": "1" if cfg.staking_permitted else "0",
            "multipliers": json.dumps({str(int(t)): m for t, m in cfg.multipliers.items()}),
            "reward_asset": cfg.reward_asset.symbol if cfg.reward_asset else "",
        }
        return {
            "stakes": {
                (r.stake_id,): (r.owner, str(r.amount), r.start_time, int(r.tier), int(r.withdrawn))
                for r in ledger.stakes.values()
            },
            "claims": {(owner,): (str(v),) for owner, v in ledger.claimed.items()},
            "balances": {
                (asset.symbol, addr): (str(bal),)
                for asset in assets
                for addr, bal in asset.balances.items()
            },
            "meta": {(k,): (v,) for k, v in meta.items()},
        }

    def _write_rows(self, table: str, rows: dict[tuple, tuple], previous: dict[tuple, tuple]) -> None:
        keys, values = _COLUMNS[table]
        cols = keys + values
        self._conn.executemany(
            f"INSERT OR REPLACE INTO {table} ({', '.join(cols)}) "
            f"VALUES ({', '.join('?' * len(cols))})",
            [k + v for k, v in rows.items() if previous.get(k) != v],
        )
        gone = [k for k in previous if k not in rows]
        if gone:
            where = " AND ".join(f"{k} = ?" for k in keys)
            self._conn.executemany(f"DELETE FROM {table} WHERE {where}", gone)

    def save_ledger(self, ledger: StakeLedger) -> None:
        """
        Replace the stored state with *ledger*'s, atomically.

        The first save after opening rewrites every table.  Later saves
        write only the rows that changed since the previous save.
        """
        rows = self._rows(ledger)
        with self._conn:
            for table, table_rows in rows.items():
                if self._saved is None:
                    self._conn.execute(f"DELETE FROM {table}")
                    previous: dict[tuple, tuple] = {}
                else:
                    previous = self._saved[table]
                self._write_rows(table, table_rows, previous)
        self._saved = rows
        logger.debug(f"Saved {len(ledger.stakes)} stakes, last id {ledger.last_stake_id}")

    def load_ledger(self, ledger: StakeLedger, assets: dict[str, Any] | None = None) -> bool:
        """
        Restore stored state into *ledger*.  Returns False if nothing was stored.

        *assets* maps symbol → ``FungibleAsset`` for resolving the stored
        reward-asset reference; the ledger's own assets are always known.
        """
        meta = {r["key"]: r["value"] for r in self._conn.execute("SELECT * FROM meta")}
        if "last_stake_id" not in meta:
            return False

        cfg = ledger.config
        known: dict[str, Any] = dict(assets or {})
        known.setdefault(cfg.base_asset.symbol, cfg.base_asset)
        if cfg.reward_asset is not None:
            known.setdefault(cfg.reward_asset.symbol, cfg.reward_asset)

        ledger.stakes.clear()
        ledger.stakes_by_owner.clear()
        for row in self._conn.execute("SELECT * FROM stakes ORDER BY stake_id"):
            record = StakeRecord(
                stake_id=row["stake_id"],
                owner=row["owner"],
                amount=int(row["amount"]),
                start_time=row["start_time"],
                tier=StakeTier(row["tier"]),
                withdrawn=bool(row["withdrawn"]),
            )
            ledger.stakes[record.stake_id] = record
            ledger.stakes_by_owner.setdefault(record.owner, []).append(record.stake_id)
        ledger.claimed = {
            row["owner"]: int(row["claimed"])
            for row in self._conn.execute("SELECT * FROM claims")
        }
        ledger.last_stake_id = int(meta["last_stake_id"])

        cfg.staking_permitted = meta.get("staking_permitted", "1") == "1"
        for tier, mult in json.loads(meta.get("multipliers", "{}")).items():
            cfg.multipliers[StakeTier(int(tier))] = int(mult)
        symbol = meta.get("reward_asset", "")
        cfg.reward_asset = known.get(symbol) if symbol else None

        by_asset: dict[str, dict[str, int]] = {}
        for row in self._conn.execute("SELECT * FROM balances"):
            by_asset.setdefault(row["asset"], {})[row["address"]] = int(row["balance"])
        for sym, asset in known.items():
            if sym in by_asset:
                asset.restore(by_asset[sym])

        logger.info(
            f"Loaded {len(ledger.stakes)} stakes for {len(ledger.stakes_by_owner)} owners"
        )
        return True

    # ── events ───────────────────────────────────────────────────

    def record_events(self, events: list[LedgerEvent]) -> None:
        with self._conn:
            self._conn.executemany(
                "INSERT INTO events (name, payload) VALUES (?, ?)",
                [(e.name, json.dumps(event_to_dict(e))) for e in events],
            )

    def load_events(self, name: str | None = None) -> list[dict[str, Any]]:
        if name is None:
            rows = self._conn.execute("SELECT payload FROM events ORDER BY id")
        else:
            rows = self._conn.execute(
                "SELECT payload FROM events WHERE name = ? ORDER BY id", (name,)
            )
        return [json.loads(r["payload"]) for r in rows]

    # ── request nonces ───────────────────────────────────────────

    def save_nonce(self, address: str, nonce: int) -> None:
        """Record the highest nonce accepted from *address*."""
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO nonces (address, nonce) VALUES (?, ?)",
                (address, str(nonce)),
            )

    def load_nonces(self) -> dict[str, int]:
        return {
            row["address"]: int(row["nonce"])
            for row in self._conn.execute("SELECT * FROM nonces")
        }

    def close(self) -> None:
        self._conn.close()
