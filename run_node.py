#!/usr/bin/env python3
"""
Lockstake Node Runner - starts a staking ledger node with:
  - Base and reward assets funded from genesis config
  - Access registry seeded with the configured operators
  - Optional SQLite persistence (restored on start, saved per commit)
  - Optional REST API
  - Interactive CLI acting as the node's own wallet

Usage:
    python run_node.py --config lockstake.toml --api-port 8080 \\
                       --db data/lockstake.db

Environment variables (alternative to flags):
    LOCKSTAKE_NODE_ID, LOCKSTAKE_API_PORT, LOCKSTAKE_DB_PATH, LOCKSTAKE_OPERATORS
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from lockstake_core.admin import AdminConfig  # noqa: E402
from lockstake_core.assets import FungibleAsset  # noqa: E402
from lockstake_core.authorization import AuthorizationGate, StaticAccessRegistry  # noqa: E402
from lockstake_core.config import LockstakeConfig, load_config  # noqa: E402
from lockstake_core.errors import StakingError  # noqa: E402
from lockstake_core.events import LedgerEvent  # noqa: E402
from lockstake_core.ledger import StakeLedger  # noqa: E402
from lockstake_core.logging_config import setup_logging  # noqa: E402
from lockstake_core.staking import UNITS_PER_TOKEN  # noqa: E402
from lockstake_core.storage import LedgerStore  # noqa: E402
from lockstake_core.wallet import Wallet  # noqa: E402

logger = logging.getLogger("node")

# Dev-mode funding for the node wallet when no genesis balances are configured
DEV_FUND_TOKENS = 10_000


# ===================================================================
#  Lockstake Node
# ===================================================================

class LockstakeNode:
    """
    Wires assets, authorization, admin config, ledger, storage and API
    into a single runnable node.
    """

    def __init__(self, config: LockstakeConfig | None = None, wallet: Wallet | None = None):
        self.config = config or LockstakeConfig()
        cfg = self.config
        self.node_id = cfg.node.node_id
        self.wallet = wallet or Wallet.from_seed(self.node_id)

        # Assets
        self.base_asset = FungibleAsset(cfg.ledger.base_symbol)
        self.reward_asset = FungibleAsset(cfg.ledger.reward_symbol)
        self.assets: dict[str, FungibleAsset] = {
            self.base_asset.symbol: self.base_asset,
            self.reward_asset.symbol: self.reward_asset,
        }

        # Authorization
        address = cfg.ledger.address
        self.registry = StaticAccessRegistry()
        for operator in cfg.admin.operators:
            self.registry.grant_all(operator, address)

        # Admin config + ledger
        self.admin = AdminConfig(
            AuthorizationGate(self.registry, address),
            self.base_asset,
            address,
            multipliers=cfg.tiers.multipliers,
            reward_asset=self.reward_asset,
            staking_permitted=cfg.ledger.staking_enabled,
            exchange_rate=cfg.ledger.exchange_rate,
        )
        self.ledger = StakeLedger(self.admin, check_invariants=cfg.ledger.check_invariants)

        self.store: LedgerStore | None = None
        self._api = None

    # ---- lifecycle ----

    def apply_genesis(self) -> None:
        genesis = self.config.genesis
        for addr, balance in genesis.balances.items():
            self.base_asset.credit(addr, int(balance))
        treasury = int(genesis.reward_treasury)
        if treasury:
            self.reward_asset.credit(self.ledger.address, treasury)
        if not genesis.balances:
            self.base_asset.credit(self.wallet.address, DEV_FUND_TOKENS * UNITS_PER_TOKEN)
        logger.info(
            f"Genesis applied: {len(genesis.balances)} balances, treasury {treasury}"
        )

    async def start(self) -> None:
        """Restore or apply genesis, then start persistence and API."""
        restored = False
        if self.config.storage.enabled:
            self.store = LedgerStore(self.config.storage.path)
            restored = self.store.load_ledger(self.ledger, self.assets)
            self.ledger.on_commit(self._persist)
        if not restored:
            self.apply_genesis()
            if self.store is not None:
                self.store.save_ledger(self.ledger)

        if self.config.api.enabled:
            from lockstake_core.api import APIServer
            self._api = APIServer(
                self,
                host=self.config.api.host,
                port=self.config.api.port,
                api_config=self.config.api,
            )
            await self._api.start()

        logger.info(
            f"Node {self.node_id} started | wallet={self.wallet.address} "
            f"| ledger={self.ledger.address}"
        )

    async def stop(self) -> None:
        if self._api is not None:
            await self._api.stop()
            self._api = None
        if self.store is not None:
            logger.info("Saving ledger state to database...")
            self.store.save_ledger(self.ledger)
            self.store.close()
            self.store = None

    def _persist(self, batch: list[LedgerEvent]) -> None:
        if self.store is None:
            return
        if batch:
            self.store.record_events(batch)
        self.store.save_ledger(self.ledger)

    def status(self) -> dict:
        return {
            "node_id": self.node_id,
            "wallet": self.wallet.address,
            "pool": self.ledger.pool_summary(),
            "config": self.admin.to_dict(),
            "assets": {sym: a.to_dict() for sym, a in self.assets.items()},
        }


# ===================================================================
#  Interactive CLI
# ===================================================================

HELP_TEXT = """
Commands:
  status                      Pool summary and admin settings
  tiers                       Lockups and multipliers
  stakes [owner]              Stakes of owner (default: node wallet)
  balance [address]           Base and reward balances
  stake <tier> <amount>       Lock amount (base units) for tier 0/1/2
  restake <stake_id> <tier>   Roll an unlocked stake into a new tier
  withdraw <stake_id>         Return an unlocked stake's principal
  claim <amount>              Claim reward units
  help                        This text
  quit                        Stop the node
"""


async def interactive_cli(node: LockstakeNode) -> None:
    loop = asyncio.get_running_loop()
    me = node.wallet.address
    print(HELP_TEXT)
    while True:
        try:
            line = await loop.run_in_executor(None, input, f"[{node.node_id}]> ")
            parts = line.strip().split()
            if not parts:
                continue
            cmd = parts[0].lower()

            if cmd == "help":
                print(HELP_TEXT)
            elif cmd == "status":
                print(json.dumps(node.status(), indent=2, default=str))
            elif cmd == "tiers":
                print(json.dumps(node.admin.tier_info(), indent=2))
            elif cmd == "stakes":
                owner = parts[1] if len(parts) > 1 else me
                print(json.dumps(node.ledger.summary(owner), indent=2, default=str))
            elif cmd == "balance":
                addr = parts[1] if len(parts) > 1 else me
                for sym, asset in node.assets.items():
                    print(f"  {sym}: {asset.balance_of(addr)}")
            elif cmd == "stake" and len(parts) == 3:
                sid = node.ledger.stake(me, int(parts[1]), int(parts[2]))
                print(f"  Stake {sid} created")
            elif cmd == "restake" and len(parts) == 3:
                sid = node.ledger.restake(me, int(parts[1]), int(parts[2]))
                print(f"  Restaked as {sid}")
            elif cmd == "withdraw" and len(parts) == 2:
                amount = node.ledger.withdraw(me, int(parts[1]))
                print(f"  Withdrew {amount}")
            elif cmd == "claim" and len(parts) == 2:
                node.ledger.claim(me, int(parts[1]))
                print(f"  Claimed {parts[1]}")
            elif cmd in ("quit", "exit", "q"):
                print("Shutting down...")
                await node.stop()
                break
            else:
                print(f"  Unknown or malformed command: {line.strip()}. Type 'help'.")

        except (EOFError, KeyboardInterrupt):
            print("\nShutting down...")
            await node.stop()
            break
        except StakingError as e:
            print(f"  {e.kind}: {e}")
        except ValueError as e:
            print(f"  Error: {e}")


# ===================================================================
#  Main entry point
# ===================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Lockstake staking ledger node")
    p.add_argument("--config", default=None, help="Path to lockstake.toml config file")
    p.add_argument("--api-port", type=int, default=None,
                   help="Enable the REST API on this port")
    p.add_argument("--db", default=None, help="Enable SQLite persistence at this path")
    p.add_argument("--no-cli", action="store_true",
                   help="Run without interactive CLI")
    return p.parse_args(argv)


def build_config(args: argparse.Namespace) -> LockstakeConfig:
    """Load config (TOML + env overrides), then apply CLI flags."""
    cfg = load_config(args.config)
    if args.api_port is not None:
        cfg.api.port = args.api_port
        cfg.api.enabled = True
    if args.db:
        cfg.storage.path = args.db
        cfg.storage.enabled = True
    return cfg


async def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    cfg = build_config(args)
    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    node = LockstakeNode(cfg)
    await node.start()

    if not cfg.admin.operators:
        logger.warning(
            "No admin operators configured; multipliers, staking toggle, "
            "reward asset and sweep are locked."
        )

    if args.no_cli:
        try:
            while True:
                await asyncio.sleep(1)
        except (KeyboardInterrupt, asyncio.CancelledError):
            await node.stop()
    else:
        await interactive_cli(node)


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()
