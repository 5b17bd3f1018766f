"""
Fungible asset balances.

A ``FungibleAsset`` is the boundary to an external token: the ledger
only ever calls ``transfer`` and ``balance_of`` on it.  The same class
backs both the base (staked) asset and the reward asset on a local
node.

Recipients may register a receive hook that runs after they are
credited, the way a contract's fallback runs when it receives value.
A hook may call back into the ledger; if it raises, the transfer is
undone and reported as ``TransferFailed``.
"""

from __future__ import annotations

from typing import Callable, Optional

from lockstake_core.errors import TransferFailed

ReceiveHook = Callable[["FungibleAsset", str, int], None]


class FungibleAsset:
    """In-memory balance table for one asset."""

    def __init__(self, symbol: str, decimals: int = 18):
        self.symbol = symbol
        self.decimals = decimals
        self.balances: dict[str, int] = {}
        self._hooks: dict[str, ReceiveHook] = {}

    # ── balances ────────────────────────────────────────────────────

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    @property
    def total_supply(self) -> int:
        return sum(self.balances.values())

    def credit(self, address: str, amount: int) -> None:
        """Issue *amount* to *address*.  Used for genesis funding only."""
        if amount < 0:
            raise ValueError("Credit amount must be non-negative")
        self.balances[address] = self.balance_of(address) + amount

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Move *amount* from *sender* to *recipient*, then run the recipient's hook."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise TransferFailed(f"Invalid {self.symbol} transfer amount: {amount!r}")
        have = self.balance_of(sender)
        if have < amount:
            raise TransferFailed(
                f"Insufficient {self.symbol} balance for {sender}: "
                f"have {have}, need {amount}"
            )
        self.balances[sender] = have - amount
        self.balances[recipient] = self.balance_of(recipient) + amount

        hook = self._hooks.get(recipient)
        if hook is None:
            return
        try:
            hook(self, sender, amount)
        except Exception as exc:
            self.balances[recipient] = self.balance_of(recipient) - amount
            self.balances[sender] = self.balance_of(sender) + amount
            raise TransferFailed(
                f"{self.symbol} transfer to {recipient} rejected by receiver"
            ) from exc

    # ── receive hooks ───────────────────────────────────────────────

    def set_receive_hook(self, address: str, hook: Optional[ReceiveHook]) -> None:
        if hook is None:
            self._hooks.pop(address, None)
        else:
            self._hooks[address] = hook

    # ── snapshots (for transactional rollback) ──────────────────────

    def snapshot(self) -> dict[str, int]:
        return dict(self.balances)

    def restore(self, snap: dict[str, int]) -> None:
        self.balances = dict(snap)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "decimals": self.decimals,
            "total_supply": self.total_supply,
            "holders": sum(1 for v in self.balances.values() if v > 0),
        }

    def __repr__(self) -> str:
        return f"FungibleAsset({self.symbol})"
