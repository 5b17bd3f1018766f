"""
Ledger notifications.

The ledger stages events while an operation runs and hands them to
``EventLog.emit`` only after the operation commits.  A rolled-back
operation therefore never produces a notification.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Union

logger = logging.getLogger("lockstake_events")


@dataclass(frozen=True)
class FundsReceived:
    sender: str
    amount: int
    name: str = field(default="FundsReceived", init=False)


@dataclass(frozen=True)
class StakeCreated:
    owner: str
    stake_id: int
    amount: int
    start_time: int
    tier: int
    name: str = field(default="StakeCreated", init=False)


@dataclass(frozen=True)
class StakeWithdrawn:
    owner: str
    stake_id: int
    amount: int
    start_time: int
    tier: int
    name: str = field(default="StakeWithdrawn", init=False)


@dataclass(frozen=True)
class RewardsClaimed:
    owner: str
    amount: int
    name: str = field(default="RewardsClaimed", init=False)


LedgerEvent = Union[FundsReceived, StakeCreated, StakeWithdrawn, RewardsClaimed]
Subscriber = Callable[[list], None]


def event_to_dict(event: LedgerEvent) -> dict:
    return asdict(event)


class EventLog:
    """Append-only history of committed events plus batch subscribers.

    Subscribers receive each committed batch as a list.  A failing
    subscriber is logged and skipped; it cannot undo a committed
    operation.
    """

    def __init__(self, max_history: int = 10_000, clock: Callable[[], float] = time.time):
        self.history: list[tuple[float, LedgerEvent]] = []
        self.max_history = max_history
        self._clock = clock
        self._subscribers: list[Subscriber] = []

    def subscribe(self, fn: Subscriber) -> None:
        self._subscribers.append(fn)

    def unsubscribe(self, fn: Subscriber) -> None:
        if fn in self._subscribers:
            self._subscribers.remove(fn)

    def emit(self, events: list[LedgerEvent]) -> None:
        if not events:
            return
        ts = self._clock()
        self.history.extend((ts, e) for e in events)
        if len(self.history) > self.max_history:
            del self.history[: len(self.history) - self.max_history]
        for fn in list(self._subscribers):
            try:
                fn(list(events))
            except Exception:
                logger.warning("Event subscriber failed", exc_info=True)

    def events(self, name: str | None = None) -> list[LedgerEvent]:
        return [e for _, e in self.history if name is None or e.name == name]

    def __len__(self) -> int:
        return len(self.history)
