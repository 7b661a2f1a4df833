"""
Ledger notifications.

Each ledger appends a LedgerEvent for every successful state change and
forwards it to any registered subscriber.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


@dataclass
class LedgerEvent:
    """Represents a ledger notification."""

    event_type: str  # "TokensReleased", "TokensLocked", ...
    ledger: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0
    recorded_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "ledger": self.ledger,
            "data": dict(self.data),
            "timestamp": self.timestamp,
        }


class EventLog:
    """Append-only event list with synchronous subscribers."""

    def __init__(self, ledger: str):
        self.ledger = ledger
        self.events: List[LedgerEvent] = []
        self._subscribers: List[Callable[[LedgerEvent], None]] = []

    def subscribe(self, callback: Callable[[LedgerEvent], None]) -> None:
        self._subscribers.append(callback)

    def emit(self, event_type: str, timestamp: int, **data: Any) -> LedgerEvent:
        event = LedgerEvent(
            event_type=event_type,
            ledger=self.ledger,
            data=data,
            timestamp=timestamp,
        )
        self.events.append(event)
        for callback in list(self._subscribers):
            callback(event)
        return event

    def of_type(self, event_type: str) -> List[LedgerEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def __len__(self) -> int:
        return len(self.events)
