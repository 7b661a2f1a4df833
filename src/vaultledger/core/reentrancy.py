"""
Reentrancy protection for ledger operations.

A guard is held for the duration of a guarded call. Any nested entry
while it is held (typically from an asset transfer hook calling back
into the ledger) is rejected with ReentrantCallError. Release happens on
every exit path, including exceptions.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar

from .exceptions import ReentrantCallError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class ReentrancyGuard:
    """Scoped non-reentrant lock flag.

    Share one instance between ledgers to serialize them together.
    """

    def __init__(self, name: str = "ledger"):
        self.name = name
        self._locked = False
        self._holder: str | None = None

    @property
    def locked(self) -> bool:
        return self._locked

    def __enter__(self) -> "ReentrancyGuard":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def acquire(self, operation: str = "") -> None:
        if self._locked:
            logger.warning(
                "Reentrant call rejected",
                extra={
                    "event": "reentrancy.rejected",
                    "guard": self.name,
                    "operation": operation,
                    "held_by": self._holder,
                },
            )
            raise ReentrantCallError(
                f"Reentrant call into {self.name}"
                + (f" ({operation})" if operation else ""),
                details={"guard": self.name, "operation": operation, "held_by": self._holder},
            )
        self._locked = True
        self._holder = operation or None

    def release(self) -> None:
        self._locked = False
        self._holder = None


def non_reentrant(method: F) -> F:
    """Run a ledger method while holding ``self._guard``."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        guard: ReentrancyGuard = self._guard
        guard.acquire(method.__name__)
        try:
            return method(self, *args, **kwargs)
        finally:
            guard.release()

    return wrapper  # type: ignore[return-value]
