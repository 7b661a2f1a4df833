"""
Injectable time sources.

Ledgers never read the wall clock directly; they ask a Clock. Production
code uses SystemClock, tests use ManualClock to pin time and block height.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol, runtime_checkable

from .exceptions import InvalidDurationError

logger = logging.getLogger(__name__)


@runtime_checkable
class Clock(Protocol):
    """Monotone timestamp source plus an independent block-height counter."""

    def now(self) -> int:
        ...

    def height(self) -> int:
        ...


class SystemClock:
    """
    Wall-clock seconds.

    height() is derived from elapsed wall time since ``genesis_time`` in
    units of ``block_interval`` seconds, which keeps it monotone without
    a chain behind it.
    """

    def __init__(
        self,
        genesis_time: int = 0,
        block_interval: int = 12,
        time_provider: Callable[[], float] | None = None,
    ):
        if not isinstance(block_interval, int) or block_interval <= 0:
            raise InvalidDurationError("Block interval must be a positive integer.")
        self.genesis_time = genesis_time
        self.block_interval = block_interval
        self._time_provider = time_provider or time.time

    def now(self) -> int:
        timestamp = self._time_provider()
        try:
            return int(timestamp)
        except (TypeError, ValueError) as exc:
            raise ValueError("time_provider must return a numeric timestamp") from exc

    def height(self) -> int:
        return max(0, (self.now() - self.genesis_time) // self.block_interval)


class ManualClock:
    """Deterministic clock for tests and simulations."""

    def __init__(self, start_time: int = 0, start_height: int = 0):
        self.current_time = start_time
        self.current_height = start_height

    def now(self) -> int:
        return self.current_time

    def height(self) -> int:
        return self.current_height

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self.current_time += seconds
        return self.current_time

    def set(self, timestamp: int) -> int:
        if timestamp < self.current_time:
            raise ValueError(
                f"ManualClock cannot move backwards ({timestamp} < {self.current_time})"
            )
        self.current_time = timestamp
        return self.current_time

    def mine(self, blocks: int = 1) -> int:
        if blocks < 0:
            raise ValueError("Block height cannot decrease")
        self.current_height += blocks
        logger.debug("ManualClock advanced to height %s", self.current_height)
        return self.current_height
