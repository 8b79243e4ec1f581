from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """
    Source of "now" for the engine and its periodic tasks.

    Tests inject a manual clock so liveness and timestamps are deterministic.
    """

    def now_ms(self) -> int:
        """Return the current time as integer epoch milliseconds."""
        ...


class SystemClock:
    """Wall-clock implementation of :class:`Clock`."""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000
