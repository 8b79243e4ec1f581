"""
Shared fixtures.

`ManualClock` replaces wall-clock time so liveness and timestamp behavior can
be tested without sleeping.
"""

from __future__ import annotations

import pytest


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms

    def now_ms(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()
