"""Wall-clock abstraction.

Cooldown windows, alert timestamps, sync times and backoff deadlines all
read the time through a ``Clock`` so tests can move time forward by hand
instead of sleeping.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    def time(self) -> float:
        """Current time as epoch seconds."""
        ...


class SystemClock:
    def time(self) -> float:
        return time.time()


class ManualClock:
    """Virtual clock for tests.  Starts at a fixed epoch, moves only on advance()."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start

    def time(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("cannot move a clock backwards")
        self._now += seconds

    def set(self, now: float) -> None:
        self._now = now


def epoch_ms(clock: Clock) -> int:
    return int(clock.time() * 1000)


system_clock = SystemClock()
