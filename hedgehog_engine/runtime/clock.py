"""
Time sources for the engine.

Every component that measures age, windows or timeouts takes a Clock
instead of reading the wall clock directly, so TTL, watchdog and
rate-limit logic can be driven deterministically in tests.
"""

import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Millisecond time source."""

    @abstractmethod
    def now_ms(self) -> int:
        """Current time in epoch milliseconds."""
        pass


class SystemClock(Clock):
    """Wall clock backed by time.time()."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class ManualClock(Clock):
    """
    Clock that only moves when told to.

    Used by tests to step through TTL expiry, watchdog intervals and
    rate-limit windows without sleeping.
    """

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self._now_ms = int(start_ms)

    def now_ms(self) -> int:
        return self._now_ms

    def advance(self, ms: int | float) -> int:
        """Move the clock forward by `ms` milliseconds."""
        if ms < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now_ms += int(ms)
        return self._now_ms

    def advance_seconds(self, seconds: float) -> int:
        """Move the clock forward by `seconds`."""
        return self.advance(seconds * 1000)

    def set(self, now_ms: int) -> None:
        """Jump to an absolute time (must not go backwards)."""
        if now_ms < self._now_ms:
            raise ValueError("ManualClock cannot move backwards")
        self._now_ms = int(now_ms)


_system_clock = SystemClock()


def get_system_clock() -> SystemClock:
    """Shared wall-clock instance."""
    return _system_clock
