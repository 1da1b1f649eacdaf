"""
Cancellation rate limiting.

A fixed-window token bucket: `cancel_rate_per_min` tokens, refilled in full
at the start of each 60-second window. Requests over budget are rejected
immediately instead of waiting, so a reprice pass never stalls behind the
limiter; the caller simply retries on a later pass.
"""

import asyncio

from hedgehog_engine.logging import get_logger
from hedgehog_engine.runtime.clock import Clock, get_system_clock

logger = get_logger(__name__)

WINDOW_MS = 60_000


class CancelRateLimiter:
    """
    Per-instrument cancellation budget.

    The only piece of engine state shared between the strategy and the
    lifecycle manager, so every access goes through an asyncio.Lock.
    """

    def __init__(self, cancels_per_minute: int, clock: Clock | None = None) -> None:
        """
        Initialize rate limiter.

        Args:
            cancels_per_minute: Tokens available in each 60 s window
            clock: Time source (defaults to wall clock)
        """
        if cancels_per_minute < 1:
            raise ValueError(f"cancels_per_minute must be >= 1, got {cancels_per_minute}")
        self._capacity = cancels_per_minute
        self._clock = clock or get_system_clock()
        self._tokens = cancels_per_minute
        self._window_start = self._clock.now_ms()
        self._lock = asyncio.Lock()

        self._total_granted = 0
        self._total_dropped = 0
        self._total_refunded = 0

    def _refill(self) -> None:
        now = self._clock.now_ms()
        if now - self._window_start >= WINDOW_MS:
            # Align to window boundaries so a late call does not stretch the window
            elapsed_windows = (now - self._window_start) // WINDOW_MS
            self._window_start += elapsed_windows * WINDOW_MS
            self._tokens = self._capacity

    async def try_acquire(self) -> bool:
        """
        Take one cancellation token if available.

        Returns:
            True if the cancel may proceed, False if the budget is spent
        """
        async with self._lock:
            self._refill()
            if self._tokens > 0:
                self._tokens -= 1
                self._total_granted += 1
                return True

            self._total_dropped += 1
            logger.info(
                "Cancel budget exhausted (%d/min); request dropped until next window",
                self._capacity,
            )
            return False

    async def refund(self) -> None:
        """Return a token whose cancel never reached the book."""
        async with self._lock:
            self._refill()
            if self._tokens < self._capacity:
                self._tokens += 1
                self._total_granted -= 1
                self._total_refunded += 1

    async def available(self) -> int:
        """Tokens left in the current window."""
        async with self._lock:
            self._refill()
            return self._tokens

    @property
    def stats(self) -> dict[str, int]:
        """Get rate limiter statistics."""
        return {
            "capacity_per_minute": self._capacity,
            "tokens": self._tokens,
            "total_granted": self._total_granted,
            "total_dropped": self._total_dropped,
            "total_refunded": self._total_refunded,
        }
