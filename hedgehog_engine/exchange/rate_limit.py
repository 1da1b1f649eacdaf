"""
Request weight limiting for the MEXC REST API.

MEXC charges each endpoint a request weight and bans keys that exceed the
per-interval budget, so the client spends weight from a continuously
refilling budget before every call. Unlike cancellation limiting, REST
requests wait for weight instead of being dropped.
"""

import asyncio
from collections.abc import Awaitable, Callable

from hedgehog_engine.runtime.clock import Clock, get_system_clock

Sleep = Callable[[float], Awaitable[None]]

# Spot v3 weights; anything unlisted costs 1
ENDPOINT_WEIGHTS: dict[tuple[str, str], int] = {
    ("GET", "/account"): 10,
    ("GET", "/myTrades"): 10,
    ("GET", "/exchangeInfo"): 10,
    ("GET", "/openOrders"): 3,
}


def endpoint_weight(method: str, path: str) -> int:
    """Request weight MEXC charges for one call."""
    return ENDPOINT_WEIGHTS.get((method.upper(), path), 1)


class RequestWeightLimiter:
    """
    Weight budget shared by every request of one client.

    Holds at most `burst` weight and regains `weight_per_second`. A request
    heavier than the available weight sleeps until the deficit refills.
    """

    def __init__(
        self,
        weight_per_second: float,
        burst: int,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        if weight_per_second <= 0:
            raise ValueError(f"weight_per_second must be positive, got {weight_per_second}")
        if burst < 1:
            raise ValueError(f"burst must be >= 1, got {burst}")
        self._rate = weight_per_second
        self._burst = burst
        self._clock = clock or get_system_clock()
        self._sleep = sleep or asyncio.sleep
        self._available = float(burst)
        self._updated_ms = self._clock.now_ms()
        self._lock = asyncio.Lock()

        self._total_requests = 0
        self._total_weight = 0
        self._total_wait = 0.0

    def _refill(self) -> None:
        now = self._clock.now_ms()
        elapsed_s = max(0, now - self._updated_ms) / 1000
        self._available = min(float(self._burst), self._available + elapsed_s * self._rate)
        self._updated_ms = now

    async def acquire(self, weight: int = 1) -> float:
        """
        Spend `weight`, waiting for it to refill if necessary.

        Weight above the burst is capped to the burst so a heavy endpoint
        can never wait forever.

        Returns:
            Seconds waited (0.0 if the budget covered the request)
        """
        cost = float(min(max(weight, 1), self._burst))
        async with self._lock:
            self._refill()
            wait_s = 0.0
            if self._available < cost:
                wait_s = (cost - self._available) / self._rate
                await self._sleep(wait_s)
                self._refill()
            self._available = max(0.0, self._available - cost)

            self._total_requests += 1
            self._total_weight += int(cost)
            self._total_wait += wait_s
            return wait_s

    def available(self) -> float:
        """Weight that can be spent right now."""
        self._refill()
        return self._available

    @property
    def stats(self) -> dict[str, float]:
        """Get limiter statistics."""
        return {
            "total_requests": self._total_requests,
            "total_weight": self._total_weight,
            "total_wait_time_seconds": round(self._total_wait, 3),
            "available_weight": round(self.available(), 2),
            "weight_per_second": self._rate,
            "burst_weight": self._burst,
        }
