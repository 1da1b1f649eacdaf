"""
Streaming indicator calculators.

Each calculator owns a bounded buffer and recomputes its reading from that
buffer on every input rather than accumulating incrementally, which keeps
resets trivial and avoids floating-point drift. Time-windowed calculators
read the current time from an injected Clock unless the caller supplies an
explicit timestamp.
"""

from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass

from hedgehog_engine.domain.market import OrderbookLevel
from hedgehog_engine.domain.order import OrderSide
from hedgehog_engine.indicators.stats import mean, stddev
from hedgehog_engine.runtime.clock import Clock, get_system_clock

# =============================================================================
# Readings
# =============================================================================


@dataclass(frozen=True)
class ATRData:
    value: float
    period: int
    timestamp: int


@dataclass(frozen=True)
class VWAPData:
    value: float
    volume: float
    timestamp: int


@dataclass(frozen=True)
class EMAData:
    value: float
    period: int
    timestamp: int


@dataclass(frozen=True)
class OBIData:
    value: float
    bid_depth: float
    ask_depth: float
    timestamp: int


@dataclass(frozen=True)
class TFIData:
    value: float
    buy_volume: float
    sell_volume: float
    timestamp: int


def _require_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")


# =============================================================================
# Calculators
# =============================================================================


class ATRCalculator:
    """
    Average True Range over the last `period` candles.

    Keeps `period + 1` high/low/close triples; the extra candle supplies the
    previous close for the oldest true range.
    """

    def __init__(self, period: int, clock: Clock | None = None):
        _require_positive("ATR period", period)
        self._period = period
        self._clock = clock or get_system_clock()
        self._candles: deque[tuple[float, float, float]] = deque(maxlen=period + 1)
        self._latest: ATRData | None = None

    @property
    def period(self) -> int:
        return self._period

    @property
    def latest(self) -> ATRData | None:
        """Last computed reading, None while warming up."""
        return self._latest

    @property
    def is_ready(self) -> bool:
        return len(self._candles) > self._period

    def add_candle(self, high: float, low: float, close: float) -> ATRData | None:
        """
        Ingest a candle.

        Returns:
            ATR reading, or None until period + 1 candles have been seen
        """
        self._candles.append((high, low, close))
        if not self.is_ready:
            return None

        candles = list(self._candles)
        true_ranges = []
        for (_, _, prev_close), (high, low, _) in zip(candles, candles[1:]):
            true_ranges.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))

        self._latest = ATRData(
            value=mean(true_ranges[-self._period :]),
            period=self._period,
            timestamp=self._clock.now_ms(),
        )
        return self._latest

    def reset(self) -> None:
        self._candles.clear()
        self._latest = None


class VWAPCalculator:
    """Volume-weighted average price over a trailing time window."""

    def __init__(self, window_ms: int, clock: Clock | None = None):
        _require_positive("VWAP window", window_ms)
        self._window_ms = window_ms
        self._clock = clock or get_system_clock()
        self._trades: deque[tuple[float, float, int]] = deque()
        self._latest: VWAPData | None = None

    @property
    def latest(self) -> VWAPData | None:
        return self._latest

    def add_trade(self, price: float, volume: float, timestamp: int | None = None) -> VWAPData:
        """Ingest a trade and return the windowed VWAP (0 when the window is empty)."""
        now = self._clock.now_ms()
        ts = now if timestamp is None else timestamp
        self._trades.append((price, volume, ts))

        cutoff = max(now, ts) - self._window_ms
        while self._trades and self._trades[0][2] < cutoff:
            self._trades.popleft()

        total_volume = sum(v for _, v, _ in self._trades)
        total_value = sum(p * v for p, v, _ in self._trades)
        value = total_value / total_volume if total_volume > 0 else 0.0

        self._latest = VWAPData(value=value, volume=total_volume, timestamp=now)
        return self._latest

    def reset(self) -> None:
        self._trades.clear()
        self._latest = None


class EMACalculator:
    """Exponential moving average; the first value seeds the average."""

    def __init__(self, period: int, clock: Clock | None = None):
        _require_positive("EMA period", period)
        self._period = period
        self._alpha = 2.0 / (period + 1)
        self._clock = clock or get_system_clock()
        self._value: float | None = None

    @property
    def value(self) -> float | None:
        return self._value

    def add_value(self, value: float) -> EMAData:
        if self._value is None:
            self._value = value
        else:
            self._value = self._alpha * value + (1 - self._alpha) * self._value
        return EMAData(value=self._value, period=self._period, timestamp=self._clock.now_ms())

    def reset(self) -> None:
        self._value = None


class ZScoreCalculator:
    """
    Rolling z-score of a reference against the last `period` values.

    Uses the population standard deviation. Returns 0.0 with fewer than two
    samples or a flat window.
    """

    def __init__(self, period: int):
        if period < 2:
            raise ValueError(f"Z-score period must be at least 2, got {period}")
        self._values: deque[float] = deque(maxlen=period)

    def add_value(self, value: float, reference: float) -> float:
        self._values.append(value)
        if len(self._values) < 2:
            return 0.0

        std = stddev(self._values)
        if std == 0:
            return 0.0
        return (reference - mean(self._values)) / std

    def reset(self) -> None:
        self._values.clear()


class OBICalculator:
    """Price-weighted order-book imbalance over the top N levels."""

    def __init__(self, levels: int = 5, clock: Clock | None = None):
        _require_positive("OBI levels", levels)
        self._levels = levels
        self._clock = clock or get_system_clock()
        self._latest: OBIData | None = None

    @property
    def latest(self) -> OBIData | None:
        return self._latest

    def calculate(
        self,
        bids: Sequence[OrderbookLevel],
        asks: Sequence[OrderbookLevel],
        levels: int | None = None,
    ) -> OBIData:
        """Bid depth share of total depth; 0.5 when both sides are empty."""
        n = levels or self._levels
        bid_depth = sum(level.price * level.quantity for level in bids[:n])
        ask_depth = sum(level.price * level.quantity for level in asks[:n])
        total = bid_depth + ask_depth

        self._latest = OBIData(
            value=bid_depth / total if total > 0 else 0.5,
            bid_depth=bid_depth,
            ask_depth=ask_depth,
            timestamp=self._clock.now_ms(),
        )
        return self._latest

    def reset(self) -> None:
        self._latest = None


class TFICalculator:
    """Trade-flow imbalance: buy share of aggressor volume in a time window."""

    def __init__(self, window_ms: int, clock: Clock | None = None):
        _require_positive("TFI window", window_ms)
        self._window_ms = window_ms
        self._clock = clock or get_system_clock()
        self._trades: deque[tuple[OrderSide, float, int]] = deque()
        self._latest: TFIData | None = None

    @property
    def latest(self) -> TFIData | None:
        return self._latest

    def add_trade(self, side: OrderSide, volume: float, timestamp: int | None = None) -> TFIData:
        """Ingest an aggressor trade; 0.5 when the window is empty."""
        now = self._clock.now_ms()
        ts = now if timestamp is None else timestamp
        self._trades.append((side, volume, ts))

        cutoff = max(now, ts) - self._window_ms
        while self._trades and self._trades[0][2] < cutoff:
            self._trades.popleft()

        buy_volume = sum(v for s, v, _ in self._trades if s == OrderSide.BUY)
        sell_volume = sum(v for s, v, _ in self._trades if s == OrderSide.SELL)
        total = buy_volume + sell_volume

        self._latest = TFIData(
            value=buy_volume / total if total > 0 else 0.5,
            buy_volume=buy_volume,
            sell_volume=sell_volume,
            timestamp=now,
        )
        return self._latest

    def reset(self) -> None:
        self._trades.clear()
        self._latest = None
