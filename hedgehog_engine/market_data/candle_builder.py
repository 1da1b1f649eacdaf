"""
Candle builder for constructing 1m OHLCV candles from public trades.

UTC minute-aligned, deterministic candle construction. A candle is closed
when the first trade of a later minute arrives; minutes without trades
produce no candle.
"""

from hedgehog_engine.domain.market import Candle, Trade
from hedgehog_engine.logging import get_logger

logger = get_logger(__name__)

MINUTE_MS = 60_000


def minute_start(timestamp_ms: int) -> int:
    """Open time of the UTC minute containing `timestamp_ms`."""
    return timestamp_ms - timestamp_ms % MINUTE_MS


class CandleBuilder:
    """
    Builds 1m candles from incoming trades.

    Features:
    - UTC minute-aligned candles
    - Candle finalization on minute rollover
    - Late trades (older than the open candle) are ignored
    """

    def __init__(self, symbol: str):
        self._symbol = symbol

        # Current incomplete candle state
        self._current_start: int | None = None
        self._open: float | None = None
        self._high: float | None = None
        self._low: float | None = None
        self._close: float | None = None
        self._volume = 0.0
        self._trade_count = 0

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def has_open_candle(self) -> bool:
        """Check if there's an incomplete candle."""
        return self._current_start is not None

    @property
    def current_start(self) -> int | None:
        return self._current_start

    def process_trade(self, trade: Trade) -> Candle | None:
        """
        Process an incoming trade.

        Args:
            trade: Public trade print

        Returns:
            The finalized candle if this trade rolled the minute over
        """
        if trade.symbol != self._symbol:
            logger.warning(
                "Trade symbol %s doesn't match builder symbol %s",
                trade.symbol,
                self._symbol,
            )
            return None

        start = minute_start(trade.timestamp)
        if self._current_start is not None and start < self._current_start:
            logger.debug("Late trade at %d ignored (open candle %d)", trade.timestamp, self._current_start)
            return None

        completed = None
        if self._current_start is not None and start > self._current_start:
            completed = self.finalize()

        self._update(trade.price, trade.quantity, start)
        return completed

    def _update(self, price: float, quantity: float, start: int) -> None:
        if self._current_start != start:
            self._current_start = start
            self._open = price
            self._high = price
            self._low = price
            self._close = price
            self._volume = quantity
            self._trade_count = 1
            return

        if self._high is None or price > self._high:
            self._high = price
        if self._low is None or price < self._low:
            self._low = price
        self._close = price
        self._volume += quantity
        self._trade_count += 1

    def finalize(self) -> Candle | None:
        """Close the open candle and return it."""
        if self._current_start is None or self._open is None:
            return None

        candle = Candle(
            open=self._open,
            high=self._high,
            low=self._low,
            close=self._close,
            volume=self._volume,
            timestamp=self._current_start,
        )
        logger.debug(
            "Candle %s %d O=%s H=%s L=%s C=%s V=%s (%d trades)",
            self._symbol,
            candle.timestamp,
            candle.open,
            candle.high,
            candle.low,
            candle.close,
            candle.volume,
            self._trade_count,
        )

        self._current_start = None
        self._open = None
        self._high = None
        self._low = None
        self._close = None
        self._volume = 0.0
        self._trade_count = 0
        return candle
