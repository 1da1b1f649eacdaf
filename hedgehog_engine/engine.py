"""
Scalper engine.

Wires one instrument's event path together:

    book ticker / depth / trades -> regime detector -> quoting strategy
    periodic timer               -> lifecycle manager (TTL, recentering, watchdog)
    trade-history polling        -> fills -> strategy (take-profit, replenish)

Every handler runs under a single per-instrument asyncio.Lock so market
data, fills and lifecycle passes never interleave.
"""

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

from hedgehog_engine.config import EngineConfig, Settings, get_settings
from hedgehog_engine.domain import BookTicker, Candle, Fill, Instrument, Orderbook, Trade
from hedgehog_engine.exchange.interface import ExchangeClient, ExchangeError
from hedgehog_engine.execution.order_manager import OrderLifecycleManager
from hedgehog_engine.logging import clear_symbol, get_logger, set_symbol
from hedgehog_engine.market_data.candle_builder import CandleBuilder
from hedgehog_engine.regime.detector import RegimeDetector
from hedgehog_engine.runtime.clock import Clock, get_system_clock
from hedgehog_engine.runtime.event_bus import EventBus, EventType, get_event_bus
from hedgehog_engine.strategy.policy import QuotingPolicy
from hedgehog_engine.strategy.quoting import QuotingStrategy

logger = get_logger(__name__)

FILL_POLL_LIMIT = 100
MAX_LOOP_ERRORS = 10


def _fill_sort_key(fill: Fill) -> tuple[int, str]:
    # Numeric exchange ids compare correctly once zero-padded
    return fill.timestamp, fill.id.zfill(32)


class ScalperEngine:
    """
    Single-instrument orchestrator.

    Components are created on start() once the instrument rules are known.
    Market-data handlers can be driven directly (tests, websocket adapters);
    the lifecycle timer and fill polling run as background tasks.
    """

    def __init__(
        self,
        config: EngineConfig,
        exchange: ExchangeClient,
        settings: Settings | None = None,
        policy: QuotingPolicy | None = None,
        event_bus: EventBus | None = None,
        clock: Clock | None = None,
    ):
        self._config = config
        self._exchange = exchange
        self._settings = settings or get_settings()
        self._policy = policy
        self._bus = event_bus or get_event_bus()
        self._clock = clock or get_system_clock()

        self._lock = asyncio.Lock()
        self._detector = RegimeDetector(config, self._bus, self._clock)
        self._candles = CandleBuilder(config.symbol)

        self._instrument: Instrument | None = None
        self._orders: OrderLifecycleManager | None = None
        self._strategy: QuotingStrategy | None = None

        self._running = False
        self._started_ms: int | None = None
        self._fill_cursor: str | None = None
        self._tasks: list[asyncio.Task[None]] = []

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def symbol(self) -> str:
        return self._config.symbol

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def instrument(self) -> Instrument | None:
        return self._instrument

    @property
    def detector(self) -> RegimeDetector:
        return self._detector

    @property
    def strategy(self) -> QuotingStrategy | None:
        return self._strategy

    @property
    def order_manager(self) -> OrderLifecycleManager | None:
        return self._orders

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def load_instrument(self) -> Instrument:
        """Fetch trading rules for the configured symbol."""
        instruments = await self._exchange.get_exchange_info(self.symbol)
        for instrument in instruments:
            if instrument.symbol == self.symbol:
                logger.info(
                    "Instrument %s: tick=%s step=%s min_notional=%s",
                    instrument.symbol,
                    instrument.tick_size,
                    instrument.step_size,
                    instrument.min_notional,
                )
                return instrument
        raise ExchangeError(f"Symbol {self.symbol} not listed on exchange")

    async def start(self, run_background: bool = True) -> None:
        """
        Load the instrument, build the components and start quoting.

        Args:
            run_background: Start the lifecycle timer and fill polling tasks
        """
        if self._running:
            logger.warning("Engine already running")
            return

        set_symbol(self.symbol)
        if self._instrument is None:
            self._instrument = await self.load_instrument()

        if self._strategy is None:
            self._orders = OrderLifecycleManager(
                self._config.order_manager,
                self._instrument,
                self._exchange,
                event_bus=self._bus,
                clock=self._clock,
            )
            self._strategy = QuotingStrategy(
                self._config,
                self._instrument,
                self._exchange,
                self._orders,
                policy=self._policy,
                event_bus=self._bus,
                clock=self._clock,
            )

        self._started_ms = self._clock.now_ms()
        await self._strategy.start()
        self._running = True

        if run_background:
            self._tasks = [
                asyncio.create_task(
                    self._loop("lifecycle", self._config.order_manager.refresh_sec, self.run_lifecycle)
                ),
                asyncio.create_task(
                    self._loop("fill_poll", self._settings.fill_poll_interval_s, self.poll_fills)
                ),
            ]

        logger.info(
            "Engine started: %s mode=%s strategy=%s deposit=%s",
            self.symbol,
            self._settings.mode.value,
            self._config.strategy.value,
            self._config.deposit_usd,
        )

    async def stop(self) -> None:
        """Stop background tasks, then cancel every order the strategy owns."""
        if not self._running:
            return

        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        if self._strategy is not None:
            await self._strategy.stop()

        logger.info("Engine stopped: %s", self.symbol)
        clear_symbol()

    async def _loop(
        self,
        name: str,
        interval_s: float,
        step: Callable[[], Coroutine[Any, Any, Any]],
    ) -> None:
        error_count = 0
        while self._running:
            await asyncio.sleep(interval_s)
            try:
                await step()
                error_count = 0
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error_count += 1
                logger.error("%s error (%d/%d): %s", name, error_count, MAX_LOOP_ERRORS, e)
                await self._bus.emit(
                    EventType.ERROR,
                    {"operation": name, "message": str(e), "client_order_id": None},
                    symbol=self.symbol,
                )
                if error_count >= MAX_LOOP_ERRORS:
                    logger.error("Max %s errors reached, stopping loop", name)
                    break

    # =========================================================================
    # Market data
    # =========================================================================

    async def on_book_ticker(self, ticker: BookTicker) -> None:
        """Best bid/ask update: the strategy's main requote trigger."""
        async with self._lock:
            set_symbol(self.symbol)
            await self._quote(ticker.bid_price, ticker.ask_price, ticker.timestamp)

    async def on_orderbook(self, book: Orderbook) -> None:
        """Depth snapshot: feeds book imbalance, then requotes off the touch."""
        async with self._lock:
            set_symbol(self.symbol)
            await self._detector.update_orderbook(book.bids, book.asks)
            await self._sync_regime()
            if book.best_bid is not None and book.best_ask is not None:
                await self._quote(book.best_bid, book.best_ask, book.timestamp)

    async def on_trade(self, trade: Trade) -> None:
        """Public trade: feeds trade-flow imbalance and the 1m candle builder."""
        async with self._lock:
            set_symbol(self.symbol)
            await self._detector.update_trade(
                trade.price,
                trade.quantity,
                trade.is_buyer_maker,
                trade.timestamp,
            )
            candle = self._candles.process_trade(trade)
            if candle is not None:
                await self._detector.update_candle(candle)
            await self._sync_regime()

    async def on_candle(self, candle: Candle) -> None:
        """Closed 1m candle from an external kline stream."""
        async with self._lock:
            set_symbol(self.symbol)
            await self._detector.update_candle(candle)
            await self._sync_regime()

    async def _quote(self, best_bid: float, best_ask: float, timestamp: int) -> None:
        if self._strategy is None:
            return
        await self._strategy.on_market_data(
            (best_bid + best_ask) / 2,
            self._detector.atr1m,
            best_bid,
            best_ask,
            timestamp,
        )

    async def _sync_regime(self) -> None:
        if self._strategy is None:
            return
        regime = self._detector.current_regime
        if regime != self._strategy.regime:
            await self._strategy.on_regime_change(regime, self._detector.get_regime_parameters())

    # =========================================================================
    # Fills and lifecycle
    # =========================================================================

    async def on_fill(self, fill: Fill) -> bool:
        """Execution report pushed by a user-data stream."""
        async with self._lock:
            set_symbol(self.symbol)
            if self._strategy is None:
                return False
            return await self._strategy.on_fill(fill)

    async def poll_fills(self) -> int:
        """
        Fetch new executions from trade history and process them in order.

        Executions from before start() are never replayed.

        Returns:
            Number of fills the strategy accepted
        """
        if self._strategy is None:
            return 0

        fills = await self._exchange.get_my_trades(
            self.symbol,
            limit=FILL_POLL_LIMIT,
            from_id=self._fill_cursor,
        )
        if not fills:
            return 0

        fills.sort(key=_fill_sort_key)
        self._fill_cursor = fills[-1].id

        accepted = 0
        async with self._lock:
            set_symbol(self.symbol)
            for fill in fills:
                if self._started_ms is not None and fill.timestamp < self._started_ms:
                    continue
                if await self._strategy.on_fill(fill):
                    accepted += 1
        return accepted

    async def run_lifecycle(self) -> None:
        """One lifecycle pass (TTL, drift, recentering, watchdog)."""
        async with self._lock:
            set_symbol(self.symbol)
            if self._strategy is not None:
                await self._strategy.run_lifecycle()

    def get_stats(self) -> dict[str, Any]:
        regime = self._detector.last_data
        return {
            "symbol": self.symbol,
            "running": self._running,
            "regime": self._detector.current_regime.value,
            "regime_confidence": regime.confidence if regime else None,
            "strategy": self._strategy.get_stats() if self._strategy else None,
            "order_manager": self._orders.get_stats() if self._orders else None,
            "event_bus": self._bus.get_stats(),
        }
