"""
Order lifecycle manager.

Keeps resting orders for one instrument fresh: TTL expiry, price-drift
repricing, recentering and the no-fill watchdog. It is also the single
gateway through which the strategy places and cancels orders, so every
cancellation is charged against the shared rate limiter and every exchange
call is isolated: failures are logged and published as ERROR events, never
raised to the caller.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from hedgehog_engine.config import OrderManagerConfig
from hedgehog_engine.domain import Instrument, Order, OrderSide, OrderType
from hedgehog_engine.exchange.interface import ExchangeClient
from hedgehog_engine.execution.client_order_id import PREFIX_REPLACE, next_client_order_id
from hedgehog_engine.execution.rate_limit import CancelRateLimiter
from hedgehog_engine.indicators.rounding import round_to_step, round_to_tick, validate_order
from hedgehog_engine.logging import get_logger
from hedgehog_engine.runtime.clock import Clock, get_system_clock
from hedgehog_engine.runtime.event_bus import EventBus, EventType, get_event_bus

logger = get_logger(__name__)

RecenterHook = Callable[[float], Awaitable[None]]


@dataclass
class Replacement:
    """A resting order that was canceled and re-placed by the sweep."""

    old: Order
    new: Order


@dataclass
class ManageResult:
    """Outcome of one manage_orders pass."""

    skipped_reason: str | None = None
    canceled: list[Order] = field(default_factory=list)  # canceled, replacement failed
    replaced: list[Replacement] = field(default_factory=list)
    cancel_dropped: list[Order] = field(default_factory=list)  # still resting
    recentered: bool = False
    watchdog_triggered: bool = False

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class OrderLifecycleManager:
    """
    Lifecycle control for one instrument's resting orders.

    The strategy supplies the current offset/step through
    set_strategy_params and registers a recenter hook; the engine calls
    manage_orders every `refresh_sec`.
    """

    def __init__(
        self,
        config: OrderManagerConfig,
        instrument: Instrument,
        exchange: ExchangeClient,
        rate_limiter: CancelRateLimiter | None = None,
        event_bus: EventBus | None = None,
        clock: Clock | None = None,
    ):
        self._config = config
        self._instrument = instrument
        self._exchange = exchange
        self._clock = clock or get_system_clock()
        self._bus = event_bus or get_event_bus()
        self._rate_limiter = rate_limiter or CancelRateLimiter(
            config.cancel_rate_per_min, self._clock
        )

        # Strategy parameters
        self._offset = 0.0
        self._step = 0.0
        self._max_levels = 0
        self._recenter_hook: RecenterHook | None = None

        # Centering
        self._last_center: float | None = None
        self._recenter_anchor: float | None = None

        # Watchdog
        self._last_fill_ms = self._clock.now_ms()
        self._watchdog_intervals_applied = 0
        self._decay_factor = 1.0

        # Counters
        self._placed = 0
        self._canceled = 0
        self._replaced = 0
        self._errors = 0

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def rate_limiter(self) -> CancelRateLimiter:
        return self._rate_limiter

    @property
    def decay_factor(self) -> float:
        """Watchdog multiplier applied to the quoting offset (1.0 after a fill)."""
        return self._decay_factor

    @property
    def effective_offset(self) -> float:
        return self._offset * self._decay_factor

    @property
    def last_center(self) -> float | None:
        return self._last_center

    # =========================================================================
    # Strategy wiring
    # =========================================================================

    def set_strategy_params(self, offset: float, step: float, max_levels: int) -> None:
        """Current undecayed offset, level step and ladder depth."""
        self._offset = offset
        self._step = step
        self._max_levels = max_levels

    def set_recenter_hook(self, hook: RecenterHook | None) -> None:
        """Coroutine invoked with the new mid when the ladder needs recentering."""
        self._recenter_hook = hook

    def register_fill(self) -> None:
        """Reset the no-fill watchdog clock and the offset decay."""
        self._last_fill_ms = self._clock.now_ms()
        self._watchdog_intervals_applied = 0
        self._decay_factor = 1.0

    # =========================================================================
    # Order gateway
    # =========================================================================

    async def place_limit_order(
        self,
        side: OrderSide,
        price: float,
        quantity: float,
        client_order_id: str,
        *,
        purpose: str = "quote",
    ) -> Order | None:
        """
        Validate and submit a limit order.

        Args:
            purpose: Tag carried in events and logs (quote, take_profit, reprice)

        Returns:
            The placed order, or None if validation or the exchange call failed
        """
        inst = self._instrument
        price = round_to_tick(price, inst.tick_size)
        quantity = round_to_step(quantity, inst.step_size)

        valid, errors = validate_order(
            price,
            quantity,
            inst.tick_size,
            inst.step_size,
            inst.min_notional,
            min_qty=inst.min_qty,
            max_qty=inst.max_qty,
            max_notional=inst.max_notional,
        )
        if not valid:
            logger.warning(
                "Dropping invalid %s %s order %s @ %s: %s",
                purpose,
                side.value,
                quantity,
                price,
                "; ".join(errors),
            )
            return None

        try:
            order = await self._exchange.place_order(
                inst.symbol,
                side,
                OrderType.LIMIT,
                quantity,
                price,
                client_order_id,
            )
        except Exception as e:
            await self._report_error("place_order", e, client_order_id)
            return None

        self._placed += 1
        await self._bus.emit(
            EventType.ORDER_PLACED,
            {
                "order_id": order.id,
                "client_order_id": client_order_id,
                "side": side.value,
                "price": price,
                "quantity": quantity,
                "purpose": purpose,
            },
            symbol=inst.symbol,
        )
        return order

    async def cancel_order(
        self,
        order_id: str | None,
        client_order_id: str | None = None,
        *,
        bypass_rate_limit: bool = False,
    ) -> bool:
        """
        Cancel a resting order.

        Charged against the cancellation budget unless `bypass_rate_limit`
        (shutdown and pause must always be able to pull quotes). A cancel
        the exchange rejects gives its token back.

        Returns:
            True if the exchange confirmed the cancel
        """
        charged = not bypass_rate_limit
        if charged and not await self._rate_limiter.try_acquire():
            return False

        try:
            await self._exchange.cancel_order(
                self._instrument.symbol,
                order_id=order_id,
                client_order_id=client_order_id,
            )
        except Exception as e:
            if charged:
                await self._rate_limiter.refund()
            await self._report_error("cancel_order", e, client_order_id)
            return False

        self._canceled += 1
        await self._bus.emit(
            EventType.ORDER_CANCELED,
            {"order_id": order_id, "client_order_id": client_order_id},
            symbol=self._instrument.symbol,
        )
        return True

    # =========================================================================
    # Lifecycle pass
    # =========================================================================

    def _filter_reason(self, spread: float, data_timestamp: int | None) -> str | None:
        min_spread = self._config.min_spread_ticks * self._instrument.tick_size
        if spread < min_spread - 1e-12:
            return f"spread {spread:.8f} below minimum {min_spread:.8f}"

        if data_timestamp is not None:
            age_ms = self._clock.now_ms() - data_timestamp
            if age_ms > self._config.staleness_ms:
                return f"market data stale ({age_ms} ms)"
        return None

    def _drift(self, order: Order, best_bid: float, best_ask: float) -> float:
        """Distance between the order and the touch on its own side."""
        best = best_bid if order.side == OrderSide.BUY else best_ask
        return abs(best - order.price)

    def replacement_price(self, side: OrderSide, best_bid: float, best_ask: float) -> float:
        """Fresh price for a repriced order, never through the touch."""
        tick = self._instrument.tick_size
        offset = self.effective_offset
        if side == OrderSide.BUY:
            raw = max(best_bid - tick, best_bid - offset)
        else:
            raw = min(best_ask + tick, best_ask + offset)
        return round_to_tick(raw, tick)

    async def manage_orders(
        self,
        current_orders: list[Order],
        mid_price: float,
        best_bid: float,
        best_ask: float,
        spread: float,
        data_timestamp: int | None = None,
    ) -> ManageResult:
        """
        Run one lifecycle pass over the resting orders.

        Never raises; each exchange call is isolated.
        """
        result = ManageResult()

        reason = self._filter_reason(spread, data_timestamp)
        if reason is not None:
            logger.debug("Lifecycle pass skipped: %s", reason)
            result.skipped_reason = reason
            return result

        self._last_center = mid_price

        try:
            await self._sweep(current_orders, best_bid, best_ask, result)
            result.recentered = await self._check_recentering(mid_price)
            result.watchdog_triggered = self._check_watchdog()
        except Exception as e:
            await self._report_error("manage_orders", e, None)

        return result

    async def _sweep(
        self,
        orders: list[Order],
        best_bid: float,
        best_ask: float,
        result: ManageResult,
    ) -> None:
        now = self._clock.now_ms()
        ttl_ms = self._config.ttl_sec * 1000
        max_drift = self._config.delta_ticks_for_replace * self._instrument.tick_size

        for order in orders:
            age = now - order.timestamp
            drift = self._drift(order, best_bid, best_ask)
            if age <= ttl_ms and drift <= max_drift + 1e-12:
                continue

            logger.info(
                "Repricing %s %s @ %s: age=%ds drift=%.8f",
                order.side.value,
                order.id,
                order.price,
                age // 1000,
                drift,
            )
            if not await self.cancel_order(order.id, order.client_order_id):
                result.cancel_dropped.append(order)
                continue

            new_price = self.replacement_price(order.side, best_bid, best_ask)
            client_order_id = next_client_order_id(
                prefix=PREFIX_REPLACE,
                symbol=self._instrument.symbol,
                side=order.side.value,
                level=0,
                intent_ms=now,
            )
            new_order = await self.place_limit_order(
                order.side,
                new_price,
                order.remaining_quantity,
                client_order_id,
                purpose="reprice",
            )
            if new_order is None:
                result.canceled.append(order)
            else:
                self._replaced += 1
                result.replaced.append(Replacement(order, new_order))

    async def _check_recentering(self, mid_price: float) -> bool:
        if self._recenter_anchor is None:
            self._recenter_anchor = mid_price
            return False

        threshold = self._config.recentering_trigger * self._step
        drift = abs(mid_price - self._recenter_anchor)
        if threshold <= 0 or drift <= threshold:
            return False

        logger.info("Recentering ladder: drift=%.8f threshold=%.8f", drift, threshold)
        if self._recenter_hook is not None:
            await self._recenter_hook(mid_price)
        self._recenter_anchor = mid_price
        return True

    def _check_watchdog(self) -> bool:
        interval_ms = self._config.no_fill_watchdog_min * 60_000
        elapsed = self._clock.now_ms() - self._last_fill_ms
        intervals = int(elapsed // interval_ms)
        if intervals <= self._watchdog_intervals_applied:
            return False

        pending = intervals - self._watchdog_intervals_applied
        self._decay_factor *= self._config.watchdog_decay**pending
        self._watchdog_intervals_applied = intervals
        logger.info(
            "No fills for %.1f min; offset decay now %.4f",
            elapsed / 60_000,
            self._decay_factor,
        )
        return True

    # =========================================================================
    # Diagnostics
    # =========================================================================

    async def _report_error(self, operation: str, error: Exception, client_order_id: str | None) -> None:
        self._errors += 1
        logger.error("%s failed (client_order_id=%s): %s", operation, client_order_id, error)
        await self._bus.emit(
            EventType.ERROR,
            {
                "operation": operation,
                "message": str(error),
                "client_order_id": client_order_id,
            },
            symbol=self._instrument.symbol,
        )

    def get_stats(self) -> dict[str, Any]:
        return {
            "last_center": self._last_center,
            "recenter_anchor": self._recenter_anchor,
            "ms_since_last_fill": self._clock.now_ms() - self._last_fill_ms,
            "decay_factor": round(self._decay_factor, 6),
            "orders_placed": self._placed,
            "orders_canceled": self._canceled,
            "orders_replaced": self._replaced,
            "errors": self._errors,
            "cancel_limiter": self._rate_limiter.stats,
        }
