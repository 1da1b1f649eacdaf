"""
Tests for the order lifecycle manager.
"""

from unittest.mock import AsyncMock

import pytest

from hedgehog_engine.config import OrderManagerConfig
from hedgehog_engine.domain import Order, OrderSide
from hedgehog_engine.exchange.interface import ExchangeNetworkError
from hedgehog_engine.execution import OrderLifecycleManager
from hedgehog_engine.runtime.clock import ManualClock
from hedgehog_engine.runtime.event_bus import EventBus, EventType
from tests.fixtures.events import EventRecorder
from tests.fixtures.fake_exchange import ETHUSDC, FakeExchange

BID = 4319.99
ASK = 4320.01
MID = 4320.0


def _manager(
    exchange: FakeExchange,
    event_bus: EventBus,
    clock: ManualClock,
    **overrides: float,
) -> OrderLifecycleManager:
    return OrderLifecycleManager(
        OrderManagerConfig(**overrides),
        ETHUSDC,
        exchange,
        event_bus=event_bus,
        clock=clock,
    )


async def _place(manager: OrderLifecycleManager, price: float, side: OrderSide = OrderSide.BUY) -> Order:
    order = await manager.place_limit_order(side, price, 0.001, f"test-{price}-{side.value}")
    assert order is not None
    return order


async def _manage(manager: OrderLifecycleManager, orders: list[Order], clock: ManualClock, **kw: float):
    bid = kw.get("bid", BID)
    ask = kw.get("ask", ASK)
    return await manager.manage_orders(
        orders,
        (bid + ask) / 2,
        bid,
        ask,
        ask - bid,
        data_timestamp=int(kw.get("data_timestamp", clock.now_ms())),
    )


class TestOrderGateway:
    """Tests for place_limit_order / cancel_order."""

    @pytest.mark.asyncio
    async def test_place_rounds_and_publishes(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Placed orders are tick/step rounded and announced."""
        recorder = await EventRecorder().attach(event_bus)
        manager = _manager(exchange, event_bus, clock)

        order = await manager.place_limit_order(OrderSide.BUY, 4310.025, 0.0012345, "cid-1")

        assert order is not None
        assert exchange.placed[0].price == 4310.03
        assert exchange.placed[0].quantity == 0.001234
        assert exchange.placed[0].client_order_id == "cid-1"
        placed = recorder.of_type(EventType.ORDER_PLACED)
        assert len(placed) == 1
        assert placed[0].data["client_order_id"] == "cid-1"

    @pytest.mark.asyncio
    async def test_invalid_order_never_submitted(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Orders below the minimum notional are dropped before the exchange."""
        manager = _manager(exchange, event_bus, clock)
        assert await manager.place_limit_order(OrderSide.BUY, 4320.0, 0.0001, "cid-1") is None
        assert exchange.placed == []

    @pytest.mark.asyncio
    async def test_exchange_failure_becomes_error_event(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Exchange errors are published, not raised."""
        recorder = await EventRecorder().attach(event_bus)
        manager = _manager(exchange, event_bus, clock)
        exchange.fail_place = ExchangeNetworkError("timeout")

        assert await manager.place_limit_order(OrderSide.SELL, 4330.0, 0.001, "cid-9") is None

        errors = recorder.of_type(EventType.ERROR)
        assert len(errors) == 1
        assert errors[0].data == {
            "operation": "place_order",
            "message": "timeout",
            "client_order_id": "cid-9",
        }
        assert manager.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_cancel_respects_budget(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Cancels over budget are dropped unless bypassed."""
        manager = _manager(exchange, event_bus, clock, cancel_rate_per_min=1)
        first = await _place(manager, 4310.0)
        second = await _place(manager, 4300.0)

        assert await manager.cancel_order(first.id, first.client_order_id)
        assert not await manager.cancel_order(second.id, second.client_order_id)
        assert second.id in exchange.open_orders

        assert await manager.cancel_order(second.id, second.client_order_id, bypass_rate_limit=True)
        assert exchange.canceled == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_cancel_failure_reports(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """A failed cancel returns False and publishes an error."""
        recorder = await EventRecorder().attach(event_bus)
        manager = _manager(exchange, event_bus, clock)
        assert not await manager.cancel_order("missing", "cid-x")
        assert recorder.of_type(EventType.ERROR)[0].data["operation"] == "cancel_order"

    @pytest.mark.asyncio
    async def test_failed_cancel_returns_token(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Rejected cancels do not consume the cancellation budget."""
        manager = _manager(exchange, event_bus, clock, cancel_rate_per_min=2)
        order = await _place(manager, 4310.0)
        exchange.fail_cancel = ExchangeNetworkError("timeout")

        for _ in range(3):
            assert not await manager.cancel_order(order.id, order.client_order_id)
        assert await manager.rate_limiter.available() == 2
        assert manager.rate_limiter.stats["total_refunded"] == 3

        exchange.fail_cancel = None
        assert await manager.cancel_order(order.id, order.client_order_id)
        assert await manager.rate_limiter.available() == 1


class TestManageOrders:
    """Tests for the lifecycle pass."""

    @pytest.mark.asyncio
    async def test_skips_on_tight_spread(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """A crossed or locked book aborts the pass."""
        manager = _manager(exchange, event_bus, clock)
        result = await _manage(manager, [], clock, bid=4320.0, ask=4320.0)
        assert result.skipped
        assert "spread" in result.skipped_reason
        assert manager.last_center is None

    @pytest.mark.asyncio
    async def test_skips_on_stale_data(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Market data older than staleness_ms aborts the pass."""
        manager = _manager(exchange, event_bus, clock)
        result = await _manage(manager, [], clock, data_timestamp=clock.now_ms() - 31_000)
        assert result.skipped
        assert "stale" in result.skipped_reason

    @pytest.mark.asyncio
    async def test_records_center(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """A successful pass records mid as the last center."""
        manager = _manager(exchange, event_bus, clock)
        await _manage(manager, [], clock)
        assert manager.last_center == pytest.approx(MID)

    @pytest.mark.asyncio
    async def test_ttl_expiry_replaces_exactly_once(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """An expired order is canceled and re-placed once, then left alone."""
        manager = _manager(exchange, event_bus, clock)
        manager.set_strategy_params(offset=5.7, step=4.275, max_levels=2)
        order = await _place(manager, 4319.97)

        clock.advance_seconds(46)
        result = await _manage(manager, [order], clock)

        assert len(result.replaced) == 1
        replacement = result.replaced[0]
        assert replacement.old.id == order.id
        assert replacement.new.price == 4319.98
        assert replacement.new.client_order_id.startswith("hhr_")
        assert exchange.canceled == [order.id]

        again = await _manage(manager, [replacement.new], clock)
        assert again.replaced == []
        assert exchange.canceled == [order.id]

    @pytest.mark.asyncio
    async def test_fresh_order_untouched(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Young orders within delta ticks of the touch are not repriced."""
        manager = _manager(exchange, event_bus, clock)
        bid_order = await _place(manager, 4319.97)
        ask_order = await _place(manager, 4320.03, OrderSide.SELL)
        clock.advance_seconds(10)
        result = await _manage(manager, [bid_order, ask_order], clock)
        assert result.replaced == []
        assert exchange.canceled == []

    @pytest.mark.asyncio
    async def test_drift_triggers_reprice(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Moving the best price more than delta ticks reprices the order."""
        manager = _manager(exchange, event_bus, clock)
        manager.set_strategy_params(offset=5.7, step=4.275, max_levels=2)
        order = await _place(manager, 4319.97)

        # Book rises 5 ticks; the bid is now 7 ticks above the order
        result = await _manage(manager, [order], clock, bid=4320.04, ask=4320.06)
        assert len(result.replaced) == 1
        assert result.replaced[0].new.price == 4320.03

    @pytest.mark.asyncio
    async def test_resting_far_from_touch_is_repriced(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Drift is the distance to the touch, so a deep level moves before its TTL."""
        manager = _manager(exchange, event_bus, clock)
        manager.set_strategy_params(offset=5.7, step=4.275, max_levels=2)
        order = await _place(manager, 4314.30)

        result = await _manage(manager, [order], clock)

        assert len(result.replaced) == 1
        assert result.replaced[0].old.id == order.id
        assert result.replaced[0].new.price == 4319.98
        assert exchange.canceled == [order.id]

    @pytest.mark.asyncio
    async def test_exactly_delta_ticks_is_kept(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """An order exactly delta ticks from the touch stays resting."""
        manager = _manager(exchange, event_bus, clock)
        order = await _place(manager, 4319.96)
        result = await _manage(manager, [order], clock)
        assert result.replaced == []

    @pytest.mark.asyncio
    async def test_replacement_prices_hug_the_touch(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Replacements sit one tick outside the touch when the offset is wider."""
        manager = _manager(exchange, event_bus, clock)
        manager.set_strategy_params(offset=5.7, step=4.275, max_levels=2)
        assert manager.replacement_price(OrderSide.BUY, BID, ASK) == 4319.98
        assert manager.replacement_price(OrderSide.SELL, BID, ASK) == 4320.02

    @pytest.mark.asyncio
    async def test_cancel_budget_limits_sweep(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Over-budget reprices are dropped and the orders stay resting."""
        manager = _manager(exchange, event_bus, clock, cancel_rate_per_min=2)
        orders = [await _place(manager, price) for price in (4314.30, 4310.03, 4305.75)]

        clock.advance_seconds(46)
        result = await _manage(manager, orders, clock)

        assert len(result.replaced) == 2
        assert [o.id for o in result.cancel_dropped] == [orders[2].id]
        assert orders[2].id in exchange.open_orders

    @pytest.mark.asyncio
    async def test_failed_replacement_reported_as_canceled(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """If re-placing fails after the cancel, the slot is left empty."""
        manager = _manager(exchange, event_bus, clock)
        order = await _place(manager, 4314.30)
        clock.advance_seconds(46)
        exchange.fail_place = ExchangeNetworkError("down")

        result = await _manage(manager, [order], clock)
        assert [o.id for o in result.canceled] == [order.id]
        assert result.replaced == []

    @pytest.mark.asyncio
    async def test_recentering_uses_anchor(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Mid drifting beyond trigger * step invokes the hook once and moves the anchor."""
        manager = _manager(exchange, event_bus, clock)
        manager.set_strategy_params(offset=5.0, step=4.0, max_levels=2)
        hook = AsyncMock()
        manager.set_recenter_hook(hook)

        first = await _manage(manager, [], clock)
        assert not first.recentered

        small = await _manage(manager, [], clock, bid=4321.49, ask=4321.51)
        assert not small.recentered

        moved = await _manage(manager, [], clock, bid=4322.99, ask=4323.01)
        assert moved.recentered
        hook.assert_awaited_once_with(pytest.approx(4323.0))

        settled = await _manage(manager, [], clock, bid=4322.99, ask=4323.01)
        assert not settled.recentered

    @pytest.mark.asyncio
    async def test_watchdog_decays_offset(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Each quiet watchdog interval shrinks the offset; a fill restores it."""
        manager = _manager(exchange, event_bus, clock)
        manager.set_strategy_params(offset=10.0, step=4.0, max_levels=2)

        clock.advance_seconds(7 * 60)
        result = await _manage(manager, [], clock)
        assert result.watchdog_triggered
        assert manager.decay_factor == pytest.approx(0.85)
        assert manager.effective_offset == pytest.approx(8.5)

        again = await _manage(manager, [], clock)
        assert not again.watchdog_triggered

        clock.advance_seconds(14 * 60)
        await _manage(manager, [], clock)
        assert manager.decay_factor == pytest.approx(0.85**3)

        manager.register_fill()
        assert manager.decay_factor == 1.0
        clock.advance_seconds(60)
        assert not (await _manage(manager, [], clock)).watchdog_triggered

    @pytest.mark.asyncio
    async def test_hook_failure_is_contained(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Errors inside the pass are reported, never raised."""
        recorder = await EventRecorder().attach(event_bus)
        manager = _manager(exchange, event_bus, clock)
        manager.set_strategy_params(offset=5.0, step=4.0, max_levels=2)
        manager.set_recenter_hook(AsyncMock(side_effect=RuntimeError("boom")))

        await _manage(manager, [], clock)
        await _manage(manager, [], clock, bid=4329.99, ask=4330.01)

        errors = recorder.of_type(EventType.ERROR)
        assert errors[-1].data["operation"] == "manage_orders"
