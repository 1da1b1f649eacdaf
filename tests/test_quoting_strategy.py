"""
Tests for QuotingStrategy: ladder diffing, inventory gates, fills,
take-profits, replenishment, pausing and shutdown.
"""

import pytest

from hedgehog_engine.config import EngineConfig
from hedgehog_engine.domain import Fill, OrderSide
from hedgehog_engine.exchange.interface import ExchangeError
from hedgehog_engine.execution import OrderLifecycleManager
from hedgehog_engine.regime import MarketRegime, regime_parameters
from hedgehog_engine.runtime.clock import ManualClock
from hedgehog_engine.runtime.event_bus import EventBus, EventType
from hedgehog_engine.strategy import QuotingStrategy
from tests.fixtures.events import EventRecorder
from tests.fixtures.fake_exchange import ETHUSDC, FakeExchange

MID = 4320.0
ATR = 9.5  # offset 0.6 * 9.5 = 5.70, step 0.45 * 9.5 = 4.275
# 2 USDC first level on a 100 USDC deposit
LADDER = {"levels": 2, "base_size_pct": 0.02}


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(hedgehog=LADDER)


@pytest.fixture
def exchange(clock: ManualClock) -> FakeExchange:
    return FakeExchange(ETHUSDC, clock=clock, base_balance=1.0)


async def _start(
    config: EngineConfig,
    exchange: FakeExchange,
    event_bus: EventBus,
    clock: ManualClock,
) -> QuotingStrategy:
    manager = OrderLifecycleManager(
        config.order_manager, ETHUSDC, exchange, event_bus=event_bus, clock=clock
    )
    strategy = QuotingStrategy(
        config, ETHUSDC, exchange, manager, event_bus=event_bus, clock=clock
    )
    await strategy.start()
    return strategy


async def _tick(
    strategy: QuotingStrategy,
    clock: ManualClock,
    mid: float = MID,
    atr: float | None = ATR,
    spread: float = 0.02,
    age_ms: int = 0,
) -> None:
    await strategy.on_market_data(
        mid, atr, mid - spread / 2, mid + spread / 2, clock.now_ms() - age_ms
    )


def _level(strategy: QuotingStrategy, side: OrderSide, level: int):
    return next(
        lv for lv in strategy.get_active_levels() if lv.side == side and lv.level == level
    )


class TestLifecycle:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_start_loads_base_balance(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """start() reads the base asset balance and announces itself."""
        recorder = await EventRecorder().attach(event_bus)
        strategy = await _start(config, exchange, event_bus, clock)
        assert strategy.is_active
        assert strategy.base_owned == 1.0
        assert recorder.types() == [EventType.STARTED]

    @pytest.mark.asyncio
    async def test_start_survives_account_failure(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """An account lookup failure is reported and quoting starts with no base."""
        recorder = await EventRecorder().attach(event_bus)
        exchange.fail_account = ExchangeError("denied", status_code=403)
        strategy = await _start(config, exchange, event_bus, clock)
        assert strategy.is_active
        assert strategy.base_owned == 0.0
        assert recorder.of_type(EventType.ERROR)[0].data["operation"] == "get_account_info"

    @pytest.mark.asyncio
    async def test_stop_cancels_everything_despite_budget(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """stop() pulls every level and take-profit even with the cancel budget spent."""
        config = EngineConfig(hedgehog=LADDER, order_manager={"cancel_rate_per_min": 1})
        recorder = await EventRecorder().attach(event_bus)
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        buy = _level(strategy, OrderSide.BUY, 1)
        await strategy.on_fill(exchange.fill(buy.order_id))
        assert strategy.get_active_take_profits()

        await strategy.stop()

        assert not strategy.is_active
        assert exchange.resting() == []
        assert strategy.get_active_levels() == []
        assert strategy.get_active_take_profits() == []
        assert recorder.types()[-1] == EventType.STOPPED

        placed = len(exchange.placed)
        await _tick(strategy, clock)
        assert len(exchange.placed) == placed


class TestLadder:
    """Tests for ladder computation and diffing."""

    @pytest.mark.asyncio
    async def test_places_scenario_ladder(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Both sides of the two-level ladder are placed at the expected prices."""
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)

        assert sorted(o.price for o in exchange.resting(OrderSide.BUY)) == [4310.03, 4314.30]
        assert sorted(o.price for o in exchange.resting(OrderSide.SELL)) == [4325.70, 4329.98]
        assert all(o.client_order_id.startswith("hhq_") for o in exchange.placed)
        assert len(strategy.get_active_levels()) == 4

    @pytest.mark.asyncio
    async def test_waits_for_atr(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """The ATR ladder is not quoted until ATR is available."""
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock, atr=None)
        assert exchange.placed == []

    @pytest.mark.asyncio
    async def test_unchanged_ladder_is_left_alone(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Sub-tick mid moves neither cancel nor place."""
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        await _tick(strategy, clock)
        await _tick(strategy, clock, mid=MID + 0.004)
        assert len(exchange.placed) == 4
        assert exchange.canceled == []

    @pytest.mark.asyncio
    async def test_moved_mid_requotes(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """A mid move beyond a tick replaces every level."""
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        await _tick(strategy, clock, mid=MID + 1.0)

        assert len(exchange.canceled) == 4
        buys = [o.price for o in exchange.resting(OrderSide.BUY)]
        assert len(buys) == 2
        assert 4315.30 in buys
        assert len(strategy.get_active_levels()) == 4

    @pytest.mark.asyncio
    async def test_dropped_cancel_keeps_slot(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """A slot whose cancel was rate limited is not filled a second time."""
        config = EngineConfig(hedgehog=LADDER, order_manager={"cancel_rate_per_min": 2})
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        await _tick(strategy, clock, mid=MID + 1.0)

        assert len(exchange.canceled) == 2
        assert len(exchange.placed) == 6
        assert len(exchange.resting()) == 4
        assert len(strategy.get_active_levels()) == 4

    @pytest.mark.asyncio
    async def test_sells_need_owned_base(
        self, config: EngineConfig, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Without base asset only buys are quoted."""
        exchange = FakeExchange(ETHUSDC, clock=clock, base_balance=0.0)
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        assert exchange.resting(OrderSide.SELL) == []
        assert len(exchange.resting(OrderSide.BUY)) == 2

    @pytest.mark.asyncio
    async def test_long_inventory_suppresses_buys(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Inventory above skew_alpha * limit stops new buys."""
        recorder = await EventRecorder().attach(event_bus)
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)

        # 17.28 USDC long against a 0.5 * 30 = 15 USDC threshold
        fill = Fill(
            id="ext-1",
            order_id="not-ours",
            symbol="ETHUSDC",
            side=OrderSide.BUY,
            price=MID,
            quantity=0.004,
            timestamp=clock.now_ms(),
        )
        assert await strategy.on_fill(fill)

        assert strategy.skew_permissions() == (False, True)
        assert exchange.resting(OrderSide.BUY) == []
        assert len(exchange.resting(OrderSide.SELL)) == 2
        assert recorder.of_type(EventType.FILL)[0].data["role"] == "unknown"
        assert strategy.get_active_take_profits() == []

    @pytest.mark.asyncio
    async def test_short_inventory_suppresses_sells(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Inventory below -skew_alpha * limit stops new sells."""
        strategy = await _start(config, exchange, event_bus, clock)
        fill = Fill(
            id="ext-2",
            order_id="not-ours",
            symbol="ETHUSDC",
            side=OrderSide.SELL,
            price=MID,
            quantity=0.004,
            timestamp=clock.now_ms(),
        )
        await strategy.on_fill(fill)
        assert strategy.skew_permissions() == (True, False)

        await _tick(strategy, clock)
        assert exchange.resting(OrderSide.SELL) == []
        assert len(exchange.resting(OrderSide.BUY)) == 2

    @pytest.mark.asyncio
    async def test_grid_policy_quotes_without_atr(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Tick-grid quoting does not need volatility data."""
        config = EngineConfig(strategy="grid")
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock, atr=None)
        assert sorted(o.price for o in exchange.resting(OrderSide.BUY)) == [4319.97, 4319.98]
        assert sorted(o.price for o in exchange.resting(OrderSide.SELL)) == [4320.02, 4320.03]

    @pytest.mark.asyncio
    async def test_active_levels_are_copies(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Callers cannot mutate the strategy's tables."""
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        copy = strategy.get_active_levels()[0]
        copy.is_active = False
        assert len(strategy.get_active_levels()) == 4


class TestFilters:
    """Tests for market-data quality gates."""

    @pytest.mark.asyncio
    async def test_tight_spread_pauses_once(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """A sub-tick spread pulls all quotes and pauses until data recovers."""
        recorder = await EventRecorder().attach(event_bus)
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)

        await _tick(strategy, clock, spread=0.0)
        await _tick(strategy, clock, spread=0.0)

        assert strategy.is_paused
        assert exchange.resting() == []
        paused = recorder.of_type(EventType.QUOTING_PAUSED)
        assert len(paused) == 1
        assert "spread" in paused[0].data["reason"]

        await _tick(strategy, clock)
        assert not strategy.is_paused
        assert len(exchange.resting()) == 4

    @pytest.mark.asyncio
    async def test_manual_pause(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """pause_quoting pulls the ladder until the next good update."""
        recorder = await EventRecorder().attach(event_bus)
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)

        await strategy.pause_quoting("operator")

        assert strategy.is_paused
        assert exchange.resting() == []
        assert recorder.of_type(EventType.QUOTING_PAUSED)[0].data == {"reason": "operator"}

        await _tick(strategy, clock)
        assert len(exchange.resting()) == 4

    @pytest.mark.asyncio
    async def test_fill_while_paused_does_not_replenish(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """A level that fills during a pause gets its take-profit but no new quote."""
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        buy = _level(strategy, OrderSide.BUY, 1)

        # Cancels fail, so the ladder is still resting when the pause starts
        exchange.fail_cancel = ExchangeError("Unknown order", status_code=400, error_code="-2011")
        await _tick(strategy, clock, spread=0.0)
        assert strategy.is_paused
        assert len(exchange.resting()) == 4
        placed_before = len(exchange.placed)

        await strategy.on_fill(exchange.fill(buy.order_id))

        new_orders = exchange.placed[placed_before:]
        assert [o.client_order_id[:4] for o in new_orders] == ["hht_"]
        assert not any(lv.replenished for lv in strategy.get_active_levels())
        assert len(strategy.get_active_take_profits()) == 1

    @pytest.mark.asyncio
    async def test_stale_data_pauses(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Market data older than staleness_ms pauses quoting."""
        recorder = await EventRecorder().attach(event_bus)
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock, age_ms=6000)

        assert strategy.is_paused
        assert exchange.placed == []
        assert "stale" in recorder.of_type(EventType.QUOTING_PAUSED)[0].data["reason"]

    @pytest.mark.asyncio
    async def test_shock_in_hybrid_mode_pulls_ladder(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """A regime with the ladder disabled cancels every level."""
        config = EngineConfig(hedgehog=LADDER, hybrid={"enable_in_shock": True})
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)

        await strategy.on_regime_change(
            MarketRegime.SHOCK, regime_parameters(MarketRegime.SHOCK, config)
        )

        assert strategy.regime == MarketRegime.SHOCK
        assert exchange.resting() == []

    @pytest.mark.asyncio
    async def test_shock_widens_ladder(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Shock parameters move the first level 1.5x further from mid."""
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        await strategy.on_regime_change(
            MarketRegime.SHOCK, regime_parameters(MarketRegime.SHOCK, config)
        )
        assert _level(strategy, OrderSide.BUY, 1).price == 4311.45


class TestFills:
    """Tests for fill handling."""

    @pytest.mark.asyncio
    async def test_buy_fill_creates_take_profit(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """A buy fill at 4320 with 12 bps gets a sell take-profit at 4325.18."""
        recorder = await EventRecorder().attach(event_bus)
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        buy = _level(strategy, OrderSide.BUY, 1)

        fill = exchange.fill(buy.order_id, price=4320.0)
        assert await strategy.on_fill(fill)

        take_profits = strategy.get_active_take_profits()
        assert len(take_profits) == 1
        tp = take_profits[0]
        assert tp.side == OrderSide.SELL
        assert tp.price == 4325.18
        assert tp.quantity == buy.quantity
        assert tp.fill_id == fill.id
        assert tp.client_order_id.startswith("hht_")

        created = recorder.of_type(EventType.TAKE_PROFIT_CREATED)
        assert len(created) == 1
        assert created[0].data["price"] == 4325.18
        assert recorder.of_type(EventType.FILL)[0].data["role"] == "quote"
        assert strategy.inventory.base_quantity == pytest.approx(buy.quantity)

    @pytest.mark.asyncio
    async def test_full_fill_replenishes_one_step_deeper(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """A fully filled level is re-placed one step further from mid."""
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        buy = _level(strategy, OrderSide.BUY, 1)

        await strategy.on_fill(exchange.fill(buy.order_id))

        replenished = [lv for lv in strategy.get_active_levels() if lv.replenished]
        assert len(replenished) == 1
        assert replenished[0].level == 1
        assert replenished[0].side == OrderSide.BUY
        assert replenished[0].price == 4310.03
        assert replenished[0].quantity == buy.quantity

        # The following recompute keeps the replenished level in its slot
        await _tick(strategy, clock)
        assert any(lv.replenished for lv in strategy.get_active_levels())

    @pytest.mark.asyncio
    async def test_partial_fill_waits_to_replenish(
        self, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Each partial fill gets its own take-profit; replenishment waits for the rest."""
        config = EngineConfig(deposit_usd=1000.0, hedgehog=LADDER)
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        buy = _level(strategy, OrderSide.BUY, 1)

        await strategy.on_fill(exchange.fill(buy.order_id, quantity=0.002))
        assert _level(strategy, OrderSide.BUY, 1).filled_quantity == pytest.approx(0.002)
        assert not any(lv.replenished for lv in strategy.get_active_levels())
        assert len(strategy.get_active_take_profits()) == 1

        await strategy.on_fill(exchange.fill(buy.order_id))
        assert len(strategy.get_active_take_profits()) == 2
        assert any(lv.replenished for lv in strategy.get_active_levels())

    @pytest.mark.asyncio
    async def test_duplicate_fill_ignored(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """The same fill id is applied once."""
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        fill = exchange.fill(_level(strategy, OrderSide.BUY, 1).order_id)

        assert await strategy.on_fill(fill)
        assert not await strategy.on_fill(fill)
        assert len(strategy.get_active_take_profits()) == 1
        assert strategy.inventory.base_quantity == pytest.approx(fill.quantity)

    @pytest.mark.asyncio
    async def test_take_profit_fill_realizes_pnl(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Filling the take-profit closes it and books the profit."""
        recorder = await EventRecorder().attach(event_bus)
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        buy = _level(strategy, OrderSide.BUY, 1)
        await strategy.on_fill(exchange.fill(buy.order_id, price=4320.0))
        tp = strategy.get_active_take_profits()[0]

        await strategy.on_fill(exchange.fill(tp.id))

        assert strategy.get_active_take_profits() == []
        inventory = strategy.inventory
        assert inventory.base_quantity == 0.0
        assert inventory.realized_pnl == pytest.approx((4325.18 - 4320.0) * buy.quantity)
        assert recorder.of_type(EventType.FILL)[-1].data["role"] == "take_profit"

    @pytest.mark.asyncio
    async def test_failed_take_profit_reported(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """A rejected take-profit is published as an error, the fill still counts."""
        recorder = await EventRecorder().attach(event_bus)
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        fill = exchange.fill(_level(strategy, OrderSide.BUY, 1).order_id)

        exchange.fail_place = ExchangeError("rejected", status_code=400)
        assert await strategy.on_fill(fill)

        assert strategy.get_active_take_profits() == []
        assert recorder.of_type(EventType.ERROR)[0].data["operation"] == "place_order"
        assert strategy.inventory.base_quantity == pytest.approx(fill.quantity)

    @pytest.mark.asyncio
    async def test_other_symbol_ignored(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Fills for another instrument do not touch inventory."""
        strategy = await _start(config, exchange, event_bus, clock)
        fill = Fill(
            id="9",
            order_id="1",
            symbol="BTCUSDC",
            side=OrderSide.BUY,
            price=60000.0,
            quantity=0.001,
            timestamp=clock.now_ms(),
        )
        assert not await strategy.on_fill(fill)
        assert strategy.inventory.base_quantity == 0.0


class TestLifecyclePass:
    """Tests for run_lifecycle integration."""

    @pytest.mark.asyncio
    async def test_expired_levels_are_replaced_in_table(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """Lifecycle replacements update the tracked levels' order ids and prices."""
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        before = {(lv.side, lv.level): lv.order_id for lv in strategy.get_active_levels()}

        clock.advance_seconds(46)
        await _tick(strategy, clock)
        result = await strategy.run_lifecycle()

        assert result is not None
        assert len(result.replaced) == 4
        levels = strategy.get_active_levels()
        assert len(levels) == 4
        for level in levels:
            assert level.order_id != before[(level.side, level.level)]
        assert {lv.price for lv in levels if lv.side == OrderSide.BUY} == {4319.98}
        assert {lv.price for lv in levels if lv.side == OrderSide.SELL} == {4320.02}

    @pytest.mark.asyncio
    async def test_recentering_after_mid_move(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """A mid move beyond half a step is flagged on the next pass."""
        strategy = await _start(config, exchange, event_bus, clock)
        await _tick(strategy, clock)
        first = await strategy.run_lifecycle()
        assert not first.recentered

        await _tick(strategy, clock, mid=MID + 3.0)
        second = await strategy.run_lifecycle()
        assert second.recentered
        assert len(strategy.get_active_levels()) == 4

    @pytest.mark.asyncio
    async def test_inactive_strategy_skips_pass(
        self, config: EngineConfig, exchange: FakeExchange, event_bus: EventBus, clock: ManualClock
    ) -> None:
        """No lifecycle pass runs before start()."""
        manager = OrderLifecycleManager(
            config.order_manager, ETHUSDC, exchange, event_bus=event_bus, clock=clock
        )
        strategy = QuotingStrategy(config, ETHUSDC, exchange, manager, event_bus=event_bus, clock=clock)
        assert await strategy.run_lifecycle() is None
