"""
Quoting strategy.

Turns market state, regime parameters and inventory into a live ladder of
limit orders. Owns the quote-level and take-profit tables for one
instrument; every order operation goes through the OrderLifecycleManager.

State machine: inactive -> active on start(), active -> inactive on stop().
While active, each market-data update either pauses quoting (filters fail)
or recomputes the ladder and diffs it against the tracked levels. Fills
create a take-profit, replenish the filled level one step deeper and
trigger a recompute.
"""

import asyncio
import math
from collections import deque
from typing import Any

from hedgehog_engine.config import EngineConfig
from hedgehog_engine.domain import Fill, Instrument, Order, OrderSide, OrderStatus, OrderType
from hedgehog_engine.exchange.interface import ExchangeClient
from hedgehog_engine.execution.client_order_id import (
    PREFIX_QUOTE,
    PREFIX_TAKE_PROFIT,
    next_client_order_id,
)
from hedgehog_engine.execution.order_manager import ManageResult, OrderLifecycleManager
from hedgehog_engine.indicators.rounding import round_to_step, round_to_tick
from hedgehog_engine.logging import get_logger
from hedgehog_engine.regime.detector import regime_parameters
from hedgehog_engine.regime.models import MarketRegime, RegimeParameters
from hedgehog_engine.runtime.clock import Clock, get_system_clock
from hedgehog_engine.runtime.event_bus import EventBus, EventType, get_event_bus
from hedgehog_engine.strategy.models import (
    QTY_EPSILON,
    Inventory,
    LevelCandidate,
    QuoteContext,
    QuoteLevel,
    TakeProfitOrder,
)
from hedgehog_engine.strategy.policy import QuotingPolicy, build_policy

logger = get_logger(__name__)

# Fill ids remembered for de-duplication
SEEN_FILLS_CAPACITY = 10_000


class QuotingStrategy:
    """
    Ladder quoting for one instrument.

    Uses:
    - a QuotingPolicy for level geometry (Hedgehog, Grid or PingPong)
    - the lifecycle manager as the only path to the exchange for orders
    - the event bus for outbound notifications
    """

    def __init__(
        self,
        config: EngineConfig,
        instrument: Instrument,
        exchange: ExchangeClient,
        order_manager: OrderLifecycleManager,
        policy: QuotingPolicy | None = None,
        event_bus: EventBus | None = None,
        clock: Clock | None = None,
    ):
        self._config = config
        self._instrument = instrument
        self._exchange = exchange
        self._orders = order_manager
        self._policy = policy or build_policy(config)
        self._bus = event_bus or get_event_bus()
        self._clock = clock or get_system_clock()

        # Owned tables, keyed by client order id
        self._levels: dict[str, QuoteLevel] = {}
        self._take_profits: dict[str, TakeProfitOrder] = {}

        # Inventory
        self._inventory = Inventory()
        self._base_owned = 0.0
        self._seen_fills: set[str] = set()
        self._seen_order: deque[str] = deque()

        # State machine
        self._active = False
        self._stopping = False
        self._paused = False
        self._lock = asyncio.Lock()

        # Regime
        self._regime = MarketRegime.NORMAL
        self._regime_params = regime_parameters(MarketRegime.NORMAL, config)

        # Latest market state
        self._mid = 0.0
        self._best_bid = 0.0
        self._best_ask = 0.0
        self._atr1m: float | None = None
        self._data_timestamp: int | None = None

        self._recenter_pending = False
        self._orders.set_recenter_hook(self._on_recenter)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def policy(self) -> QuotingPolicy:
        return self._policy

    @property
    def inventory(self) -> Inventory:
        """Copy of the current inventory."""
        return self._inventory.model_copy()

    @property
    def base_owned(self) -> float:
        """Base asset held: starting balance plus net fills."""
        return self._base_owned

    @property
    def regime(self) -> MarketRegime:
        return self._regime

    @property
    def regime_params(self) -> RegimeParameters:
        return self._regime_params

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Activate quoting.

        Loads the account's base-asset balance for sell gating. Pre-existing
        orders on the exchange are left untouched.
        """
        async with self._lock:
            if self._active:
                return

            base_owned = 0.0
            try:
                account = await self._exchange.get_account_info()
                base_owned = account.balance(self._instrument.base_asset).total
            except Exception as e:
                await self._report_error("get_account_info", e)

            self._base_owned = base_owned
            self._active = True
            self._stopping = False
            self._paused = False

            logger.info(
                "Quoting started: policy=%s base_owned=%s",
                self._policy.name,
                base_owned,
            )
            await self._bus.emit(
                EventType.STARTED,
                {"policy": self._policy.name, "base_owned": base_owned},
                symbol=self._instrument.symbol,
            )

    async def stop(self) -> None:
        """
        Deactivate quoting.

        Waits for the operation in progress, forbids new placements, then
        cancels every quote level and take-profit order.
        """
        async with self._lock:
            if not self._active:
                return

            self._stopping = True
            await self._cancel_everything()
            self._active = False

            logger.info("Quoting stopped")
            await self._bus.emit(
                EventType.STOPPED,
                self._stats(),
                symbol=self._instrument.symbol,
            )

    async def pause_quoting(self, reason: str = "manual") -> None:
        """Cancel everything until the next good market-data update."""
        async with self._lock:
            await self._pause(reason)

    async def _pause(self, reason: str) -> None:
        if self._paused:
            return

        self._paused = True
        logger.warning("Quoting paused: %s", reason)
        await self._cancel_everything()
        await self._bus.emit(
            EventType.QUOTING_PAUSED,
            {"reason": reason},
            symbol=self._instrument.symbol,
        )

    # =========================================================================
    # Inputs
    # =========================================================================

    async def on_market_data(
        self,
        mid: float,
        atr1m: float | None,
        best_bid: float,
        best_ask: float,
        timestamp: int,
    ) -> None:
        """Record market state and, while active, requote."""
        async with self._lock:
            self._mid = mid
            self._atr1m = atr1m
            self._best_bid = best_bid
            self._best_ask = best_ask
            self._data_timestamp = timestamp

            if not self._active or self._stopping:
                return

            reason = self._filter_reason()
            if reason is not None:
                await self._pause(reason)
                return

            if self._paused:
                self._paused = False
                logger.info("Quoting resumed")

            await self._recompute()

    async def on_regime_change(self, regime: MarketRegime, params: RegimeParameters) -> None:
        """Apply new regime parameters and requote with them."""
        async with self._lock:
            self._regime = regime
            self._regime_params = params
            logger.info(
                "Regime parameters: %s tp=%sbps offset x%s step x%s levels=%d ladder=%s",
                regime.value,
                params.tp_bps,
                params.offset_multiplier,
                params.step_multiplier,
                params.max_levels,
                params.enable_ladder,
            )
            if self._active and not self._stopping and not self._paused:
                await self._recompute()

    async def on_fill(self, fill: Fill) -> bool:
        """
        Process an execution.

        Returns:
            False if the fill was a duplicate or for another symbol
        """
        async with self._lock:
            return await self._handle_fill(fill)

    async def run_lifecycle(self) -> ManageResult | None:
        """Run the lifecycle manager over the resting quote levels."""
        async with self._lock:
            if not self._active or self._stopping or self._mid <= 0:
                return None

            orders = [
                self._level_to_order(level)
                for level in self._levels.values()
                if level.is_active and not level.in_flight and level.order_id
            ]
            result = await self._orders.manage_orders(
                orders,
                self._mid,
                self._best_bid,
                self._best_ask,
                self._best_ask - self._best_bid,
                data_timestamp=self._data_timestamp,
            )
            self._apply_manage_result(result)

            if self._recenter_pending:
                self._recenter_pending = False
                if not self._paused:
                    await self._recompute()
            return result

    async def _on_recenter(self, mid: float) -> None:
        # Regenerated after the pass so replacements are applied first
        self._recenter_pending = True

    # =========================================================================
    # Ladder computation
    # =========================================================================

    def _filter_reason(self) -> str | None:
        filters = self._config.filters
        if self._data_timestamp is not None:
            age_ms = self._clock.now_ms() - self._data_timestamp
            if age_ms > filters.staleness_ms:
                return f"market data stale ({age_ms} ms)"

        spread = self._best_ask - self._best_bid
        min_spread = filters.min_spread_ticks * self._instrument.tick_size
        if spread < min_spread - 1e-12:
            return f"spread {spread:.8f} below minimum {min_spread:.8f}"
        return None

    def build_context(self) -> QuoteContext | None:
        """
        Quote context from the latest market state.

        Returns None while data is insufficient (no book yet, or ATR not
        warm for policies that need it).
        """
        if self._mid <= 0 or self._best_bid <= 0 or self._best_ask <= 0:
            return None

        atr = self._atr1m or 0.0
        if self._policy.requires_atr and atr <= 0:
            return None

        params = self._regime_params
        hedgehog = self._config.hedgehog
        offset = params.offset_multiplier * hedgehog.offset_k_atr1m * atr
        step = params.step_multiplier * hedgehog.step_k_atr1m * atr
        self._orders.set_strategy_params(offset, step, params.max_levels)

        return QuoteContext(
            mid=self._mid,
            best_bid=self._best_bid,
            best_ask=self._best_ask,
            atr1m=atr,
            offset=offset * self._orders.decay_factor,
            step=step,
            max_levels=params.max_levels,
            tick_size=self._instrument.tick_size,
            step_size=self._instrument.step_size,
            min_notional=max(self._instrument.min_notional, self._config.filters.min_notional_usd),
            deposit_usd=self._config.deposit_usd,
            regime_params=params,
        )

    def skew_permissions(self) -> tuple[bool, bool]:
        """
        (allow_buys, allow_sells) under the inventory skew rule.

        Long beyond skew_alpha * limit stops buys; short beyond it stops sells.
        """
        threshold = self._config.hedgehog.skew_alpha * self._config.inventory_limit
        notional = self._inventory.quote_notional
        return notional <= threshold, notional >= -threshold

    def sell_capacity(self) -> float:
        """Base quantity available for new sell quotes."""
        if not self._config.hedgehog.require_base_for_sells:
            return math.inf
        reserved = sum(
            tp.quantity - tp.filled_quantity
            for tp in self._take_profits.values()
            if tp.is_active and tp.side == OrderSide.SELL
        )
        return max(0.0, self._base_owned - reserved)

    def compute_candidates(self, ctx: QuoteContext | None = None) -> list[LevelCandidate]:
        """Desired ladder after skew, buy budget and sell gating."""
        ctx = ctx or self.build_context()
        if ctx is None or not ctx.regime_params.enable_ladder:
            return []

        allow_buys, allow_sells = self.skew_permissions()
        buy_budget = self._config.deposit_usd * self._config.risk.max_notional_pct
        sell_capacity = self.sell_capacity()

        buy_used = 0.0
        sell_used = 0.0
        selected: list[LevelCandidate] = []
        for candidate in self._policy.generate_levels(ctx):
            if candidate.side == OrderSide.BUY:
                if not allow_buys or buy_used + candidate.notional > buy_budget + 1e-9:
                    continue
                buy_used += candidate.notional
            else:
                if not allow_sells or sell_used + candidate.quantity > sell_capacity + QTY_EPSILON:
                    continue
                sell_used += candidate.quantity
            selected.append(candidate)
        return selected

    async def _recompute(self) -> None:
        if not self._active or self._stopping:
            return
        ctx = self.build_context()
        if ctx is None:
            return
        await self._apply_ladder(self.compute_candidates(ctx), ctx)

    async def _apply_ladder(self, candidates: list[LevelCandidate], ctx: QuoteContext) -> None:
        """Cancel tracked levels that are no longer wanted, place missing ones."""
        tick = self._instrument.tick_size
        replenished_tolerance = self._policy.replenish_step(ctx) + tick

        unmatched = list(candidates)
        to_cancel: list[QuoteLevel] = []
        for level in list(self._levels.values()):
            if level.in_flight or not level.is_active:
                continue
            tolerance = replenished_tolerance if level.replenished else tick
            match = next(
                (
                    c
                    for c in unmatched
                    if c.side == level.side
                    and c.level == level.level
                    and abs(c.price - level.price) <= tolerance + 1e-9
                ),
                None,
            )
            if match is not None:
                unmatched.remove(match)
            else:
                to_cancel.append(level)

        # Slots whose old order is still resting are not filled twice
        blocked: set[tuple[OrderSide, int]] = set()
        if to_cancel:
            for level in to_cancel:
                level.in_flight = True
            results = await asyncio.gather(*[self._cancel_level(level) for level in to_cancel])
            for level, ok in zip(to_cancel, results):
                if not ok:
                    blocked.add((level.side, level.level))

        if self._stopping:
            return

        to_place = [c for c in unmatched if (c.side, c.level) not in blocked]
        if to_place:
            await asyncio.gather(*[self._place_level(c) for c in to_place])

    async def _place_level(self, candidate: LevelCandidate, replenished: bool = False) -> bool:
        if self._stopping:
            return False

        now = self._clock.now_ms()
        client_order_id = next_client_order_id(
            prefix=PREFIX_QUOTE,
            symbol=self._instrument.symbol,
            side=candidate.side.value,
            level=candidate.level,
            intent_ms=now,
        )
        level = QuoteLevel(
            level=candidate.level,
            side=candidate.side,
            price=candidate.price,
            quantity=candidate.quantity,
            client_order_id=client_order_id,
            timestamp=now,
            in_flight=True,
            replenished=replenished,
        )
        self._levels[client_order_id] = level

        order = await self._orders.place_limit_order(
            candidate.side,
            candidate.price,
            candidate.quantity,
            client_order_id,
            purpose="replenish" if replenished else "quote",
        )
        if order is None:
            self._levels.pop(client_order_id, None)
            return False

        level.order_id = order.id
        level.is_active = True
        level.in_flight = False
        return True

    async def _cancel_level(self, level: QuoteLevel, bypass_rate_limit: bool = False) -> bool:
        ok = await self._orders.cancel_order(
            level.order_id,
            level.client_order_id,
            bypass_rate_limit=bypass_rate_limit,
        )
        level.in_flight = False
        if ok:
            level.is_active = False
            self._levels.pop(level.client_order_id, None)
        return ok

    async def _cancel_take_profit(self, tp: TakeProfitOrder) -> bool:
        tp.in_flight = True
        ok = await self._orders.cancel_order(tp.id, tp.client_order_id, bypass_rate_limit=True)
        tp.in_flight = False
        if ok:
            tp.is_active = False
            self._take_profits.pop(tp.client_order_id, None)
        return ok

    async def _cancel_everything(self) -> None:
        levels = [lv for lv in self._levels.values() if lv.is_active and not lv.in_flight]
        tps = [tp for tp in self._take_profits.values() if tp.is_active and not tp.in_flight]
        for level in levels:
            level.in_flight = True
        await asyncio.gather(
            *[self._cancel_level(level, bypass_rate_limit=True) for level in levels],
            *[self._cancel_take_profit(tp) for tp in tps],
        )

    # =========================================================================
    # Fills
    # =========================================================================

    def _remember_fill(self, fill_id: str) -> None:
        self._seen_fills.add(fill_id)
        self._seen_order.append(fill_id)
        if len(self._seen_order) > SEEN_FILLS_CAPACITY:
            self._seen_fills.discard(self._seen_order.popleft())

    def _find_level(self, fill: Fill) -> QuoteLevel | None:
        for level in self._levels.values():
            if level.order_id == fill.order_id:
                return level
        if fill.client_order_id:
            return self._levels.get(fill.client_order_id)
        return None

    def _find_take_profit(self, fill: Fill) -> TakeProfitOrder | None:
        for tp in self._take_profits.values():
            if tp.id == fill.order_id:
                return tp
        if fill.client_order_id:
            return self._take_profits.get(fill.client_order_id)
        return None

    async def _handle_fill(self, fill: Fill) -> bool:
        if fill.id in self._seen_fills:
            logger.debug("Duplicate fill %s ignored", fill.id)
            return False
        if fill.symbol != self._instrument.symbol:
            logger.debug("Fill %s for %s ignored", fill.id, fill.symbol)
            return False
        self._remember_fill(fill.id)

        realized = self._inventory.apply_fill(fill.side, fill.price, fill.quantity, fill.fee)
        self._base_owned += fill.quantity if fill.side == OrderSide.BUY else -fill.quantity
        self._orders.register_fill()

        can_trade = self._active and not self._stopping
        role = "unknown"
        tp = self._find_take_profit(fill)
        level = None if tp is not None else self._find_level(fill)

        if tp is not None:
            role = "take_profit"
            tp.filled_quantity += fill.quantity
            if tp.filled_quantity >= tp.quantity - QTY_EPSILON:
                tp.is_active = False
                self._take_profits.pop(tp.client_order_id, None)
        elif level is not None:
            role = "quote"
            level.filled_quantity += fill.quantity
            if can_trade:
                await self._create_take_profit(fill)
            if level.remaining_quantity < self._instrument.step_size / 2:
                level.is_active = False
                self._levels.pop(level.client_order_id, None)
                if can_trade and not self._paused:
                    await self._replenish(level)
        else:
            logger.warning("Fill %s for unknown order %s applied to inventory only", fill.id, fill.order_id)

        logger.info(
            "Fill %s %s %s @ %s (%s) position=%s realized=%.6f",
            fill.id,
            fill.side.value,
            fill.quantity,
            fill.price,
            role,
            self._inventory.base_quantity,
            realized,
        )
        await self._bus.emit(
            EventType.FILL,
            {
                **fill.model_dump(mode="json"),
                "role": role,
                "realized_pnl": realized,
                "inventory": self._inventory.model_dump(),
            },
            symbol=self._instrument.symbol,
        )

        if can_trade and not self._paused:
            await self._recompute()
        return True

    async def _create_take_profit(self, fill: Fill) -> TakeProfitOrder | None:
        if any(tp.fill_id == fill.id for tp in self._take_profits.values()):
            return None

        tick = self._instrument.tick_size
        bps = self._policy.take_profit_bps(self._regime_params)
        if fill.side == OrderSide.BUY:
            multiplier = 1 + bps / 10000
        else:
            multiplier = 1 - bps / 10000
        price = round_to_tick(fill.price * multiplier, tick)
        quantity = round_to_step(fill.quantity, self._instrument.step_size)
        side = fill.side.opposite

        now = self._clock.now_ms()
        client_order_id = next_client_order_id(
            prefix=PREFIX_TAKE_PROFIT,
            symbol=self._instrument.symbol,
            side=side.value,
            level=0,
            intent_ms=now,
        )
        order = await self._orders.place_limit_order(
            side,
            price,
            quantity,
            client_order_id,
            purpose="take_profit",
        )
        if order is None:
            logger.warning("No take-profit for fill %s (%s @ %s)", fill.id, quantity, price)
            return None

        tp = TakeProfitOrder(
            id=order.id,
            client_order_id=client_order_id,
            fill_id=fill.id,
            side=side,
            price=price,
            quantity=quantity,
            entry_price=fill.price,
            timestamp=now,
        )
        self._take_profits[client_order_id] = tp
        await self._bus.emit(
            EventType.TAKE_PROFIT_CREATED,
            tp.model_dump(mode="json"),
            symbol=self._instrument.symbol,
        )
        return tp

    async def _replenish(self, level: QuoteLevel) -> bool:
        """Re-place a filled level one step deeper on the same side."""
        ctx = self.build_context()
        if ctx is None or not ctx.regime_params.enable_ladder:
            return False

        step = self._policy.replenish_step(ctx)
        if step <= 0:
            return False

        raw = level.price - step if level.side == OrderSide.BUY else level.price + step
        price = round_to_tick(raw, self._instrument.tick_size)
        if price <= 0:
            return False

        allow_buys, allow_sells = self.skew_permissions()
        if level.side == OrderSide.BUY and not allow_buys:
            return False
        if level.side == OrderSide.SELL:
            resting_sells = sum(
                lv.remaining_quantity
                for lv in self._levels.values()
                if lv.side == OrderSide.SELL and lv.is_active
            )
            if not allow_sells or resting_sells + level.quantity > self.sell_capacity() + QTY_EPSILON:
                return False

        candidate = LevelCandidate(
            level=level.level,
            side=level.side,
            price=price,
            quantity=level.quantity,
        )
        return await self._place_level(candidate, replenished=True)

    # =========================================================================
    # Lifecycle results
    # =========================================================================

    def _level_to_order(self, level: QuoteLevel) -> Order:
        return Order(
            id=level.order_id or "",
            client_order_id=level.client_order_id,
            symbol=self._instrument.symbol,
            side=level.side,
            order_type=OrderType.LIMIT,
            price=level.price,
            quantity=level.quantity,
            filled_quantity=level.filled_quantity,
            status=OrderStatus.PARTIALLY_FILLED if level.filled_quantity > 0 else OrderStatus.NEW,
            timestamp=level.timestamp,
        )

    def _apply_manage_result(self, result: ManageResult) -> None:
        now = self._clock.now_ms()
        for order in result.canceled:
            self._levels.pop(order.client_order_id or "", None)

        for replacement in result.replaced:
            old = self._levels.pop(replacement.old.client_order_id or "", None)
            if old is None:
                continue
            new = replacement.new
            client_order_id = new.client_order_id or old.client_order_id
            self._levels[client_order_id] = old.model_copy(
                update={
                    "order_id": new.id,
                    "client_order_id": client_order_id,
                    "price": new.price,
                    "quantity": new.quantity,
                    "filled_quantity": 0.0,
                    "timestamp": now,
                    "is_active": True,
                    "in_flight": False,
                    "replenished": False,
                }
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_active_levels(self) -> list[QuoteLevel]:
        """Copies of the active quote levels."""
        return [level.model_copy() for level in self._levels.values() if level.is_active]

    def get_active_take_profits(self) -> list[TakeProfitOrder]:
        """Copies of the active take-profit orders."""
        return [tp.model_copy() for tp in self._take_profits.values() if tp.is_active]

    def _stats(self) -> dict[str, Any]:
        return {
            "is_active": self._active,
            "is_paused": self._paused,
            "policy": self._policy.name,
            "active_levels": sum(1 for lv in self._levels.values() if lv.is_active),
            "active_take_profits": sum(1 for tp in self._take_profits.values() if tp.is_active),
            "base_quantity": self._inventory.base_quantity,
            "inventory_notional": self._inventory.quote_notional,
            "realized_pnl": self._inventory.realized_pnl,
            "base_owned": self._base_owned,
            "regime": self._regime.value,
            "mid_price": self._mid,
            "atr1m": self._atr1m,
        }

    def get_stats(self) -> dict[str, Any]:
        return self._stats()

    async def _report_error(self, operation: str, error: Exception) -> None:
        logger.error("%s failed: %s", operation, error)
        await self._bus.emit(
            EventType.ERROR,
            {"operation": operation, "message": str(error), "client_order_id": None},
            symbol=self._instrument.symbol,
        )
