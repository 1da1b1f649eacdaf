"""
Quoting policies.

A policy turns a QuoteContext into the desired ladder. Policies are pure:
they know nothing about resting orders, inventory or the exchange, which
keeps the ladder geometry testable on its own. Inventory skew, sell gating
and the diff against live orders belong to QuotingStrategy.
"""

from abc import ABC, abstractmethod

from hedgehog_engine.config import EngineConfig
from hedgehog_engine.domain.order import OrderSide
from hedgehog_engine.indicators.rounding import (
    quantity_for_notional,
    round_to_tick,
    validate_notional,
)
from hedgehog_engine.regime.models import RegimeParameters
from hedgehog_engine.strategy.models import LevelCandidate, QuoteContext


class QuotingPolicy(ABC):
    """Level-generation policy shared by every strategy flavour."""

    name: str = "base"

    # Whether quoting waits for a warm ATR
    requires_atr: bool = True

    def __init__(self, config: EngineConfig):
        self._config = config

    @abstractmethod
    def generate_levels(self, ctx: QuoteContext) -> list[LevelCandidate]:
        """Desired ladder, buys and sells, in level order."""
        pass

    @abstractmethod
    def replenish_step(self, ctx: QuoteContext) -> float:
        """Price distance a filled level moves deeper when replenished."""
        pass

    def take_profit_bps(self, regime_params: RegimeParameters) -> float:
        """Take-profit distance for new entries."""
        return regime_params.tp_bps

    def _candidate(
        self,
        ctx: QuoteContext,
        level: int,
        side: OrderSide,
        raw_price: float,
        notional: float,
    ) -> LevelCandidate | None:
        price = round_to_tick(raw_price, ctx.tick_size)
        if price <= 0:
            return None
        quantity = quantity_for_notional(ctx.mid, notional, ctx.step_size)
        if quantity <= 0 or not validate_notional(price, quantity, ctx.min_notional):
            return None
        return LevelCandidate(level=level, side=side, price=price, quantity=quantity)


class HedgehogPolicy(QuotingPolicy):
    """
    Symmetric ATR ladder with geometric sizing.

    Level k sits at mid -/+ (offset + (k-1) * step) and is sized
    base_size * r^(k-1) in quote currency, converted at mid.
    """

    name = "hedgehog"

    def level_notional(self, ctx: QuoteContext, level: int) -> float:
        hedgehog = self._config.hedgehog
        base_size = ctx.deposit_usd * hedgehog.base_size_pct
        return base_size * hedgehog.size_geometry_r ** (level - 1)

    def generate_levels(self, ctx: QuoteContext) -> list[LevelCandidate]:
        candidates: list[LevelCandidate] = []
        for level in range(1, ctx.max_levels + 1):
            distance = ctx.offset + (level - 1) * ctx.step
            notional = self.level_notional(ctx, level)

            buy = self._candidate(ctx, level, OrderSide.BUY, ctx.mid - distance, notional)
            if buy is not None:
                candidates.append(buy)

            sell = self._candidate(ctx, level, OrderSide.SELL, ctx.mid + distance, notional)
            if sell is not None:
                candidates.append(sell)
        return candidates

    def replenish_step(self, ctx: QuoteContext) -> float:
        return ctx.step


class GridPolicy(QuotingPolicy):
    """Fixed-size grid at a constant tick spacing outside the touch."""

    name = "grid"
    requires_atr = False

    def _spacing(self, ctx: QuoteContext) -> float:
        return self._config.grid.step_ticks * ctx.tick_size

    def generate_levels(self, ctx: QuoteContext) -> list[LevelCandidate]:
        grid = self._config.grid
        spacing = self._spacing(ctx)
        candidates: list[LevelCandidate] = []
        for level in range(1, grid.levels_per_side + 1):
            buy = self._candidate(
                ctx, level, OrderSide.BUY, ctx.best_bid - level * spacing, grid.base_order_usd
            )
            if buy is not None:
                candidates.append(buy)

            sell = self._candidate(
                ctx, level, OrderSide.SELL, ctx.best_ask + level * spacing, grid.base_order_usd
            )
            if sell is not None:
                candidates.append(sell)
        return candidates

    def replenish_step(self, ctx: QuoteContext) -> float:
        return self._spacing(ctx)


class PingPongPolicy(QuotingPolicy):
    """One maker order a tick outside each side of the touch."""

    name = "pingpong"
    requires_atr = False

    def generate_levels(self, ctx: QuoteContext) -> list[LevelCandidate]:
        notional = self._config.pingpong.base_order_usd
        candidates = [
            self._candidate(ctx, 1, OrderSide.BUY, ctx.best_bid - ctx.tick_size, notional),
            self._candidate(ctx, 1, OrderSide.SELL, ctx.best_ask + ctx.tick_size, notional),
        ]
        return [c for c in candidates if c is not None]

    def replenish_step(self, ctx: QuoteContext) -> float:
        return ctx.tick_size


def build_policy(config: EngineConfig) -> QuotingPolicy:
    """Instantiate the policy selected by `config.strategy`."""
    policies: dict[str, type[QuotingPolicy]] = {
        HedgehogPolicy.name: HedgehogPolicy,
        GridPolicy.name: GridPolicy,
        PingPongPolicy.name: PingPongPolicy,
    }
    return policies[config.strategy.value](config)
