"""
Quoting strategy data models.

QuoteLevel and TakeProfitOrder are owned by the strategy and keyed by
client order id; other components only ever see copies.
"""

from pydantic import BaseModel, ConfigDict, Field

from hedgehog_engine.domain.order import OrderSide
from hedgehog_engine.regime.models import RegimeParameters

# Positions smaller than this are treated as flat
QTY_EPSILON = 1e-12


class QuoteLevel(BaseModel):
    """One slot of the ladder and its live order."""

    level: int = Field(..., ge=1, description="Ladder index, 1 is closest to mid")
    side: OrderSide
    price: float = Field(..., gt=0)
    quantity: float = Field(..., gt=0)
    order_id: str | None = None
    client_order_id: str
    is_active: bool = False
    timestamp: int = Field(..., description="Placement time, epoch ms")

    filled_quantity: float = Field(default=0.0, ge=0)
    in_flight: bool = False
    replenished: bool = Field(default=False, description="Placed one step deeper after a fill")

    @property
    def remaining_quantity(self) -> float:
        return max(0.0, self.quantity - self.filled_quantity)


class TakeProfitOrder(BaseModel):
    """Exit order created for one entry fill."""

    id: str = Field(..., description="Exchange order id")
    client_order_id: str
    fill_id: str = Field(..., description="Entry fill this order closes")
    side: OrderSide = Field(..., description="Opposite of the entry fill")
    price: float = Field(..., gt=0)
    quantity: float = Field(..., gt=0)
    entry_price: float = Field(..., gt=0)
    is_active: bool = True
    timestamp: int
    filled_quantity: float = Field(default=0.0, ge=0)
    in_flight: bool = False


class LevelCandidate(BaseModel):
    """A desired resting order produced by a quoting policy."""

    model_config = ConfigDict(frozen=True)

    level: int = Field(..., ge=1)
    side: OrderSide
    price: float = Field(..., gt=0)
    quantity: float = Field(..., gt=0)

    @property
    def notional(self) -> float:
        return self.price * self.quantity


class QuoteContext(BaseModel):
    """Everything a policy needs to generate the ladder."""

    model_config = ConfigDict(frozen=True)

    mid: float = Field(..., gt=0)
    best_bid: float = Field(..., gt=0)
    best_ask: float = Field(..., gt=0)
    atr1m: float = Field(default=0.0, ge=0)
    offset: float = Field(default=0.0, ge=0)
    step: float = Field(default=0.0, ge=0)
    max_levels: int = Field(..., ge=1)
    tick_size: float = Field(..., gt=0)
    step_size: float = Field(..., gt=0)
    min_notional: float = Field(default=0.0, ge=0)
    deposit_usd: float = Field(..., gt=0)
    regime_params: RegimeParameters


class Inventory(BaseModel):
    """
    Position built from confirmed fills only.

    `quote_notional` is the position's cost basis: positive when long,
    negative when short, zero when flat. Reducing fills realize PnL against
    the average entry price.
    """

    base_quantity: float = 0.0
    quote_notional: float = 0.0
    realized_pnl: float = 0.0
    fees_paid: float = 0.0

    @property
    def average_price(self) -> float | None:
        if abs(self.base_quantity) < QTY_EPSILON:
            return None
        return self.quote_notional / self.base_quantity

    def apply_fill(self, side: OrderSide, price: float, quantity: float, fee: float = 0.0) -> float:
        """
        Apply an execution to the position.

        Returns:
            PnL realized by this fill (0.0 for position-increasing fills)
        """
        signed = quantity if side == OrderSide.BUY else -quantity
        self.fees_paid += fee
        realized = 0.0

        same_direction = abs(self.base_quantity) < QTY_EPSILON or (self.base_quantity > 0) == (
            signed > 0
        )
        if same_direction:
            self.base_quantity += signed
            self.quote_notional += price * signed
            return realized

        position_sign = 1.0 if self.base_quantity > 0 else -1.0
        avg = self.quote_notional / self.base_quantity
        closing = min(abs(signed), abs(self.base_quantity))

        realized = closing * (price - avg) * position_sign
        self.realized_pnl += realized
        self.base_quantity -= closing * position_sign
        self.quote_notional -= avg * closing * position_sign

        remainder = abs(signed) - closing
        if remainder > QTY_EPSILON:
            self.base_quantity -= remainder * position_sign
            self.quote_notional -= price * remainder * position_sign

        if abs(self.base_quantity) < QTY_EPSILON:
            self.base_quantity = 0.0
            self.quote_notional = 0.0
        return realized
