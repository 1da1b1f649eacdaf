"""
Order and fill domain models.

The exchange is the source of truth for orders; `Order` is the engine's
local shadow copy. `Fill` is an executed trade against one of our orders.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class OrderSide(str, Enum):
    """Order side (direction)."""

    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderType(str, Enum):
    """Order type."""

    LIMIT = "LIMIT"  # Rest at the specified price
    LIMIT_MAKER = "LIMIT_MAKER"  # Rejected if it would take liquidity
    MARKET = "MARKET"  # Execute at current market price


class OrderStatus(str, Enum):
    """Exchange order status."""

    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELED = "CANCELED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


# Statuses that mean the order is no longer resting
TERMINAL_STATUSES = frozenset(
    {OrderStatus.FILLED, OrderStatus.CANCELED, OrderStatus.REJECTED, OrderStatus.EXPIRED}
)


class Order(BaseModel):
    """
    A resting or historical exchange order.

    Mutable so the shadow copy can follow status changes.
    """

    # Identification
    id: str = Field(..., description="Exchange-assigned order id")
    client_order_id: str | None = Field(default=None, description="Our idempotency key")

    # Order specification
    symbol: str = Field(..., description="Instrument symbol")
    side: OrderSide
    order_type: OrderType = Field(default=OrderType.LIMIT)
    price: float = Field(..., ge=0)
    quantity: float = Field(..., gt=0)

    # Status tracking
    filled_quantity: float = Field(default=0.0, ge=0)
    status: OrderStatus = Field(default=OrderStatus.NEW)

    # Timestamps (epoch ms)
    timestamp: int = Field(..., description="Creation time")
    update_time: int | None = Field(default=None, description="Last status change")

    @property
    def remaining_quantity(self) -> float:
        """Unfilled quantity."""
        return max(0.0, self.quantity - self.filled_quantity)

    @property
    def is_open(self) -> bool:
        """Order is still resting on the book."""
        return self.status not in TERMINAL_STATUSES


class Fill(BaseModel):
    """
    An execution against one of our orders.

    Immutable - fills are historical facts.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Exchange trade id")
    order_id: str = Field(..., description="Exchange order id")
    client_order_id: str | None = Field(default=None)
    symbol: str
    side: OrderSide
    price: float = Field(..., gt=0)
    quantity: float = Field(..., gt=0)
    fee: float = Field(default=0.0, ge=0)
    fee_asset: str | None = Field(default=None)
    timestamp: int = Field(..., description="Execution time, epoch ms")

    @property
    def notional(self) -> float:
        """Executed value in quote currency."""
        return self.price * self.quantity
