"""
Market data domain models.

Trades, order book snapshots, best bid/ask and OHLCV candles. All are
historical facts: frozen and replaced wholesale on every update.
"""

from pydantic import BaseModel, ConfigDict, Field

from hedgehog_engine.domain.order import OrderSide


class Trade(BaseModel):
    """A public trade print (or a tick)."""

    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., description="Instrument symbol")
    price: float = Field(..., gt=0)
    quantity: float = Field(..., ge=0)
    side: OrderSide = Field(..., description="Aggressor side")
    timestamp: int = Field(..., description="Epoch milliseconds")
    id: str | None = Field(default=None, description="Exchange trade id")
    is_buyer_maker: bool = Field(
        default=False,
        description="True when the buyer was the resting side (sell aggressor)",
    )


class OrderbookLevel(BaseModel):
    """One price level of the book."""

    model_config = ConfigDict(frozen=True)

    price: float = Field(..., gt=0)
    quantity: float = Field(..., ge=0)


class Orderbook(BaseModel):
    """Depth snapshot, best level first on each side."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    bids: list[OrderbookLevel] = Field(default_factory=list)
    asks: list[OrderbookLevel] = Field(default_factory=list)
    timestamp: int = Field(..., description="Epoch milliseconds")
    last_update_id: int | None = Field(default=None, description="Exchange sequence id")

    @property
    def best_bid(self) -> float | None:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> float | None:
        return self.asks[0].price if self.asks else None


class BookTicker(BaseModel):
    """Best bid/ask snapshot."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    bid_price: float = Field(..., gt=0)
    bid_qty: float = Field(default=0.0, ge=0)
    ask_price: float = Field(..., gt=0)
    ask_qty: float = Field(default=0.0, ge=0)
    timestamp: int = Field(..., description="Epoch milliseconds")

    @property
    def mid(self) -> float:
        """Mid price."""
        return (self.bid_price + self.ask_price) / 2

    @property
    def spread(self) -> float:
        """Ask minus bid."""
        return self.ask_price - self.bid_price


class Candle(BaseModel):
    """
    OHLCV candle.

    `timestamp` is the candle open time in epoch milliseconds.
    """

    model_config = ConfigDict(frozen=True)

    open: float = Field(..., gt=0)
    high: float = Field(..., gt=0)
    low: float = Field(..., gt=0)
    close: float = Field(..., gt=0)
    volume: float = Field(default=0.0, ge=0)
    timestamp: int = Field(..., description="Open time, epoch milliseconds")

    @property
    def range(self) -> float:
        """High minus low."""
        return self.high - self.low
