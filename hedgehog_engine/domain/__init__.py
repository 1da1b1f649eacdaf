"""
Domain models for the Hedgehog engine.

Pydantic models shared by the indicator pipeline, the lifecycle manager,
the strategy and the exchange adapter.
"""

from hedgehog_engine.domain.account import AccountInfo, Balance
from hedgehog_engine.domain.instrument import Instrument
from hedgehog_engine.domain.market import BookTicker, Candle, Orderbook, OrderbookLevel, Trade
from hedgehog_engine.domain.order import (
    TERMINAL_STATUSES,
    Fill,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
)

__all__ = [
    "AccountInfo",
    "Balance",
    "Instrument",
    "BookTicker",
    "Candle",
    "Orderbook",
    "OrderbookLevel",
    "Trade",
    "TERMINAL_STATUSES",
    "Fill",
    "Order",
    "OrderSide",
    "OrderStatus",
    "OrderType",
]
