"""
ExchangeClient interface.

Defines the contract the engine consumes from a spot exchange. Implementations
handle transport, signing and payload mapping only; all decision logic lives
in the engine.
"""

from abc import ABC, abstractmethod

from hedgehog_engine.domain import (
    AccountInfo,
    BookTicker,
    Fill,
    Instrument,
    Order,
    OrderSide,
    OrderType,
)


class ExchangeError(Exception):
    """Raised for exchange API failures."""

    def __init__(self, message: str, status_code: int | None = None, error_code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class ExchangeRateLimitError(ExchangeError):
    """Raised when the exchange rate limit is still exceeded after retries."""

    pass


class ExchangeNetworkError(ExchangeError):
    """Raised when the exchange cannot be reached (timeouts, connection errors)."""

    pass


class ExchangeClient(ABC):
    """
    Abstract base class for spot exchange connectivity.

    All methods are coroutines and raise ExchangeError (or a subclass) on
    failure.
    """

    # =========================================================================
    # Market Data
    # =========================================================================

    @abstractmethod
    async def get_book_ticker(self, symbol: str) -> BookTicker:
        """Best bid/ask for a symbol."""
        pass

    @abstractmethod
    async def get_price(self, symbol: str) -> float:
        """Last traded price for a symbol."""
        pass

    # =========================================================================
    # Account Information
    # =========================================================================

    @abstractmethod
    async def get_account_info(self) -> AccountInfo:
        """Balances and trading permission."""
        pass

    @abstractmethod
    async def get_my_trades(
        self,
        symbol: str,
        limit: int = 100,
        from_id: str | None = None,
    ) -> list[Fill]:
        """
        Our recent executions on a symbol.

        Args:
            symbol: Exchange symbol
            limit: Maximum number of trades
            from_id: Only return trades with id >= this id

        Returns:
            Fills, in the order returned by the exchange.
        """
        pass

    # =========================================================================
    # Instrument Information
    # =========================================================================

    @abstractmethod
    async def get_exchange_info(self, symbol: str | None = None) -> list[Instrument]:
        """
        Trading rules for one symbol, or all symbols when None.

        Returns:
            List of instruments (a single entry when symbol is given).
        """
        pass

    # =========================================================================
    # Order Management
    # =========================================================================

    @abstractmethod
    async def get_open_orders(self, symbol: str) -> list[Order]:
        """Currently resting orders on a symbol."""
        pass

    @abstractmethod
    async def place_order(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: float,
        price: float | None = None,
        client_order_id: str | None = None,
    ) -> Order:
        """
        Submit a new order.

        Returns:
            The exchange's view of the accepted order.
        """
        pass

    @abstractmethod
    async def cancel_order(
        self,
        symbol: str,
        order_id: str | None = None,
        client_order_id: str | None = None,
    ) -> Order | None:
        """
        Cancel an order by exchange id or client order id.

        Returns:
            The canceled order if the exchange returns it.
        """
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None
