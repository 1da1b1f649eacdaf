"""
Exchange connectivity: the abstract client and the MEXC REST adapter.
"""

from hedgehog_engine.exchange.interface import (
    ExchangeClient,
    ExchangeError,
    ExchangeNetworkError,
    ExchangeRateLimitError,
)
from hedgehog_engine.exchange.mexc import MexcRestClient

__all__ = [
    "ExchangeClient",
    "ExchangeError",
    "ExchangeNetworkError",
    "ExchangeRateLimitError",
    "MexcRestClient",
]
