"""
Quoting strategy: policies, ladder state and fill handling.
"""

from hedgehog_engine.strategy.models import (
    Inventory,
    LevelCandidate,
    QuoteContext,
    QuoteLevel,
    TakeProfitOrder,
)
from hedgehog_engine.strategy.policy import (
    GridPolicy,
    HedgehogPolicy,
    PingPongPolicy,
    QuotingPolicy,
    build_policy,
)
from hedgehog_engine.strategy.quoting import QuotingStrategy

__all__ = [
    "Inventory",
    "LevelCandidate",
    "QuoteContext",
    "QuoteLevel",
    "TakeProfitOrder",
    "GridPolicy",
    "HedgehogPolicy",
    "PingPongPolicy",
    "QuotingPolicy",
    "build_policy",
    "QuotingStrategy",
]
