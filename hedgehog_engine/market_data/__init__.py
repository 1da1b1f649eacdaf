"""
Market data aggregation.
"""

from hedgehog_engine.market_data.candle_builder import CandleBuilder, minute_start

__all__ = ["CandleBuilder", "minute_start"]
