"""
Hedgehog Market-Making Engine

A single-instrument scalping engine for exchange spot markets:
- Streaming ATR/VWAP/Z-score/imbalance indicators
- Market regime detection (quiet/normal/shock)
- Symmetric ATR limit-order ladder with take-profits and replenishment
- Order lifecycle control under cancellation rate limits
"""

__version__ = "1.0.0"

from hedgehog_engine.config import EngineConfig, Settings, get_settings

__all__ = ["__version__", "EngineConfig", "Settings", "get_settings"]
