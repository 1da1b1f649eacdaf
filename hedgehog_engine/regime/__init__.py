"""
Regime detection: classification of short-term market state.
"""

from hedgehog_engine.regime.detector import (
    RegimeDetector,
    classify_regime,
    regime_confidence,
    regime_parameters,
)
from hedgehog_engine.regime.models import (
    MarketRegime,
    RegimeChange,
    RegimeData,
    RegimeIndicators,
    RegimeParameters,
)

__all__ = [
    "RegimeDetector",
    "classify_regime",
    "regime_confidence",
    "regime_parameters",
    "MarketRegime",
    "RegimeChange",
    "RegimeData",
    "RegimeIndicators",
    "RegimeParameters",
]
