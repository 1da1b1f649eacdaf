"""
Indicator library: streaming calculators, rounding and statistics helpers.
"""

from hedgehog_engine.indicators.calculators import (
    ATRCalculator,
    ATRData,
    EMACalculator,
    EMAData,
    OBICalculator,
    OBIData,
    TFICalculator,
    TFIData,
    VWAPCalculator,
    VWAPData,
    ZScoreCalculator,
)
from hedgehog_engine.indicators.rounding import (
    quantity_for_notional,
    round_to_step,
    round_to_tick,
    validate_notional,
    validate_order,
)
from hedgehog_engine.indicators.stats import mean, stddev

__all__ = [
    "ATRCalculator",
    "ATRData",
    "EMACalculator",
    "EMAData",
    "OBICalculator",
    "OBIData",
    "TFICalculator",
    "TFIData",
    "VWAPCalculator",
    "VWAPData",
    "ZScoreCalculator",
    "quantity_for_notional",
    "round_to_step",
    "round_to_tick",
    "validate_notional",
    "validate_order",
    "mean",
    "stddev",
]
