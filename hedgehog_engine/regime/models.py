"""
Regime detector data models.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class MarketRegime(str, Enum):
    """Short-term market condition."""

    QUIET = "quiet"  # Low volatility, balanced flow
    NORMAL = "normal"
    SHOCK = "shock"  # Volatility spike or price far from VWAP


class RegimeIndicators(BaseModel):
    """Indicator snapshot behind a classification."""

    model_config = ConfigDict(frozen=True)

    atr1m: float = Field(..., ge=0)
    atr5m: float = Field(..., ge=0)
    z_score: float
    obi: float = Field(default=0.5, ge=0, le=1)
    tfi: float = Field(default=0.5, ge=0, le=1)


class RegimeData(BaseModel):
    """One classification result."""

    model_config = ConfigDict(frozen=True)

    regime: MarketRegime
    confidence: float = Field(..., ge=0, le=1)
    indicators: RegimeIndicators
    timestamp: int = Field(..., description="Epoch milliseconds")


class RegimeChange(BaseModel):
    """Edge-triggered regime transition."""

    model_config = ConfigDict(frozen=True)

    previous: MarketRegime
    current: MarketRegime
    data: RegimeData


class RegimeParameters(BaseModel):
    """Strategy parameters tuned for a regime."""

    model_config = ConfigDict(frozen=True)

    tp_bps: float = Field(..., gt=0)
    offset_multiplier: float = Field(..., gt=0)
    step_multiplier: float = Field(..., gt=0)
    max_levels: int = Field(..., ge=1)
    enable_ladder: bool = True
