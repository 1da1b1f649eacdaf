"""
Market regime detector.

Feeds candles, trades and book snapshots into the indicator calculators and
classifies the market as quiet, normal or shock. Every classification is
published as REGIME_UPDATE; a change of regime additionally publishes
REGIME_CHANGE with the previous and current regime.
"""

from collections import deque
from collections.abc import Sequence

from hedgehog_engine.config import EngineConfig
from hedgehog_engine.domain.market import Candle, OrderbookLevel
from hedgehog_engine.domain.order import OrderSide
from hedgehog_engine.indicators.calculators import (
    ATRCalculator,
    OBICalculator,
    TFICalculator,
    VWAPCalculator,
    ZScoreCalculator,
)
from hedgehog_engine.indicators.stats import mean
from hedgehog_engine.logging import get_logger
from hedgehog_engine.regime.models import (
    MarketRegime,
    RegimeChange,
    RegimeData,
    RegimeIndicators,
    RegimeParameters,
)
from hedgehog_engine.runtime.clock import Clock, get_system_clock
from hedgehog_engine.runtime.event_bus import EventBus, EventType, get_event_bus

logger = get_logger(__name__)

# Buffer sizes
CANDLE_BUFFER_SIZE = 300
PRICE_BUFFER_SIZE = 100
MIN_SAMPLES = 10

# Classification thresholds (percent of average price)
SHOCK_ATR1M_PCT = 0.5
SHOCK_ATR5M_PCT = 1.0
QUIET_ATR1M_PCT = 0.1
QUIET_ATR5M_PCT = 0.2
QUIET_MAX_ABS_Z = 1.0
QUIET_MAX_IMBALANCE = 0.1

NORMAL_CONFIDENCE = 0.7
MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.95


def classify_regime(indicators: RegimeIndicators, avg_price: float, z_max: float) -> MarketRegime:
    """
    Classify market state from an indicator snapshot.

    Shock wins if any volatility or z-score threshold is breached. Quiet
    requires every indicator to be calm and both imbalances near 0.5.
    """
    atr1m_pct = indicators.atr1m / avg_price * 100
    atr5m_pct = indicators.atr5m / avg_price * 100
    abs_z = abs(indicators.z_score)

    if abs_z > z_max or atr1m_pct > SHOCK_ATR1M_PCT or atr5m_pct > SHOCK_ATR5M_PCT:
        return MarketRegime.SHOCK

    if (
        atr1m_pct < QUIET_ATR1M_PCT
        and atr5m_pct < QUIET_ATR5M_PCT
        and abs_z < QUIET_MAX_ABS_Z
        and abs(indicators.obi - 0.5) < QUIET_MAX_IMBALANCE
        and abs(indicators.tfi - 0.5) < QUIET_MAX_IMBALANCE
    ):
        return MarketRegime.QUIET

    return MarketRegime.NORMAL


def regime_confidence(
    indicators: RegimeIndicators,
    regime: MarketRegime,
    avg_price: float,
    z_max: float,
) -> float:
    """Informational confidence in [0.1, 0.95]; never used for gating."""
    atr1m_pct = indicators.atr1m / avg_price * 100
    atr5m_pct = indicators.atr5m / avg_price * 100
    abs_z = abs(indicators.z_score)

    if regime == MarketRegime.SHOCK:
        excess = max(abs_z / z_max, atr1m_pct / SHOCK_ATR1M_PCT, atr5m_pct / SHOCK_ATR5M_PCT)
        confidence = min(MAX_CONFIDENCE, 0.5 + excess * 0.4)
    elif regime == MarketRegime.QUIET:
        confidence = 0.5 + (
            (QUIET_ATR1M_PCT - min(QUIET_ATR1M_PCT, atr1m_pct)) / QUIET_ATR1M_PCT * 0.2
            + (QUIET_ATR5M_PCT - min(QUIET_ATR5M_PCT, atr5m_pct)) / QUIET_ATR5M_PCT * 0.2
            + (1.0 - min(1.0, abs_z)) * 0.1
        )
    else:
        confidence = NORMAL_CONFIDENCE

    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, confidence))


def regime_parameters(regime: MarketRegime, config: EngineConfig) -> RegimeParameters:
    """
    Map a regime to strategy parameters.

    quiet tightens the ladder and drops a level, shock widens it and caps
    it at three levels, normal uses the configured baseline.
    """
    hedgehog = config.hedgehog

    if regime == MarketRegime.QUIET:
        return RegimeParameters(
            tp_bps=hedgehog.tp_bps.quiet,
            offset_multiplier=0.8,
            step_multiplier=0.8,
            max_levels=max(2, hedgehog.levels - 1),
            enable_ladder=True,
        )
    if regime == MarketRegime.SHOCK:
        return RegimeParameters(
            tp_bps=hedgehog.tp_bps.shock,
            offset_multiplier=1.5,
            step_multiplier=1.5,
            max_levels=min(hedgehog.levels, 3),
            enable_ladder=not config.hybrid.enable_in_shock,
        )
    return RegimeParameters(
        tp_bps=hedgehog.tp_bps.normal,
        offset_multiplier=1.0,
        step_multiplier=1.0,
        max_levels=hedgehog.levels,
        enable_ladder=True,
    )


class RegimeDetector:
    """
    Streaming regime classifier for one instrument.

    Classification runs on every candle, trade and book update once at
    least ten candles and ten prices are buffered and both ATRs are warm.
    Book and trade imbalance read 0.5 until the first book or trade arrives.
    """

    def __init__(
        self,
        config: EngineConfig,
        event_bus: EventBus | None = None,
        clock: Clock | None = None,
    ):
        self._config = config
        self._bus = event_bus or get_event_bus()
        self._clock = clock or get_system_clock()

        self._candles: deque[Candle] = deque(maxlen=CANDLE_BUFFER_SIZE)
        self._prices: deque[float] = deque(maxlen=PRICE_BUFFER_SIZE)
        self._current_regime = MarketRegime.NORMAL
        self._last_data: RegimeData | None = None
        self._regime_since_ms: int | None = None
        self._z_score = 0.0

        self._build_calculators()

    def _build_calculators(self) -> None:
        regime = self._config.regime
        self._atr1m = ATRCalculator(regime.atr_window_1m, self._clock)
        self._atr5m = ATRCalculator(regime.atr_window_5m, self._clock)
        self._vwap = VWAPCalculator(int(regime.vwap_window_sec * 1000), self._clock)
        self._zscore = ZScoreCalculator(regime.zscore_period)
        self._obi = OBICalculator(regime.obi_levels, self._clock)
        self._tfi = TFICalculator(int(regime.tfi_window_sec * 1000), self._clock)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def current_regime(self) -> MarketRegime:
        return self._current_regime

    @property
    def last_data(self) -> RegimeData | None:
        """Most recent classification (cached for late subscribers)."""
        return self._last_data

    @property
    def atr1m(self) -> float | None:
        """Latest fast ATR value, None while warming up."""
        latest = self._atr1m.latest
        return latest.value if latest else None

    @property
    def atr5m(self) -> float | None:
        latest = self._atr5m.latest
        return latest.value if latest else None

    # =========================================================================
    # Inputs
    # =========================================================================

    async def update_candle(self, candle: Candle) -> RegimeData | None:
        """Ingest a closed 1-minute candle."""
        self._candles.append(candle)
        self._atr1m.add_candle(candle.high, candle.low, candle.close)
        self._atr5m.add_candle(candle.high, candle.low, candle.close)
        vwap = self._vwap.add_trade(candle.close, candle.volume)

        self._prices.append(candle.close)
        self._z_score = self._zscore.add_value(candle.close, vwap.value)

        return await self._detect()

    async def update_trade(
        self,
        price: float,
        quantity: float,
        is_buyer_maker: bool,
        timestamp: int | None = None,
    ) -> RegimeData | None:
        """Ingest a public trade; a buyer-maker print is a sell aggressor."""
        side = OrderSide.SELL if is_buyer_maker else OrderSide.BUY
        self._tfi.add_trade(side, quantity, timestamp)
        return await self._detect()

    async def update_orderbook(
        self,
        bids: Sequence[OrderbookLevel],
        asks: Sequence[OrderbookLevel],
    ) -> RegimeData | None:
        """Ingest a depth snapshot."""
        self._obi.calculate(bids, asks)
        return await self._detect()

    # =========================================================================
    # Classification
    # =========================================================================

    def _indicators(self) -> RegimeIndicators | None:
        if len(self._candles) < MIN_SAMPLES or len(self._prices) < MIN_SAMPLES:
            return None

        atr1m = self._atr1m.latest
        atr5m = self._atr5m.latest
        if atr1m is None or atr5m is None:
            return None

        obi = self._obi.latest
        tfi = self._tfi.latest
        return RegimeIndicators(
            atr1m=atr1m.value,
            atr5m=atr5m.value,
            z_score=self._z_score,
            obi=obi.value if obi else 0.5,
            tfi=tfi.value if tfi else 0.5,
        )

    async def _detect(self) -> RegimeData | None:
        indicators = self._indicators()
        if indicators is None:
            return None

        avg_price = mean(self._prices)
        z_max = self._config.regime.z_max
        regime = classify_regime(indicators, avg_price, z_max)
        now = self._clock.now_ms()

        data = RegimeData(
            regime=regime,
            confidence=regime_confidence(indicators, regime, avg_price, z_max),
            indicators=indicators,
            timestamp=now,
        )

        if self._regime_since_ms is None:
            self._regime_since_ms = now

        if regime != self._current_regime:
            change = RegimeChange(previous=self._current_regime, current=regime, data=data)
            self._current_regime = regime
            self._regime_since_ms = now
            logger.info(
                "Regime change %s -> %s (confidence %.2f, z=%.2f)",
                change.previous.value,
                change.current.value,
                data.confidence,
                indicators.z_score,
            )
            await self._bus.emit(
                EventType.REGIME_CHANGE,
                change.model_dump(mode="json"),
                symbol=self._config.symbol,
            )

        self._last_data = data
        await self._bus.emit(
            EventType.REGIME_UPDATE,
            data.model_dump(mode="json"),
            symbol=self._config.symbol,
        )
        return data

    # =========================================================================
    # Queries
    # =========================================================================

    def is_regime_stable(self, min_duration_ms: int = 30000) -> bool:
        """True once the current regime has been held for `min_duration_ms`."""
        if self._last_data is None or self._regime_since_ms is None:
            return False
        return self._clock.now_ms() - self._regime_since_ms >= min_duration_ms

    def get_regime_parameters(self) -> RegimeParameters:
        """Parameters for the current regime."""
        return regime_parameters(self._current_regime, self._config)

    def reset(self) -> None:
        """Clear all buffers and return to the normal regime."""
        self._candles.clear()
        self._prices.clear()
        self._current_regime = MarketRegime.NORMAL
        self._last_data = None
        self._regime_since_ms = None
        self._z_score = 0.0
        self._build_calculators()
