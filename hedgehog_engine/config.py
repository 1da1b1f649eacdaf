"""
Configuration management for the Hedgehog engine.

Two layers:
- Settings: process-level values (mode, logging, exchange credentials and
  transport limits) loaded with pydantic-settings from environment variables.
  Secrets are loaded from environment variables only - never from files in repo.
- EngineConfig: the trading configuration for one instrument (regime
  thresholds, ladder geometry, risk limits, lifecycle timings). Every numeric
  field carries bounds so impossible configurations fail at construction.
"""

import json
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TradingMode(str, Enum):
    """Trading mode: DEMO for paper trading, LIVE for real money."""

    DEMO = "DEMO"
    LIVE = "LIVE"


class StrategyType(str, Enum):
    """Quoting policy selector."""

    HEDGEHOG = "hedgehog"
    GRID = "grid"
    PINGPONG = "pingpong"


# =============================================================================
# Trading configuration (per instrument)
# =============================================================================


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class RiskConfig(_Section):
    """Inventory and exposure limits."""

    max_notional_pct: float = Field(
        default=0.5,
        gt=0,
        le=1,
        description="Max resting buy notional as a fraction of deposit",
    )
    max_inventory_pct: float = Field(
        default=0.3,
        gt=0,
        le=1,
        description="Inventory limit as a fraction of deposit (skew reference)",
    )


class RegimeConfig(_Section):
    """Regime detector windows and thresholds."""

    z_max: float = Field(default=3.0, gt=0, description="|z| above which the market is in shock")
    atr_window_1m: int = Field(default=14, ge=1, le=1000, description="Fast ATR period (candles)")
    atr_window_5m: int = Field(default=30, ge=1, le=1000, description="Slow ATR period (candles)")
    vwap_window_sec: float = Field(default=300.0, gt=0, description="VWAP window in seconds")
    obi_levels: int = Field(default=5, ge=1, le=100, description="Book levels used for OBI")
    tfi_window_sec: float = Field(default=60.0, gt=0, description="TFI window in seconds")
    zscore_period: int = Field(default=60, ge=2, le=10000, description="Z-score window (samples)")


class TakeProfitBps(_Section):
    """Take-profit distance per regime, in basis points."""

    quiet: float = Field(default=8.0, gt=0)
    normal: float = Field(default=12.0, gt=0)
    shock: float = Field(default=20.0, gt=0)


class HedgehogConfig(_Section):
    """Symmetric ATR ladder parameters."""

    levels: int = Field(default=4, ge=1, le=50, description="Levels per side")
    offset_k_atr1m: float = Field(default=0.6, gt=0, description="First level offset in ATR1m")
    step_k_atr1m: float = Field(default=0.45, gt=0, description="Level spacing in ATR1m")
    tp_bps: TakeProfitBps = Field(default_factory=TakeProfitBps)
    size_geometry_r: float = Field(default=1.2, ge=1, description="Size ratio between levels")
    skew_alpha: float = Field(default=0.5, ge=0, le=1, description="Skew threshold fraction")
    base_size_pct: float = Field(
        default=0.01,
        gt=0,
        le=1,
        description="First level notional as a fraction of deposit",
    )
    require_base_for_sells: bool = Field(
        default=True,
        description="Only quote sells against owned base asset",
    )


class HybridConfig(_Section):
    """Ladder enablement across regimes."""

    enable_in_shock: bool = Field(default=False)


class GridConfig(_Section):
    """Fixed tick grid parameters."""

    levels_per_side: int = Field(default=2, ge=1, le=50)
    step_ticks: int = Field(default=1, ge=1)
    base_order_usd: float = Field(default=5.0, gt=0)


class PingPongConfig(_Section):
    """Single maker level per side."""

    base_order_usd: float = Field(default=5.0, gt=0)


class FilterConfig(_Section):
    """Market-data quality gates for quoting."""

    min_spread_ticks: float = Field(default=1.0, ge=0)
    staleness_ms: int = Field(default=5000, gt=0)
    min_notional_usd: float = Field(default=1.0, ge=0)


class OrderManagerConfig(_Section):
    """Order lifecycle timings and limits."""

    ttl_sec: float = Field(default=45.0, gt=0, description="Max resting age before repricing")
    refresh_sec: float = Field(default=15.0, gt=0, description="Lifecycle pass interval")
    delta_ticks_for_replace: float = Field(default=3.0, ge=0, description="Drift in ticks")
    recentering_trigger: float = Field(default=0.5, gt=0, description="Center drift in steps")
    no_fill_watchdog_min: float = Field(default=7.0, gt=0, description="Minutes without fills")
    min_spread_ticks: float = Field(default=1.0, ge=0)
    staleness_ms: int = Field(default=30000, gt=0)
    cancel_rate_per_min: int = Field(default=30, ge=1, le=10000)
    watchdog_decay: float = Field(default=0.85, gt=0, lt=1, description="Offset decay per interval")


class EngineConfig(_Section):
    """
    Complete trading configuration for one instrument.

    Built from a dict (or a JSON file) and validated once at startup.
    """

    symbol: str = Field(default="ETHUSDC", min_length=1, max_length=32)
    deposit_usd: float = Field(default=100.0, gt=0)
    strategy: StrategyType = Field(default=StrategyType.HEDGEHOG)

    risk: RiskConfig = Field(default_factory=RiskConfig)
    regime: RegimeConfig = Field(default_factory=RegimeConfig)
    hedgehog: HedgehogConfig = Field(default_factory=HedgehogConfig)
    hybrid: HybridConfig = Field(default_factory=HybridConfig)
    grid: GridConfig = Field(default_factory=GridConfig)
    pingpong: PingPongConfig = Field(default_factory=PingPongConfig)
    filters: FilterConfig = Field(default_factory=FilterConfig)
    order_manager: OrderManagerConfig = Field(default_factory=OrderManagerConfig)

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        """Exchange symbols are upper-case without separators (ETH/USDC -> ETHUSDC)."""
        return v.replace("/", "").replace("-", "").upper()

    @model_validator(mode="after")
    def check_level_fits_budget(self) -> "EngineConfig":
        """A single ladder level must fit inside the resting buy budget."""
        if self.hedgehog.base_size_pct > self.risk.max_notional_pct:
            raise ValueError("hedgehog.base_size_pct cannot exceed risk.max_notional_pct")
        return self

    @property
    def inventory_limit(self) -> float:
        """Inventory limit in quote currency."""
        return self.deposit_usd * self.risk.max_inventory_pct

    @classmethod
    def from_file(cls, path: Path | str) -> "EngineConfig":
        """Load and validate a JSON configuration file."""
        with open(path, encoding="utf-8") as fh:
            data: dict[str, Any] = json.load(fh)
        return cls.model_validate(data)


# =============================================================================
# Process settings
# =============================================================================


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All sensitive values use SecretStr to prevent accidental logging.
    """

    model_config = SettingsConfigDict(
        env_prefix="HEDGEHOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    mode: TradingMode = Field(
        default=TradingMode.DEMO,
        description="Trading mode: DEMO (paper) or LIVE (real money)",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    # Exchange credentials (loaded from env, never from files)
    api_key: SecretStr | None = Field(
        default=None,
        alias="MEXC_API_KEY",
        description="Exchange API key",
    )
    api_secret: SecretStr | None = Field(
        default=None,
        alias="MEXC_SECRET_KEY",
        description="Exchange API secret",
    )

    # Exchange transport
    base_url: str = Field(
        default="https://api.mexc.com",
        alias="MEXC_BASE_URL",
        description="Exchange REST base URL",
    )
    request_timeout: int = Field(
        default=10,
        alias="MEXC_REQUEST_TIMEOUT_S",
        description="REST request timeout in seconds",
        ge=1,
        le=120,
    )
    max_retries: int = Field(
        default=3,
        alias="MEXC_MAX_RETRIES",
        description="Maximum retry attempts for transient REST failures",
        ge=0,
        le=10,
    )
    rate_limit_rps: float = Field(
        default=10.0,
        alias="MEXC_RATE_LIMIT_RPS",
        description="REST request weight regained per second",
        gt=0,
        le=100,
    )
    rate_limit_burst: int = Field(
        default=20,
        alias="MEXC_RATE_LIMIT_BURST",
        description="REST request weight that may be spent at once",
        ge=1,
        le=100,
    )
    recv_window_ms: int = Field(
        default=5000,
        alias="MEXC_RECV_WINDOW_MS",
        description="Signed request validity window",
        ge=100,
        le=60000,
    )

    # Engine
    config_path: Path | None = Field(
        default=None,
        description="Path to the JSON trading configuration",
    )
    fill_poll_interval_s: float = Field(
        default=2.0,
        description="Interval between trade-history polls for fills",
        gt=0,
        le=60,
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @property
    def is_live(self) -> bool:
        """Check if running in live mode."""
        return self.mode == TradingMode.LIVE

    @property
    def has_credentials(self) -> bool:
        """Check if exchange credentials are configured."""
        return self.api_key is not None and self.api_secret is not None

    def load_engine_config(self) -> EngineConfig:
        """Load the trading configuration, falling back to defaults."""
        if self.config_path is None:
            return EngineConfig()
        return EngineConfig.from_file(self.config_path)

    def get_redacted_config(self) -> dict[str, str | int | bool]:
        """
        Get configuration dict with sensitive values redacted.
        Safe for logging.
        """
        return {
            "mode": self.mode.value,
            "log_level": self.log_level,
            "base_url": self.base_url,
            "credentials_configured": self.has_credentials,
            "config_path": str(self.config_path) if self.config_path else "",
        }


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure single instance throughout application.
    """
    return Settings()
