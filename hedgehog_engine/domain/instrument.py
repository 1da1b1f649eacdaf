"""
Instrument domain model.

Trading rules for one exchange symbol, loaded once at startup and never
mutated afterwards.
"""

from pydantic import BaseModel, ConfigDict, Field


class Instrument(BaseModel):
    """
    A tradeable spot symbol and its exchange filters.

    Immutable: shared freely across the detector, lifecycle manager and
    strategy without copying.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., min_length=1, description="Exchange symbol (e.g. ETHUSDC)")
    base_asset: str = Field(..., description="Base asset (e.g. ETH)")
    quote_asset: str = Field(..., description="Quote asset (e.g. USDC)")

    # Exchange filters
    tick_size: float = Field(..., gt=0, description="Minimum price increment")
    step_size: float = Field(..., gt=0, description="Minimum quantity increment")
    min_notional: float = Field(default=0.0, ge=0, description="Minimum order value")
    min_qty: float = Field(default=0.0, ge=0, description="Minimum order quantity")
    max_qty: float | None = Field(default=None, gt=0, description="Maximum order quantity")
    max_notional: float | None = Field(default=None, gt=0, description="Maximum order value")

    @property
    def price_precision(self) -> int:
        """Decimal places implied by the tick size."""
        return _decimals(self.tick_size)

    @property
    def quantity_precision(self) -> int:
        """Decimal places implied by the step size."""
        return _decimals(self.step_size)


def _decimals(increment: float) -> int:
    text = f"{increment:.12f}".rstrip("0")
    if "." not in text:
        return 0
    return len(text.split(".")[1])
