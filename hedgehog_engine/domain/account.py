"""
Account domain models.
"""

from pydantic import BaseModel, ConfigDict, Field


class Balance(BaseModel):
    """Holdings of a single asset."""

    model_config = ConfigDict(frozen=True)

    asset: str
    free: float = Field(default=0.0, ge=0)
    locked: float = Field(default=0.0, ge=0)

    @property
    def total(self) -> float:
        return self.free + self.locked


class AccountInfo(BaseModel):
    """Account snapshot returned by the exchange."""

    model_config = ConfigDict(frozen=True)

    balances: list[Balance] = Field(default_factory=list)
    can_trade: bool = Field(default=True)

    def balance(self, asset: str) -> Balance:
        """Balance for an asset (zero if the account holds none)."""
        for entry in self.balances:
            if entry.asset == asset:
                return entry
        return Balance(asset=asset)
