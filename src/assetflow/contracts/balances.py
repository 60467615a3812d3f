"""Balance contracts for the balance cache."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from assetflow.contracts.errors import ErrorResult


class BalanceSnapshot(BaseModel):
    """Balance of a single asset as of ``fetched_at``."""

    asset: str = Field(..., description="Asset symbol (BTC, NGNZ, etc.)")
    native_balance: Decimal = Field(..., description="Balance in asset units")
    usd_value: Optional[Decimal] = Field(None, description="USD value if available")
    pending_balance: Optional[Decimal] = Field(None, description="Unsettled amount")
    fetched_at: float = Field(..., description="Fetch time as epoch seconds")


class BalanceResponse(BaseModel):
    """Balance of one asset."""

    success: bool
    asset: str
    balance: Optional[BalanceSnapshot] = None
    source: Optional[str] = Field(None, description="cache, network or offline")
    error: Optional[ErrorResult] = None


class BalancesResponse(BaseModel):
    """Balances of every asset, from one fetch."""

    success: bool
    balances: list[BalanceSnapshot] = Field(default_factory=list)
    total_usd_value: Optional[Decimal] = Field(None, description="Portfolio total in USD")
    fetched_at: Optional[float] = None
    source: Optional[str] = Field(None, description="cache, network or offline")
    error: Optional[ErrorResult] = None

    def get(self, asset: str) -> Optional[BalanceSnapshot]:
        asset = asset.upper()
        for snapshot in self.balances:
            if snapshot.asset == asset:
                return snapshot
        return None
