"""Quote contracts for the swap flows."""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from assetflow.contracts.errors import ErrorResult


class QuoteSide(str, Enum):
    """Which leg of the pair the amount refers to."""

    BUY = "BUY"
    SELL = "SELL"
    SOURCE_GIVEN = "SOURCE_GIVEN"
    TARGET_GIVEN = "TARGET_GIVEN"


class QuoteStatus(str, Enum):
    OPEN = "OPEN"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"


class SwapFlow(str, Enum):
    """Direction of a swap relative to the settlement asset."""

    CRYPTO = "CRYPTO"
    ONRAMP = "ONRAMP"  # settlement asset -> crypto
    OFFRAMP = "OFFRAMP"  # crypto -> settlement asset


class Quote(BaseModel):
    """A short-lived, server-priced swap proposal.

    Only ``status`` changes after creation.
    """

    id: str = Field(..., description="Server quote ID")
    from_asset: str = Field(..., description="Source asset")
    to_asset: str = Field(..., description="Destination asset")
    amount: Decimal = Field(..., description="Requested amount")
    side: QuoteSide = Field(..., description="Leg the amount refers to")
    rate: Optional[Decimal] = Field(None, description="Server exchange rate")
    from_amount: Optional[Decimal] = Field(None, description="Amount debited")
    to_amount: Optional[Decimal] = Field(None, description="Amount credited")
    fee: Optional[Decimal] = Field(None, description="Fee charged by the backend")
    expires_at: float = Field(..., description="Expiry as epoch seconds")
    created_at: float = Field(..., description="Creation time as epoch seconds")
    status: QuoteStatus = Field(default=QuoteStatus.OPEN)
    flow: SwapFlow = Field(default=SwapFlow.CRYPTO)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def seconds_until_expiry(self, now: float) -> float:
        """Seconds until the quote expires (negative if expired)."""
        return self.expires_at - now


class QuoteResponse(BaseModel):
    """Result of a quote request."""

    success: bool = Field(..., description="Whether a quote was obtained")
    quote: Optional[Quote] = Field(None, description="The OPEN quote")
    error: Optional[ErrorResult] = Field(None, description="Failure details")


class SupportedAssetsResponse(BaseModel):
    """Assets accepted by a swap flow."""

    success: bool
    assets: list[str] = Field(default_factory=list)
    error: Optional[ErrorResult] = None
