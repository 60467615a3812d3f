"""Transfer contracts: swaps commits, withdrawals and username transfers.

Auth proofs (2FA code, PIN) live only on the outgoing spec models and
are never copied onto ``TransferRequest``.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from assetflow.contracts.errors import ErrorResult
from assetflow.contracts.quotes import Quote


class TransferKind(str, Enum):
    SWAP = "SWAP"
    WITHDRAWAL = "WITHDRAWAL"
    INTERNAL_TRANSFER = "INTERNAL_TRANSFER"


class TransferStatus(str, Enum):
    """Lifecycle of a transfer.

    CREATED and SUBMITTED are client-side; the rest come from the server.
    """

    CREATED = "CREATED"
    SUBMITTED = "SUBMITTED"
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferStatus.SUCCESS, TransferStatus.FAILED)


class Destination(BaseModel):
    """Where value is sent: an on-chain address or a username."""

    address: Optional[str] = Field(None, description="On-chain address")
    network: Optional[str] = Field(None, description="Network, e.g. TRC20, BEP20")
    memo: Optional[str] = Field(None, description="Destination tag / memo")
    username: Optional[str] = Field(None, description="Recipient username")


class WithdrawalSpec(BaseModel):
    """Input for an external crypto withdrawal.

    Field formats are checked by the withdrawal service, not here, so that
    bad input becomes a VALIDATION_ERROR result instead of an exception.
    """

    currency: str = Field(..., description="Asset to withdraw")
    amount: Decimal = Field(..., description="Amount to withdraw")
    address: str = Field(..., description="Destination address")
    network: str = Field(..., description="Destination network")
    two_factor_code: str = Field(..., description="6-digit authenticator code")
    passwordpin: str = Field(..., description="6-digit password PIN")
    destination_memo: Optional[str] = Field(None, description="Destination tag / memo")
    memo: Optional[str] = Field(None, description="Note attached to the withdrawal")
    narration: Optional[str] = Field(None, description="Narration")


class UsernameTransferSpec(BaseModel):
    """Input for an internal transfer to another user."""

    recipient_username: str = Field(..., description="Recipient username")
    currency: str = Field(..., description="Asset to send")
    amount: Decimal = Field(..., description="Amount to send")
    two_factor_code: str = Field(..., description="6-digit authenticator code")
    passwordpin: str = Field(..., description="6-digit password PIN")
    memo: Optional[str] = Field(None, description="Note for the recipient")


class TransferRequest(BaseModel):
    """A state-changing request and its last known server state."""

    transaction_id: Optional[str] = Field(None, description="Server transaction ID")
    idempotency_key: Optional[str] = Field(
        None, min_length=1, description="Key shared by all retries (None for untracked lookups)"
    )
    kind: TransferKind
    source_asset: str
    destination_asset: str
    amount: Decimal
    fee: Optional[Decimal] = None
    destination: Optional[Destination] = None
    status: TransferStatus = TransferStatus.CREATED
    reference: Optional[str] = Field(None, description="Backend transfer reference")
    quote_id: Optional[str] = Field(None, description="Accepted quote, for swaps")
    received_amount: Optional[Decimal] = Field(None, description="Amount credited to the destination")
    submitted_at: Optional[float] = None
    updated_at: Optional[float] = None

    @model_validator(mode="after")
    def _submitted_requires_key(self) -> "TransferRequest":
        if self.status == TransferStatus.SUBMITTED and not self.idempotency_key:
            raise ValueError("A submitted transfer must carry an idempotency key")
        return self


class TransferResponse(BaseModel):
    """Result of a commit or a status lookup."""

    success: bool = Field(..., description="Whether the call succeeded")
    transfer: Optional[TransferRequest] = None
    message: Optional[str] = Field(None, description="Backend confirmation message")
    balances_refreshed: bool = Field(
        default=False, description="Whether the post-commit balance refresh succeeded"
    )
    replayed: bool = Field(
        default=False, description="Outcome served from an earlier call with the same key"
    )
    error: Optional[ErrorResult] = None


class SwapExecutionResponse(BaseModel):
    """Result of quote + accept as one user action."""

    success: bool
    idempotency_key: str
    quote: Optional[Quote] = None
    transfer: Optional[TransferRequest] = None
    balances_refreshed: bool = False
    error: Optional[ErrorResult] = None


class WithdrawalFeeEstimate(BaseModel):
    """Fee breakdown returned by the withdrawal initiate endpoint."""

    currency: str
    network: Optional[str] = None
    amount: Decimal
    fee: Decimal = Decimal("0")
    fee_usd: Optional[Decimal] = None
    receiver_amount: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None


class FeeEstimateResponse(BaseModel):
    success: bool
    estimate: Optional[WithdrawalFeeEstimate] = None
    error: Optional[ErrorResult] = None


class MaxWithdrawableResponse(BaseModel):
    success: bool
    currency: str
    max_amount: Decimal = Decimal("0")
    error: Optional[ErrorResult] = None
