"""Error contracts shared by every service response."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Closed set of error codes surfaced to callers."""

    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    INVALID_2FA_CODE = "INVALID_2FA_CODE"
    INVALID_PASSWORDPIN = "INVALID_PASSWORDPIN"
    UNAUTHORIZED = "UNAUTHORIZED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    DUPLICATE_REQUEST = "DUPLICATE_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    UNKNOWN = "UNKNOWN"
    QUOTE_EXPIRED = "QUOTE_EXPIRED"
    RECIPIENT_NOT_FOUND = "RECIPIENT_NOT_FOUND"
    RECIPIENT_INACTIVE = "RECIPIENT_INACTIVE"
    SETUP_2FA_REQUIRED = "SETUP_2FA_REQUIRED"
    SETUP_PIN_REQUIRED = "SETUP_PIN_REQUIRED"
    UNSUPPORTED_CURRENCY = "UNSUPPORTED_CURRENCY"
    REQUEST_FAILED = "REQUEST_FAILED"
    WITHDRAWAL_FAILED = "WITHDRAWAL_FAILED"
    TRANSFER_FAILED = "TRANSFER_FAILED"


RETRYABLE_CODES = frozenset(
    {
        ErrorCode.NETWORK_ERROR,
        ErrorCode.UPSTREAM_ERROR,
        ErrorCode.SERVER_ERROR,
    }
)


class RequiredAction(str, Enum):
    """Follow-up the UI should offer for an error."""

    SETUP_2FA = "SETUP_2FA"
    SETUP_PIN = "SETUP_PIN"
    RETRY_2FA = "RETRY_2FA"
    RETRY_PIN = "RETRY_PIN"
    CHECK_USERNAME = "CHECK_USERNAME"
    CONTACT_RECIPIENT = "CONTACT_RECIPIENT"
    UPGRADE_KYC = "UPGRADE_KYC"
    ADD_FUNDS = "ADD_FUNDS"
    WAIT_PENDING = "WAIT_PENDING"
    FIX_INPUT = "FIX_INPUT"
    SELECT_CURRENCY = "SELECT_CURRENCY"
    REQUEST_NEW_QUOTE = "REQUEST_NEW_QUOTE"
    RETRY = "RETRY"
    LOGIN = "LOGIN"


class ErrorResult(BaseModel):
    """A classified failure. Constructed fresh per failed call."""

    code: ErrorCode = Field(..., description="Error code from the closed taxonomy")
    message: str = Field(..., description="Human-readable message for the user")
    detail: Optional[str] = Field(None, description="Raw backend message, if any")
    http_status: Optional[int] = Field(None, description="HTTP status, None if no response")
    retryable: bool = Field(default=False, description="Retry with the same idempotency key")
    action: Optional[RequiredAction] = Field(None, description="Suggested follow-up")
    errors: list[str] = Field(default_factory=list, description="Field-level validation problems")
