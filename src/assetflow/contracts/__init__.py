"""Request and response contracts.

These Pydantic models define the interface the services expose to UI
collaborators. Every response carries ``success`` and an optional
``ErrorResult``.
"""

from assetflow.contracts.errors import (
    ErrorCode,
    ErrorResult,
    RequiredAction,
    RETRYABLE_CODES,
)
from assetflow.contracts.quotes import (
    Quote,
    QuoteResponse,
    QuoteSide,
    QuoteStatus,
    SupportedAssetsResponse,
    SwapFlow,
)
from assetflow.contracts.transfers import (
    Destination,
    FeeEstimateResponse,
    MaxWithdrawableResponse,
    SwapExecutionResponse,
    TransferKind,
    TransferRequest,
    TransferResponse,
    TransferStatus,
    UsernameTransferSpec,
    WithdrawalFeeEstimate,
    WithdrawalSpec,
)
from assetflow.contracts.balances import (
    BalanceResponse,
    BalanceSnapshot,
    BalancesResponse,
)

__all__ = [
    # Error contracts
    "ErrorCode",
    "ErrorResult",
    "RequiredAction",
    "RETRYABLE_CODES",
    # Quote contracts
    "Quote",
    "QuoteResponse",
    "QuoteSide",
    "QuoteStatus",
    "SupportedAssetsResponse",
    "SwapFlow",
    # Transfer contracts
    "Destination",
    "FeeEstimateResponse",
    "MaxWithdrawableResponse",
    "SwapExecutionResponse",
    "TransferKind",
    "TransferRequest",
    "TransferResponse",
    "TransferStatus",
    "UsernameTransferSpec",
    "WithdrawalFeeEstimate",
    "WithdrawalSpec",
    # Balance contracts
    "BalanceResponse",
    "BalanceSnapshot",
    "BalancesResponse",
]
