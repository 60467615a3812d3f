"""Wallet services: quotes, commits, balances and status.

Every operation returns a response model with ``success`` and an optional
``ErrorResult``; backend failures are never raised.
"""

from assetflow.services.balance_cache import BalanceCache, get_balance_cache, reset_balance_cache
from assetflow.services.commit_executor import CommitExecutor, CommitPlan
from assetflow.services.error_classifier import ErrorClassifier, Flow, classify, get_classifier
from assetflow.services.idempotency import IdempotencyLedger, generate_key
from assetflow.services.quote_service import QuoteNegotiator
from assetflow.services.status_service import (
    StatusPoller,
    TransferTracker,
    get_transfer_tracker,
    reset_transfer_tracker,
)
from assetflow.services.swap_service import NgnzSwapService, SwapService
from assetflow.services.transfer_service import TransferService
from assetflow.services.withdrawal_service import WithdrawalService

__all__ = [
    "BalanceCache",
    "get_balance_cache",
    "reset_balance_cache",
    "CommitExecutor",
    "CommitPlan",
    "ErrorClassifier",
    "Flow",
    "classify",
    "get_classifier",
    "IdempotencyLedger",
    "generate_key",
    "QuoteNegotiator",
    "StatusPoller",
    "TransferTracker",
    "get_transfer_tracker",
    "reset_transfer_tracker",
    "SwapService",
    "NgnzSwapService",
    "TransferService",
    "WithdrawalService",
]
