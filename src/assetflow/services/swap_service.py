"""Swap flows: crypto-to-crypto and NGNZ on/off-ramp.

Both flows are quote then accept. ``execute_swap`` treats the pair as one
user action with a single idempotency key.
"""

import logging
import time
from typing import Any, Callable, Optional

from assetflow.client.api_client import ApiClient
from assetflow.contracts.balances import BalancesResponse
from assetflow.contracts.errors import ErrorCode, ErrorResult
from assetflow.contracts.quotes import QuoteResponse, QuoteStatus, SupportedAssetsResponse
from assetflow.contracts.transfers import (
    SwapExecutionResponse,
    TransferKind,
    TransferResponse,
)
from assetflow.services.balance_cache import BalanceCache, get_balance_cache
from assetflow.services.commit_executor import CommitExecutor, CommitPlan
from assetflow.services.error_classifier import Flow, make_error, validation_error
from assetflow.services.idempotency import generate_key
from assetflow.services.quote_service import QuoteNegotiator

logger = logging.getLogger(__name__)


class SwapService:
    """Crypto-to-crypto swaps (``/swap/...``)."""

    settlement = False

    def __init__(
        self,
        api_client: Optional[ApiClient] = None,
        balance_cache: Optional[BalanceCache] = None,
        executor: Optional[CommitExecutor] = None,
        negotiator: Optional[QuoteNegotiator] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize swap service.

        Args:
            api_client: Shared transport (defaults to a new ApiClient)
            balance_cache: Balance cache (defaults to the process-wide one)
            executor: Commit executor (defaults to one built on the above)
            negotiator: Quote negotiator for this flow
            clock: Time source, epoch seconds
        """
        self._api = api_client or ApiClient()
        self.balance_cache = balance_cache or get_balance_cache()
        self.executor = executor or CommitExecutor(
            api_client=self._api, balance_cache=self.balance_cache, clock=clock
        )
        self.negotiator = negotiator or QuoteNegotiator(
            settlement=self.settlement, api_client=self._api, clock=clock
        )
        self._clock = clock

    async def create_quote(self, from_asset: str, to_asset: str, amount: Any, side: Any) -> QuoteResponse:
        return await self.negotiator.create_quote(from_asset, to_asset, amount, side)

    async def accept_quote(self, quote_id: str, idempotency_key: Optional[str]) -> TransferResponse:
        """Commit a quote previously created by this service.

        Args:
            quote_id: ID returned by ``create_quote``
            idempotency_key: Key for this user action, reused on retries

        Returns:
            TransferResponse; ``replayed`` is True if the key already succeeded
        """
        if not isinstance(quote_id, str) or not quote_id.strip():
            return TransferResponse(success=False, error=validation_error(["Quote ID is required"]))

        quote = self.negotiator.get_quote(quote_id)
        if quote is None:
            return TransferResponse(
                success=False,
                error=validation_error([f"Unknown quote: {quote_id}"]),
            )

        plan = CommitPlan(
            kind=TransferKind.SWAP,
            flow=Flow.SWAP,
            path=self.negotiator.endpoints.accept(quote_id),
            payload=None,
            source_asset=quote.from_asset,
            destination_asset=quote.to_asset,
            amount=quote.amount,
            fee=quote.fee,
            quote_id=quote_id,
            precheck=lambda: self._check_quote(quote_id),
            on_success=lambda: self.negotiator.set_status(quote_id, QuoteStatus.ACCEPTED),
        )
        return await self.executor.execute(plan, idempotency_key)

    def _check_quote(self, quote_id: str) -> Optional[ErrorResult]:
        quote = self.negotiator.get_quote(quote_id)
        if quote is None:
            return validation_error([f"Unknown quote: {quote_id}"])
        if quote.status == QuoteStatus.ACCEPTED:
            return validation_error([f"Quote {quote_id} was already accepted"])
        if quote.status == QuoteStatus.EXPIRED or quote.is_expired(self._clock()):
            self.negotiator.set_status(quote_id, QuoteStatus.EXPIRED)
            logger.info("Quote %s expired before it was accepted", quote_id)
            return make_error(ErrorCode.QUOTE_EXPIRED, detail=f"Quote {quote_id} has expired")
        return None

    async def execute_swap(self, from_asset: str, to_asset: str, amount: Any, side: Any) -> SwapExecutionResponse:
        """Quote and accept as one user action under a fresh idempotency key."""
        key = generate_key()
        logger.info("Executing swap %s -> %s (key %s)", from_asset, to_asset, key)

        quoted = await self.create_quote(from_asset, to_asset, amount, side)
        if not quoted.success:
            return SwapExecutionResponse(success=False, idempotency_key=key, error=quoted.error)

        accepted = await self.accept_quote(quoted.quote.id, key)
        quote = self.negotiator.get_quote(quoted.quote.id) or quoted.quote
        return SwapExecutionResponse(
            success=accepted.success,
            idempotency_key=key,
            quote=quote,
            transfer=accepted.transfer,
            balances_refreshed=accepted.balances_refreshed,
            error=accepted.error,
        )

    async def get_supported_assets(self) -> SupportedAssetsResponse:
        return await self.negotiator.get_supported_assets()

    async def get_balances(self, ttl: Optional[float] = None) -> BalancesResponse:
        return await self.balance_cache.get_all(ttl=ttl)

    async def refresh_balances(self) -> BalancesResponse:
        """User-triggered refresh: drop the cache and fetch again.

        A refresh already in flight started after the last invalidation,
        so overlapping calls join it instead of starting another fetch.
        """
        if not self.balance_cache.is_refreshing():
            self.balance_cache.invalidate()
        return await self.balance_cache.force_refresh()


class NgnzSwapService(SwapService):
    """NGNZ on/off-ramp swaps (``/ngnz-swap/...``).

    NGNZ to crypto is ONRAMP, crypto to NGNZ is OFFRAMP; exactly one side
    must be NGNZ.
    """

    settlement = True
