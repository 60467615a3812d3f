"""Idempotent execution of state-changing requests.

Every commit (quote accept, withdrawal, username transfer) goes through
``CommitExecutor.execute``:

1. the idempotency key must be non-empty
2. the key is bound to the request it was first used for
3. a key with a recorded success is answered locally (``replayed=True``)
4. flow preconditions (e.g. the quote is still OPEN and unexpired)
5. concurrent calls with the same key share one request
6. retryable failures are retried with the same key, re-checking step 4 first
7. on success the balance cache is invalidated, then refreshed best-effort
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from assetflow.client.api_client import ApiClient, ApiResponse
from assetflow.config import get_settings
from assetflow.contracts.errors import ErrorResult
from assetflow.contracts.transfers import (
    Destination,
    TransferKind,
    TransferRequest,
    TransferResponse,
    TransferStatus,
)
from assetflow.services.balance_cache import BalanceCache, get_balance_cache
from assetflow.services.error_classifier import Flow, get_classifier, validation_error
from assetflow.services.idempotency import IdempotencyLedger, request_fingerprint
from assetflow.services.status_service import (
    TransferTracker,
    get_transfer_tracker,
    map_server_status,
    transaction_id_from,
)
from assetflow.utils.amounts import first_present, optional_str, to_decimal
from assetflow.utils.locks import SingleFlight

logger = logging.getLogger(__name__)


@dataclass
class CommitPlan:
    """One state-changing request, described independently of its flow.

    ``payload`` is what goes over the wire and may hold auth proofs;
    only the identity fields are fingerprinted and kept.
    """

    kind: TransferKind
    flow: Flow
    path: str
    payload: Optional[dict]
    source_asset: str
    destination_asset: str
    amount: Decimal
    destination: Optional[Destination] = None
    fee: Optional[Decimal] = None
    quote_id: Optional[str] = None
    precheck: Optional[Callable[[], Optional[ErrorResult]]] = None
    on_success: Optional[Callable[[], None]] = None

    def fingerprint(self) -> str:
        identity = {
            "kind": self.kind.value,
            "source": self.source_asset,
            "destination_asset": self.destination_asset,
            "amount": str(self.amount),
            "destination": self.destination.model_dump(mode="json") if self.destination else None,
            "quote_id": self.quote_id,
        }
        return request_fingerprint(self.path, identity)


class CommitExecutor:
    """Sends commits exactly once per idempotency key and keeps balances coherent."""

    def __init__(
        self,
        api_client: Optional[ApiClient] = None,
        balance_cache: Optional[BalanceCache] = None,
        ledger: Optional[IdempotencyLedger] = None,
        tracker: Optional[TransferTracker] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        settings = get_settings()
        self._api = api_client or ApiClient()
        self._cache = balance_cache or get_balance_cache()
        self.ledger = ledger or IdempotencyLedger(
            retention_seconds=settings.transfer_tracking_hours * 3600, clock=clock
        )
        self.tracker = tracker or get_transfer_tracker()
        self._timeout = settings.commit_timeout_seconds
        self._max_attempts = settings.commit_max_attempts
        self._backoff = settings.retry_backoff_seconds
        self._clock = clock
        self._sleep = sleep
        self._flight = SingleFlight("commits")

    async def execute(self, plan: CommitPlan, idempotency_key: Optional[str]) -> TransferResponse:
        """Commit ``plan`` under ``idempotency_key``.

        Raises:
            asyncio.CancelledError: the key is marked "outcome unknown" first
        """
        if not isinstance(idempotency_key, str) or not idempotency_key.strip():
            return TransferResponse(
                success=False,
                error=validation_error(["Idempotency key is required"]),
            )

        if not self.ledger.bind(idempotency_key, plan.fingerprint()):
            logger.warning("Idempotency key %s reused for a different request", idempotency_key)
            return TransferResponse(
                success=False,
                error=validation_error(["Idempotency key was already used for a different request"]),
            )

        recorded = self.ledger.outcome(idempotency_key)
        if recorded is not None:
            logger.info("Replaying recorded outcome for key %s", idempotency_key)
            return recorded.model_copy(update={"replayed": True})

        if plan.precheck is not None:
            error = plan.precheck()
            if error is not None:
                return TransferResponse(success=False, error=error)

        try:
            return await self._flight.do(idempotency_key, lambda: self._run(plan, idempotency_key))
        except asyncio.CancelledError:
            self.ledger.mark_unknown(idempotency_key)
            raise

    async def _run(self, plan: CommitPlan, key: str) -> TransferResponse:
        response: Optional[ApiResponse] = None
        classifier = get_classifier(plan.flow)

        for attempt in range(1, self._max_attempts + 1):
            if attempt > 1 and plan.precheck is not None:
                # The backoff may have outlived the quote.
                error = plan.precheck()
                if error is not None:
                    logger.warning(
                        "%s retry abandoned: %s (%s)", plan.kind.value, error.code.value, error.detail
                    )
                    return TransferResponse(success=False, error=error)

            self.ledger.note_attempt(key)
            logger.info("Committing %s (key %s, attempt %d)", plan.kind.value, key, attempt)
            response = await self._api.post(
                plan.path,
                plan.payload,
                idempotency_key=key,
                timeout=self._timeout,
            )
            if response.ok:
                break

            error = classifier.classify(response)
            if error.retryable and attempt < self._max_attempts:
                delay = self._backoff * (2 ** (attempt - 1))
                logger.warning(
                    "%s commit failed with %s, retrying in %.1fs with the same key",
                    plan.kind.value,
                    error.code.value,
                    delay,
                )
                await self._sleep(delay)
                continue

            logger.warning("%s commit failed: %s (%s)", plan.kind.value, error.code.value, error.detail)
            return TransferResponse(success=False, error=error)

        try:
            transfer = self._build_transfer(plan, key, response.data)
        except ValidationError as e:
            # The server has committed; keep going with what the plan knows.
            logger.error("Unusable %s commit payload for key %s: %s", plan.kind.value, key, e)
            transfer = self._build_transfer(plan, key, {})
        if plan.on_success is not None:
            plan.on_success()

        # Balances must be stale-free before control returns to the caller.
        self._cache.invalidate()
        refreshed = await self._refresh_balances()

        result = TransferResponse(
            success=True,
            transfer=transfer,
            message=response.message,
            balances_refreshed=refreshed,
        )
        self.ledger.record_success(key, result)
        self.tracker.track(transfer)
        logger.info(
            "%s committed: transaction %s, status %s",
            plan.kind.value,
            transfer.transaction_id,
            transfer.status.value,
        )
        return result

    def _build_transfer(self, plan: CommitPlan, key: str, data: Any) -> TransferRequest:
        data = data if isinstance(data, dict) else {}
        now = self._clock()
        status = map_server_status(data.get("status")) or TransferStatus.SUBMITTED
        return TransferRequest(
            transaction_id=transaction_id_from(data),
            idempotency_key=key,
            kind=plan.kind,
            source_asset=plan.source_asset,
            destination_asset=plan.destination_asset,
            amount=plan.amount,
            fee=to_decimal(data.get("fee")) if data.get("fee") is not None else plan.fee,
            destination=plan.destination,
            status=status,
            reference=optional_str(first_present(data, "transferReference", "reference", "transferRef")),
            quote_id=plan.quote_id,
            received_amount=to_decimal(
                first_present(data, "receiveAmount", "receivedAmount", "toAmount", "amountReceived")
            ),
            submitted_at=now,
            updated_at=now,
        )

    async def _refresh_balances(self) -> bool:
        try:
            result = await self._cache.force_refresh()
        except Exception as e:
            logger.warning("Balance refresh after commit raised: %s", e)
            return False
        if not result.success:
            logger.warning(
                "Balance refresh after commit failed: %s",
                result.error.code.value if result.error else "unknown",
            )
        return result.success
