"""Transfer status lookups and the local tracker of submitted transfers."""

import logging
import time
from decimal import Decimal
from typing import Any, Callable, Optional

from assetflow.client.api_client import ApiClient
from assetflow.config import get_settings
from assetflow.contracts.errors import ErrorCode
from assetflow.contracts.transfers import (
    Destination,
    TransferKind,
    TransferRequest,
    TransferResponse,
    TransferStatus,
)
from assetflow.services.error_classifier import Flow, get_classifier, make_error, validation_error
from assetflow.utils.amounts import first_present, optional_str, to_decimal

logger = logging.getLogger(__name__)

# Closed set of server status strings. Anything else is reported as
# UNKNOWN rather than guessed.
SERVER_STATUS_MAP: dict[str, TransferStatus] = {
    "PENDING": TransferStatus.PENDING,
    "PROCESSING": TransferStatus.PROCESSING,
    "SUCCESS": TransferStatus.SUCCESS,
    "SUCCESSFUL": TransferStatus.SUCCESS,
    "COMPLETED": TransferStatus.SUCCESS,
    "CONFIRMED": TransferStatus.SUCCESS,
    "FAILED": TransferStatus.FAILED,
    "CANCELLED": TransferStatus.FAILED,
    "REJECTED": TransferStatus.FAILED,
}

STATUS_PATHS: dict[TransferKind, str] = {
    TransferKind.WITHDRAWAL: "/withdraw/status/{transaction_id}",
    TransferKind.INTERNAL_TRANSFER: "/withdraw/status/{transaction_id}",
    TransferKind.SWAP: "/swap/status/{transaction_id}",
}


def map_server_status(raw: Any) -> Optional[TransferStatus]:
    """Map a server status string, or None if it is not one we know."""
    if not isinstance(raw, str):
        return None
    return SERVER_STATUS_MAP.get(raw.strip().upper())


def transaction_id_from(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    value = first_present(data, "transactionId", "transaction_id", "withdrawalId", "id", "_id")
    return str(value) if value is not None else None


class TransferTracker:
    """Transfers submitted by this process, kept for a limited time.

    Lets a caller that lost its idempotency key (or had a commit cancelled)
    find recent transaction ids and poll them.
    """

    def __init__(
        self,
        retention_hours: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = get_settings()
        hours = settings.transfer_tracking_hours if retention_hours is None else retention_hours
        self.retention_seconds = hours * 3600
        self._clock = clock
        self._transfers: dict[str, TransferRequest] = {}

    def track(self, transfer: TransferRequest) -> None:
        if not transfer.transaction_id:
            logger.debug("Not tracking transfer without transaction id (key %s)", transfer.idempotency_key)
            return
        self.prune()
        self._transfers[transfer.transaction_id] = transfer

    def get(self, transaction_id: str) -> Optional[TransferRequest]:
        return self._transfers.get(transaction_id)

    def find_by_key(self, idempotency_key: str) -> Optional[TransferRequest]:
        return next(
            (t for t in self._transfers.values() if t.idempotency_key == idempotency_key),
            None,
        )

    def active(self) -> list[TransferRequest]:
        """Tracked transfers that have not reached SUCCESS or FAILED."""
        self.prune()
        return [t for t in self._transfers.values() if not t.status.is_terminal]

    def recent_transaction_ids(self) -> list[str]:
        self.prune()
        return list(self._transfers)

    def prune(self) -> int:
        cutoff = self._clock() - self.retention_seconds
        stale = [
            tid for tid, t in self._transfers.items()
            if (t.updated_at or t.submitted_at or 0) < cutoff
        ]
        for tid in stale:
            del self._transfers[tid]
        if stale:
            logger.debug("Pruned %d tracked transfers", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._transfers.clear()


_transfer_tracker: Optional[TransferTracker] = None


def get_transfer_tracker() -> TransferTracker:
    """Get the process-wide tracker shared by commits and status lookups."""
    global _transfer_tracker
    if _transfer_tracker is None:
        _transfer_tracker = TransferTracker()
    return _transfer_tracker


def reset_transfer_tracker() -> None:
    """Forget the process-wide tracker (useful for testing)."""
    global _transfer_tracker
    _transfer_tracker = None


class StatusPoller:
    """Read-only status lookups for swaps, withdrawals and transfers."""

    def __init__(
        self,
        api_client: Optional[ApiClient] = None,
        tracker: Optional[TransferTracker] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._api = api_client or ApiClient()
        self.tracker = tracker or get_transfer_tracker()
        self._timeout = get_settings().request_timeout_seconds
        self._clock = clock
        self._classifier = get_classifier(Flow.READ)

    async def get_status(self, transaction_id: str, kind: Any = TransferKind.WITHDRAWAL) -> TransferResponse:
        """Fetch the server status of a transaction.

        Args:
            transaction_id: Server transaction ID
            kind: SWAP, WITHDRAWAL or INTERNAL_TRANSFER

        Returns:
            TransferResponse with the updated transfer, or the error
        """
        errors = []
        if not isinstance(transaction_id, str) or not transaction_id.strip():
            errors.append("Transaction ID is required")
        try:
            kind = TransferKind(kind)
        except ValueError:
            errors.append(f"Unknown transfer kind: {kind}")
        if errors:
            return TransferResponse(success=False, error=validation_error(errors))

        transaction_id = transaction_id.strip()
        path = STATUS_PATHS[kind].format(transaction_id=transaction_id)
        response = await self._api.get(path, timeout=self._timeout)
        if not response.ok:
            error = self._classifier.classify(response)
            logger.info("Status lookup for %s failed: %s", transaction_id, error.code.value)
            return TransferResponse(success=False, error=error)

        data = response.data if isinstance(response.data, dict) else {}
        raw_status = first_present(data, "status", "state")
        status = map_server_status(raw_status)
        if status is None:
            logger.warning("Unrecognised status %r for transaction %s", raw_status, transaction_id)
            return TransferResponse(
                success=False,
                error=make_error(ErrorCode.UNKNOWN, detail=f"Unrecognised transfer status: {raw_status!r}"),
            )

        transfer = self._merge(transaction_id, kind, status, data)
        self.tracker.track(transfer)
        logger.info("Transaction %s is %s", transaction_id, status.value)
        return TransferResponse(success=True, transfer=transfer, message=response.message)

    def _merge(
        self,
        transaction_id: str,
        kind: TransferKind,
        status: TransferStatus,
        data: dict,
    ) -> TransferRequest:
        now = self._clock()
        tracked = self.tracker.get(transaction_id)
        if tracked is not None:
            update: dict[str, Any] = {"status": status, "updated_at": now}
            fee = to_decimal(data.get("fee"))
            if fee is not None:
                update["fee"] = fee
            return tracked.model_copy(update=update)

        currency = str(first_present(data, "currency", "asset") or "").upper()
        address = optional_str(first_present(data, "address", "destinationAddress"))
        username = optional_str(first_present(data, "recipientUsername", "username"))
        return TransferRequest(
            transaction_id=transaction_id,
            kind=kind,
            source_asset=currency,
            destination_asset=str(first_present(data, "toCurrency", "to") or currency).upper(),
            amount=to_decimal(data.get("amount")) or Decimal("0"),
            fee=to_decimal(data.get("fee")),
            destination=Destination(
                address=address,
                network=optional_str(data.get("network")),
                username=username,
            )
            if address or username
            else None,
            status=status,
            reference=optional_str(first_present(data, "reference", "transferReference", "txHash")),
            updated_at=now,
        )
