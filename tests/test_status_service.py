"""Tests for status lookups and the transfer tracker."""

from decimal import Decimal

import pytest

from assetflow.contracts.errors import ErrorCode
from assetflow.contracts.transfers import TransferKind, TransferRequest, TransferStatus, WithdrawalSpec
from assetflow.services.idempotency import generate_key
from assetflow.services.status_service import (
    StatusPoller,
    TransferTracker,
    get_transfer_tracker,
    map_server_status,
    transaction_id_from,
)
from assetflow.services.withdrawal_service import WithdrawalService

from conftest import START_TIME


def submitted(transaction_id="wd-1", key="key-1", **extra):
    values = dict(
        transaction_id=transaction_id,
        idempotency_key=key,
        kind=TransferKind.WITHDRAWAL,
        source_asset="USDT",
        destination_asset="USDT",
        amount=Decimal("25"),
        status=TransferStatus.SUBMITTED,
        submitted_at=START_TIME,
    )
    values.update(extra)
    return TransferRequest(**values)


@pytest.fixture
def tracker(clock):
    return TransferTracker(retention_hours=24, clock=clock)


@pytest.fixture
def poller(api_client, tracker, clock):
    return StatusPoller(api_client=api_client, tracker=tracker, clock=clock)


class TestStatusMapping:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("pending", TransferStatus.PENDING),
            ("PROCESSING", TransferStatus.PROCESSING),
            ("Completed", TransferStatus.SUCCESS),
            ("SUCCESSFUL", TransferStatus.SUCCESS),
            ("rejected", TransferStatus.FAILED),
            ("on_hold", None),
            (3, None),
        ],
    )
    def test_map_server_status(self, raw, expected):
        assert map_server_status(raw) == expected

    def test_transaction_id_fallbacks(self):
        assert transaction_id_from({"withdrawalId": 17}) == "17"
        assert transaction_id_from({"_id": "abc"}) == "abc"
        assert transaction_id_from({}) is None
        assert transaction_id_from(None) is None

    def test_submitted_transfer_needs_key(self):
        with pytest.raises(ValueError):
            submitted(key=None)


class TestTracker:
    def test_transfer_without_id_is_not_tracked(self, tracker):
        tracker.track(submitted(transaction_id=None))
        assert tracker.recent_transaction_ids() == []

    def test_find_by_key_and_active(self, tracker):
        tracker.track(submitted())
        tracker.track(submitted("wd-2", "key-2", status=TransferStatus.SUCCESS))

        assert tracker.find_by_key("key-2").transaction_id == "wd-2"
        assert [t.transaction_id for t in tracker.active()] == ["wd-1"]

    def test_old_transfers_are_pruned(self, tracker, clock):
        tracker.track(submitted())
        clock.advance(24 * 3600 - 1)
        assert tracker.recent_transaction_ids() == ["wd-1"]

        clock.advance(2)
        assert tracker.recent_transaction_ids() == []


class TestStatusPoller:
    @pytest.mark.asyncio
    async def test_tracked_transfer_is_updated(self, poller, tracker, backend, clock):
        tracker.track(submitted())
        backend.add(
            "GET",
            "/withdraw/status/wd-1",
            (200, {"success": True, "data": {"status": "COMPLETED", "fee": "1"}}),
        )
        clock.advance(30)

        result = await poller.get_status("wd-1")

        assert result.success
        transfer = result.transfer
        assert transfer.status == TransferStatus.SUCCESS
        assert transfer.idempotency_key == "key-1"
        assert transfer.fee == Decimal("1")
        assert transfer.updated_at == START_TIME + 30
        assert tracker.get("wd-1") == transfer
        assert tracker.active() == []

    @pytest.mark.asyncio
    async def test_untracked_swap_lookup(self, poller, backend):
        body = {
            "success": True,
            "data": {"status": "pending", "currency": "btc", "toCurrency": "eth", "amount": "0.1"},
        }
        backend.add("GET", "/swap/status/sw-9", (200, body))

        result = await poller.get_status(" sw-9 ", kind="SWAP")

        transfer = result.transfer
        assert transfer.kind == TransferKind.SWAP
        assert transfer.status == TransferStatus.PENDING
        assert transfer.idempotency_key is None
        assert transfer.source_asset == "BTC"
        assert transfer.destination_asset == "ETH"
        assert transfer.amount == Decimal("0.1")

    @pytest.mark.asyncio
    async def test_numeric_fields_become_text(self, poller, backend):
        body = {
            "success": True,
            "data": {
                "status": "COMPLETED",
                "currency": "usdt",
                "amount": 5,
                "recipientUsername": 42,
                "network": 20,
                "reference": 987,
            },
        }
        backend.add("GET", "/withdraw/status/it-3", (200, body))

        result = await poller.get_status("it-3", kind="INTERNAL_TRANSFER")

        assert result.success
        transfer = result.transfer
        assert transfer.reference == "987"
        assert transfer.destination.username == "42"
        assert transfer.destination.network == "20"

    @pytest.mark.asyncio
    async def test_unrecognised_status_is_unknown(self, poller, tracker, backend):
        backend.add("GET", "/withdraw/status/wd-5", (200, {"success": True, "data": {"status": "ON_HOLD"}}))

        result = await poller.get_status("wd-5")

        assert not result.success
        assert result.error.code == ErrorCode.UNKNOWN
        assert "ON_HOLD" in result.error.detail
        assert tracker.get("wd-5") is None

    @pytest.mark.asyncio
    async def test_bad_input(self, poller, backend):
        result = await poller.get_status("", kind="REFUND")

        assert result.error.code == ErrorCode.VALIDATION_ERROR
        assert result.error.errors == ["Transaction ID is required", "Unknown transfer kind: REFUND"]
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_lookup_failure_is_classified(self, poller, backend):
        backend.add("GET", "/withdraw/status/nope", (404, {"success": False, "message": "Withdrawal not found"}))

        result = await poller.get_status("nope", kind=TransferKind.INTERNAL_TRANSFER)

        assert result.error.code == ErrorCode.NOT_FOUND


class TestSharedTracker:
    @pytest.mark.asyncio
    async def test_poll_updates_transfer_committed_elsewhere(self, api_client, balance_cache, backend):
        """Test that default-wired services see each other's transfers."""
        service = WithdrawalService(api_client=api_client, balance_cache=balance_cache)
        poller = StatusPoller(api_client=api_client)
        backend.add(
            "POST",
            "/withdraw/crypto",
            (200, {"success": True, "data": {"transactionId": "wd-7", "status": "PENDING"}}),
        )
        backend.add("GET", "/withdraw/status/wd-7", (200, {"success": True, "data": {"status": "COMPLETED"}}))
        spec = WithdrawalSpec(
            currency="usdt",
            amount=Decimal("25"),
            address="TXYZabcdefghijklmnopqrstuvwxyz1234",
            network="trc20",
            two_factor_code="123456",
            passwordpin="654321",
        )
        key = generate_key()

        committed = await service.submit_withdrawal(spec, key)
        result = await poller.get_status("wd-7")

        assert committed.success
        assert poller.tracker is service.executor.tracker is get_transfer_tracker()
        assert result.transfer.idempotency_key == key
        assert result.transfer.amount == Decimal("25")
        assert get_transfer_tracker().get("wd-7").status == TransferStatus.SUCCESS
