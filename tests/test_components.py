"""Component tests for the building blocks under the services.

Tests the single-flight lock, the idempotency ledger, configuration and
the payload parsing helpers.
"""

import asyncio
import uuid
from decimal import Decimal

import pytest

from assetflow.config import Settings, get_settings
from assetflow.contracts.transfers import TransferResponse
from assetflow.services.idempotency import IdempotencyLedger, generate_key, request_fingerprint
from assetflow.utils.amounts import first_present, parse_timestamp, to_decimal, to_json_number
from assetflow.utils.locks import SingleFlight


class TestSingleFlight:
    """Tests for in-flight coalescing."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_task(self):
        """Test that callers with the same key run the function once."""
        flight = SingleFlight("test")
        calls = []
        release = asyncio.Event()

        async def work():
            calls.append(1)
            await release.wait()
            return "done"

        first = asyncio.ensure_future(flight.do("k", work))
        second = asyncio.ensure_future(flight.do("k", work))
        await asyncio.sleep(0)
        assert flight.in_flight("k")

        release.set()
        assert await asyncio.gather(first, second) == ["done", "done"]
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_key_is_forgotten_after_completion(self):
        flight = SingleFlight()
        counter = {"n": 0}

        async def work():
            counter["n"] += 1
            return counter["n"]

        assert await flight.do("k", work) == 1
        await asyncio.sleep(0)
        assert not flight.in_flight("k")
        assert await flight.do("k", work) == 2

    @pytest.mark.asyncio
    async def test_different_keys_run_separately(self):
        flight = SingleFlight()

        async def work():
            await asyncio.sleep(0)
            return object()

        a, b = await asyncio.gather(flight.do(1, work), flight.do(2, work))
        assert a is not b

    @pytest.mark.asyncio
    async def test_exception_reaches_every_caller(self):
        flight = SingleFlight()

        async def boom():
            await asyncio.sleep(0)
            raise RuntimeError("backend exploded")

        results = await asyncio.gather(
            flight.do("k", boom), flight.do("k", boom), return_exceptions=True
        )
        assert all(isinstance(r, RuntimeError) for r in results)


class TestIdempotencyLedger:
    def test_generate_key_is_uuid4(self):
        key = generate_key()
        assert uuid.UUID(key).version == 4
        assert generate_key() != key

    def test_fingerprint_ignores_key_order(self):
        a = request_fingerprint("/swap", {"amount": "1", "from": "BTC"})
        b = request_fingerprint("/swap", {"from": "BTC", "amount": "1"})
        assert a == b
        assert a != request_fingerprint("/swap", {"from": "BTC", "amount": "2"})
        assert a != request_fingerprint("/other", {"from": "BTC", "amount": "1"})

    def test_key_binds_to_first_request(self):
        ledger = IdempotencyLedger()
        assert ledger.bind("k", "fp-1")
        assert ledger.bind("k", "fp-1")
        assert not ledger.bind("k", "fp-2")

    def test_success_and_attempts(self):
        ledger = IdempotencyLedger()
        ledger.bind("k", "fp")
        assert ledger.note_attempt("k") == 1
        assert ledger.note_attempt("k") == 2
        assert ledger.attempts("k") == 2
        assert ledger.attempts("missing") == 0

        response = TransferResponse(success=True)
        ledger.record_success("k", response)
        assert ledger.outcome("k") is response

        # a recorded success is never downgraded to unknown
        ledger.mark_unknown("k")
        assert not ledger.is_unknown("k")

    def test_unknown_outcomes(self):
        ledger = IdempotencyLedger()
        ledger.bind("a", "fp")
        ledger.bind("b", "fp")
        ledger.mark_unknown("a")

        assert ledger.is_unknown("a")
        assert ledger.unresolved_keys() == ["a"]

        ledger.record_success("a", TransferResponse(success=True))
        assert ledger.unresolved_keys() == []

        ledger.clear()
        assert ledger.outcome("a") is None

    def test_untouched_keys_expire(self, clock):
        """Test that keys idle past the retention window are forgotten."""
        ledger = IdempotencyLedger(retention_seconds=3600, clock=clock)
        ledger.bind("old", "fp-1")
        ledger.record_success("old", TransferResponse(success=True))
        ledger.bind("busy", "fp-1")

        clock.advance(3000)
        ledger.note_attempt("busy")
        clock.advance(601)
        ledger.bind("new", "fp-1")

        assert ledger.outcome("old") is None
        assert ledger.attempts("busy") == 1
        assert ledger.bind("old", "fp-2")
        assert not ledger.bind("busy", "fp-2")

    def test_no_retention_keeps_everything(self, clock):
        ledger = IdempotencyLedger(clock=clock)
        ledger.bind("k", "fp")
        clock.advance(10**9)

        assert ledger.prune() == 0
        assert not ledger.bind("k", "fp-2")


class TestConfig:
    """Tests for configuration."""

    def test_get_settings(self):
        settings = get_settings()

        assert settings.environment == "test"
        assert settings.api_base_url == "https://api.test"
        assert settings.balance_cache_ttl_seconds == 120.0
        assert settings.commit_max_attempts == 1
        assert get_settings() is settings

    def test_asset_lists(self):
        settings = Settings(supported_swap_assets=" btc, eth ,,sol", transfer_currencies="usdt")

        assert settings.swap_assets == ["BTC", "ETH", "SOL"]
        assert settings.transfer_currency_list == ["USDT"]
        assert "NGNZ" in settings.balance_asset_list

    def test_settings_safe_dict(self):
        settings = get_settings()
        safe = settings.get_safe_dict()

        assert safe["api_token"] == "***"
        assert "test-token" not in str(safe)
        assert safe["balance_cache"]["mirror"] == "(disabled)"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("PORTFOLIO_CACHE_TTL_SECONDS", "60")
        get_settings.cache_clear()

        assert get_settings().portfolio_cache_ttl_seconds == 60.0


class TestAmounts:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1.50", Decimal("1.50")),
            (2, Decimal("2")),
            (" 3 ", Decimal("3")),
            ("", None),
            ("abc", None),
            ("Infinity", None),
            (True, None),
            (None, None),
        ],
    )
    def test_to_decimal(self, value, expected):
        assert to_decimal(value) == expected

    def test_parse_timestamp(self):
        assert parse_timestamp(1_700_000_000) == 1_700_000_000.0
        assert parse_timestamp(1_700_000_000_500) == 1_700_000_000.5
        assert parse_timestamp("2023-11-14T22:13:20Z") == 1_700_000_000.0
        assert parse_timestamp("soon") is None

    def test_first_present_skips_empty(self):
        assert first_present({"id": "", "_id": "x"}, "id", "_id") == "x"
        assert first_present({}, "id") is None

    def test_to_json_number(self):
        assert to_json_number(Decimal("25.000")) == 25
        assert isinstance(to_json_number(Decimal("25")), int)
        assert to_json_number(Decimal("0.01")) == 0.01
