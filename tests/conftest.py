"""Pytest configuration and fixtures."""

import json
import os
from typing import Any, Callable, Optional

import httpx
import pytest
import pytest_asyncio

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["API_BASE_URL"] = "https://api.test"
os.environ["API_TOKEN"] = "test-token"
os.environ["BALANCE_MIRROR_PATH"] = ""
os.environ["DEBUG"] = "true"

from assetflow.client.api_client import ApiClient
from assetflow.config import get_settings
from assetflow.services.balance_cache import BalanceCache, reset_balance_cache
from assetflow.services.status_service import reset_transfer_tracker

START_TIME = 1_700_000_000.0

BALANCES_BODY = {
    "success": True,
    "data": {
        "btcBalance": "0.5",
        "btcBalanceUSD": "30000",
        "btcPendingBalance": "0",
        "usdtBalance": 100,
        "usdtBalanceUSD": 100,
        "ngnzBalance": 50000,
        "totalPortfolioBalance": 30150,
    },
}


class FakeClock:
    """Manually advanced clock, epoch seconds."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """Scripted wallet backend for ``httpx.MockTransport``.

    Each route holds a queue of replies; the last reply repeats. A reply is
    ``(status, json_body)``, an ``httpx.TransportError`` subclass to raise,
    or a callable (sync or async) taking the request.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, *replies: Any) -> None:
        self.routes[(method.upper(), path)] = list(replies)

    def calls(self, method: Optional[str] = None, path: Optional[str] = None) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if (method is None or r.method == method.upper())
            and (path is None or r.url.path == path)
        ]

    def json_of(self, request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        replies = self.routes.get((request.method, request.url.path))
        if not replies:
            return httpx.Response(404, json={"success": False, "message": "Route not found"})

        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, type) and issubclass(reply, httpx.TransportError):
            raise reply("simulated transport failure", request=request)
        if callable(reply):
            reply = reply(request)
            if hasattr(reply, "__await__"):
                reply = await reply
            if isinstance(reply, httpx.Response):
                return reply
        status, body = reply
        return httpx.Response(status, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Re-read settings and forget process-wide state around each test."""
    get_settings.cache_clear()
    reset_balance_cache()
    reset_transfer_tracker()
    yield
    get_settings.cache_clear()
    reset_balance_cache()
    reset_transfer_tracker()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeBackend:
    backend = FakeBackend()
    backend.add("POST", "/balance/balance", (200, BALANCES_BODY))
    return backend


@pytest_asyncio.fixture
async def api_client(backend: FakeBackend):
    client = ApiClient(base_url="https://api.test", token="test-token", transport=backend.transport())
    yield client
    await client.close()


@pytest.fixture
def balance_cache(api_client: ApiClient, clock: FakeClock) -> BalanceCache:
    return BalanceCache(api_client=api_client, use_mirror=False, clock=clock)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]) -> Callable:
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep
