"""JSON-over-HTTP transport for the wallet backend.

The transport never raises for HTTP or network failures. Every call
returns an ``ApiResponse`` carrying the status code (None when no response
arrived), the decoded body, and the transport exception if there was one.
Classification into error codes happens in the services.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from assetflow.config import get_settings

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "X-Idempotency-Key"

TokenProvider = Callable[[], Awaitable[Optional[str]]]


@dataclass
class ApiResponse:
    """Outcome of one HTTP exchange."""

    status_code: Optional[int]
    body: Any = None
    error: Optional[BaseException] = None

    @property
    def received(self) -> bool:
        """True if the server answered at all."""
        return self.status_code is not None

    @property
    def ok(self) -> bool:
        """2xx status and no explicit ``success: false`` in the body."""
        if self.status_code is None or not 200 <= self.status_code < 300:
            return False
        if isinstance(self.body, dict) and self.body.get("success") is False:
            return False
        return True

    @property
    def data(self) -> Any:
        return unwrap_data(self.body)

    @property
    def message(self) -> Optional[str]:
        return extract_message(self.body)


def unwrap_data(body: Any, max_depth: int = 3) -> Any:
    """Descend through ``{"data": ...}`` envelopes.

    Endpoints nest their payload zero, one or two levels deep, so callers
    read ``unwrap_data(body)`` instead of guessing.
    """
    current = body
    for _ in range(max_depth):
        if isinstance(current, dict) and isinstance(current.get("data"), (dict, list)):
            current = current["data"]
        else:
            break
    return current


def extract_message(body: Any) -> Optional[str]:
    """Find a human-readable message anywhere the backend tends to put one."""
    current = body
    for _ in range(3):
        if not isinstance(current, dict):
            return None
        for key in ("message", "error", "msg", "detail"):
            value = current.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        current = current.get("data")
    return None


def extract_error_token(body: Any) -> Optional[str]:
    """Find an UPPER_SNAKE error token such as ``INSUFFICIENT_BALANCE``."""
    current = body
    for _ in range(3):
        if not isinstance(current, dict):
            return None
        for key in ("error", "code", "errorCode"):
            value = current.get(key)
            if isinstance(value, str) and _looks_like_token(value):
                return value
        current = current.get("data")
    return None


def _looks_like_token(value: str) -> bool:
    return bool(value) and value.replace("_", "").isalnum() and value.upper() == value


def _decode_body(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return {"message": text}


class ApiClient:
    """Async client for the wallet backend with bearer-token auth."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Backend URL (defaults to settings)
            token: Static bearer token (defaults to settings)
            token_provider: Coroutine returning the current token; wins over ``token``
            timeout: Default per-request timeout in seconds
            transport: Custom httpx transport (tests use ``httpx.MockTransport``)
        """
        settings = get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self._token = token if token is not None else settings.api_token
        self._token_provider = token_provider
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._http_client

    async def _auth_token(self) -> Optional[str]:
        if self._token_provider is not None:
            return await self._token_provider()
        return self._token

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        params: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ApiResponse:
        """Send one request. Cancellation propagates; everything else is captured."""
        headers = {}
        token = await self._auth_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if idempotency_key:
            headers[IDEMPOTENCY_HEADER] = idempotency_key

        client = await self._get_client()
        logger.debug("API request: %s %s", method, path)

        try:
            response = await client.request(
                method,
                path,
                json=json_body,
                params=params,
                headers=headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning("API timeout: %s %s (%s)", method, path, type(e).__name__)
            return ApiResponse(status_code=None, error=e)
        except httpx.HTTPError as e:
            logger.warning("API network error: %s %s: %s", method, path, e)
            return ApiResponse(status_code=None, error=e)

        result = ApiResponse(status_code=response.status_code, body=_decode_body(response))
        if result.ok:
            logger.debug("API success: %s %s (%d)", method, path, response.status_code)
        else:
            logger.info(
                "API error %d: %s %s: %s",
                response.status_code,
                method,
                path,
                result.message or "(no message)",
            )
        return result

    async def get(self, path: str, **kwargs) -> ApiResponse:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, json_body: Any = None, **kwargs) -> ApiResponse:
        return await self.request("POST", path, json_body=json_body, **kwargs)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
