"""HTTP transport for the wallet backend."""

from assetflow.client.api_client import (
    ApiClient,
    ApiResponse,
    IDEMPOTENCY_HEADER,
    extract_error_token,
    extract_message,
    unwrap_data,
)

__all__ = [
    "ApiClient",
    "ApiResponse",
    "IDEMPOTENCY_HEADER",
    "extract_error_token",
    "extract_message",
    "unwrap_data",
]
