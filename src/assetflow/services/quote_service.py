"""Quote negotiation for the crypto and NGNZ swap flows.

Quotes are priced by the backend; this service validates input locally,
requests the quote, normalizes it and keeps it in a quote book so the
commit step can check its status and expiry by id.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from assetflow.client.api_client import ApiClient
from assetflow.config import get_settings
from assetflow.contracts.errors import ErrorCode
from assetflow.contracts.quotes import (
    Quote,
    QuoteResponse,
    QuoteSide,
    QuoteStatus,
    SupportedAssetsResponse,
    SwapFlow,
)
from assetflow.services.error_classifier import Flow, get_classifier, make_error, validation_error
from assetflow.utils.amounts import first_present, parse_timestamp, to_decimal, to_json_number

logger = logging.getLogger(__name__)

# Quotes stay in the book this long after expiry, so a late accept gets
# QUOTE_EXPIRED instead of an unknown-quote error.
QUOTE_BOOK_RETENTION_SECONDS = 3600


@dataclass(frozen=True)
class SwapEndpoints:
    """Backend paths of one swap flow."""

    quote_path: str
    accept_path: str
    assets_path: str

    def accept(self, quote_id: str) -> str:
        return self.accept_path.format(quote_id=quote_id)


CRYPTO_SWAP_ENDPOINTS = SwapEndpoints(
    quote_path="/swap/quote",
    accept_path="/swap/quote/{quote_id}",
    assets_path="/swap/tokens",
)

NGNZ_SWAP_ENDPOINTS = SwapEndpoints(
    quote_path="/ngnz-swap/quote",
    accept_path="/ngnz-swap/quote/{quote_id}",
    assets_path="/ngnz-swap/supported-currencies",
)


def parse_side(side: Any) -> Optional[QuoteSide]:
    if isinstance(side, QuoteSide):
        return side
    if not isinstance(side, str):
        return None
    try:
        return QuoteSide(side.strip().upper())
    except ValueError:
        return None


class QuoteNegotiator:
    """Creates quotes for one swap flow and remembers them by id."""

    def __init__(
        self,
        settlement: bool = False,
        api_client: Optional[ApiClient] = None,
        supported_assets: Optional[list[str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the negotiator.

        Args:
            settlement: True for the NGNZ on/off-ramp flow, False for crypto-to-crypto
            api_client: Transport (defaults to a new ApiClient)
            supported_assets: Crypto assets accepted (defaults to settings)
            clock: Time source, epoch seconds
        """
        settings = get_settings()
        self.settlement = settlement
        self.settlement_asset = settings.settlement_asset.upper()
        self.endpoints = NGNZ_SWAP_ENDPOINTS if settlement else CRYPTO_SWAP_ENDPOINTS
        self._api = api_client or ApiClient()
        self._crypto_assets = {a.upper() for a in (supported_assets or settings.swap_assets)}
        self._fallback_ttl = settings.quote_fallback_ttl_seconds
        self._timeout = settings.request_timeout_seconds
        self._clock = clock
        self._classifier = get_classifier(Flow.SWAP)
        self._quotes: dict[str, Quote] = {}

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, from_asset: Any, to_asset: Any, amount: Any, side: Any) -> list[str]:
        """Return every problem with a quote request (empty list = valid)."""
        errors = []

        source = from_asset.strip().upper() if isinstance(from_asset, str) else ""
        target = to_asset.strip().upper() if isinstance(to_asset, str) else ""
        if not source:
            errors.append("Source asset is required")
        if not target:
            errors.append("Destination asset is required")

        value = to_decimal(amount)
        if value is None:
            errors.append("Amount must be a number")
        elif value <= 0:
            errors.append("Amount must be greater than zero")

        if parse_side(side) is None:
            errors.append(f"Side must be one of: {', '.join(s.value for s in QuoteSide)}")

        if not source or not target:
            return errors
        if source == target:
            errors.append("Cannot swap an asset to itself")
            return errors

        if self.settlement:
            errors.extend(self._settlement_errors(source, target))
        else:
            if self.settlement_asset in (source, target):
                errors.append(
                    f"{self.settlement_asset} swaps are not supported here; use the {self.settlement_asset} swap flow"
                )
            for asset in (source, target):
                if asset != self.settlement_asset and asset not in self._crypto_assets:
                    errors.append(f"{asset} is not supported for swaps")
        return errors

    def _settlement_errors(self, source: str, target: str) -> list[str]:
        if self.settlement_asset not in (source, target):
            return [f"One currency must be {self.settlement_asset} for {self.settlement_asset} swaps"]
        crypto = target if source == self.settlement_asset else source
        if crypto not in self._crypto_assets:
            return [f"{crypto} is not supported for {self.settlement_asset} swaps"]
        return []

    def flow_for(self, from_asset: str, to_asset: str) -> SwapFlow:
        if not self.settlement:
            return SwapFlow.CRYPTO
        if from_asset.upper() == self.settlement_asset:
            return SwapFlow.ONRAMP
        return SwapFlow.OFFRAMP

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    async def create_quote(self, from_asset: str, to_asset: str, amount: Any, side: Any) -> QuoteResponse:
        """Request a quote from the backend.

        Args:
            from_asset: Asset debited
            to_asset: Asset credited
            amount: Decimal amount (numeric strings accepted)
            side: BUY, SELL, SOURCE_GIVEN or TARGET_GIVEN

        Returns:
            QuoteResponse with an OPEN quote, or the error
        """
        errors = self.validate(from_asset, to_asset, amount, side)
        if errors:
            logger.info("Quote request rejected locally: %s", "; ".join(errors))
            return QuoteResponse(success=False, error=validation_error(errors))

        source = from_asset.strip().upper()
        target = to_asset.strip().upper()
        value = to_decimal(amount)
        quote_side = parse_side(side)
        flow = self.flow_for(source, target)

        logger.info("Requesting %s quote: %s %s -> %s (%s)", flow.value, value, source, target, quote_side.value)
        response = await self._api.post(
            self.endpoints.quote_path,
            {"from": source, "to": target, "amount": to_json_number(value), "side": quote_side.value},
            timeout=self._timeout,
        )
        if not response.ok:
            error = self._classifier.classify(response)
            logger.warning("Quote request failed: %s (%s)", error.code.value, error.detail)
            return QuoteResponse(success=False, error=error)

        data = response.data
        if not isinstance(data, dict):
            return QuoteResponse(
                success=False,
                error=make_error(ErrorCode.UNKNOWN, detail="Quote response has no payload"),
            )

        quote_id = first_present(data, "id", "_id", "quoteId")
        if not quote_id:
            return QuoteResponse(
                success=False,
                error=make_error(ErrorCode.UNKNOWN, detail="No quote ID received"),
            )

        now = self._clock()
        expires_at = parse_timestamp(first_present(data, "expiresAt", "expires_at", "expiry"))
        if expires_at is None:
            expires_at = now + self._fallback_ttl

        quote = Quote(
            id=str(quote_id),
            from_asset=source,
            to_asset=target,
            amount=value,
            side=quote_side,
            rate=to_decimal(first_present(data, "rate", "exchangeRate", "price")),
            from_amount=to_decimal(first_present(data, "fromAmount", "sourceAmount", "amount")),
            to_amount=to_decimal(first_present(data, "toAmount", "receiveAmount", "amountReceived")),
            fee=to_decimal(first_present(data, "fee", "fees")),
            expires_at=expires_at,
            created_at=now,
            flow=flow,
        )
        self._prune(now)
        self._quotes[quote.id] = quote
        logger.info("Quote %s created, expires in %.0fs", quote.id, quote.seconds_until_expiry(now))
        return QuoteResponse(success=True, quote=quote)

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        return self._quotes.get(quote_id)

    def set_status(self, quote_id: str, status: QuoteStatus) -> Optional[Quote]:
        """Move a quote to ``status``. Only the status of a quote ever changes."""
        quote = self._quotes.get(quote_id)
        if quote is None:
            return None
        updated = quote.model_copy(update={"status": status})
        self._quotes[quote_id] = updated
        logger.debug("Quote %s: %s -> %s", quote_id, quote.status.value, status.value)
        return updated

    def _prune(self, now: float) -> None:
        stale = [
            qid for qid, q in self._quotes.items()
            if now - q.expires_at > QUOTE_BOOK_RETENTION_SECONDS
        ]
        for qid in stale:
            del self._quotes[qid]

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    async def get_supported_assets(self) -> SupportedAssetsResponse:
        """Assets the backend accepts for this flow."""
        response = await self._api.get(self.endpoints.assets_path, timeout=self._timeout)
        if not response.ok:
            return SupportedAssetsResponse(success=False, error=get_classifier(Flow.READ).classify(response))

        assets = _asset_codes(response.data)
        if not self.settlement:
            # the crypto flow never lists the settlement asset
            assets = [a for a in assets if a != self.settlement_asset]
        return SupportedAssetsResponse(success=True, assets=assets)


def _asset_codes(data: Any) -> list[str]:
    items = data
    if isinstance(data, dict):
        items = next((v for v in data.values() if isinstance(v, list)), [])
    if not isinstance(items, list):
        return []

    codes = []
    for item in items:
        if isinstance(item, str):
            code = item
        elif isinstance(item, dict):
            code = first_present(item, "code", "currency", "symbol")
        else:
            code = None
        if code and str(code).upper() not in codes:
            codes.append(str(code).upper())
    return codes
