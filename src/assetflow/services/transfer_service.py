"""Internal transfers to another user by username."""

import logging
import re
from decimal import Decimal
from typing import Optional

from assetflow.client.api_client import ApiClient
from assetflow.config import get_settings
from assetflow.contracts.transfers import (
    Destination,
    TransferKind,
    TransferResponse,
    UsernameTransferSpec,
)
from assetflow.services.balance_cache import BalanceCache, get_balance_cache
from assetflow.services.commit_executor import CommitExecutor, CommitPlan
from assetflow.services.error_classifier import Flow, validation_error
from assetflow.services.withdrawal_service import MAX_MEMO_LENGTH, validate_auth_proof
from assetflow.utils.amounts import to_json_number

logger = logging.getLogger(__name__)

TRANSFER_PATH = "/username-withdraw/internal"

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")

MINIMUM_TRANSFER_AMOUNTS: dict[str, Decimal] = {
    "BTC": Decimal("0.00001"),
    "ETH": Decimal("0.001"),
    "SOL": Decimal("0.01"),
    "USDT": Decimal("1"),
    "USDC": Decimal("1"),
    "BNB": Decimal("0.001"),
    "DOGE": Decimal("1"),
    "MATIC": Decimal("1"),
    "AVAX": Decimal("0.01"),
    "NGNZ": Decimal("100"),
}


def normalize_username(username: str) -> str:
    """Strip whitespace and a leading ``@``."""
    username = (username or "").strip()
    return username[1:] if username.startswith("@") else username


def validate_transfer(spec: UsernameTransferSpec, currencies: list[str]) -> list[str]:
    errors = []

    username = normalize_username(spec.recipient_username)
    if not username:
        errors.append("Recipient username is required")
    elif len(username) < 3:
        errors.append("Username must be at least 3 characters long")
    elif len(username) > 50:
        errors.append("Username is too long")
    elif not USERNAME_PATTERN.match(username):
        errors.append("Username contains invalid characters")

    currency = (spec.currency or "").strip().upper()
    if not currency:
        errors.append("Currency is required")
    elif currency not in currencies:
        errors.append("Please select a valid currency")

    if spec.amount <= 0:
        errors.append("Amount must be greater than zero")
    elif currency in MINIMUM_TRANSFER_AMOUNTS and spec.amount < MINIMUM_TRANSFER_AMOUNTS[currency]:
        errors.append(f"Minimum transfer amount for {currency} is {MINIMUM_TRANSFER_AMOUNTS[currency]}")

    errors.extend(validate_auth_proof(spec.two_factor_code, spec.passwordpin))
    if spec.memo and len(spec.memo) > MAX_MEMO_LENGTH:
        errors.append(f"Memo cannot exceed {MAX_MEMO_LENGTH} characters")
    return errors


class TransferService:
    """Username-to-username transfers inside the wallet."""

    def __init__(
        self,
        api_client: Optional[ApiClient] = None,
        balance_cache: Optional[BalanceCache] = None,
        executor: Optional[CommitExecutor] = None,
        currencies: Optional[list[str]] = None,
    ):
        self._api = api_client or ApiClient()
        self.balance_cache = balance_cache or get_balance_cache()
        self.executor = executor or CommitExecutor(api_client=self._api, balance_cache=self.balance_cache)
        self.currencies = [c.upper() for c in (currencies or get_settings().transfer_currency_list)]

    async def transfer_to_username(
        self, spec: UsernameTransferSpec, idempotency_key: Optional[str]
    ) -> TransferResponse:
        """Send funds to another user.

        Args:
            spec: Recipient, amount and auth proof
            idempotency_key: Key for this user action, reused on retries

        Returns:
            TransferResponse with the submitted transfer, or the error
        """
        errors = validate_transfer(spec, self.currencies)
        if errors:
            logger.info("Username transfer rejected locally: %s", "; ".join(errors))
            return TransferResponse(success=False, error=validation_error(errors))

        username = normalize_username(spec.recipient_username)
        currency = spec.currency.strip().upper()
        payload = {
            "recipientUsername": username,
            "amount": to_json_number(spec.amount),
            "currency": currency,
            "twoFactorCode": spec.two_factor_code.strip(),
            "passwordpin": spec.passwordpin.strip(),
            "memo": (spec.memo or "").strip() or None,
        }
        logger.info("Transferring %s %s to @%s (memo: %s)", spec.amount, currency, username, bool(spec.memo))

        plan = CommitPlan(
            kind=TransferKind.INTERNAL_TRANSFER,
            flow=Flow.TRANSFER,
            path=TRANSFER_PATH,
            payload=payload,
            source_asset=currency,
            destination_asset=currency,
            amount=spec.amount,
            destination=Destination(username=username),
        )
        return await self.executor.execute(plan, idempotency_key)

    def get_minimum_amount(self, currency: str) -> Decimal:
        return MINIMUM_TRANSFER_AMOUNTS.get((currency or "").upper(), Decimal("0"))
