"""External crypto withdrawals.

Fee estimation and max-amount lookups are read-only. Submission goes
through the commit executor, so it is idempotent per key and refreshes
balances on success.

SECURITY: 2FA codes and PINs are sent to the backend and nowhere else.
They are never stored on ``TransferRequest`` or logged; addresses are
logged truncated.
"""

import logging
import re
from typing import Any, Optional

from assetflow.client.api_client import ApiClient
from assetflow.config import get_settings
from assetflow.contracts.transfers import (
    Destination,
    FeeEstimateResponse,
    MaxWithdrawableResponse,
    TransferKind,
    TransferResponse,
    WithdrawalFeeEstimate,
    WithdrawalSpec,
)
from assetflow.services.balance_cache import BalanceCache, get_balance_cache
from assetflow.services.commit_executor import CommitExecutor, CommitPlan
from assetflow.services.error_classifier import Flow, get_classifier, validation_error
from assetflow.utils.amounts import first_present, to_decimal, to_json_number

logger = logging.getLogger(__name__)

FEE_PATH = "/withdraw/initiate"
WITHDRAW_PATH = "/withdraw/crypto"
MAX_AMOUNT_PATH = "/withdrawal/max-amount"

MIN_ADDRESS_LENGTH = 10
MAX_MEMO_LENGTH = 200
SIX_DIGITS = re.compile(r"[0-9]{6}")


def truncate_address(address: Optional[str]) -> str:
    if not address:
        return ""
    return address[:10] + "..." if len(address) > 10 else address


def validate_auth_proof(two_factor_code: Any, passwordpin: Any) -> list[str]:
    """Check 2FA code and PIN format. Shared by withdrawals and transfers."""
    errors = []
    code = str(two_factor_code).strip() if two_factor_code is not None else ""
    pin = str(passwordpin).strip() if passwordpin is not None else ""
    if not code:
        errors.append("Two-factor authentication code is required")
    elif not SIX_DIGITS.fullmatch(code):
        errors.append("Two-factor code must be exactly 6 digits")
    if not pin:
        errors.append("Password PIN is required")
    elif not SIX_DIGITS.fullmatch(pin):
        errors.append("Password PIN must be exactly 6 digits")
    return errors


def validate_withdrawal(spec: WithdrawalSpec) -> list[str]:
    """Client-side checks; every problem is reported, not just the first."""
    errors = []
    address = (spec.address or "").strip()
    if not address:
        errors.append("Withdrawal address is required")
    elif len(address) < MIN_ADDRESS_LENGTH:
        errors.append("Invalid withdrawal address format")
    if not (spec.network or "").strip():
        errors.append("Network is required")
    if not (spec.currency or "").strip():
        errors.append("Currency is required")
    if spec.amount <= 0:
        errors.append("Amount must be a positive number")
    errors.extend(validate_auth_proof(spec.two_factor_code, spec.passwordpin))
    if spec.memo and len(spec.memo) > MAX_MEMO_LENGTH:
        errors.append(f"Memo cannot exceed {MAX_MEMO_LENGTH} characters")
    return errors


class WithdrawalService:
    """External withdrawals to on-chain addresses."""

    def __init__(
        self,
        api_client: Optional[ApiClient] = None,
        balance_cache: Optional[BalanceCache] = None,
        executor: Optional[CommitExecutor] = None,
    ):
        self._api = api_client or ApiClient()
        self.balance_cache = balance_cache or get_balance_cache()
        self.executor = executor or CommitExecutor(api_client=self._api, balance_cache=self.balance_cache)
        self._timeout = get_settings().request_timeout_seconds
        self._classifier = get_classifier(Flow.WITHDRAWAL)

    async def submit_withdrawal(self, spec: WithdrawalSpec, idempotency_key: Optional[str]) -> TransferResponse:
        """Submit a withdrawal.

        Args:
            spec: Destination, amount and auth proof
            idempotency_key: Key for this user action, reused on retries

        Returns:
            TransferResponse with the submitted transfer, or the error
        """
        errors = validate_withdrawal(spec)
        if errors:
            logger.info("Withdrawal rejected locally: %s", "; ".join(errors))
            return TransferResponse(success=False, error=validation_error(errors))

        currency = spec.currency.strip().upper()
        destination = Destination(
            address=spec.address.strip(),
            network=spec.network.strip().upper(),
            memo=spec.destination_memo.strip() if spec.destination_memo else None,
        )
        payload = {
            "destination": destination.model_dump(include={"address", "network", "memo"}),
            "amount": to_json_number(spec.amount),
            "currency": currency,
            "twoFactorCode": spec.two_factor_code.strip(),
            "passwordpin": spec.passwordpin.strip(),
            "memo": (spec.memo or "").strip() or None,
            "narration": (spec.narration or "").strip() or None,
        }
        logger.info(
            "Submitting withdrawal: %s %s on %s to %s",
            spec.amount,
            currency,
            destination.network,
            truncate_address(destination.address),
        )

        plan = CommitPlan(
            kind=TransferKind.WITHDRAWAL,
            flow=Flow.WITHDRAWAL,
            path=WITHDRAW_PATH,
            payload=payload,
            source_asset=currency,
            destination_asset=currency,
            amount=spec.amount,
            destination=destination,
        )
        return await self.executor.execute(plan, idempotency_key)

    async def calculate_withdrawal_fee(self, amount: Any, currency: str, network: str) -> FeeEstimateResponse:
        """Ask the backend for the fee and receiver amount of a withdrawal."""
        errors = []
        value = to_decimal(amount)
        if value is None or value <= 0:
            errors.append("Amount must be a positive number")
        if not (currency or "").strip():
            errors.append("Currency is required")
        if not (network or "").strip():
            errors.append("Network is required")
        if errors:
            return FeeEstimateResponse(success=False, error=validation_error(errors))

        currency = currency.strip().upper()
        network = network.strip().upper()
        response = await self._api.post(
            FEE_PATH,
            {"amount": to_json_number(value), "currency": currency, "network": network},
            timeout=self._timeout,
        )
        if not response.ok:
            return FeeEstimateResponse(success=False, error=self._classifier.classify(response))

        data = response.data if isinstance(response.data, dict) else {}
        estimate = WithdrawalFeeEstimate(
            currency=str(data.get("currency") or currency).upper(),
            network=data.get("network") or network,
            amount=to_decimal(data.get("amount")) or value,
            fee=to_decimal(data.get("fee")) or 0,
            fee_usd=to_decimal(first_present(data, "feeUsd", "feeUSD")),
            receiver_amount=to_decimal(data.get("receiverAmount")),
            total_amount=to_decimal(data.get("totalAmount")),
        )
        logger.debug("Withdrawal fee for %s %s on %s: %s", value, currency, network, estimate.fee)
        return FeeEstimateResponse(success=True, estimate=estimate)

    async def get_max_withdrawable(self, currency: str) -> MaxWithdrawableResponse:
        """Max withdrawable amount for ``currency``; the server is the source of truth."""
        normalized = (currency or "").strip().upper()
        if not normalized:
            return MaxWithdrawableResponse(
                success=False,
                currency="",
                error=validation_error(["Currency is required"]),
            )

        response = await self._api.get(
            MAX_AMOUNT_PATH, params={"currency": normalized}, timeout=self._timeout
        )
        if not response.ok:
            return MaxWithdrawableResponse(
                success=False,
                currency=normalized,
                error=get_classifier(Flow.READ).classify(response),
            )

        data = response.data if isinstance(response.data, dict) else {}
        max_amount = to_decimal(data.get("maxAmount"))
        return MaxWithdrawableResponse(
            success=True,
            currency=str(data.get("currency") or normalized).upper(),
            max_amount=max_amount if max_amount is not None and max_amount >= 0 else 0,
        )
