"""Classification of backend failures into a closed set of error codes.

The classifier is a pure function of its input and never raises.
Algorithm, in order:

1. No HTTP response at all (timeout, connection failure): NETWORK_ERROR.
2. 502/503/504: UPSTREAM_ERROR. Any other 5xx: SERVER_ERROR.
3. A specific UPPER_SNAKE error token in the body (``INSUFFICIENT_BALANCE``,
   ``KYC_LIMIT_EXCEEDED``...) maps through ``ERROR_TOKENS``.
4. The backend message is matched against the flow's ordered rule table.
   First match wins, so the most specific business conditions come first.
5. Status fallback: 400 VALIDATION_ERROR, 401/403 UNAUTHORIZED,
   404 NOT_FOUND, 409 DUPLICATE_REQUEST.
6. The flow's default code.

Rule tables per flow:

- SWAP: quote expiry, balance, limits, duplicates, currency, lookups,
  session, generic validation. Default REQUEST_FAILED.
- WITHDRAWAL: 2FA/PIN setup, invalid 2FA, invalid PIN, then the swap
  table. Default WITHDRAWAL_FAILED.
- TRANSFER: the withdrawal auth rules, recipient rules, then the swap
  table. Default TRANSFER_FAILED.
- READ (balances, status, supported assets): the swap table. Default
  REQUEST_FAILED.
"""

import asyncio
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

import httpx

from assetflow.client.api_client import ApiResponse, extract_error_token, extract_message
from assetflow.contracts.errors import (
    RETRYABLE_CODES,
    ErrorCode,
    ErrorResult,
    RequiredAction,
)
from assetflow.exceptions import UnknownFlowError

logger = logging.getLogger(__name__)

# A substring, or a pattern for short terms that must match as a whole word.
Term = Union[str, re.Pattern]


class Flow(str, Enum):
    SWAP = "SWAP"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    READ = "READ"


@dataclass(frozen=True)
class MessageRule:
    """Match when every group has at least one term in the message.

    ``statuses`` limits the rule to those HTTP statuses (None = any).
    """

    code: ErrorCode
    groups: tuple[tuple[Term, ...], ...]
    statuses: Optional[frozenset[int]] = None

    def matches(self, message: str, status: Optional[int]) -> bool:
        if self.statuses is not None and status not in self.statuses:
            return False
        return all(any(_contains(message, t) for t in group) for group in self.groups)


def _contains(message: str, term: Term) -> bool:
    if isinstance(term, str):
        return term in message
    return term.search(message) is not None


# Backend tokens that name a specific condition. Generic tokens such as
# VALIDATION_ERROR or UNAUTHORIZED are left to the message rules.
ERROR_TOKENS: dict[str, ErrorCode] = {
    "INSUFFICIENT_BALANCE": ErrorCode.INSUFFICIENT_BALANCE,
    "INSUFFICIENT_FUNDS": ErrorCode.INSUFFICIENT_BALANCE,
    "KYC_LIMIT_EXCEEDED": ErrorCode.LIMIT_EXCEEDED,
    "LIMIT_EXCEEDED": ErrorCode.LIMIT_EXCEEDED,
    "DUPLICATE_WITHDRAWAL": ErrorCode.DUPLICATE_REQUEST,
    "DUPLICATE_TRANSFER": ErrorCode.DUPLICATE_REQUEST,
    "DUPLICATE_REQUEST": ErrorCode.DUPLICATE_REQUEST,
    "INVALID_2FA_CODE": ErrorCode.INVALID_2FA_CODE,
    "INVALID_OTP": ErrorCode.INVALID_2FA_CODE,
    "INVALID_PASSWORDPIN": ErrorCode.INVALID_PASSWORDPIN,
    "2FA_NOT_SETUP": ErrorCode.SETUP_2FA_REQUIRED,
    "SETUP_2FA_REQUIRED": ErrorCode.SETUP_2FA_REQUIRED,
    "PIN_NOT_SETUP": ErrorCode.SETUP_PIN_REQUIRED,
    "SETUP_PIN_REQUIRED": ErrorCode.SETUP_PIN_REQUIRED,
    "RECIPIENT_NOT_FOUND": ErrorCode.RECIPIENT_NOT_FOUND,
    "RECIPIENT_INACTIVE": ErrorCode.RECIPIENT_INACTIVE,
    "UNSUPPORTED_CURRENCY": ErrorCode.UNSUPPORTED_CURRENCY,
    "QUOTE_EXPIRED": ErrorCode.QUOTE_EXPIRED,
    "OBIEX_API_ERROR": ErrorCode.UPSTREAM_ERROR,
    "PRICE_DATA_ERROR": ErrorCode.UPSTREAM_ERROR,
    "INTERNAL_SERVER_ERROR": ErrorCode.SERVER_ERROR,
}

TWO_FA_TERMS = ("2fa", "two-factor", "two factor", re.compile(r"\botp\b"), "verification code")
PIN_TERMS = ("password pin", "passwordpin", re.compile(r"\bpin\b"))
NOT_SET_UP = ("not set up", "not setup", "not enabled")
INVALID_TERMS = ("invalid", "incorrect", "wrong")

AUTH_PROOF_RULES: tuple[MessageRule, ...] = (
    MessageRule(ErrorCode.SETUP_2FA_REQUIRED, (TWO_FA_TERMS, NOT_SET_UP)),
    MessageRule(ErrorCode.SETUP_PIN_REQUIRED, (PIN_TERMS, NOT_SET_UP)),
    MessageRule(ErrorCode.INVALID_2FA_CODE, (TWO_FA_TERMS, INVALID_TERMS + ("expired",))),
    MessageRule(ErrorCode.INVALID_PASSWORDPIN, (PIN_TERMS, INVALID_TERMS)),
)

RECIPIENT_RULES: tuple[MessageRule, ...] = (
    MessageRule(ErrorCode.RECIPIENT_INACTIVE, (("recipient account is inactive", "recipient inactive"),)),
    MessageRule(
        ErrorCode.RECIPIENT_NOT_FOUND,
        (("recipient user not found", "recipient not found", "user not found", "cannot send to yourself"),),
    ),
)

BUSINESS_RULES: tuple[MessageRule, ...] = (
    MessageRule(ErrorCode.QUOTE_EXPIRED, (("quote",), ("expired", "no longer valid"))),
    MessageRule(ErrorCode.INSUFFICIENT_BALANCE, (("insufficient",), ("balance", "funds"))),
    MessageRule(ErrorCode.LIMIT_EXCEEDED, (("kyc limit", "transaction limit", "limit exceeded", "daily limit"),)),
    MessageRule(ErrorCode.LIMIT_EXCEEDED, (("exceeds",), ("limit",))),
    MessageRule(
        ErrorCode.DUPLICATE_REQUEST,
        (
            (
                "duplicate",
                "similar transfer request",
                "similar withdrawal",
                "already pending",
                "too many pending",
                "already processed",
            ),
        ),
    ),
    MessageRule(ErrorCode.UNSUPPORTED_CURRENCY, (("currency", "token", "asset"), ("not supported", "unsupported"))),
    MessageRule(
        ErrorCode.NOT_FOUND,
        (("quote not found", "transaction not found", "withdrawal not found"),),
    ),
    MessageRule(
        ErrorCode.UNAUTHORIZED,
        (("token expired", "session expired", "jwt", "not authenticated", "unauthorized"),),
        statuses=frozenset({401, 403}),
    ),
    MessageRule(
        ErrorCode.VALIDATION_ERROR,
        (
            (
                "validation failed",
                "invalid username",
                "invalid amount",
                "invalid currency",
                "invalid address",
                "required field",
                "is required",
                "minimum",
                "must be",
            ),
        ),
    ),
)

STATUS_FALLBACK: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.UNAUTHORIZED,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.DUPLICATE_REQUEST,
}

USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.NETWORK_ERROR: "Network connection failed. Please check your internet connection and try again.",
    ErrorCode.VALIDATION_ERROR: "Please check your details and try again.",
    ErrorCode.INSUFFICIENT_BALANCE: "You don't have enough balance for this transaction.",
    ErrorCode.LIMIT_EXCEEDED: "This transaction exceeds your account limit. Please upgrade your verification.",
    ErrorCode.INVALID_2FA_CODE: "The 2FA code you entered is incorrect. Please check your authenticator app and try again.",
    ErrorCode.INVALID_PASSWORDPIN: "The password PIN you entered is incorrect. Please try again.",
    ErrorCode.UNAUTHORIZED: "Your session has expired. Please log in again.",
    ErrorCode.UPSTREAM_ERROR: "The service is temporarily unavailable. Please try again shortly.",
    ErrorCode.SERVER_ERROR: "Something went wrong on our side. Please try again shortly.",
    ErrorCode.DUPLICATE_REQUEST: "You have a similar pending request. Please wait or try again later.",
    ErrorCode.NOT_FOUND: "The requested item was not found.",
    ErrorCode.UNKNOWN: "Something went wrong. Please try again.",
    ErrorCode.QUOTE_EXPIRED: "This quote has expired. Please request a new quote.",
    ErrorCode.RECIPIENT_NOT_FOUND: "The username you entered was not found or you cannot send to yourself.",
    ErrorCode.RECIPIENT_INACTIVE: "The recipient account is inactive and cannot receive transfers.",
    ErrorCode.SETUP_2FA_REQUIRED: "Two-factor authentication is required. Please set it up in your security settings.",
    ErrorCode.SETUP_PIN_REQUIRED: "A password PIN is required. Please set it up in your security settings.",
    ErrorCode.UNSUPPORTED_CURRENCY: "The selected currency is not supported.",
    ErrorCode.REQUEST_FAILED: "Request failed. Please try again.",
    ErrorCode.WITHDRAWAL_FAILED: "Withdrawal failed. Please try again.",
    ErrorCode.TRANSFER_FAILED: "Transfer failed. Please try again.",
}

REQUIRED_ACTIONS: dict[ErrorCode, RequiredAction] = {
    ErrorCode.SETUP_2FA_REQUIRED: RequiredAction.SETUP_2FA,
    ErrorCode.SETUP_PIN_REQUIRED: RequiredAction.SETUP_PIN,
    ErrorCode.INVALID_2FA_CODE: RequiredAction.RETRY_2FA,
    ErrorCode.INVALID_PASSWORDPIN: RequiredAction.RETRY_PIN,
    ErrorCode.RECIPIENT_NOT_FOUND: RequiredAction.CHECK_USERNAME,
    ErrorCode.RECIPIENT_INACTIVE: RequiredAction.CONTACT_RECIPIENT,
    ErrorCode.LIMIT_EXCEEDED: RequiredAction.UPGRADE_KYC,
    ErrorCode.INSUFFICIENT_BALANCE: RequiredAction.ADD_FUNDS,
    ErrorCode.DUPLICATE_REQUEST: RequiredAction.WAIT_PENDING,
    ErrorCode.VALIDATION_ERROR: RequiredAction.FIX_INPUT,
    ErrorCode.UNSUPPORTED_CURRENCY: RequiredAction.SELECT_CURRENCY,
    ErrorCode.QUOTE_EXPIRED: RequiredAction.REQUEST_NEW_QUOTE,
    ErrorCode.UNAUTHORIZED: RequiredAction.LOGIN,
    ErrorCode.NETWORK_ERROR: RequiredAction.RETRY,
    ErrorCode.UPSTREAM_ERROR: RequiredAction.RETRY,
    ErrorCode.SERVER_ERROR: RequiredAction.RETRY,
}


def make_error(
    code: ErrorCode,
    detail: Optional[str] = None,
    http_status: Optional[int] = None,
    message: Optional[str] = None,
    errors: Optional[list[str]] = None,
) -> ErrorResult:
    """Build an ErrorResult with the standard message, action and retry flag."""
    return ErrorResult(
        code=code,
        message=message or USER_MESSAGES.get(code, USER_MESSAGES[ErrorCode.UNKNOWN]),
        detail=detail,
        http_status=http_status,
        retryable=code in RETRYABLE_CODES,
        action=REQUIRED_ACTIONS.get(code),
        errors=errors or [],
    )


def validation_error(errors: list[str]) -> ErrorResult:
    """Local format failure; never reaches the network."""
    return make_error(
        ErrorCode.VALIDATION_ERROR,
        detail="; ".join(errors),
        message="; ".join(errors) or None,
        errors=errors,
    )


class ErrorClassifier:
    """Ordered, table-driven classifier for one flow."""

    def __init__(
        self,
        flow: Flow,
        rules: tuple[MessageRule, ...],
        default_code: ErrorCode,
    ):
        self.flow = flow
        self.rules = rules
        self.default_code = default_code

    def classify(self, raw: Any) -> ErrorResult:
        """Map any failure shape to an ErrorResult. Never raises."""
        try:
            return self._classify(raw)
        except Exception as e:
            logger.error("Error classification failed for %s flow: %r", self.flow.value, e)
            return make_error(ErrorCode.UNKNOWN)

    def _classify(self, raw: Any) -> ErrorResult:
        if isinstance(raw, ApiResponse):
            if not raw.received:
                return self._from_exception(raw.error)
            return self._from_response(raw.status_code, raw.body)

        if isinstance(raw, BaseException):
            return self._from_exception(raw)

        if isinstance(raw, Mapping):
            status = raw.get("status_code", raw.get("status"))
            body = raw.get("body", raw.get("data"))
            if status is None:
                # No status means the request never got an answer.
                return make_error(ErrorCode.NETWORK_ERROR, detail=extract_message(dict(raw)))
            return self._from_response(int(status), body)

        return make_error(ErrorCode.UNKNOWN)

    def _from_exception(self, error: Optional[BaseException]) -> ErrorResult:
        if error is None or isinstance(
            error, (httpx.HTTPError, OSError, TimeoutError, asyncio.TimeoutError)
        ):
            detail = f"{type(error).__name__}: {error}" if error is not None else None
            return make_error(ErrorCode.NETWORK_ERROR, detail=detail)
        return make_error(ErrorCode.UNKNOWN, detail=f"{type(error).__name__}: {error}")

    def _from_response(self, status: Optional[int], body: Any) -> ErrorResult:
        backend_message = extract_message(body)

        if status is not None and status >= 500:
            code = ErrorCode.UPSTREAM_ERROR if status in (502, 503, 504) else ErrorCode.SERVER_ERROR
            return make_error(code, detail=backend_message, http_status=status)

        token = extract_error_token(body)
        if token in ERROR_TOKENS:
            return make_error(ERROR_TOKENS[token], detail=backend_message, http_status=status)

        text = (backend_message or "").lower()
        if text:
            for rule in self.rules:
                if rule.matches(text, status):
                    return make_error(rule.code, detail=backend_message, http_status=status)

        if status in STATUS_FALLBACK:
            return make_error(STATUS_FALLBACK[status], detail=backend_message, http_status=status)

        # Unmatched free text is still more useful than the generic message.
        message = backend_message if backend_message and len(backend_message) > 10 else None
        return make_error(
            self.default_code, detail=backend_message, http_status=status, message=message
        )


_CLASSIFIERS: dict[Flow, ErrorClassifier] = {
    Flow.SWAP: ErrorClassifier(Flow.SWAP, BUSINESS_RULES, ErrorCode.REQUEST_FAILED),
    Flow.WITHDRAWAL: ErrorClassifier(
        Flow.WITHDRAWAL, AUTH_PROOF_RULES + BUSINESS_RULES, ErrorCode.WITHDRAWAL_FAILED
    ),
    Flow.TRANSFER: ErrorClassifier(
        Flow.TRANSFER,
        AUTH_PROOF_RULES + RECIPIENT_RULES + BUSINESS_RULES,
        ErrorCode.TRANSFER_FAILED,
    ),
    Flow.READ: ErrorClassifier(Flow.READ, BUSINESS_RULES, ErrorCode.REQUEST_FAILED),
}


def get_classifier(flow: Flow) -> ErrorClassifier:
    try:
        return _CLASSIFIERS[Flow(flow)]
    except (KeyError, ValueError):
        raise UnknownFlowError(str(flow)) from None


def classify(raw: Any, flow: Flow = Flow.READ) -> ErrorResult:
    """Classify ``raw`` with the rule table of ``flow``."""
    return get_classifier(flow).classify(raw)
