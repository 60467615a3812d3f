"""Tests for error classification."""

import asyncio

import httpx
import pytest

from assetflow.client.api_client import ApiResponse
from assetflow.contracts.errors import ErrorCode, RequiredAction
from assetflow.exceptions import UnknownFlowError
from assetflow.services.error_classifier import (
    Flow,
    USER_MESSAGES,
    classify,
    get_classifier,
    validation_error,
)


def response(status, body):
    return ApiResponse(status_code=status, body=body)


class TestTransportFailures:
    """Failures where no HTTP response arrived."""

    def test_timeout_is_retryable_network_error(self):
        """Test that a timeout maps to a retryable NETWORK_ERROR."""
        raw = ApiResponse(status_code=None, error=httpx.ConnectTimeout("timed out"))
        error = classify(raw, Flow.WITHDRAWAL)

        assert error.code == ErrorCode.NETWORK_ERROR
        assert error.retryable is True
        assert error.http_status is None
        assert error.action == RequiredAction.RETRY

    def test_raw_exceptions(self):
        """Test that exceptions are accepted directly."""
        assert classify(httpx.ConnectError("refused")).code == ErrorCode.NETWORK_ERROR
        assert classify(asyncio.TimeoutError()).code == ErrorCode.NETWORK_ERROR
        assert classify(RuntimeError("bug")).code == ErrorCode.UNKNOWN

    def test_mapping_without_status(self):
        """Test that a status-less mapping means no response arrived."""
        error = classify({"message": "Network Error"})
        assert error.code == ErrorCode.NETWORK_ERROR
        assert error.detail == "Network Error"

    def test_unexpected_shapes_are_unknown(self):
        """Test that inputs the classifier does not understand yield UNKNOWN."""
        for raw in (None, 42, "boom", ["a"], {"status": "not-a-number"}):
            error = classify(raw)
            assert error.code == ErrorCode.UNKNOWN
            assert error.retryable is False


class TestServerErrors:
    @pytest.mark.parametrize("status", [502, 503, 504])
    def test_gateway_errors_are_upstream(self, status):
        error = classify(response(status, {"message": "Bad gateway"}))
        assert error.code == ErrorCode.UPSTREAM_ERROR
        assert error.retryable is True
        assert error.http_status == status

    def test_other_5xx_is_server_error(self):
        """Test that a 5xx wins over any message in the body."""
        error = classify(response(500, {"message": "Insufficient balance"}), Flow.SWAP)
        assert error.code == ErrorCode.SERVER_ERROR
        assert error.retryable is True
        assert error.detail == "Insufficient balance"


class TestBusinessErrors:
    def test_invalid_2fa_on_401_is_not_unauthorized(self):
        """Test that a wrong 2FA code is never mistaken for an expired session."""
        error = classify(response(401, {"success": False, "message": "Invalid 2FA code"}), Flow.WITHDRAWAL)

        assert error.code == ErrorCode.INVALID_2FA_CODE
        assert error.retryable is False
        assert error.action == RequiredAction.RETRY_2FA
        assert error.http_status == 401

    def test_invalid_pin(self):
        error = classify(response(400, {"message": "Incorrect password PIN"}), Flow.TRANSFER)
        assert error.code == ErrorCode.INVALID_PASSWORDPIN

    @pytest.mark.parametrize(
        "message",
        ["Invalid shipping address", "Invalid swapping pair", "Invalid footprint"],
    )
    def test_pin_and_otp_match_whole_words_only(self, message):
        """Test that words containing "pin" or "otp" are not auth proof errors."""
        error = classify(response(400, {"message": message}), Flow.TRANSFER)
        assert error.code not in (ErrorCode.INVALID_PASSWORDPIN, ErrorCode.INVALID_2FA_CODE)

    def test_invalid_otp_word(self):
        error = classify(response(400, {"message": "Invalid OTP"}), Flow.WITHDRAWAL)
        assert error.code == ErrorCode.INVALID_2FA_CODE

    def test_setup_required_before_invalid(self):
        """Test that setup rules come before the invalid-code rules."""
        error = classify(response(400, {"message": "2FA is not set up for this account"}), Flow.WITHDRAWAL)
        assert error.code == ErrorCode.SETUP_2FA_REQUIRED
        assert error.action == RequiredAction.SETUP_2FA

    def test_error_token_in_nested_data(self):
        body = {"success": False, "data": {"error": "KYC_LIMIT_EXCEEDED", "message": "Over limit"}}
        error = classify(response(400, body), Flow.WITHDRAWAL)
        assert error.code == ErrorCode.LIMIT_EXCEEDED
        assert error.action == RequiredAction.UPGRADE_KYC

    def test_duplicate_token(self):
        error = classify(response(400, {"error": "DUPLICATE_WITHDRAWAL"}), Flow.WITHDRAWAL)
        assert error.code == ErrorCode.DUPLICATE_REQUEST

    def test_insufficient_balance_message(self):
        error = classify(response(400, {"message": "Insufficient balance for this swap"}), Flow.SWAP)
        assert error.code == ErrorCode.INSUFFICIENT_BALANCE
        assert error.action == RequiredAction.ADD_FUNDS

    def test_recipient_rules_only_in_transfer_flow(self):
        """Test that each flow uses its own rule table."""
        body = {"message": "Recipient user not found"}
        assert classify(response(400, body), Flow.TRANSFER).code == ErrorCode.RECIPIENT_NOT_FOUND
        assert classify(response(400, body), Flow.SWAP).code == ErrorCode.VALIDATION_ERROR

    def test_recipient_inactive(self):
        error = classify(response(400, {"message": "Recipient account is inactive"}), Flow.TRANSFER)
        assert error.code == ErrorCode.RECIPIENT_INACTIVE

    def test_quote_expired(self):
        error = classify(response(400, {"message": "Quote has expired"}), Flow.SWAP)
        assert error.code == ErrorCode.QUOTE_EXPIRED

    def test_session_expired(self):
        error = classify(response(401, {"message": "Token expired"}), Flow.READ)
        assert error.code == ErrorCode.UNAUTHORIZED
        assert error.action == RequiredAction.LOGIN


class TestFallbacks:
    @pytest.mark.parametrize(
        "status,code",
        [
            (400, ErrorCode.VALIDATION_ERROR),
            (401, ErrorCode.UNAUTHORIZED),
            (403, ErrorCode.UNAUTHORIZED),
            (404, ErrorCode.NOT_FOUND),
            (409, ErrorCode.DUPLICATE_REQUEST),
        ],
    )
    def test_status_fallback(self, status, code):
        assert classify(response(status, {"message": "nope"}), Flow.SWAP).code == code

    def test_flow_defaults(self):
        """Test the per-flow default for unmatched responses."""
        raw = response(422, {"message": "Something odd happened upstream"})
        assert classify(raw, Flow.SWAP).code == ErrorCode.REQUEST_FAILED
        assert classify(raw, Flow.WITHDRAWAL).code == ErrorCode.WITHDRAWAL_FAILED
        assert classify(raw, Flow.TRANSFER).code == ErrorCode.TRANSFER_FAILED

    def test_default_keeps_backend_message(self):
        error = classify(response(422, {"message": "Something odd happened upstream"}), Flow.TRANSFER)
        assert error.message == "Something odd happened upstream"

    def test_default_short_message_uses_standard_text(self):
        error = classify(response(422, {"message": "odd"}), Flow.TRANSFER)
        assert error.message == USER_MESSAGES[ErrorCode.TRANSFER_FAILED]


class TestClassifierProperties:
    def test_deterministic(self):
        """Test that the same input always yields the same code."""
        raw = response(400, {"message": "Transaction limit exceeded"})
        codes = {classify(raw, Flow.WITHDRAWAL).code for _ in range(5)}
        assert codes == {ErrorCode.LIMIT_EXCEEDED}

    def test_only_network_class_errors_are_retryable(self):
        retryable = {
            classify(raw, flow).code
            for flow in Flow
            for raw in (
                response(400, {"message": "Invalid 2FA code"}),
                response(401, {}),
                response(404, {}),
                response(409, {}),
                response(500, {}),
                response(503, {}),
                ApiResponse(status_code=None, error=httpx.ReadTimeout("slow")),
            )
            if classify(raw, flow).retryable
        }
        assert retryable == {ErrorCode.SERVER_ERROR, ErrorCode.UPSTREAM_ERROR, ErrorCode.NETWORK_ERROR}

    def test_unknown_flow_raises(self):
        with pytest.raises(UnknownFlowError):
            get_classifier("BILLING")

    def test_validation_error_lists_problems(self):
        error = validation_error(["Amount is required", "Network is required"])
        assert error.code == ErrorCode.VALIDATION_ERROR
        assert error.errors == ["Amount is required", "Network is required"]
        assert error.message == "Amount is required; Network is required"
        assert error.action == RequiredAction.FIX_INPUT
