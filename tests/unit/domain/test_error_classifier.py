"""
Unit tests for error classification and the retry decision.
"""

import asyncio
import json

import httpx
import pytest
from pydantic import ValidationError

from aperioesca.domain.analysis.models import AnalysisResult
from aperioesca.domain.resilience.error_classifier import classify
from aperioesca.domain.resilience.retry_policy import RetryPolicy
from aperioesca.domain.shared.errors import (
    USER_MESSAGES,
    AnalysisError,
    ConfigurationError,
    ErrorKind,
    NotFoodError,
    ProviderHTTPError,
    ResponseParseError,
)


def _json_error() -> json.JSONDecodeError:
    try:
        json.loads("{invalid json")
    except json.JSONDecodeError as exc:
        return exc
    raise AssertionError("unreachable")


class TestClassify:
    """Test suite for classify()."""

    def test_message_with_429_is_quota(self) -> None:
        err = classify(Exception("Request failed with status 429"))

        assert err.kind == ErrorKind.QUOTA_EXCEEDED
        assert err.retryable is False

    def test_json_decode_error_is_invalid_response(self) -> None:
        """Decode errors mention 'invalid' but still land on INVALID_RESPONSE."""
        err = classify(_json_error())

        assert err.kind == ErrorKind.INVALID_RESPONSE
        assert err.retryable is True

    def test_response_parse_error(self) -> None:
        assert classify(ResponseParseError("NO_JSON_OBJECT")).kind == ErrorKind.INVALID_RESPONSE

    def test_pydantic_validation_error(self) -> None:
        with pytest.raises(ValidationError) as info:
            AnalysisResult.model_validate({"mealType": "brunch"})

        assert classify(info.value).kind == ErrorKind.INVALID_RESPONSE

    @pytest.mark.parametrize(
        "error",
        [
            httpx.ConnectError("connection refused"),
            httpx.ReadTimeout("read timed out"),
            asyncio.TimeoutError(),
            ConnectionResetError(),
            Exception("Network request failed"),
            Exception("fetch failed"),
        ],
    )
    def test_network_errors(self, error: BaseException) -> None:
        err = classify(error)

        assert err.kind == ErrorKind.NETWORK_ERROR
        assert err.retryable is True

    @pytest.mark.parametrize(
        "status,kind",
        [
            (429, ErrorKind.QUOTA_EXCEEDED),
            (401, ErrorKind.AUTHENTICATION_ERROR),
            (403, ErrorKind.AUTHENTICATION_ERROR),
            (400, ErrorKind.INVALID_REQUEST),
            (413, ErrorKind.INVALID_REQUEST),
            (503, ErrorKind.SERVICE_UNAVAILABLE),
            (502, ErrorKind.SERVICE_UNAVAILABLE),
            (500, ErrorKind.UNKNOWN_ERROR),
        ],
    )
    def test_http_status(self, status: int, kind: ErrorKind) -> None:
        assert classify(ProviderHTTPError(status, "upstream said no")).kind == kind

    def test_bad_api_key_reported_as_400_is_auth(self) -> None:
        """Gemini answers an invalid key with HTTP 400; the key rule comes first."""
        err = classify(
            ProviderHTTPError(
                400,
                "API key not valid. Please pass a valid API key.",
                error_code="INVALID_ARGUMENT",
            )
        )

        assert err.kind == ErrorKind.AUTHENTICATION_ERROR
        assert err.retryable is False
        assert err.message == USER_MESSAGES[ErrorKind.AUTHENTICATION_ERROR]

    def test_first_matching_rule_wins(self) -> None:
        """An earlier rule's message match beats a later rule's status match."""
        assert classify(ProviderHTTPError(503, "quota exceeded")).kind == ErrorKind.QUOTA_EXCEEDED
        assert classify(ProviderHTTPError(400, "rate limit hit")).kind == ErrorKind.QUOTA_EXCEEDED

    def test_parse_error_mentioning_invalid_is_invalid_response(self) -> None:
        err = classify(ResponseParseError("invalid control character in model output"))

        assert err.kind == ErrorKind.INVALID_RESPONSE

    @pytest.mark.parametrize(
        "message,kind",
        [
            ("RESOURCE_EXHAUSTED: quota exceeded", ErrorKind.QUOTA_EXCEEDED),
            ("API key not valid", ErrorKind.AUTHENTICATION_ERROR),
            ("PERMISSION_DENIED", ErrorKind.AUTHENTICATION_ERROR),
            ("Invalid argument: image", ErrorKind.INVALID_REQUEST),
            ("The model is overloaded", ErrorKind.SERVICE_UNAVAILABLE),
            ("Unexpected token < in JSON", ErrorKind.INVALID_RESPONSE),
            ("something odd happened", ErrorKind.UNKNOWN_ERROR),
        ],
    )
    def test_message_patterns(self, message: str, kind: ErrorKind) -> None:
        assert classify(Exception(message)).kind == kind

    def test_configuration_error_is_auth(self) -> None:
        err = classify(ConfigurationError("GEMINI_API_KEY not configured"))

        assert err.kind == ErrorKind.AUTHENTICATION_ERROR
        assert err.retryable is False

    def test_classified_error_passes_through(self) -> None:
        original = NotFoodError()

        assert classify(original) is original

    def test_user_message_never_contains_provider_text(self) -> None:
        raw = ProviderHTTPError(500, "stack trace: secret-internal-host:9000")

        err = classify(raw)

        assert err.message == USER_MESSAGES[ErrorKind.UNKNOWN_ERROR]
        assert "secret" not in err.message
        assert err.cause is raw
        assert err.suggested_action == "Try again or use manual entry."


class TestRetryPolicy:
    """Test suite for RetryPolicy.should_retry()."""

    @pytest.fixture
    def policy(self) -> RetryPolicy:
        return RetryPolicy(max_retries=3)

    def test_retryable_kinds_retry_until_max(self, policy: RetryPolicy) -> None:
        err = AnalysisError.from_kind(ErrorKind.NETWORK_ERROR)

        assert [policy.should_retry(err, a) for a in range(4)] == [True, True, True, False]

    @pytest.mark.parametrize(
        "kind",
        [
            ErrorKind.QUOTA_EXCEEDED,
            ErrorKind.AUTHENTICATION_ERROR,
            ErrorKind.INVALID_REQUEST,
            ErrorKind.NOT_FOOD,
        ],
    )
    def test_non_retryable_kinds(self, policy: RetryPolicy, kind: ErrorKind) -> None:
        assert policy.should_retry(AnalysisError.from_kind(kind), 0) is False

    def test_invalid_response_retried_once(self, policy: RetryPolicy) -> None:
        err = AnalysisError.from_kind(ErrorKind.INVALID_RESPONSE)

        assert policy.should_retry(err, 0) is True
        assert policy.should_retry(err, 1) is False

    def test_kind_outside_retryable_set(self) -> None:
        policy = RetryPolicy(retryable_kinds=frozenset({ErrorKind.NETWORK_ERROR}))

        assert policy.should_retry(AnalysisError.from_kind(ErrorKind.UNKNOWN_ERROR), 0) is False
