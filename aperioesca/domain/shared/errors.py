"""
Domain exceptions.

Typed exceptions for explicit error handling.
Every failure that crosses the orchestrator boundary is an AnalysisError
carrying one of the closed ErrorKind values and a user-safe message.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional


# ═══════════════════════════════════════════════════════════
# BASE EXCEPTION
# ═══════════════════════════════════════════════════════════


class DomainError(Exception):
    """
    Base exception for all domain errors.

    All package-specific exceptions inherit from this.
    Allows catching all domain errors with single except clause.
    """

    pass


# ═══════════════════════════════════════════════════════════
# CLASSIFIED ANALYSIS ERRORS
# ═══════════════════════════════════════════════════════════


class ErrorKind(str, Enum):
    """Closed taxonomy of analysis failures."""

    NETWORK_ERROR = "NETWORK_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    NOT_FOOD = "NOT_FOOD"


USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.NETWORK_ERROR: (
        "Network connection issue. Please check your internet connection."
    ),
    ErrorKind.QUOTA_EXCEEDED: (
        "Daily analysis limit reached. Please try again tomorrow."
    ),
    ErrorKind.AUTHENTICATION_ERROR: (
        "Service configuration error. Please contact support."
    ),
    ErrorKind.INVALID_REQUEST: (
        "Could not process image. Please try a clearer photo."
    ),
    ErrorKind.SERVICE_UNAVAILABLE: (
        "AI service temporarily unavailable. Please try again in a moment."
    ),
    ErrorKind.INVALID_RESPONSE: "Received invalid response from AI service.",
    ErrorKind.UNKNOWN_ERROR: "An unexpected error occurred. Please try again.",
    ErrorKind.NOT_FOOD: (
        "This photo doesn't seem to show a meal. Please photograph your food."
    ),
}

SUGGESTED_ACTIONS: Dict[ErrorKind, str] = {
    ErrorKind.NETWORK_ERROR: "Check your internet connection and try again.",
    ErrorKind.QUOTA_EXCEEDED: (
        "You can manually enter meal details or wait until tomorrow."
    ),
    ErrorKind.AUTHENTICATION_ERROR: "Please update the app or contact support.",
    ErrorKind.INVALID_REQUEST: "Take a clearer photo with better lighting.",
    ErrorKind.SERVICE_UNAVAILABLE: "Wait a moment and try again.",
    ErrorKind.INVALID_RESPONSE: "Try again or use manual entry.",
    ErrorKind.UNKNOWN_ERROR: "Try again or use manual entry.",
    ErrorKind.NOT_FOOD: "Point the camera at your plate and take a new photo.",
}

RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.NETWORK_ERROR,
        ErrorKind.SERVICE_UNAVAILABLE,
        ErrorKind.INVALID_RESPONSE,
        ErrorKind.UNKNOWN_ERROR,
    }
)


class AnalysisError(DomainError):
    """
    Classified, user-presentable analysis failure.

    Attributes:
        kind: ErrorKind of the failure
        message: Pre-templated text safe to show to the end user
        retryable: Whether an automatic retry may help
        suggested_action: Next step to offer in the UI
        cause: Original exception (also chained as __cause__)

    Example:
        >>> err = AnalysisError.from_kind(ErrorKind.NETWORK_ERROR)
        >>> err.retryable
        True
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        retryable: bool,
        suggested_action: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retryable = retryable
        self.suggested_action = suggested_action
        self.cause = cause

    @classmethod
    def from_kind(
        cls,
        kind: ErrorKind,
        cause: Optional[BaseException] = None,
        message: Optional[str] = None,
    ) -> "AnalysisError":
        """Build an error from the fixed template table.

        Args:
            kind: Error kind
            cause: Original exception, if any
            message: Override for the templated user message

        Returns:
            AnalysisError with template message, action and retryability
        """
        return cls(
            kind=kind,
            message=message or USER_MESSAGES[kind],
            retryable=kind in RETRYABLE_KINDS,
            suggested_action=SUGGESTED_ACTIONS[kind],
            cause=cause,
        )

    def to_dict(self) -> Dict[str, object]:
        """Serialize for CLI/API output (never includes the raw cause)."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "suggestedAction": self.suggested_action,
        }

    def __repr__(self) -> str:
        return f"AnalysisError(kind={self.kind.value}, retryable={self.retryable})"


class NotFoodError(AnalysisError):
    """
    Tier-1 classification rejected the photo as not food.

    A valid answer from the provider, not a transport failure:
    never retried and never counted against the circuit breaker.
    """

    def __init__(self, confidence: Optional[str] = None) -> None:
        super().__init__(
            kind=ErrorKind.NOT_FOOD,
            message=USER_MESSAGES[ErrorKind.NOT_FOOD],
            retryable=False,
            suggested_action=SUGGESTED_ACTIONS[ErrorKind.NOT_FOOD],
        )
        self.confidence = confidence


# ═══════════════════════════════════════════════════════════
# INFRASTRUCTURE EXCEPTIONS
# ═══════════════════════════════════════════════════════════


class ExternalServiceError(DomainError):
    """
    External service call failed.

    Raised when:
    - Vision provider returns an error status
    - Relay endpoint rejects the request
    """

    pass


class ProviderHTTPError(ExternalServiceError):
    """
    Provider answered with a non-success HTTP status.

    The provider's own message is kept for logs only.

    Example:
        >>> raise ProviderHTTPError(503, "model overloaded")
    """

    def __init__(
        self,
        status_code: int,
        message: str = "",
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(f"HTTP {status_code}: {message}".rstrip(": "))
        self.status_code = status_code
        self.provider_message = message
        self.error_code = error_code


class ResponseParseError(DomainError):
    """Model output could not be turned into the expected JSON shape."""

    def __init__(self, message: str, raw_text: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw_text = raw_text


class ImageProcessingError(DomainError):
    """Photo could not be decoded, resized or encoded."""

    pass


class StateStoreError(DomainError):
    """Persisted state record could not be read or written."""

    pass


class ConfigurationError(DomainError):
    """Required configuration is missing or unusable."""

    pass
