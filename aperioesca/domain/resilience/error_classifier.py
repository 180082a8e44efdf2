"""
Error classification.

Maps any raw failure onto the closed ErrorKind taxonomy. Rules are tried
in a fixed order and the first rule matching the exception type, HTTP
status or message text wins. Parse failures are recognised by type
before any rule runs, so a JSON decode error mentioning "invalid" still
lands on INVALID_RESPONSE.
"""

from __future__ import annotations

import asyncio
import json
from typing import Callable, List, Optional, Tuple, Type

import httpx
from pydantic import ValidationError

from aperioesca.domain.shared.errors import (
    AnalysisError,
    ConfigurationError,
    ErrorKind,
    ProviderHTTPError,
    ResponseParseError,
)


class _Rule:
    """One classification rule: types, HTTP statuses and message patterns."""

    def __init__(
        self,
        kind: ErrorKind,
        types: Tuple[Type[BaseException], ...] = (),
        statuses: Tuple[int, ...] = (),
        patterns: Tuple[str, ...] = (),
    ) -> None:
        self.kind = kind
        self.types = types
        self.statuses = statuses
        self.patterns = patterns

    def matches(self, error: BaseException, status: Optional[int], message: str) -> bool:
        if self.types and isinstance(error, self.types):
            return True
        if status is not None and status in self.statuses:
            return True
        return any(p in message for p in self.patterns)


PARSE_FAILURES: Tuple[Type[BaseException], ...] = (
    json.JSONDecodeError,
    ResponseParseError,
    ValidationError,
)

RULES: List[_Rule] = [
    _Rule(
        ErrorKind.NETWORK_ERROR,
        types=(httpx.TransportError, asyncio.TimeoutError, TimeoutError, ConnectionError),
        statuses=(408,),
        patterns=("network", "fetch", "timeout", "timed out", "connection"),
    ),
    _Rule(
        ErrorKind.QUOTA_EXCEEDED,
        statuses=(429,),
        patterns=("quota", "rate limit", "429", "resource_exhausted", "too many requests"),
    ),
    _Rule(
        ErrorKind.AUTHENTICATION_ERROR,
        types=(ConfigurationError,),
        statuses=(401, 403),
        patterns=("api key", "api_key", "authentication", "unauthorized", "401", "403", "permission_denied"),
    ),
    _Rule(
        ErrorKind.INVALID_REQUEST,
        statuses=(400, 413, 422),
        patterns=("invalid", "bad request", "400", "payload too large", "413"),
    ),
    _Rule(
        ErrorKind.SERVICE_UNAVAILABLE,
        statuses=(502, 503, 504),
        patterns=("service unavailable", "unavailable", "503", "overloaded"),
    ),
    _Rule(
        ErrorKind.INVALID_RESPONSE,
        types=PARSE_FAILURES,
        patterns=("json", "parse", "malformed", "unexpected token"),
    ),
]


def _status_of(error: BaseException) -> Optional[int]:
    if isinstance(error, ProviderHTTPError):
        return error.status_code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def classify(error: BaseException) -> AnalysisError:
    """Classify a raw failure.

    Args:
        error: Any exception raised by the transport or parser

    Returns:
        AnalysisError with templated message; already-classified
        errors are returned unchanged

    Example:
        >>> classify(ProviderHTTPError(400, "API key not valid")).kind
        <ErrorKind.AUTHENTICATION_ERROR: 'AUTHENTICATION_ERROR'>
    """
    if isinstance(error, AnalysisError):
        return error
    if isinstance(error, PARSE_FAILURES):
        return AnalysisError.from_kind(ErrorKind.INVALID_RESPONSE, cause=error)

    status = _status_of(error)
    message = str(error).lower()
    for rule in RULES:
        if rule.matches(error, status, message):
            return AnalysisError.from_kind(rule.kind, cause=error)

    return AnalysisError.from_kind(ErrorKind.UNKNOWN_ERROR, cause=error)


Classifier = Callable[[BaseException], AnalysisError]
