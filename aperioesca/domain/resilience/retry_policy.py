"""
Retry decision and backoff schedule for analysis attempts.
"""

from __future__ import annotations

from typing import FrozenSet

from pydantic import BaseModel, ConfigDict, Field

from aperioesca.domain.shared.errors import RETRYABLE_KINDS, AnalysisError, ErrorKind


class RetryPolicy(BaseModel):
    """
    Bounded exponential backoff.

    Attributes:
        max_retries: Extra attempts after the first (attempts run 0..max_retries)
        base_delay_ms: Delay before the first retry
        max_delay_ms: Upper bound of any single delay
        retryable_kinds: Kinds eligible for automatic retry

    Example:
        >>> policy = RetryPolicy()
        >>> policy.should_retry(AnalysisError.from_kind(ErrorKind.NETWORK_ERROR), 0)
        True
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(3, ge=0)
    base_delay_ms: int = Field(1000, ge=0)
    max_delay_ms: int = Field(8000, ge=0)
    retryable_kinds: FrozenSet[ErrorKind] = RETRYABLE_KINDS

    def should_retry(self, error: AnalysisError, attempt: int) -> bool:
        """Decide whether ``attempt`` (0-based) may be followed by another one.

        Malformed responses get a single retry only.
        """
        if attempt >= self.max_retries:
            return False
        if not error.retryable or error.kind not in self.retryable_kinds:
            return False
        if error.kind == ErrorKind.INVALID_RESPONSE and attempt > 0:
            return False
        return True
