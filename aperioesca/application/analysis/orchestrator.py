"""
Meal-photo analysis orchestration.

Gates every request on the circuit breaker and the daily quota, runs the
transport under a bounded exponential backoff, and turns every failure
into a classified, user-presentable AnalysisError.

Design Pattern: Service Layer + Dependency Injection
"""

from __future__ import annotations

import asyncio
import math
from typing import Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, ConfigDict
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

from aperioesca.domain.analysis.models import AnalysisResult, ImagePayload
from aperioesca.domain.analysis.ports import IAnalysisClient, IImageProcessor, PhotoSource
from aperioesca.domain.resilience.circuit_breaker import CircuitBreaker
from aperioesca.domain.resilience.error_classifier import Classifier, classify
from aperioesca.domain.resilience.quota import QuotaManager, QuotaState
from aperioesca.domain.resilience.retry_policy import RetryPolicy
from aperioesca.domain.shared.errors import (
    AnalysisError,
    ErrorKind,
    ImageProcessingError,
    NotFoodError,
)

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

DEFAULT_CIRCUIT_WAIT_S = 60
CIRCUIT_OPEN_MESSAGE = (
    "AI service temporarily unavailable. Please try again in {seconds} seconds."
)
DAILY_LIMIT_MESSAGE = "Daily limit of {limit} analyses reached. Resets at {time}."
RETRY_LIMIT_MESSAGE = "Retry limit reached. Please try again later."


class AnalysisOutcome(BaseModel):
    """
    Successful analysis plus the quota picture after it.

    Attributes:
        result: Validated AnalysisResult
        quota: Quota snapshot after the call
        approaching_limit: Soft warning, 80% of the daily limit used
        attempts: Network attempts made (1 = no retry)
    """

    model_config = ConfigDict(frozen=True)

    result: AnalysisResult
    quota: QuotaState
    approaching_limit: bool = False
    attempts: int = 1


class AnalysisOrchestrator:
    """
    Coordinates quota, circuit breaker, image preparation and transport.

    Only one analysis runs at a time per orchestrator: the persisted
    counters are read-modify-write records and are not safe under
    concurrent increments.

    Dependencies (injected via Ports/Interfaces):
    - client: IAnalysisClient - direct, relayed or stub transport
    - image_processor: IImageProcessor - resize/compress
    - quota: QuotaManager - daily budget and retry sub-budget
    - circuit_breaker: CircuitBreaker - upstream health guard

    Example:
        >>> orchestrator = AnalysisOrchestrator(client, processor, quota, breaker)
        >>> outcome = await orchestrator.analyze("lunch.jpg")
        >>> outcome.result.energy_band
        <EnergyBand.MODERATE: 'moderate'>
    """

    def __init__(
        self,
        client: IAnalysisClient,
        image_processor: IImageProcessor,
        quota: QuotaManager,
        circuit_breaker: CircuitBreaker,
        retry_policy: Optional[RetryPolicy] = None,
        classifier: Classifier = classify,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.image_processor = image_processor
        self.quota = quota
        self.circuit_breaker = circuit_breaker
        self.retry_policy = retry_policy or RetryPolicy()
        self._classify = classifier
        self._sleep = sleep
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Load persisted quota and circuit-breaker state."""
        await self.quota.initialize()
        await self.circuit_breaker.initialize()

    async def analyze(self, photo: PhotoSource) -> AnalysisOutcome:
        """
        Analyze one meal photo.

        Args:
            photo: File path or raw image bytes

        Returns:
            AnalysisOutcome with the validated result

        Raises:
            AnalysisError: Classified failure (NotFoodError for a
                tier-1 rejection)
        """
        async with self._lock:
            return await self._analyze(photo)

    async def _analyze(self, photo: PhotoSource) -> AnalysisOutcome:
        await self.initialize()

        if not await self.circuit_breaker.can_make_request():
            wait = self.circuit_breaker.get_time_until_retry()
            seconds = math.ceil(wait.total_seconds()) if wait is not None else DEFAULT_CIRCUIT_WAIT_S
            logger.warning("Circuit open, request rejected", retry_in_s=seconds)
            raise AnalysisError.from_kind(
                ErrorKind.SERVICE_UNAVAILABLE,
                message=CIRCUIT_OPEN_MESSAGE.format(seconds=seconds),
            )

        if not await self.quota.can_make_request(is_retry=False):
            info = await self.quota.get_quota_info()
            logger.warning("Daily quota exhausted", daily_limit=info.daily_limit)
            raise AnalysisError.from_kind(
                ErrorKind.QUOTA_EXCEEDED,
                message=DAILY_LIMIT_MESSAGE.format(
                    limit=info.daily_limit, time=info.reset_at.strftime("%H:%M")
                ),
            )

        try:
            payload = await self.image_processor.prepare(photo)
        except ImageProcessingError as exc:
            logger.warning("Photo preparation failed", error=str(exc))
            raise AnalysisError.from_kind(ErrorKind.INVALID_REQUEST, cause=exc) from exc

        result, attempts = await self._run_with_retries(payload)

        quota = await self.quota.get_quota_info()
        approaching = await self.quota.is_approaching_limit()
        if approaching:
            logger.warning(
                "Approaching daily quota limit",
                used=quota.used,
                daily_limit=quota.daily_limit,
            )
        return AnalysisOutcome(
            result=result, quota=quota, approaching_limit=approaching, attempts=attempts
        )

    async def _run_with_retries(self, payload: ImagePayload) -> tuple[AnalysisResult, int]:
        policy = self.retry_policy
        attempts = 0
        blocked = False

        async def attempt_once() -> AnalysisResult:
            nonlocal attempts, blocked
            attempt = attempts
            await self.quota.record_request(is_retry=attempt > 0)
            attempts += 1
            logger.info("Analysis attempt started", attempt=attempt)
            try:
                result = await self.client.analyze(payload)
            except NotFoodError:
                # A valid answer from a healthy upstream
                await self.circuit_breaker.record_success()
                logger.info("Photo rejected as not food", attempt=attempt)
                raise
            except Exception as exc:
                classified = self._classify(exc)
                await self.circuit_breaker.record_failure()
                logger.warning(
                    "Analysis attempt failed",
                    attempt=attempt,
                    kind=classified.kind.value,
                    retryable=classified.retryable,
                    error=str(exc),
                )
                failure = classified
                if policy.should_retry(classified, attempt):
                    blocker = await self._retry_blocker(classified, attempt + 1)
                    if blocker is not None:
                        blocked = True
                        failure = blocker
                if failure is exc:
                    raise
                raise failure from exc

            await self.circuit_breaker.record_success()
            return result

        def should_retry(state: RetryCallState) -> bool:
            outcome = state.outcome
            if blocked or outcome is None or not outcome.failed:
                return False
            error = outcome.exception()
            if not isinstance(error, AnalysisError):
                return False
            return policy.should_retry(error, state.attempt_number - 1)

        def log_backoff(state: RetryCallState) -> None:
            delay = state.next_action.sleep if state.next_action else 0.0
            logger.info(
                "Retrying analysis after backoff",
                next_attempt=state.attempt_number,
                delay_s=delay,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_retries + 1),
            wait=wait_exponential(
                multiplier=policy.base_delay_ms / 1000,
                max=policy.max_delay_ms / 1000,
            ),
            retry=should_retry,
            sleep=self._sleep,
            before_sleep=log_backoff,
            reraise=True,
        )

        result = await retrying(attempt_once)
        return result, attempts

    async def _retry_blocker(
        self, error: AnalysisError, next_attempt: int
    ) -> Optional[AnalysisError]:
        """Error to surface instead of a retry, or None when the retry may go ahead.

        Retries never fall back to the primary quota and never send a trial
        call to an open circuit.
        """
        if not await self.circuit_breaker.can_make_request():
            logger.warning("Circuit opened during retries, giving up", next_attempt=next_attempt)
            return error
        if not await self.quota.can_make_request(is_retry=True):
            logger.warning("Retry budget exhausted", next_attempt=next_attempt)
            return AnalysisError.from_kind(
                ErrorKind.QUOTA_EXCEEDED,
                cause=error,
                message=RETRY_LIMIT_MESSAGE,
            )
        return None
