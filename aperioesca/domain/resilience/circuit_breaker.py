"""
Persistent three-state circuit breaker guarding the vision provider.

CLOSED -> OPEN after 5 consecutive failures, OPEN -> HALF_OPEN once the
60 s reset timeout has elapsed (observed lazily), HALF_OPEN -> CLOSED
after 2 consecutive successes. Any failure while HALF_OPEN reopens.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from aperioesca.domain.analysis.ports import IStateStore
from aperioesca.domain.shared.errors import StateStoreError

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

FAILURE_THRESHOLD = 5
SUCCESS_THRESHOLD = 2
RESET_TIMEOUT = timedelta(seconds=60)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Rejecting calls
    HALF_OPEN = "HALF_OPEN"  # Probing recovery


class CircuitBreakerState(BaseModel):
    """Persisted breaker record."""

    model_config = ConfigDict(frozen=True)

    state: CircuitState = CircuitState.CLOSED
    failure_count: int = Field(0, ge=0)
    success_count: int = Field(0, ge=0)
    last_failure_time: Optional[datetime] = None
    next_retry_time: Optional[datetime] = None


class CircuitBreaker:
    """
    Circuit breaker whose state survives process restarts.

    Example:
        >>> breaker = CircuitBreaker(InMemoryStateStore())
        >>> await breaker.initialize()
        >>> for _ in range(5):
        ...     await breaker.record_failure()
        >>> (await breaker.get_state()).state
        <CircuitState.OPEN: 'OPEN'>
    """

    STORAGE_KEY = "circuit_breaker"

    def __init__(
        self,
        store: IStateStore,
        failure_threshold: int = FAILURE_THRESHOLD,
        success_threshold: int = SUCCESS_THRESHOLD,
        reset_timeout: timedelta = RESET_TIMEOUT,
        clock: Optional[Clock] = None,
        storage_key: str = STORAGE_KEY,
    ) -> None:
        self._store = store
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock or utc_now
        self._key = storage_key
        self._state: Optional[CircuitBreakerState] = None

    async def initialize(self) -> CircuitBreakerState:
        """Load the persisted record and apply a due OPEN -> HALF_OPEN transition."""
        if self._state is None:
            self._state = await self._load() or CircuitBreakerState()
        await self._half_open_if_due()
        return self._state

    async def can_make_request(self) -> bool:
        """CLOSED and HALF_OPEN allow calls; OPEN allows none until the timeout elapses."""
        state = await self.initialize()
        return state.state != CircuitState.OPEN

    async def record_success(self) -> CircuitBreakerState:
        """Register a successful call."""
        state = await self.initialize()
        if state.state == CircuitState.CLOSED:
            state = state.model_copy(update={"failure_count": 0})
        elif state.state == CircuitState.HALF_OPEN:
            successes = state.success_count + 1
            if successes >= self.success_threshold:
                state = CircuitBreakerState()
                logger.info("Circuit closed", successes=successes)
            else:
                state = state.model_copy(update={"success_count": successes})
        await self._replace(state)
        return state

    async def record_failure(self) -> CircuitBreakerState:
        """Register a failed call, opening the circuit when due."""
        state = await self.initialize()
        now = self._clock()
        failures = state.failure_count + 1
        update = {"failure_count": failures, "last_failure_time": now}

        if state.state == CircuitState.HALF_OPEN:
            update.update(
                state=CircuitState.OPEN,
                success_count=0,
                next_retry_time=now + self.reset_timeout,
            )
            logger.warning("Circuit reopened after failed trial call", failures=failures)
        elif failures >= self.failure_threshold:
            update.update(state=CircuitState.OPEN, next_retry_time=now + self.reset_timeout)
            if state.state == CircuitState.CLOSED:
                logger.warning(
                    "Circuit opened",
                    failures=failures,
                    retry_after_s=self.reset_timeout.total_seconds(),
                )

        state = state.model_copy(update=update)
        await self._replace(state)
        return state

    def get_time_until_retry(self) -> Optional[timedelta]:
        """Time left before a trial call is allowed; None unless OPEN."""
        state = self._state
        if state is None or state.state != CircuitState.OPEN or state.next_retry_time is None:
            return None
        return max(state.next_retry_time - self._clock(), timedelta(0))

    async def get_state(self) -> CircuitBreakerState:
        """Read-only snapshot."""
        return await self.initialize()

    async def reset(self) -> CircuitBreakerState:
        """Force CLOSED with zero counters."""
        state = CircuitBreakerState()
        await self._replace(state)
        logger.info("Circuit reset")
        return state

    async def _half_open_if_due(self) -> None:
        state = self._state
        if (
            state is not None
            and state.state == CircuitState.OPEN
            and state.next_retry_time is not None
            and self._clock() >= state.next_retry_time
        ):
            await self._replace(
                state.model_copy(update={"state": CircuitState.HALF_OPEN, "success_count": 0})
            )
            logger.info("Circuit half-open, probing upstream")

    async def _replace(self, state: CircuitBreakerState) -> None:
        self._state = state
        try:
            await self._store.save(self._key, state.model_dump(mode="json"))
        except StateStoreError as exc:
            logger.error("Failed to save circuit breaker state", error=str(exc))

    async def _load(self) -> Optional[CircuitBreakerState]:
        try:
            record = await self._store.load(self._key)
        except StateStoreError as exc:
            logger.warning("Failed to load circuit breaker state", error=str(exc))
            return None
        if record is None:
            return None
        try:
            state = CircuitBreakerState.model_validate(record)
        except ValidationError as exc:
            logger.warning("Corrupt circuit breaker record, starting closed", error=str(exc))
            return None
        if state.state == CircuitState.OPEN and state.next_retry_time is None:
            # OPEN without a retry time can never recover
            return state.model_copy(update={"next_retry_time": self._clock()})
        return state
