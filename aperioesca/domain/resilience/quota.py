"""
Daily analysis quota with a ring-fenced retry sub-budget.

Usage resets at the next local midnight. Automatic retries draw from a
separate pool worth 10% of the daily limit so a flaky upstream cannot
drain the user's whole allowance.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, computed_field

from aperioesca.domain.analysis.ports import IStateStore
from aperioesca.domain.shared.errors import StateStoreError

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

DEFAULT_DAILY_LIMIT = 10
RETRY_BUDGET_PERCENT = 10
APPROACHING_LIMIT_RATIO = 0.8


def local_now() -> datetime:
    """Timezone-aware local wall-clock time."""
    return datetime.now().astimezone()


def next_local_midnight(now: datetime) -> datetime:
    """Midnight at the start of the day after ``now``.

    A ``now`` carrying the system zone's current offset (what
    :func:`local_now` returns) is resolved against the system zone, so the
    result has the offset in force at that midnight even across a DST
    change. Any other timezone is kept as given.
    """
    tomorrow = (now + timedelta(days=1)).date()
    if now.tzinfo is None or now.utcoffset() == now.astimezone().utcoffset():
        return datetime.combine(tomorrow, time.min).astimezone()
    return datetime.combine(tomorrow, time.min, tzinfo=now.tzinfo)


class QuotaState(BaseModel):
    """
    Snapshot of the daily quota.

    Attributes:
        daily_limit: Primary attempts allowed per day
        used: Primary attempts dispatched today
        retry_budget_used: Retry attempts dispatched today
        reset_at: Next local midnight
    """

    model_config = ConfigDict(frozen=True)

    daily_limit: int = Field(..., ge=1)
    used: int = Field(0, ge=0)
    retry_budget_used: int = Field(0, ge=0)
    reset_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def remaining(self) -> int:
        return max(self.daily_limit - self.used, 0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def retry_budget(self) -> int:
        return self.daily_limit * RETRY_BUDGET_PERCENT // 100


class QuotaManager:
    """
    Tracks per-day usage and persists it through an IStateStore.

    Counters are advisory on the client: the relay enforces the
    authoritative per-device limit.

    Example:
        >>> quota = QuotaManager(InMemoryStateStore(), daily_limit=10)
        >>> await quota.initialize()
        >>> await quota.can_make_request(is_retry=False)
        True
    """

    STORAGE_KEY = "quota"

    def __init__(
        self,
        store: IStateStore,
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        clock: Optional[Clock] = None,
        storage_key: str = STORAGE_KEY,
    ) -> None:
        """Initialize manager.

        Args:
            store: Persistence handle for the quota record
            daily_limit: Limit used when a fresh record is created
            clock: Returns timezone-aware "now" (local time by default)
            storage_key: Key of the quota record
        """
        if daily_limit < 1:
            raise ValueError("daily_limit must be >= 1")
        self._store = store
        self._daily_limit = daily_limit
        self._clock = clock or local_now
        self._key = storage_key
        self._state: Optional[QuotaState] = None

    async def initialize(self) -> QuotaState:
        """Load the persisted record, starting a fresh day when due.

        Safe to call repeatedly: once loaded, only the day-boundary
        check runs again.
        """
        if self._state is None:
            self._state = await self._load()
        if self._state is None or self._clock() >= self._state.reset_at:
            return await self._start_new_day()
        return self._state

    async def can_make_request(self, is_retry: bool = False) -> bool:
        """Whether one more primary attempt (or retry) fits today's budget."""
        state = await self.initialize()
        if is_retry:
            return state.retry_budget_used < state.retry_budget
        return state.remaining > 0

    async def record_request(self, is_retry: bool = False) -> QuotaState:
        """Count one dispatched attempt and persist the whole record."""
        state = await self.initialize()
        if is_retry:
            if state.retry_budget_used >= state.retry_budget:
                logger.warning(
                    "Retry budget already exhausted, not incrementing",
                    retry_budget=state.retry_budget,
                )
            else:
                state = state.model_copy(
                    update={"retry_budget_used": state.retry_budget_used + 1}
                )
        else:
            if state.used >= state.daily_limit:
                logger.warning(
                    "Daily quota already exhausted, not incrementing",
                    daily_limit=state.daily_limit,
                )
            else:
                state = state.model_copy(update={"used": state.used + 1})

        self._state = state
        await self._persist(state)
        logger.debug(
            "Quota request recorded",
            is_retry=is_retry,
            used=state.used,
            remaining=state.remaining,
            retry_budget_used=state.retry_budget_used,
        )
        return state

    async def get_quota_info(self) -> QuotaState:
        """Read-only snapshot of the current record."""
        return await self.initialize()

    async def is_approaching_limit(self) -> bool:
        """True once 80% of the daily limit has been used."""
        state = await self.initialize()
        return state.used / state.daily_limit >= APPROACHING_LIMIT_RATIO

    async def reset(self) -> QuotaState:
        """Force a fresh record (debug/test hook)."""
        return await self._start_new_day()

    async def _start_new_day(self) -> QuotaState:
        now = self._clock()
        self._state = QuotaState(
            daily_limit=self._daily_limit,
            used=0,
            retry_budget_used=0,
            reset_at=next_local_midnight(now),
        )
        logger.info(
            "Quota reset",
            daily_limit=self._daily_limit,
            reset_at=self._state.reset_at.isoformat(),
        )
        await self._persist(self._state)
        return self._state

    async def _load(self) -> Optional[QuotaState]:
        try:
            record = await self._store.load(self._key)
        except StateStoreError as exc:
            logger.warning("Failed to load quota state, starting fresh", error=str(exc))
            return None
        if record is None:
            return None
        try:
            return QuotaState.model_validate(record)
        except ValidationError as exc:
            logger.warning("Corrupt quota record, starting fresh", error=str(exc))
            return None

    async def _persist(self, state: QuotaState) -> None:
        try:
            await self._store.save(self._key, state.model_dump(mode="json"))
        except StateStoreError as exc:
            logger.error("Failed to save quota state", error=str(exc))
