"""Per-device daily rate limiting and bearer-token verification for the relay."""

from __future__ import annotations

import hmac
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterable, Optional, Protocol, Tuple

import structlog

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenVerifier(Protocol):
    """Decides whether a bearer token may use the relay."""

    def verify(self, token: str) -> bool:
        ...


class StaticTokenVerifier:
    """Accepts a fixed set of tokens (constant-time comparison)."""

    def __init__(self, tokens: Iterable[str]) -> None:
        self._tokens = tuple(t for t in tokens if t)
        if not self._tokens:
            logger.warning("No relay API tokens configured, every request will be rejected")

    def verify(self, token: str) -> bool:
        return any(hmac.compare_digest(token, candidate) for candidate in self._tokens)


class DeviceRateLimiter:
    """
    In-memory per-device daily counter (UTC day).

    This is the authoritative analysis limit; client-side counters are
    advisory only. NOT shared between relay processes.
    """

    def __init__(self, daily_limit: int = 10, clock: Optional[Clock] = None) -> None:
        """Initialize limiter.

        Args:
            daily_limit: Accepted requests per device per UTC day
            clock: Returns aware "now" (UTC by default)
        """
        self.daily_limit = daily_limit
        self._clock = clock or utc_now
        self._counts: Dict[Tuple[str, date], int] = {}

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    async def try_acquire(self, device_id: str) -> bool:
        """Count one request for ``device_id``; False once the limit is reached."""
        today = self._today()
        self._purge(today)
        key = (device_id, today)
        used = self._counts.get(key, 0)
        if used >= self.daily_limit:
            logger.info("Device rate limited", device_id=device_id, used=used)
            return False
        self._counts[key] = used + 1
        return True

    async def remaining(self, device_id: str) -> int:
        return max(self.daily_limit - self._counts.get((device_id, self._today()), 0), 0)

    def _purge(self, today: date) -> None:
        stale = [key for key in self._counts if key[1] != today]
        for key in stale:
            del self._counts[key]
