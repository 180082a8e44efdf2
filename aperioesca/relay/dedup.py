"""
Duplicate-image detection for the relay.

Remembers the SHA-256 of each analysed image per device for a short
window, so re-sending the same photo does not cost another upstream call.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def image_hash(image_bytes: bytes) -> str:
    return hashlib.sha256(image_bytes).hexdigest()


class ImageDeduplicator:
    """In-memory (device, image hash) cache with expiration."""

    def __init__(self, window_seconds: int = 300, clock: Optional[Clock] = None) -> None:
        self.window = timedelta(seconds=window_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        # Storage: (device_id, hash) -> expiration_time
        self._seen: Dict[Tuple[str, str], datetime] = {}

    async def is_duplicate(self, device_id: str, digest: str) -> bool:
        """True if this device had this image analysed within the window."""
        key = (device_id, digest)
        expiration = self._seen.get(key)
        if expiration is None:
            return False
        if self._clock() >= expiration:
            del self._seen[key]
            return False
        logger.info("Duplicate image rejected", device_id=device_id, image_hash=digest[:12])
        return True

    async def register(self, device_id: str, digest: str) -> None:
        """Remember an analysed image for the window."""
        now = self._clock()
        self._seen = {k: exp for k, exp in self._seen.items() if exp > now}
        self._seen[(device_id, digest)] = now + self.window
