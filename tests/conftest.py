"""
Shared fixtures for unit tests.

Time and sleep are injected, so no test depends on the wall clock.
"""

import io
import struct
import zlib
from datetime import datetime, timedelta, timezone
from typing import List
from unittest.mock import AsyncMock

import pytest
from PIL import Image

from aperioesca.domain.analysis.models import (
    AnalysisFlags,
    AnalysisResult,
    ConfidenceLevel,
    EnergyBand,
    ImagePayload,
    MealType,
)
from aperioesca.domain.resilience.circuit_breaker import CircuitBreaker
from aperioesca.domain.resilience.quota import QuotaManager
from aperioesca.infrastructure.storage.state_store import InMemoryStateStore


class FakeClock:
    """Manually advanced timezone-aware clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# ═══════════════════════════════════════════════════════════
# INFRASTRUCTURE FIXTURES
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at 2024-03-15 12:00 UTC."""
    return FakeClock(datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def store() -> InMemoryStateStore:
    """Fresh in-memory state store for each test."""
    return InMemoryStateStore()


@pytest.fixture
def quota(store: InMemoryStateStore, clock: FakeClock) -> QuotaManager:
    return QuotaManager(store, daily_limit=10, clock=clock)


@pytest.fixture
def breaker(store: InMemoryStateStore, clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker(store, clock=clock)


# ═══════════════════════════════════════════════════════════
# DOMAIN MODEL FIXTURES
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def sample_result() -> AnalysisResult:
    """Sample detailed analysis of a pasta lunch."""
    return AnalysisResult(
        meal_type=MealType.LUNCH,
        energy_band=EnergyBand.MODERATE,
        confidence=ConfidenceLevel.HIGH,
        reasoning="Pasta with tomato sauce, standard portion.",
        flags=AnalysisFlags(mixed_plate=True),
        insight="Carbs balanced by a side salad.",
    )


@pytest.fixture
def sample_payload() -> ImagePayload:
    return ImagePayload(data_base64="aGVsbG8=", mime_type="image/jpeg", size_bytes=5)


@pytest.fixture
def image_processor(sample_payload: ImagePayload) -> AsyncMock:
    """Image processor returning the sample payload."""
    processor = AsyncMock()
    processor.prepare = AsyncMock(return_value=sample_payload)
    return processor


@pytest.fixture
def oversized_png() -> bytes:
    """Small PNG whose header declares 16320x12240 (about 200 megapixels)."""
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), (10, 20, 30)).save(buffer, format="PNG")
    data = bytearray(buffer.getvalue())
    ihdr = struct.pack(">II", 16320, 12240) + bytes(data[24:29])
    data[16:29] = ihdr
    data[29:33] = struct.pack(">I", zlib.crc32(b"IHDR" + ihdr) & 0xFFFFFFFF)
    return bytes(data)
