"""
Unit tests for StubAnalysisClient.
"""

import pytest

from aperioesca.domain.analysis.models import ConfidenceLevel, ImagePayload
from aperioesca.infrastructure.ai.stub_client import StubAnalysisClient


class TestStubAnalysisClient:
    """Test suite for StubAnalysisClient."""

    @pytest.mark.asyncio
    async def test_same_photo_same_result(self, sample_payload: ImagePayload) -> None:
        async with StubAnalysisClient() as client:
            first = await client.analyze(sample_payload)
            second = await client.analyze(sample_payload)

        assert first == second
        assert first.confidence == ConfidenceLevel.MEDIUM
        assert first.reasoning

    @pytest.mark.asyncio
    async def test_check_food_always_positive(self, sample_payload: ImagePayload) -> None:
        check = await StubAnalysisClient().check_food(sample_payload)

        assert check.is_food is True
        assert check.confidence == ConfidenceLevel.HIGH

    @pytest.mark.asyncio
    async def test_results_vary_with_photo(self) -> None:
        client = StubAnalysisClient()
        bands = set()
        for i in range(40):
            payload = ImagePayload(data_base64=f"photo-{i}")
            bands.add((await client.analyze(payload)).energy_band)

        assert len(bands) > 1
