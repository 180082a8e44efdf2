"""
Unit tests for the analysis relay endpoints.

The vision client is mocked; the FastAPI app runs in-process through
TestClient.
"""

import asyncio
import base64
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from aperioesca.config import load_settings
from aperioesca.domain.analysis.models import AnalysisResult, ConfidenceLevel, FoodCheck
from aperioesca.domain.shared.errors import ProviderHTTPError, ResponseParseError
from aperioesca.relay.app import create_app
from aperioesca.relay.dedup import ImageDeduplicator
from aperioesca.relay.rate_limit import DeviceRateLimiter

TOKEN = "good-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}
PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image-body"


def _body(image: bytes = PNG_BYTES, device_id: str = "device-1") -> dict:
    return {"imageBase64": base64.b64encode(image).decode("ascii"), "deviceId": device_id}


@pytest.fixture
def vision(sample_result: AnalysisResult) -> AsyncMock:
    mock = AsyncMock()
    mock.check_food.return_value = FoodCheck(is_food=True, confidence=ConfidenceLevel.HIGH)
    mock.analyze_detailed.return_value = sample_result
    return mock


@pytest.fixture
def settings():
    return load_settings({"RELAY_API_TOKENS": TOKEN, "RELAY_MAX_IMAGE_BYTES": "256"})


@pytest.fixture
def limiter(clock) -> DeviceRateLimiter:
    return DeviceRateLimiter(daily_limit=3, clock=clock)


@pytest.fixture
def dedup(clock) -> ImageDeduplicator:
    return ImageDeduplicator(window_seconds=300, clock=clock)


@pytest.fixture
def api(settings, vision, limiter, dedup, clock) -> TestClient:
    app = create_app(
        settings,
        vision_client=vision,
        rate_limiter=limiter,
        deduplicator=dedup,
        clock=clock,
    )
    return TestClient(app)


class TestAuthAndValidation:
    """Requests rejected before any upstream call."""

    def test_health(self, api: TestClient) -> None:
        assert api.get("/health").json() == {"status": "ok"}

    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}])
    def test_unauthorized(self, api: TestClient, vision: AsyncMock, headers: dict) -> None:
        response = api.post("/analyze-food", json=_body(), headers=headers)

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"
        vision.check_food.assert_not_awaited()

    def test_missing_fields(self, api: TestClient) -> None:
        response = api.post("/analyze-food", json={"deviceId": "d"}, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_payload_too_large(self, api: TestClient, vision: AsyncMock) -> None:
        response = api.post("/analyze-food", json=_body(b"x" * 400), headers=AUTH)

        assert response.status_code == 413
        assert response.json()["error"] == "payload_too_large"
        vision.check_food.assert_not_awaited()

    def test_invalid_base64(self, api: TestClient) -> None:
        body = {"imageBase64": "not base64 at all!!", "deviceId": "d"}

        response = api.post("/analyze-food", json=body, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_image"


class TestAnalyzeFood:
    """Two-tier analysis through the relay."""

    def test_success_returns_camel_case_result(
        self, api: TestClient, vision: AsyncMock, sample_result: AnalysisResult
    ) -> None:
        response = api.post("/analyze-food", json=_body(), headers=AUTH)

        assert response.status_code == 200
        assert response.json() == sample_result.to_wire()
        payload = vision.analyze_detailed.await_args.args[0]
        assert payload.mime_type == "image/png"
        assert payload.size_bytes == len(PNG_BYTES)

    def test_data_uri_prefix_is_accepted(self, api: TestClient) -> None:
        body = _body()
        body["imageBase64"] = "data:image/png;base64," + body["imageBase64"]

        assert api.post("/analyze-food", json=body, headers=AUTH).status_code == 200

    def test_not_food_skips_tier_two(self, api: TestClient, vision: AsyncMock) -> None:
        vision.check_food.return_value = FoodCheck(is_food=False)

        response = api.post("/analyze-food", json=_body(), headers=AUTH)

        assert response.status_code == 400
        assert response.json()["error"] == "not_food"
        vision.analyze_detailed.assert_not_awaited()

    def test_duplicate_image_rejected_within_window(
        self, api: TestClient, vision: AsyncMock, clock
    ) -> None:
        assert api.post("/analyze-food", json=_body(), headers=AUTH).status_code == 200

        response = api.post("/analyze-food", json=_body(), headers=AUTH)

        assert response.status_code == 429
        assert response.json()["error"] == "duplicate_image"
        assert vision.check_food.await_count == 1

        clock.advance(seconds=301)
        assert api.post("/analyze-food", json=_body(), headers=AUTH).status_code == 200

    def test_duplicates_do_not_consume_daily_limit(
        self, api: TestClient, limiter: DeviceRateLimiter
    ) -> None:
        api.post("/analyze-food", json=_body(), headers=AUTH)
        api.post("/analyze-food", json=_body(), headers=AUTH)

        assert asyncio.run(limiter.remaining("device-1")) == 2

    def test_daily_limit_per_device(self, api: TestClient, vision: AsyncMock) -> None:
        for i in range(3):
            image = PNG_BYTES + bytes([i])
            assert api.post("/analyze-food", json=_body(image), headers=AUTH).status_code == 200

        response = api.post("/analyze-food", json=_body(PNG_BYTES + b"new"), headers=AUTH)

        assert response.status_code == 429
        assert response.json()["error"] == "rate_limited"
        other = api.post("/analyze-food", json=_body(device_id="device-2"), headers=AUTH)
        assert other.status_code == 200

    def test_upstream_failure_is_500(self, api: TestClient, vision: AsyncMock) -> None:
        vision.analyze_detailed.side_effect = ResponseParseError("NO_JSON_OBJECT")

        response = api.post("/analyze-food", json=_body(), headers=AUTH)

        assert response.status_code == 500
        assert response.json()["error"] == "upstream_error"

    def test_failed_analysis_is_not_a_duplicate(self, api: TestClient, vision: AsyncMock) -> None:
        vision.analyze_detailed.side_effect = [ProviderHTTPError(500), vision.analyze_detailed.return_value]

        assert api.post("/analyze-food", json=_body(), headers=AUTH).status_code == 500
        assert api.post("/analyze-food", json=_body(), headers=AUTH).status_code == 200

    def test_timeout_is_503(self, api: TestClient, vision: AsyncMock) -> None:
        vision.check_food.side_effect = asyncio.TimeoutError()

        response = api.post("/analyze-food", json=_body(), headers=AUTH)

        assert response.status_code == 503
        assert response.json()["error"] == "service_unavailable"

    def test_open_circuit_is_503_without_upstream_call(
        self, settings, vision: AsyncMock, clock
    ) -> None:
        api = TestClient(
            create_app(
                settings,
                vision_client=vision,
                rate_limiter=DeviceRateLimiter(daily_limit=100, clock=clock),
                clock=clock,
            )
        )
        vision.check_food.side_effect = ProviderHTTPError(503, "overloaded")

        for i in range(5):
            response = api.post("/analyze-food", json=_body(PNG_BYTES + bytes([i])), headers=AUTH)
            assert response.status_code == 500

        response = api.post("/analyze-food", json=_body(PNG_BYTES + b"x"), headers=AUTH)

        assert response.status_code == 503
        assert vision.check_food.await_count == 5
