"""
Analysis relay HTTP application.

POST /analyze-food accepts ``{imageBase64, deviceId}`` with a bearer
token, and runs: auth -> payload checks -> duplicate check -> per-device
daily limit -> tier 1 (is this food?) -> tier 2 (detailed analysis).

Status codes:
    200 AnalysisResult JSON
    400 invalid_request / invalid_image / not_food
    401 unauthorized
    413 payload_too_large
    429 rate_limited / duplicate_image
    500 upstream_error
    503 service_unavailable
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

import httpx
import structlog
from circuitbreaker import CircuitBreaker as UpstreamBreaker
from circuitbreaker import CircuitBreakerError
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from aperioesca import __version__
from aperioesca.config import Settings
from aperioesca.domain.analysis.models import AnalysisResult, FoodCheck, ImagePayload
from aperioesca.domain.analysis.ports import ITwoTierVisionClient
from aperioesca.domain.shared.errors import ProviderHTTPError, ResponseParseError
from aperioesca.infrastructure.ai.gemini_client import GeminiVisionClient
from aperioesca.infrastructure.ai.stub_client import StubAnalysisClient
from aperioesca.relay.dedup import ImageDeduplicator, image_hash
from aperioesca.relay.rate_limit import DeviceRateLimiter, StaticTokenVerifier, TokenVerifier

logger = structlog.get_logger(__name__)

T = TypeVar("T")

UPSTREAM_FAILURES = (
    ProviderHTTPError,
    ResponseParseError,
    httpx.TransportError,
    asyncio.TimeoutError,
    TimeoutError,
)


class RelayError(Exception):
    """Error answered to the caller as ``{"error": code, "message": ...}``."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class AnalyzeFoodRequest(BaseModel):
    """Relay request body."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    image_base64: str = Field(..., min_length=1)
    device_id: str = Field(..., min_length=1, max_length=128)


def _strip_data_uri(data: str) -> str:
    if data.startswith("data:") and "," in data:
        return data.split(",", 1)[1]
    return data


def _sniff_mime_type(image: bytes) -> str:
    if image.startswith(b"\x89PNG"):
        return "image/png"
    if image[:4] == b"RIFF" and image[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def create_app(
    settings: Settings,
    *,
    vision_client: Optional[ITwoTierVisionClient] = None,
    token_verifier: Optional[TokenVerifier] = None,
    rate_limiter: Optional[DeviceRateLimiter] = None,
    deduplicator: Optional[ImageDeduplicator] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """
    Build the relay application.

    Args:
        settings: Relay configuration
        vision_client: Two-tier transport (Gemini when a key is configured,
            stub otherwise)
        token_verifier: Bearer token check
        rate_limiter: Per-device daily limiter
        deduplicator: Duplicate-image window
        clock: Time source for the default limiter and deduplicator

    Returns:
        FastAPI application
    """
    if vision_client is None:
        if settings.gemini_api_key:
            vision_client = GeminiVisionClient(
                api_key=settings.gemini_api_key,
                tier1_models=settings.tier1_models,
                tier2_models=settings.tier2_models,
                base_url=settings.gemini_base_url,
                timeout=settings.request_timeout_s,
            )
        else:
            logger.warning("GEMINI_API_KEY not set, relay serving stub results")
            vision_client = StubAnalysisClient()
    client: ITwoTierVisionClient = vision_client
    verifier = token_verifier or StaticTokenVerifier(settings.relay_api_tokens)
    limiter = rate_limiter or DeviceRateLimiter(settings.relay_daily_limit, clock=clock)
    dedup = deduplicator or ImageDeduplicator(settings.relay_dedup_window_s, clock=clock)
    breaker = UpstreamBreaker(
        failure_threshold=5,
        recovery_timeout=60,
        expected_exception=UPSTREAM_FAILURES,
        name="relay_upstream",
    )
    bearer = HTTPBearer(auto_error=False)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info("Relay ready", daily_limit=limiter.daily_limit)
        yield
        await client.aclose()
        logger.info("Relay shutdown")

    app = FastAPI(title="Aperioesca analysis relay", version=__version__, lifespan=lifespan)

    @app.exception_handler(RelayError)
    async def relay_error_handler(_: Request, exc: RelayError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "message": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": "invalid_request",
                "message": "Body must be JSON with imageBase64 and deviceId.",
            },
        )

    def require_token(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    ) -> None:
        if credentials is None or not verifier.verify(credentials.credentials):
            raise RelayError(401, "unauthorized", "Missing or invalid bearer token.")

    @breaker
    async def check_food(payload: ImagePayload) -> FoodCheck:
        return await client.check_food(payload)

    @breaker
    async def analyze_detailed(payload: ImagePayload) -> AnalysisResult:
        return await client.analyze_detailed(payload)

    async def guarded(call: Awaitable[T], tier: int) -> T:
        try:
            return await call
        except CircuitBreakerError as exc:
            logger.warning("Upstream circuit open", tier=tier)
            raise RelayError(
                503, "service_unavailable", "Analysis service temporarily unavailable."
            ) from exc
        except (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException) as exc:
            logger.warning("Upstream timeout", tier=tier)
            raise RelayError(
                503, "service_unavailable", "Analysis service timed out."
            ) from exc
        except UPSTREAM_FAILURES as exc:
            logger.error("Upstream failure", tier=tier, error=str(exc))
            raise RelayError(500, "upstream_error", "Analysis failed upstream.") from exc

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/analyze-food", dependencies=[Depends(require_token)])
    async def analyze_food(body: AnalyzeFoodRequest) -> dict[str, Any]:
        encoded = _strip_data_uri(body.image_base64.strip())
        if len(encoded) > settings.relay_max_image_bytes:
            raise RelayError(
                413,
                "payload_too_large",
                f"Image exceeds the {settings.relay_max_image_bytes} byte limit.",
            )
        try:
            image = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise RelayError(400, "invalid_image", "Image is not valid base64.") from exc
        if not image:
            raise RelayError(400, "invalid_image", "Image is empty.")

        digest = image_hash(image)
        if await dedup.is_duplicate(body.device_id, digest):
            raise RelayError(
                429, "duplicate_image", "This photo was analysed a moment ago."
            )
        if not await limiter.try_acquire(body.device_id):
            raise RelayError(429, "rate_limited", "Daily analysis limit reached.")

        payload = ImagePayload(
            data_base64=encoded,
            mime_type=_sniff_mime_type(image),
            size_bytes=len(image),
        )

        check = await guarded(check_food(payload), tier=1)
        if not check.is_food:
            await dedup.register(body.device_id, digest)
            logger.info(
                "Relay analysis",
                device_id=body.device_id,
                tier_1_result="not_food",
                tier_2_success=False,
            )
            raise RelayError(400, "not_food", "This photo doesn't seem to show a meal.")

        result = await guarded(analyze_detailed(payload), tier=2)
        await dedup.register(body.device_id, digest)
        logger.info(
            "Relay analysis",
            device_id=body.device_id,
            tier_1_result="food",
            tier_2_success=True,
            energy_band=result.energy_band.value,
        )
        return result.to_wire()

    return app
