"""
Composition root.

Builds every component once, explicitly, from Settings. Transport
selection follows APERIO_TRANSPORT:
    - "direct": Gemini REST API (requires GEMINI_API_KEY)
    - "relay": analysis relay (requires APERIO_RELAY_URL/APERIO_RELAY_TOKEN)
    - "stub": canned results (default)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

import structlog

from aperioesca.application.analysis.orchestrator import AnalysisOrchestrator
from aperioesca.config import Settings
from aperioesca.domain.analysis.ports import IAnalysisClient, IStateStore
from aperioesca.domain.resilience.circuit_breaker import CircuitBreaker
from aperioesca.domain.resilience.quota import QuotaManager
from aperioesca.domain.resilience.retry_policy import RetryPolicy
from aperioesca.domain.shared.errors import AnalysisError, ConfigurationError, ErrorKind
from aperioesca.infrastructure.ai.gemini_client import GeminiVisionClient
from aperioesca.infrastructure.ai.relay_client import RelayAnalysisClient
from aperioesca.infrastructure.ai.stub_client import StubAnalysisClient
from aperioesca.infrastructure.image.processor import PillowImageProcessor
from aperioesca.infrastructure.persistence.meal_repository import StateStoreMealRepository
from aperioesca.infrastructure.storage.state_store import JsonFileStateStore

logger = structlog.get_logger(__name__)

DEVICE_KEY = "device"


@dataclass
class AnalysisContainer:
    """Wired application components."""

    settings: Settings
    store: IStateStore
    quota: QuotaManager
    circuit_breaker: CircuitBreaker
    client: IAnalysisClient
    orchestrator: AnalysisOrchestrator
    meals: StateStoreMealRepository

    async def aclose(self) -> None:
        await self.client.aclose()


async def get_or_create_device_id(store: IStateStore) -> str:
    """Stable per-install device id, generated on first use."""
    record = await store.load(DEVICE_KEY)
    if record and record.get("device_id"):
        return str(record["device_id"])
    device_id = str(uuid4())
    await store.save(DEVICE_KEY, {"device_id": device_id})
    logger.info("Device id created", device_id=device_id)
    return device_id


async def create_analysis_client(settings: Settings, store: IStateStore) -> IAnalysisClient:
    """
    Create the transport selected by ``settings.transport``.

    Raises:
        AnalysisError: AUTHENTICATION_ERROR when credentials are missing
    """
    try:
        if settings.transport == "direct":
            return GeminiVisionClient(
                api_key=settings.gemini_api_key,
                tier1_models=settings.tier1_models,
                tier2_models=settings.tier2_models,
                base_url=settings.gemini_base_url,
                timeout=settings.request_timeout_s,
            )
        if settings.transport == "relay":
            device_id = settings.device_id or await get_or_create_device_id(store)
            return RelayAnalysisClient(
                relay_url=settings.relay_url,
                token=settings.relay_token,
                device_id=device_id,
                timeout=settings.request_timeout_s,
            )
    except ConfigurationError as exc:
        logger.error("Transport misconfigured", transport=settings.transport, error=str(exc))
        raise AnalysisError.from_kind(ErrorKind.AUTHENTICATION_ERROR, cause=exc) from exc
    return StubAnalysisClient()


async def build_container(
    settings: Settings,
    store: Optional[IStateStore] = None,
    client: Optional[IAnalysisClient] = None,
) -> AnalysisContainer:
    """
    Wire the full pipeline.

    Args:
        settings: Runtime configuration
        store: State store override (defaults to JSON files in state_dir)
        client: Transport override

    Returns:
        AnalysisContainer; call ``aclose()`` when done
    """
    store = store or JsonFileStateStore(settings.state_dir)
    quota = QuotaManager(store, daily_limit=settings.daily_limit)
    breaker = CircuitBreaker(store)
    client = client or await create_analysis_client(settings, store)
    orchestrator = AnalysisOrchestrator(
        client=client,
        image_processor=PillowImageProcessor(
            max_width=settings.image_max_width, quality=settings.image_quality
        ),
        quota=quota,
        circuit_breaker=breaker,
        retry_policy=RetryPolicy(
            max_retries=settings.max_retries,
            base_delay_ms=settings.base_delay_ms,
            max_delay_ms=settings.max_delay_ms,
        ),
    )
    logger.debug("Container built", transport=settings.transport)
    return AnalysisContainer(
        settings=settings,
        store=store,
        quota=quota,
        circuit_breaker=breaker,
        client=client,
        orchestrator=orchestrator,
        meals=StateStoreMealRepository(store),
    )
