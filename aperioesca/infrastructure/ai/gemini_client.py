"""
Gemini REST client for the two-tier meal analysis.

Async httpx client with per-tier ordered model fallback chains.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog

from aperioesca.domain.analysis.models import AnalysisResult, FoodCheck, ImagePayload
from aperioesca.domain.analysis.parsing import parse_analysis_result, parse_food_check
from aperioesca.domain.analysis.prompts import ANALYSIS_PROMPT, FOOD_CHECK_PROMPT
from aperioesca.domain.shared.errors import (
    ConfigurationError,
    NotFoodError,
    ProviderHTTPError,
    ResponseParseError,
)

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_TIER1_MODELS = ("gemini-flash-lite-latest", "gemini-1.5-flash-8b")
DEFAULT_TIER2_MODELS = ("gemini-flash-latest", "gemini-1.5-flash", "gemini-1.5-pro")
DEFAULT_TIMEOUT_S = 30.0


def extract_candidate_text(body: Dict[str, Any]) -> str:
    """Concatenate the text parts of the first candidate."""
    try:
        parts = body["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ResponseParseError("NO_CANDIDATE_TEXT") from exc
    text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
    if not text.strip():
        raise ResponseParseError("EMPTY_CANDIDATE_TEXT")
    return text


def _provider_error(response: httpx.Response) -> ProviderHTTPError:
    message = response.reason_phrase
    error_code = None
    try:
        error = response.json().get("error", {})
        message = error.get("message", message)
        error_code = error.get("status")
    except (ValueError, AttributeError):
        pass
    return ProviderHTTPError(response.status_code, message, error_code=error_code)


class GeminiVisionClient:
    """
    IAnalysisClient calling the Gemini ``generateContent`` endpoint directly.

    Each tier walks its model list in order and uses the first model that
    answers with a success status. When every model fails the last
    ProviderHTTPError is raised. Transport errors (timeouts, refused
    connections) abort the tier immediately.

    Example:
        >>> async with GeminiVisionClient(api_key="...") as client:
        ...     result = await client.analyze(payload)
    """

    def __init__(
        self,
        api_key: Optional[str],
        tier1_models: Sequence[str] = DEFAULT_TIER1_MODELS,
        tier2_models: Sequence[str] = DEFAULT_TIER2_MODELS,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_S,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize client.

        Args:
            api_key: Gemini API key
            tier1_models: Ordered fallback chain for the food check
            tier2_models: Ordered fallback chain for the detailed analysis
            base_url: API root
            timeout: Upper bound for each HTTP call, in seconds
            client: Optional pre-configured httpx client (for testing)

        Raises:
            ConfigurationError: If the key or a model chain is missing
        """
        if not api_key:
            raise ConfigurationError("GEMINI_API_KEY not configured")
        if not tier1_models or not tier2_models:
            raise ConfigurationError("Model fallback chains must not be empty")
        self.api_key = api_key
        self.tier1_models: List[str] = list(tier1_models)
        self.tier2_models: List[str] = list(tier2_models)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def __aenter__(self) -> GeminiVisionClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def check_food(self, payload: ImagePayload) -> FoodCheck:
        """Tier 1: cheap is-this-food classification."""
        text = await self._generate_with_fallback(self.tier1_models, FOOD_CHECK_PROMPT, payload, tier=1)
        return parse_food_check(text)

    async def analyze_detailed(self, payload: ImagePayload) -> AnalysisResult:
        """Tier 2: full AnalysisResult."""
        text = await self._generate_with_fallback(self.tier2_models, ANALYSIS_PROMPT, payload, tier=2)
        return parse_analysis_result(text)

    async def analyze(self, payload: ImagePayload) -> AnalysisResult:
        """Tier 1 then tier 2; raises NotFoodError on a negative tier 1."""
        check = await self.check_food(payload)
        if not check.is_food:
            logger.info("Tier 1 rejected photo", confidence=check.confidence.value)
            raise NotFoodError(confidence=check.confidence.value)
        return await self.analyze_detailed(payload)

    async def _generate_with_fallback(
        self,
        models: Sequence[str],
        prompt: str,
        payload: ImagePayload,
        tier: int,
    ) -> str:
        last_error: Optional[ProviderHTTPError] = None
        for model in models:
            try:
                text = await self._generate(model, prompt, payload)
            except ProviderHTTPError as exc:
                logger.warning(
                    "Model failed, trying next candidate",
                    tier=tier,
                    model=model,
                    status_code=exc.status_code,
                )
                last_error = exc
                continue
            logger.debug("Model answered", tier=tier, model=model)
            return text
        if last_error is None:
            raise ConfigurationError(f"No models configured for tier {tier}")
        raise last_error

    async def _generate(self, model: str, prompt: str, payload: ImagePayload) -> str:
        url = f"{self.base_url}/models/{model}:generateContent"
        body = {
            "contents": [
                {
                    "parts": [
                        {"text": prompt},
                        {
                            "inline_data": {
                                "mime_type": payload.mime_type,
                                "data": payload.data_base64,
                            }
                        },
                    ]
                }
            ],
            "generationConfig": {"response_mime_type": "application/json"},
        }
        response = await asyncio.wait_for(
            self._client.post(url, json=body, headers={"x-goog-api-key": self.api_key}),
            timeout=self.timeout,
        )
        if not response.is_success:
            raise _provider_error(response)
        try:
            envelope = response.json()
        except json.JSONDecodeError as exc:
            raise ResponseParseError("ENVELOPE_NOT_JSON") from exc
        return extract_candidate_text(envelope)
