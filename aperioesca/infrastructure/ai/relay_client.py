"""
Relay transport: sends the photo to the authenticated analysis relay
instead of calling the vision provider directly.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError

from aperioesca.domain.analysis.models import AnalysisResult, ImagePayload
from aperioesca.domain.shared.errors import (
    ConfigurationError,
    NotFoodError,
    ProviderHTTPError,
    ResponseParseError,
)

logger = structlog.get_logger(__name__)


class RelayAnalysisClient:
    """
    IAnalysisClient for the ``POST /analyze-food`` relay.

    Status mapping: 200 -> AnalysisResult, 400 ``not_food`` ->
    NotFoodError, anything else -> ProviderHTTPError carrying the status
    so the classifier treats relay 429s like local quota exhaustion.
    """

    def __init__(
        self,
        relay_url: Optional[str],
        token: Optional[str],
        device_id: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not relay_url:
            raise ConfigurationError("APERIO_RELAY_URL not configured")
        if not token:
            raise ConfigurationError("APERIO_RELAY_TOKEN not configured")
        self.relay_url = relay_url
        self.device_id = device_id
        self.timeout = timeout
        self._token = token
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def __aenter__(self) -> RelayAnalysisClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def analyze(self, payload: ImagePayload) -> AnalysisResult:
        response = await asyncio.wait_for(
            self._client.post(
                self.relay_url,
                json={"imageBase64": payload.data_base64, "deviceId": self.device_id},
                headers={"Authorization": f"Bearer {self._token}"},
            ),
            timeout=self.timeout,
        )

        if response.status_code == 200:
            try:
                return AnalysisResult.model_validate(response.json())
            except (ValueError, ValidationError) as exc:
                raise ResponseParseError("RELAY_RESULT_SCHEMA_MISMATCH") from exc

        error_code, message = self._error_body(response)
        if response.status_code == 400 and error_code == "not_food":
            raise NotFoodError()

        logger.warning(
            "Relay rejected request",
            status_code=response.status_code,
            error_code=error_code,
        )
        raise ProviderHTTPError(response.status_code, message, error_code=error_code)

    @staticmethod
    def _error_body(response: httpx.Response) -> tuple[Optional[str], str]:
        try:
            body = response.json()
        except ValueError:
            return None, response.reason_phrase
        if not isinstance(body, dict):
            return None, response.reason_phrase
        return body.get("error"), str(body.get("message", response.reason_phrase))
