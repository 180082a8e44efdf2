"""
Ports (Interfaces) for the analysis pipeline.

Abstract interfaces for the collaborators consumed by the orchestrator
and the resilience components.

Design Pattern: Ports & Adapters (Hexagonal Architecture)
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

from aperioesca.domain.analysis.models import AnalysisResult, FoodCheck, ImagePayload, MealEntry


PhotoSource = Union[str, Path, bytes]


@runtime_checkable
class IStateStore(Protocol):
    """
    Port for persisted key/value state.

    Each key holds one JSON-compatible record which is always
    overwritten as a whole, never patched field by field.
    """

    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Load the record stored under ``key``.

        Returns:
            The record, or None when absent

        Raises:
            StateStoreError: If the stored record cannot be decoded
        """
        ...

    async def save(self, key: str, record: Dict[str, Any]) -> None:
        """Overwrite the record stored under ``key``."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key`` (no-op when absent)."""
        ...


@runtime_checkable
class IAnalysisClient(Protocol):
    """
    Port for the vision-model transport.

    Implementations may call the provider directly, go through the
    relay, or return canned data.
    """

    async def analyze(self, payload: ImagePayload) -> AnalysisResult:
        """
        Run the two-tier analysis for one photo.

        Returns:
            Validated AnalysisResult

        Raises:
            NotFoodError: If tier 1 rejects the photo
            ProviderHTTPError: If the provider answers with an error status
            ResponseParseError: If the model output is malformed
            httpx.TransportError / TimeoutError: On connectivity failures
        """
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


@runtime_checkable
class IImageProcessor(Protocol):
    """Port for photo resize/compress."""

    async def prepare(self, photo: PhotoSource) -> ImagePayload:
        """
        Turn a photo into a transport payload.

        Raises:
            ImageProcessingError: If the photo cannot be decoded
        """
        ...


@runtime_checkable
class IMealRepository(Protocol):
    """Port for the meal persistence collaborator."""

    async def save_meal(
        self,
        result: AnalysisResult,
        photo_ref: str,
        timestamp: Optional[datetime] = None,
    ) -> MealEntry:
        """Persist an analysis result and return the frozen entry."""
        ...

    async def get_all_meals(self) -> List[MealEntry]:
        """All entries, newest first."""
        ...

    async def get_meal_by_id(self, meal_id: str) -> Optional[MealEntry]:
        """Single entry, or None."""
        ...

    async def delete_meal(self, meal_id: str) -> bool:
        """Delete one entry; True if it existed."""
        ...

    async def clear_all(self) -> None:
        """Remove every entry."""
        ...


@runtime_checkable
class ITwoTierVisionClient(Protocol):
    """Port for a transport exposing the two tiers separately (used by the relay)."""

    async def check_food(self, payload: ImagePayload) -> FoodCheck:
        """Tier 1: cheap is-this-food classification."""
        ...

    async def analyze_detailed(self, payload: ImagePayload) -> AnalysisResult:
        """Tier 2: full AnalysisResult."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
