"""Meal repository backed by an IStateStore.

Stores every MealEntry in a single record under the ``meals`` key.
Photo files referenced by entries are never moved or deleted here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

import structlog
from pydantic import ValidationError

from aperioesca.domain.analysis.models import AnalysisResult, MealEntry
from aperioesca.domain.analysis.ports import IStateStore

logger = structlog.get_logger(__name__)


class StateStoreMealRepository:
    """
    IMealRepository implementation over a key/value state store.

    Example:
        >>> repository = StateStoreMealRepository(InMemoryStateStore())
        >>> entry = await repository.save_meal(result, "photos/lunch.jpg")
        >>> await repository.get_meal_by_id(entry.id) == entry
        True
    """

    STORAGE_KEY = "meals"

    def __init__(self, store: IStateStore, storage_key: str = STORAGE_KEY) -> None:
        self._store = store
        self._key = storage_key

    async def save_meal(
        self,
        result: AnalysisResult,
        photo_ref: str,
        timestamp: Optional[datetime] = None,
    ) -> MealEntry:
        """
        Freeze an analysis result into a new meal entry.

        Args:
            result: Validated analysis
            photo_ref: Path or URI of the analysed photo
            timestamp: Creation time (defaults to now, UTC)

        Returns:
            The stored MealEntry
        """
        entry = MealEntry.from_result(
            entry_id=str(uuid4()),
            result=result,
            photo_ref=photo_ref,
            created_at=timestamp or datetime.now(timezone.utc),
        )
        meals = await self._read()
        meals.append(entry)
        await self._write(meals)
        logger.info("Meal saved", meal_id=entry.id, energy_band=entry.energy_band.value)
        return entry

    async def get_all_meals(self) -> List[MealEntry]:
        """All meals, newest first."""
        meals = await self._read()
        return sorted(meals, key=lambda m: m.created_at, reverse=True)

    async def get_meal_by_id(self, meal_id: str) -> Optional[MealEntry]:
        for meal in await self._read():
            if meal.id == meal_id:
                return meal
        return None

    async def delete_meal(self, meal_id: str) -> bool:
        meals = await self._read()
        kept = [m for m in meals if m.id != meal_id]
        if len(kept) == len(meals):
            return False
        await self._write(kept)
        logger.info("Meal deleted", meal_id=meal_id)
        return True

    async def clear_all(self) -> None:
        await self._store.delete(self._key)
        logger.info("All meals cleared")

    async def _read(self) -> List[MealEntry]:
        record = await self._store.load(self._key)
        if not record:
            return []
        meals: List[MealEntry] = []
        for raw in record.get("meals", []):
            try:
                meals.append(MealEntry.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Skipping unreadable meal entry", error=str(exc))
        return meals

    async def _write(self, meals: List[MealEntry]) -> None:
        await self._store.save(
            self._key,
            {"meals": [m.model_dump(mode="json", by_alias=True) for m in meals]},
        )
