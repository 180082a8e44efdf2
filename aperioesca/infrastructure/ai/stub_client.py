"""Stub analysis client.

Returns canned results without calling external APIs.
Default transport for development, the CLI without credentials, and tests.
"""

from __future__ import annotations

import hashlib
from typing import Any

from aperioesca.domain.analysis.models import (
    AnalysisFlags,
    AnalysisResult,
    ConfidenceLevel,
    EnergyBand,
    FoodCheck,
    ImagePayload,
    MealType,
)

_CANNED = [
    (MealType.BREAKFAST, EnergyBand.LIGHT, "Yogurt with fruit and a sprinkle of granola.", "Good protein start to the day."),
    (MealType.LUNCH, EnergyBand.MODERATE, "Balanced plate of pasta with tomato sauce and salad.", "Carbs balanced by vegetables."),
    (MealType.DINNER, EnergyBand.HEAVY, "Fried cutlet with fries makes this energy dense.", "Fat-heavy plate, light on fibre."),
    (MealType.SNACK, EnergyBand.VERY_LIGHT, "A single apple is very low in energy.", "Fibre-rich, sugar from fruit only."),
    (MealType.DINNER, EnergyBand.VERY_HEAVY, "Large pizza with extra cheese and cured meats.", "Sodium and saturated fat are high."),
]


class StubAnalysisClient:
    """
    Stub implementation of IAnalysisClient.

    The canned answer is chosen from a hash of the image data, so the
    same photo always yields the same result.
    """

    async def __aenter__(self) -> StubAnalysisClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        return None

    async def aclose(self) -> None:
        return None

    async def check_food(self, payload: ImagePayload) -> FoodCheck:
        return FoodCheck(is_food=True, confidence=ConfidenceLevel.HIGH)

    async def analyze_detailed(self, payload: ImagePayload) -> AnalysisResult:
        digest = hashlib.sha256(payload.data_base64.encode("ascii")).digest()
        meal_type, band, reasoning, insight = _CANNED[digest[0] % len(_CANNED)]
        return AnalysisResult(
            meal_type=meal_type,
            energy_band=band,
            confidence=ConfidenceLevel.MEDIUM,
            reasoning=reasoning,
            flags=AnalysisFlags(mixed_plate=band == EnergyBand.MODERATE),
            insight=insight,
        )

    async def analyze(self, payload: ImagePayload) -> AnalysisResult:
        await self.check_food(payload)
        return await self.analyze_detailed(payload)
