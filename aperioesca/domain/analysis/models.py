"""
Domain models for meal-photo analysis.

Value objects exchanged between the transport, the orchestrator and the
meal persistence collaborator. Wire format uses camelCase keys.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


_WIRE_CONFIG = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
)


def _normalize_enum_text(value: Any) -> Any:
    """Lower-case and snake-case loose model output ("Very Light" -> "very_light")."""
    if isinstance(value, str):
        return value.strip().lower().replace(" ", "_").replace("-", "_")
    return value


class MealType(str, Enum):
    """Meal of the day."""

    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    SNACK = "snack"


class EnergyBand(str, Enum):
    """Coarse five-level caloric density band."""

    VERY_LIGHT = "very_light"  # < 300 kcal
    LIGHT = "light"  # 300-500 kcal
    MODERATE = "moderate"  # 500-800 kcal
    HEAVY = "heavy"  # 800-1200 kcal
    VERY_HEAVY = "very_heavy"  # > 1200 kcal

    @property
    def label(self) -> str:
        """Human readable label ("Very Light")."""
        return self.value.replace("_", " ").title()

    @property
    def kcal_range(self) -> Tuple[int, Optional[int]]:
        """Approximate kcal bounds (upper bound None for the top band)."""
        return _KCAL_RANGES[self]


_KCAL_RANGES = {
    EnergyBand.VERY_LIGHT: (0, 300),
    EnergyBand.LIGHT: (300, 500),
    EnergyBand.MODERATE: (500, 800),
    EnergyBand.HEAVY: (800, 1200),
    EnergyBand.VERY_HEAVY: (1200, None),
}


class ConfidenceLevel(str, Enum):
    """Model self-reported confidence."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AnalysisFlags(BaseModel):
    """Plate characteristics reported by the detailed analysis."""

    model_config = _WIRE_CONFIG

    mixed_plate: bool = Field(False, description="Several distinct foods on one plate")
    unclear_portions: bool = Field(False, description="Portion size hard to judge")
    shared_dish: bool = Field(False, description="Dish likely shared between people")


class AnalysisResult(BaseModel):
    """
    Validated outcome of a detailed (tier 2) analysis.

    Attributes:
        meal_type: breakfast / lunch / dinner / snack
        energy_band: Caloric density band
        confidence: Model confidence in the band
        reasoning: One-sentence justification
        flags: Plate characteristics
        insight: Short user-facing tip

    Example:
        >>> result = AnalysisResult.model_validate({
        ...     "mealType": "lunch",
        ...     "energyBand": "moderate",
        ...     "confidence": "high",
        ...     "reasoning": "Pasta with tomato sauce, medium portion.",
        ... })
        >>> result.energy_band
        <EnergyBand.MODERATE: 'moderate'>
    """

    model_config = _WIRE_CONFIG

    meal_type: MealType
    energy_band: EnergyBand
    confidence: ConfidenceLevel
    reasoning: str = Field(..., min_length=1, max_length=500)
    flags: AnalysisFlags = Field(default_factory=AnalysisFlags)
    insight: str = Field("", max_length=500)

    @field_validator("meal_type", "energy_band", "confidence", mode="before")
    @classmethod
    def normalize_enum(cls, v: Any) -> Any:
        """Accept loosely formatted enum values from the model."""
        return _normalize_enum_text(v)

    @field_validator("reasoning", "insight")
    @classmethod
    def strip_text(cls, v: str) -> str:
        """Trim surrounding whitespace."""
        return v.strip()

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class FoodCheck(BaseModel):
    """Tier-1 answer: is this photo food at all?"""

    model_config = _WIRE_CONFIG

    is_food: bool
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: Any) -> Any:
        """Map numeric scores onto the three confidence levels."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            if v >= 0.8:
                return ConfidenceLevel.HIGH
            if v >= 0.5:
                return ConfidenceLevel.MEDIUM
            return ConfidenceLevel.LOW
        return _normalize_enum_text(v)


class ImagePayload(BaseModel):
    """Pre-processed photo ready for the transport."""

    model_config = ConfigDict(frozen=True)

    data_base64: str = Field(..., min_length=1)
    mime_type: str = "image/jpeg"
    size_bytes: int = Field(0, ge=0)


class UserFeedback(str, Enum):
    """User verdict on a stored analysis."""

    TOO_LIGHT = "too_light"
    TOO_HEAVY = "too_heavy"
    ACCURATE = "accurate"


class MealEntry(BaseModel):
    """
    Stored meal: an AnalysisResult frozen together with its photo reference.

    Attributes:
        id: UUID4 string
        created_at: Analysis timestamp (timezone aware)
        photo_ref: Path or URI of the photo, never touched by this package
    """

    model_config = _WIRE_CONFIG

    id: str
    created_at: datetime
    photo_ref: str
    meal_type: MealType
    energy_band: EnergyBand
    confidence: ConfidenceLevel
    reasoning: str
    flags: AnalysisFlags = Field(default_factory=AnalysisFlags)
    insight: str = ""
    user_feedback: Optional[UserFeedback] = None

    @classmethod
    def from_result(
        cls,
        entry_id: str,
        result: AnalysisResult,
        photo_ref: str,
        created_at: datetime,
    ) -> MealEntry:
        """Freeze an analysis result into a meal entry."""
        return cls(
            id=entry_id,
            created_at=created_at,
            photo_ref=photo_ref,
            meal_type=result.meal_type,
            energy_band=result.energy_band,
            confidence=result.confidence,
            reasoning=result.reasoning,
            flags=result.flags,
            insight=result.insight,
        )
