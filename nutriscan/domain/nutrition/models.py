"""
Nutrition domain models.

Common result shape every provider adapter translates into, the
confidence tier scale, and the rescaled-portion value object.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


REQUIRED_MACROS = ("protein", "carbs", "fat")


class ConfidenceTier(str, Enum):
    """Reliability tier derived from a ProviderResult."""

    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Ordering helper: higher is better."""
        return {"high": 2, "moderate": 1, "low": 0}[self.value]


class Macros(BaseModel):
    """
    Energy and macronutrients for a given portion.

    protein/carbs/fat are optional so that a provider can report them
    as missing rather than as zero.

    Attributes:
        calories: Energy in kcal
        protein: Protein in grams (None = not reported)
        carbs: Carbohydrates in grams (None = not reported)
        fat: Total fat in grams (None = not reported)
        fiber: Dietary fiber in grams (optional)
        sugar: Total sugars in grams (optional)

    Example:
        >>> m = Macros(calories=420, protein=18, carbs=22, fat=28)
        >>> m.scale(2.0).calories
        840.0
    """

    model_config = ConfigDict(frozen=True)

    calories: float = Field(..., ge=0, description="Energy in kcal")
    protein: Optional[float] = Field(None, ge=0, description="Protein in g")
    carbs: Optional[float] = Field(None, ge=0, description="Carbohydrates in g")
    fat: Optional[float] = Field(None, ge=0, description="Total fat in g")
    fiber: Optional[float] = Field(None, ge=0, description="Fiber in g")
    sugar: Optional[float] = Field(None, ge=0, description="Sugar in g")

    def scale(self, factor: float) -> Macros:
        """
        Multiply calories and every reported macro by the same factor.

        Missing fields stay missing.
        """
        if factor < 0:
            raise ValueError(f"Scale factor must be non-negative: {factor}")

        def _mul(value: Optional[float]) -> Optional[float]:
            return None if value is None else value * factor

        return Macros(
            calories=self.calories * factor,
            protein=_mul(self.protein),
            carbs=_mul(self.carbs),
            fat=_mul(self.fat),
            fiber=_mul(self.fiber),
            sugar=_mul(self.sugar),
        )

    def missing_required(self) -> List[str]:
        """Names of required macros that are absent."""
        return [name for name in REQUIRED_MACROS if getattr(self, name) is None]

    def macro_energy(self) -> float:
        """Energy implied by macros (4/4/9 kcal per gram)."""
        return (
            (self.protein or 0.0) * 4
            + (self.carbs or 0.0) * 4
            + (self.fat or 0.0) * 9
        )

    @property
    def has_nutrition(self) -> bool:
        """True when the provider reported any energy or macro at all."""
        return self.calories > 0 or any(
            getattr(self, name) is not None for name in REQUIRED_MACROS
        )


class ProviderResult(BaseModel):
    """
    Normalized output of one provider adapter.

    Owned transiently by a resolution call; cached as-is (raw, before
    personalization) under the observation key.

    Example:
        >>> result = ProviderResult(
        ...     name="Paneer Butter Masala",
        ...     category="north_indian",
        ...     portion_g=300.0,
        ...     macros=Macros(calories=504, protein=21.6, carbs=26.4, fat=33.6),
        ...     confidence=0.85,
        ...     provider="vision_primary",
        ... )
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Dish or product name")
    category: Optional[str] = Field(None, description="Cuisine or category tag")
    portion_g: Optional[float] = Field(None, description="Estimated portion in grams")
    macros: Macros
    ingredients: List[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0, description="Provider confidence")
    provider: str = Field(..., min_length=1, description="Provider name")
    brand: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        """Trim surrounding whitespace."""
        v = v.strip()
        if not v:
            raise ValueError("Result name cannot be empty")
        return v


class PersonalizedPortion(BaseModel):
    """Portion and macros rescaled to a user's habitual serving."""

    model_config = ConfigDict(frozen=True)

    usual_portion_g: float = Field(..., gt=0)
    multiplier: float = Field(..., gt=0)
    portion_g: float = Field(..., gt=0)
    macros: Macros
    scan_count: int = Field(..., ge=1)
