"""
Portion rescaling.

Pure functions: a single multiplier is applied to the portion and to
calories and every macro, so scaled results stay internally consistent.
"""

from __future__ import annotations

from typing import Optional

from nutriscan.domain.nutrition.models import Macros, PersonalizedPortion, ProviderResult
from nutriscan.domain.personalization.models import PersonalizationEntry


def rescale(macros: Macros, from_portion_g: float, to_portion_g: float) -> Macros:
    """
    Rescale macros from one portion weight to another.

    Example:
        >>> m = Macros(calories=100, protein=10, carbs=10, fat=2)
        >>> rescale(m, 100, 250).protein
        25.0
    """
    if from_portion_g <= 0 or to_portion_g <= 0:
        raise ValueError(
            f"Portions must be positive: {from_portion_g}g -> {to_portion_g}g"
        )
    return macros.scale(to_portion_g / from_portion_g)


def personalize(
    result: ProviderResult, entry: Optional[PersonalizationEntry]
) -> Optional[PersonalizedPortion]:
    """
    Apply a user's usual portion to a fresh result.

    Identity (returns None) when there is no history for the dish or
    the result carries no usable portion weight to scale from.
    """
    if entry is None:
        return None
    if result.portion_g is None or result.portion_g <= 0:
        return None

    multiplier = entry.usual_portion_g / result.portion_g
    return PersonalizedPortion(
        usual_portion_g=entry.usual_portion_g,
        multiplier=multiplier,
        portion_g=entry.usual_portion_g,
        macros=result.macros.scale(multiplier),
        scan_count=entry.scan_count,
    )
