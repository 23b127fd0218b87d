"""
Confidence evaluator.

Maps a ProviderResult to a ConfidenceTier. Deterministic and free of
I/O: the tier is a function of the provider's own confidence and of
the completeness and plausibility of the result.

Rules, applied in order:
1. Base tier from provider confidence (high >= 0.7, moderate >= 0.4).
2. Demote one tier when a required macro is missing, or zero while
   calories are not.
3. Demote one tier when the energy values are implausible. The 4/4/9
   cross-check only applies to a complete macro set; a result missing a
   macro never scores above the complete one.
4. Demote to low when the portion weight is absent or not positive.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from nutriscan.domain.nutrition.models import (
    REQUIRED_MACROS,
    ConfidenceTier,
    ProviderResult,
)


HIGH_THRESHOLD = 0.7
MODERATE_THRESHOLD = 0.4

# Pure fat is ~9 kcal/g; anything denser is a unit or parsing error.
MAX_KCAL_PER_GRAM = 9.5
# Tolerated excess of 4/4/9 macro energy over reported calories.
MAX_MACRO_ENERGY_EXCESS = 0.5

_ORDER = [ConfidenceTier.LOW, ConfidenceTier.MODERATE, ConfidenceTier.HIGH]


@dataclass(frozen=True)
class ConfidenceAssessment:
    """Tier plus the reasons it was demoted from the base tier."""

    base: ConfidenceTier
    tier: ConfidenceTier
    demotions: List[str] = field(default_factory=list)


def base_tier(confidence: float) -> ConfidenceTier:
    """Tier from raw provider confidence alone."""
    if confidence >= HIGH_THRESHOLD:
        return ConfidenceTier.HIGH
    if confidence >= MODERATE_THRESHOLD:
        return ConfidenceTier.MODERATE
    return ConfidenceTier.LOW


def _demote(tier: ConfidenceTier) -> ConfidenceTier:
    return _ORDER[max(_ORDER.index(tier) - 1, 0)]


def _incomplete_macros(result: ProviderResult) -> List[str]:
    macros = result.macros
    missing = macros.missing_required()
    if macros.calories > 0:
        missing += [
            name for name in REQUIRED_MACROS if getattr(macros, name) == 0
        ]
    return missing


def _implausible_energy(result: ProviderResult, macros_complete: bool) -> bool:
    macros = result.macros
    portion = result.portion_g
    if portion and portion > 0 and macros.calories / portion > MAX_KCAL_PER_GRAM:
        return True
    # Macro energy of an incomplete set is not comparable with calories
    if macros_complete and macros.calories > 0:
        excess = macros.macro_energy() - macros.calories
        if excess > macros.calories * MAX_MACRO_ENERGY_EXCESS:
            return True
    return False


def explain(result: ProviderResult) -> ConfidenceAssessment:
    """
    Score a result and report why it was demoted.

    Demotion reasons are short tags such as "missing_macros:fat",
    "implausible_energy" or "missing_portion", meant for logs.
    """
    base = base_tier(result.confidence)
    tier = base
    demotions: List[str] = []

    incomplete = _incomplete_macros(result)
    if incomplete:
        tier = _demote(tier)
        demotions.append("missing_macros:" + ",".join(incomplete))

    if _implausible_energy(result, macros_complete=not incomplete):
        tier = _demote(tier)
        demotions.append("implausible_energy")

    if result.portion_g is None or result.portion_g <= 0:
        tier = ConfidenceTier.LOW
        demotions.append("missing_portion")

    return ConfidenceAssessment(base=base, tier=tier, demotions=demotions)


def score(result: ProviderResult) -> ConfidenceTier:
    """Confidence tier of a normalized provider result."""
    return explain(result).tier
