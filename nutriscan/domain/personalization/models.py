"""
Portion personalization models.

A user's habitual serving per dish, learned from confirmed history.
"""

from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from nutriscan.domain.shared.errors import ValidationError


_PUNCTUATION = re.compile(r"[^\w\s'-]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


def normalize_dish_name(name: str) -> str:
    """
    Canonical form of a dish name used as personalization key.

    Lower-cases, drops punctuation (inner hyphens and apostrophes
    survive) and collapses whitespace.

    Example:
        >>> normalize_dish_name("  Paneer  Butter-Masala! ")
        'paneer butter-masala'
    """
    cleaned = _PUNCTUATION.sub(" ", name.lower())
    cleaned = _WHITESPACE.sub(" ", cleaned).strip(" -'")
    if not cleaned:
        raise ValidationError(f"Dish name is empty after normalization: {name!r}")
    return cleaned


class PersonalizationEntry(BaseModel):
    """
    Usual portion for (user, dish).

    Attributes:
        user_id: Owner
        dish_name: Normalized dish name
        usual_portion_g: Latest confirmed portion in grams
        scan_count: Number of confirmations recorded
        last_seen: Time of the latest confirmation (UTC)
    """

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    dish_name: str = Field(..., min_length=1)
    usual_portion_g: float = Field(..., gt=0)
    scan_count: int = Field(1, ge=1)
    last_seen: datetime
