"""
History domain models.

A confirmed food log entry: what the pipeline resolved, and the portion
the user actually confirmed.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from nutriscan.domain.nutrition.models import ConfidenceTier, Macros


class HistoryEntry(BaseModel):
    """
    Persisted confirmation.

    Macros are rescaled to the confirmed portion.

    Example:
        >>> entry = HistoryEntry(
        ...     user_id="user_123",
        ...     dish_name="Masala Dosa",
        ...     provider="dish_database",
        ...     tier=ConfidenceTier.MODERATE,
        ...     confirmed_portion_g=300.0,
        ...     macros=Macros(calories=420, protein=12, carbs=65, fat=12),
        ... )
    """

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: f"hist_{uuid.uuid4().hex[:12]}")
    user_id: str = Field(..., min_length=1)
    dish_name: str = Field(..., min_length=1)
    provider: str
    tier: ConfidenceTier
    confirmed_portion_g: float = Field(..., gt=0)
    macros: Macros
    category: Optional[str] = None
    brand: Optional[str] = None
    from_cache: bool = False
    confirmed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
