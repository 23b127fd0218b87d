"""
History Writer.

Persists user-confirmed results and feeds the confirmed portion back
into the personalization store, so the next resolution of the same
dish is rescaled to the user's habit. Owns retention for both.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List

import structlog

from nutriscan.domain.history.models import HistoryEntry
from nutriscan.domain.history.ports import IHistoryRepository
from nutriscan.domain.nutrition.scaling import rescale
from nutriscan.domain.personalization.ports import IPortionStore
from nutriscan.domain.resolution.models import ResolvedNutrition
from nutriscan.domain.shared.errors import InfrastructureError, ValidationError

logger = structlog.get_logger(__name__)

MAX_HISTORY_ENTRIES = 100


class HistoryWriter:
    """
    Persists confirmations and updates usual portions.

    Flow:
    1. Rescale the resolved macros to the confirmed portion
    2. Save a HistoryEntry through the repository
    3. record_confirmation on the portion store
    4. Trim the user's history to the newest entries

    A repository failure propagates (nothing was recorded). A portion
    store failure after a successful save is logged only, so a retry
    by the caller does not duplicate the history entry.

    Example:
        >>> writer = HistoryWriter(repository, portion_store)
        >>> entry = await writer.persist("user_123", resolved, confirmed_portion_g=220)
        >>> entry.confirmed_portion_g
        220.0
    """

    def __init__(
        self,
        repository: IHistoryRepository,
        portion_store: IPortionStore,
        max_entries_per_user: int = MAX_HISTORY_ENTRIES,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize writer.

        Args:
            repository: History persistence
            portion_store: Personalization store fed by confirmations
            max_entries_per_user: History kept per user
            clock: UTC clock, injectable for tests
        """
        self._repository = repository
        self._portion_store = portion_store
        self._max_entries = max_entries_per_user
        self._clock = clock

    async def persist(
        self,
        user_id: str,
        resolved: ResolvedNutrition,
        confirmed_portion_g: float,
    ) -> HistoryEntry:
        """
        Persist a confirmed resolution.

        Args:
            user_id: Confirming user
            resolved: Pipeline output the user confirmed
            confirmed_portion_g: Portion the user actually ate

        Returns:
            Saved HistoryEntry

        Raises:
            ValidationError: confirmed_portion_g not positive
            DatabaseError: History could not be saved
        """
        if confirmed_portion_g is None or confirmed_portion_g <= 0:
            raise ValidationError(
                f"Confirmed portion must be positive: {confirmed_portion_g}g"
            )

        macros = resolved.macros
        if resolved.portion_g and resolved.portion_g > 0:
            macros = rescale(macros, resolved.portion_g, confirmed_portion_g)

        result = resolved.result
        entry = HistoryEntry(
            user_id=user_id,
            dish_name=result.name,
            provider=result.provider,
            tier=resolved.tier,
            confirmed_portion_g=confirmed_portion_g,
            macros=macros,
            category=result.category,
            brand=result.brand,
            from_cache=resolved.from_cache,
            confirmed_at=self._clock(),
        )

        await self._repository.save(entry)

        try:
            await self._portion_store.record_confirmation(
                user_id, result.name, confirmed_portion_g
            )
        except InfrastructureError as e:
            logger.warning(
                "Portion store unavailable, usual portion not updated",
                user_id=user_id,
                dish=result.name,
                error=str(e),
            )

        trimmed = await self._repository.trim(user_id, keep=self._max_entries)

        logger.info(
            "History entry saved",
            user_id=user_id,
            entry_id=entry.entry_id,
            dish=entry.dish_name,
            portion_g=confirmed_portion_g,
            trimmed=trimmed,
        )
        return entry

    async def recent(self, user_id: str, limit: int = 20) -> List[HistoryEntry]:
        """Most recent confirmations for a user, newest first."""
        return await self._repository.recent(user_id, limit=limit)

    async def prune_personalization(self, max_age: timedelta) -> int:
        """
        Drop usual portions not confirmed within max_age.

        Returns:
            Number of entries removed
        """
        cutoff = self._clock() - max_age
        removed = await self._portion_store.prune(cutoff)
        logger.info("Personalization pruned", cutoff=cutoff.isoformat(), removed=removed)
        return removed
