"""In-memory portion personalization store.

Implements IPortionStore with a dictionary keyed by
(user_id, normalized dish name). No network I/O.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

import structlog

from nutriscan.domain.personalization.models import (
    PersonalizationEntry,
    normalize_dish_name,
)
from nutriscan.domain.shared.errors import ValidationError

logger = structlog.get_logger(__name__)

_Key = Tuple[str, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryPortionStore:
    """
    In-memory implementation of IPortionStore port.

    Entries are immutable values, so readers never see a half-written
    entry and take no lock. Writers are serialised per key with an
    asyncio.Lock; writes to different keys do not wait on each other.

    Growth is unbounded; retention is applied from outside via prune().

    Example:
        >>> store = InMemoryPortionStore()
        >>> await store.record_confirmation("user_123", "Paneer Butter Masala", 220)
        >>> entry = await store.get("user_123", "paneer butter masala")
        >>> entry.usual_portion_g
        220.0
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        """Initialize store with empty storage."""
        self._entries: Dict[_Key, PersonalizationEntry] = {}
        self._locks: Dict[_Key, asyncio.Lock] = {}
        self._clock = clock

    def _lock_for(self, key: _Key) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks.setdefault(key, asyncio.Lock())
        return lock

    async def get(
        self, user_id: str, dish_name: str
    ) -> Optional[PersonalizationEntry]:
        """Usual portion for the dish, or None without history."""
        try:
            key = (user_id, normalize_dish_name(dish_name))
        except ValidationError:
            return None
        return self._entries.get(key)

    async def record_confirmation(
        self, user_id: str, dish_name: str, confirmed_portion_g: float
    ) -> PersonalizationEntry:
        """
        Record a user-confirmed portion.

        The latest confirmation replaces the usual portion (no
        averaging) and scan_count is incremented.

        Raises:
            ValidationError: Portion not positive, or empty user/dish
        """
        if confirmed_portion_g is None or confirmed_portion_g <= 0:
            raise ValidationError(
                f"Confirmed portion must be positive: {confirmed_portion_g}g"
            )
        if not user_id or not user_id.strip():
            raise ValidationError("User ID cannot be empty")

        key = (user_id, normalize_dish_name(dish_name))
        async with self._lock_for(key):
            previous = self._entries.get(key)
            entry = PersonalizationEntry(
                user_id=user_id,
                dish_name=key[1],
                usual_portion_g=float(confirmed_portion_g),
                scan_count=(previous.scan_count + 1) if previous else 1,
                last_seen=self._clock(),
            )
            self._entries[key] = entry

        logger.info(
            "Portion confirmed",
            user_id=user_id,
            dish=key[1],
            portion_g=entry.usual_portion_g,
            scan_count=entry.scan_count,
        )
        return entry

    async def prune(self, older_than: datetime) -> int:
        """Delete entries last seen before the cutoff. Returns count.

        Per-key locks outlive their entries: a writer may already be
        queued on one.
        """
        stale = [k for k, e in list(self._entries.items()) if e.last_seen < older_than]
        removed = 0
        for key in stale:
            async with self._lock_for(key):
                entry = self._entries.get(key)
                if entry is not None and entry.last_seen < older_than:
                    del self._entries[key]
                    removed += 1

        if removed:
            logger.info("Pruned personalization entries", count=removed)
        return removed

    def size(self) -> int:
        """Number of (user, dish) entries."""
        return len(self._entries)
