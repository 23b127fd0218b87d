"""In-memory history repository.

Implements IHistoryRepository with per-user lists, newest last.
Data is lost on process restart; meant for tests and single-process
deployments.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List

from nutriscan.domain.history.models import HistoryEntry


class InMemoryHistoryRepository:
    """
    In-memory implementation of IHistoryRepository port.

    Example:
        >>> repository = InMemoryHistoryRepository()
        >>> await repository.save(entry)
        >>> await repository.recent("user_123", limit=5)
    """

    def __init__(self) -> None:
        """Initialize repository with empty storage."""
        self._storage: Dict[str, List[HistoryEntry]] = defaultdict(list)

    async def save(self, entry: HistoryEntry) -> None:
        """Append or replace an entry (matched by entry_id)."""
        entries = self._storage[entry.user_id]
        entries[:] = [e for e in entries if e.entry_id != entry.entry_id]
        entries.append(entry)
        entries.sort(key=lambda e: e.confirmed_at)

    async def recent(self, user_id: str, limit: int = 20) -> List[HistoryEntry]:
        """Most recent entries for a user, newest first."""
        entries = self._storage.get(user_id, [])
        return list(reversed(entries))[:limit]

    async def trim(self, user_id: str, keep: int) -> int:
        """Delete all but the newest `keep` entries. Returns count deleted."""
        entries = self._storage.get(user_id, [])
        excess = max(len(entries) - keep, 0)
        if excess:
            del entries[:excess]
        return excess
