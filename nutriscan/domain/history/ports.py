"""
History ports.

Interface for the document store that keeps confirmed entries.
"""

from typing import List, Protocol, runtime_checkable

from nutriscan.domain.history.models import HistoryEntry


@runtime_checkable
class IHistoryRepository(Protocol):
    """Port for confirmed history persistence."""

    async def save(self, entry: HistoryEntry) -> None:
        """
        Persist an entry.

        Raises:
            DatabaseError: Write failed
        """
        ...

    async def recent(self, user_id: str, limit: int = 20) -> List[HistoryEntry]:
        """Most recent entries for a user, newest first."""
        ...

    async def trim(self, user_id: str, keep: int) -> int:
        """Delete all but the newest `keep` entries. Returns count deleted."""
        ...
