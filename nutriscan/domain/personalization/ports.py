"""
Personalization ports.

Interface for the per-user portion store.
"""

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from nutriscan.domain.personalization.models import PersonalizationEntry


@runtime_checkable
class IPortionStore(Protocol):
    """
    Per-user, per-dish usual portion store.

    Lookups never do network I/O. record_confirmation is the only
    mutator used during normal operation; prune exists for the
    history collaborator that owns retention.
    """

    async def get(
        self, user_id: str, dish_name: str
    ) -> Optional[PersonalizationEntry]:
        """
        Usual portion for the dish, or None without history.

        Raises:
            StoreUnavailableError: Backing store cannot be reached
        """
        ...

    async def record_confirmation(
        self, user_id: str, dish_name: str, confirmed_portion_g: float
    ) -> PersonalizationEntry:
        """
        Record a user-confirmed portion.

        Creates the entry with scan_count=1, or replaces the usual
        portion with the confirmed one and increments scan_count.

        Raises:
            ValidationError: confirmed_portion_g is not positive
        """
        ...

    async def prune(self, older_than: datetime) -> int:
        """Delete entries last seen before the cutoff. Returns count."""
        ...
