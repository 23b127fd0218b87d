"""
Ports (Interfaces) for resolution dependencies.

Provider adapters and the response cache are injected into the
ResolutionOrchestrator through these protocols, so the orchestrator
never branches on provider identity.

Design Pattern: Ports & Adapters (Hexagonal Architecture)
"""

from typing import Optional, Protocol, runtime_checkable

from nutriscan.domain.nutrition.models import ProviderResult
from nutriscan.domain.observation.models import Observation
from nutriscan.domain.resolution.models import ProviderOutcome


@runtime_checkable
class INutritionProvider(Protocol):
    """
    Port for one external nutrition data source.

    Implementations translate the provider's wire format into a
    ProviderResult at the boundary. Expected failure modes are
    returned as ProviderFailure, never raised. No caching and no
    persistence happen inside an adapter.
    """

    name: str

    async def resolve(
        self, observation: Observation, *, hint: Optional[str] = None
    ) -> ProviderOutcome:
        """
        Resolve an observation.

        Args:
            observation: Photo or barcode to identify
            hint: Product or dish name found by an earlier stage

        Returns:
            ProviderResult on success, ProviderFailure otherwise
        """
        ...


@runtime_checkable
class IBarcodeProvider(INutritionProvider, Protocol):
    """
    Port for barcode sources.

    Some sources are authoritative only for certain regions or
    product categories; the orchestrator skips them otherwise.
    """

    def supports_region(self, code: str) -> bool:
        """True if this source should be consulted for the barcode."""
        ...


@runtime_checkable
class IResponseCache(Protocol):
    """
    Port for the response cache in front of the providers.

    Keys come from observation content, never from user identity.
    """

    def get(self, key: str) -> Optional[ProviderResult]:
        """Unexpired result for key, or None."""
        ...

    def put(
        self, key: str, result: ProviderResult, ttl_s: Optional[float] = None
    ) -> None:
        """Store result for ttl_s seconds (default TTL when None)."""
        ...

    def invalidate(self, key: str) -> bool:
        """Drop one entry. Returns True if it existed."""
        ...

    def clear(self) -> None:
        """Drop every entry."""
        ...
