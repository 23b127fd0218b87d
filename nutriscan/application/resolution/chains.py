"""
Resolution chains.

A chain is the fixed precedence order of providers for one observation
kind. Each stage declares which outcomes of the previous stage allow
the chain to reach it, which is how the photo backup model is limited
to timeouts and malformed replies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple

from nutriscan.domain.nutrition.models import ConfidenceTier
from nutriscan.domain.resolution.models import (
    ALL_FAILURE_KINDS,
    FailureKind,
    ProviderFailure,
    ProviderOutcome,
)
from nutriscan.domain.resolution.ports import INutritionProvider


@dataclass(frozen=True)
class ChainStage:
    """
    One provider in a chain.

    Attributes:
        adapter: Provider adapter
        enter_on: Failure kinds of the previous stage that lead here
        enter_on_low: Whether a low-tier result of the previous stage
            leads here
    """

    adapter: INutritionProvider
    enter_on: FrozenSet[FailureKind] = ALL_FAILURE_KINDS
    enter_on_low: bool = True

    @property
    def name(self) -> str:
        return self.adapter.name

    def accepts(
        self, previous: Optional[ProviderOutcome], previous_tier: Optional[ConfidenceTier]
    ) -> bool:
        """True if the chain may advance to this stage after `previous`."""
        if previous is None:
            return True
        if isinstance(previous, ProviderFailure):
            return previous.kind in self.enter_on
        return previous_tier is ConfidenceTier.LOW and self.enter_on_low


@dataclass(frozen=True)
class ResolutionChain:
    """Immutable, ordered provider stages for one observation kind."""

    kind: str
    stages: Tuple[ChainStage, ...]

    def __post_init__(self) -> None:
        if not self.stages:
            raise ValueError(f"Resolution chain '{self.kind}' has no stages")

    @property
    def provider_names(self) -> Tuple[str, ...]:
        return tuple(stage.name for stage in self.stages)

    @classmethod
    def photo(
        cls, primary: INutritionProvider, backup: Optional[INutritionProvider] = None
    ) -> ResolutionChain:
        """
        Photo chain: primary vision model, then the backup model only
        when the primary timed out or returned an unusable reply.
        """
        stages = [ChainStage(primary)]
        if backup is not None:
            stages.append(
                ChainStage(
                    backup,
                    enter_on=frozenset(
                        {FailureKind.TIMEOUT, FailureKind.MALFORMED_RESPONSE}
                    ),
                    enter_on_low=False,
                )
            )
        return cls(kind="photo", stages=tuple(stages))

    @classmethod
    def barcode(cls, *providers: INutritionProvider) -> ResolutionChain:
        """
        Barcode chain: strict precedence, every failure and every
        low-tier result advances to the next provider.

        Expected order: open product database, regional dataset, two
        generic UPC/GTIN services, dish database.
        """
        return cls(kind="barcode", stages=tuple(ChainStage(p) for p in providers))
