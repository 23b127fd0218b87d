"""
Resolution domain models.

Typed outcomes of provider calls and of a whole resolution request.
ProviderFailure and Unresolved are values, not exceptions: running out
of data is an ordinary outcome the caller handles (e.g. manual entry).
"""

from __future__ import annotations

import time
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from nutriscan.domain.nutrition.models import (
    ConfidenceTier,
    Macros,
    PersonalizedPortion,
    ProviderResult,
)


class FailureKind(str, Enum):
    """Expected provider failure modes. All are recoverable by the chain."""

    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    MALFORMED_RESPONSE = "malformed_response"


ALL_FAILURE_KINDS = frozenset(FailureKind)


class ProviderFailure(BaseModel):
    """
    Typed failure returned by an adapter instead of raising.

    Attributes:
        kind: Failure mode
        provider: Adapter name
        message: Human readable detail (never contains credentials)
        retry_after_s: Backoff hint for RATE_LIMITED, when known
    """

    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    provider: str
    message: str = ""
    retry_after_s: Optional[float] = Field(None, ge=0)


ProviderOutcome = Union[ProviderResult, ProviderFailure]


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class ResolutionAttempt(BaseModel):
    """One step of the chain, kept for tracing and logs."""

    model_config = ConfigDict(frozen=True)

    provider: str
    outcome: AttemptOutcome
    tier: Optional[ConfidenceTier] = None
    failure_kind: Optional[FailureKind] = None
    elapsed_ms: float = 0.0
    detail: str = ""


class UnresolvedReason(str, Enum):
    CHAIN_EXHAUSTED = "chain_exhausted"
    DEADLINE_EXCEEDED = "deadline_exceeded"


class Unresolved(BaseModel):
    """
    No usable nutrition data for the observation.

    Returned, never raised. No placeholder record is fabricated.
    """

    model_config = ConfigDict(frozen=True)

    reason: UnresolvedReason
    attempts: List[ResolutionAttempt] = Field(default_factory=list)


class ResolvedNutrition(BaseModel):
    """
    Pipeline output.

    Wraps the raw ProviderResult with its derived tier and, when the
    user has history for the dish, the rescaled portion. Use the
    ``portion_g`` and ``macros`` properties for the effective values.
    """

    model_config = ConfigDict(frozen=True)

    result: ProviderResult
    tier: ConfidenceTier
    personalization: Optional[PersonalizedPortion] = None
    from_cache: bool = False
    attempts: List[ResolutionAttempt] = Field(default_factory=list)

    @property
    def portion_g(self) -> Optional[float]:
        """Effective portion weight."""
        if self.personalization is not None:
            return self.personalization.portion_g
        return self.result.portion_g

    @property
    def macros(self) -> Macros:
        """Effective macros, consistent with portion_g."""
        if self.personalization is not None:
            return self.personalization.macros
        return self.result.macros

    @property
    def is_personalized(self) -> bool:
        return self.personalization is not None


ResolutionOutcome = Union[ResolvedNutrition, Unresolved]


class CacheEntry(BaseModel):
    """
    Cached provider result.

    expires_at is on the monotonic clock of the cache that wrote it.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    result: ProviderResult
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class Deadline:
    """
    Absolute deadline on the monotonic clock.

    Example:
        >>> deadline = Deadline.after(0.2)
        >>> assert 0 < deadline.remaining() <= 0.2
    """

    __slots__ = ("_expires_at", "_clock")

    def __init__(self, expires_at: float, clock=time.monotonic) -> None:
        self._expires_at = expires_at
        self._clock = clock

    @classmethod
    def after(cls, seconds: float, clock=time.monotonic) -> Deadline:
        """Deadline `seconds` from now."""
        if seconds <= 0:
            raise ValueError(f"Deadline must be positive: {seconds}s")
        return cls(clock() + seconds, clock)

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(self._expires_at - self._clock(), 0.0)

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining():.3f}s)"
