"""
Shared fixtures for nutriscan tests.

Provider adapters are replaced by FakeProvider, which returns a canned
outcome after an optional delay and records how it was called.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Union

import pytest

from nutriscan.domain.nutrition.models import Macros, ProviderResult
from nutriscan.domain.observation.models import BarcodeObservation, PhotoObservation
from nutriscan.domain.resolution.models import (
    FailureKind,
    ProviderFailure,
    ProviderOutcome,
)
from nutriscan.infrastructure.cache.response_cache import InMemoryResponseCache
from nutriscan.infrastructure.personalization.in_memory_store import (
    InMemoryPortionStore,
)


# ═══════════════════════════════════════════════════════════
# FAKES
# ═══════════════════════════════════════════════════════════


class FakeProvider:
    """Provider double with a canned outcome."""

    def __init__(
        self,
        name: str,
        outcome: Union[ProviderOutcome, BaseException, None] = None,
        delay_s: float = 0.0,
        supports: bool = True,
    ) -> None:
        self.name = name
        self.outcome = outcome
        self.delay_s = delay_s
        self.supports = supports
        self.calls = 0
        self.hints: List[Optional[str]] = []
        self.cancelled = False

    def supports_region(self, code: str) -> bool:
        return self.supports

    async def resolve(self, observation: Any, *, hint: Optional[str] = None) -> ProviderOutcome:
        self.calls += 1
        self.hints.append(hint)
        if self.delay_s:
            try:
                await asyncio.sleep(self.delay_s)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self.outcome is None:
            return ProviderFailure(
                kind=FailureKind.NOT_FOUND, provider=self.name, message="unknown"
            )
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


class FakeClock:
    """Monotonic clock moved by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ═══════════════════════════════════════════════════════════
# DOMAIN MODEL FIXTURES
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def make_result() -> Callable[..., ProviderResult]:
    """Factory for ProviderResult with sensible, complete macros."""

    def _make(
        name: str = "Paneer Butter Masala",
        portion_g: Optional[float] = 300.0,
        confidence: float = 0.85,
        provider: str = "vision_primary",
        calories: float = 504.0,
        protein: Optional[float] = 21.6,
        carbs: Optional[float] = 26.4,
        fat: Optional[float] = 33.6,
        **kwargs: Any,
    ) -> ProviderResult:
        return ProviderResult(
            name=name,
            portion_g=portion_g,
            macros=Macros(calories=calories, protein=protein, carbs=carbs, fat=fat),
            confidence=confidence,
            provider=provider,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_failure() -> Callable[..., ProviderFailure]:
    """Factory for ProviderFailure."""

    def _make(
        kind: FailureKind = FailureKind.NOT_FOUND, provider: str = "fake"
    ) -> ProviderFailure:
        return ProviderFailure(kind=kind, provider=provider, message=kind.value)

    return _make


@pytest.fixture
def paneer_result(make_result: Callable[..., ProviderResult]) -> ProviderResult:
    """High-confidence vision result for Paneer Butter Masala (300 g)."""
    return make_result()


@pytest.fixture
def photo() -> PhotoObservation:
    """Photo observation with fake JPEG bytes."""
    return PhotoObservation(image_bytes=b"\xff\xd8\xff\xe0fake-jpeg-bytes")


@pytest.fixture
def barcode() -> BarcodeObservation:
    """Barcode of an in-store dish label."""
    return BarcodeObservation(code="0001")


@pytest.fixture
def fixed_now() -> datetime:
    """Fixed UTC instant."""
    return datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


# ═══════════════════════════════════════════════════════════
# INFRASTRUCTURE FIXTURES
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def fake_clock() -> FakeClock:
    """Hand-driven monotonic clock."""
    return FakeClock()


@pytest.fixture
def cache(fake_clock: FakeClock) -> InMemoryResponseCache:
    """Response cache on the fake clock."""
    return InMemoryResponseCache(default_ttl_seconds=1200, max_entries=512, clock=fake_clock)


@pytest.fixture
def portion_store() -> InMemoryPortionStore:
    """Empty in-memory portion store."""
    return InMemoryPortionStore()


@pytest.fixture
def make_provider() -> Callable[..., FakeProvider]:
    """Factory for FakeProvider."""
    return FakeProvider
