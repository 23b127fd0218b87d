"""
Tests for ResolutionOrchestrator.

Providers are FakeProvider doubles; cache and portion store are the
in-memory implementations unless a test needs them to fail.
"""

import time
from typing import Any, Callable, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from nutriscan.application.resolution.chains import ResolutionChain
from nutriscan.application.resolution.orchestrator import ResolutionOrchestrator
from nutriscan.domain.nutrition.models import ConfidenceTier, ProviderResult
from nutriscan.domain.observation.models import (
    BarcodeObservation,
    PhotoObservation,
    cache_key,
)
from nutriscan.domain.personalization.ports import IPortionStore
from nutriscan.domain.resolution.models import (
    AttemptOutcome,
    FailureKind,
    ResolvedNutrition,
    Unresolved,
    UnresolvedReason,
)
from nutriscan.domain.shared.errors import CacheError, StoreUnavailableError
from nutriscan.infrastructure.cache.response_cache import InMemoryResponseCache
from nutriscan.infrastructure.personalization.in_memory_store import (
    InMemoryPortionStore,
)

MakeResult = Callable[..., ProviderResult]


# ═══════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def samosa_result(make_result: MakeResult) -> ProviderResult:
    """Dish database answer: 150 g, confidence 0.5."""
    return make_result(
        name="Samosa",
        portion_g=150.0,
        confidence=0.5,
        provider="dish_database",
        calories=420.0,
        protein=7.5,
        carbs=48.0,
        fat=22.5,
    )


@pytest.fixture
def build(
    make_provider: Callable[..., Any],
    cache: InMemoryResponseCache,
    portion_store: InMemoryPortionStore,
) -> Callable[..., ResolutionOrchestrator]:
    """Orchestrator factory over fake chains."""

    def _build(
        barcode: Optional[List[Any]] = None,
        photo: Optional[List[Any]] = None,
        **kwargs: Any,
    ) -> ResolutionOrchestrator:
        barcode = barcode or [make_provider("barcode_default")]
        photo = photo or [make_provider("vision_default")]
        kwargs.setdefault("cache", cache)
        kwargs.setdefault("portion_store", portion_store)
        return ResolutionOrchestrator(
            photo_chain=ResolutionChain.photo(*photo),
            barcode_chain=ResolutionChain.barcode(*barcode),
            **kwargs,
        )

    return _build


# ═══════════════════════════════════════════════════════════
# BARCODE CHAIN
# ═══════════════════════════════════════════════════════════


class TestBarcodeChain:
    """Test precedence and fall-through on the barcode chain."""

    @pytest.mark.asyncio
    async def test_fifth_provider_resolves_unknown_code(
        self, build: Any, make_provider: Any, samosa_result: ProviderResult
    ) -> None:
        """Test code unknown to four providers resolved by the fifth."""
        # ARRANGE
        misses = [make_provider(f"p{i}") for i in range(4)]
        dishes = make_provider("dish_database", samosa_result)
        orchestrator = build(barcode=[*misses, dishes])

        # ACT
        outcome = await orchestrator.resolve(BarcodeObservation(code="0001"), "new_user")

        # ASSERT
        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.tier is ConfidenceTier.MODERATE
        assert outcome.portion_g == 150.0
        assert outcome.personalization is None
        assert outcome.result.provider == "dish_database"
        assert [a.outcome for a in outcome.attempts] == [
            AttemptOutcome.FAILURE
        ] * 4 + [AttemptOutcome.SUCCESS]
        assert all(p.calls == 1 for p in misses)

    @pytest.mark.asyncio
    async def test_first_acceptable_result_stops_chain(
        self, build: Any, make_provider: Any, make_result: MakeResult
    ) -> None:
        """Test later providers are not called once a result is accepted."""
        first = make_provider("off", make_result(provider="off"))
        second = make_provider("regional", make_result(provider="regional"))
        orchestrator = build(barcode=[first, second])

        outcome = await orchestrator.resolve(BarcodeObservation(code="3017620422003"), "u1")

        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.result.provider == "off"
        assert second.calls == 0

    @pytest.mark.asyncio
    async def test_low_result_falls_through(
        self, build: Any, make_provider: Any, make_result: MakeResult
    ) -> None:
        """Test a low-tier result advances to the next provider."""
        low = make_provider("usda", make_result(confidence=0.2, provider="usda"))
        better = make_provider("dishes", make_result(confidence=0.75, provider="dishes"))
        orchestrator = build(barcode=[low, better])

        outcome = await orchestrator.resolve(BarcodeObservation(code="12345678"), "u1")

        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.result.provider == "dishes"
        assert outcome.tier is ConfidenceTier.HIGH
        assert outcome.attempts[0].tier is ConfidenceTier.LOW

    @pytest.mark.asyncio
    async def test_last_provider_low_result_is_accepted(
        self, build: Any, make_provider: Any, make_result: MakeResult
    ) -> None:
        """Test the last provider's low result is returned rather than failing."""
        last = make_provider("dishes", make_result(confidence=0.1, provider="dishes"))
        orchestrator = build(barcode=[make_provider("off"), last])

        outcome = await orchestrator.resolve(BarcodeObservation(code="12345678"), "u1")

        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.tier is ConfidenceTier.LOW
        assert outcome.result.provider == "dishes"

    @pytest.mark.asyncio
    async def test_earliest_low_result_wins_when_chain_ends_in_failure(
        self, build: Any, make_provider: Any, make_result: MakeResult
    ) -> None:
        """Test precedence breaks ties between low results."""
        first_low = make_provider("off", make_result(confidence=0.2, provider="off"))
        second_low = make_provider("usda", make_result(confidence=0.3, provider="usda"))
        orchestrator = build(
            barcode=[first_low, second_low, make_provider("dishes")]
        )

        outcome = await orchestrator.resolve(BarcodeObservation(code="12345678"), "u1")

        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.result.provider == "off"
        assert outcome.tier is ConfidenceTier.LOW
        assert len(outcome.attempts) == 3

    @pytest.mark.asyncio
    async def test_all_failures_unresolved(self, build: Any, make_provider: Any) -> None:
        """Test exhausted chain returns Unresolved, never a placeholder."""
        orchestrator = build(barcode=[make_provider("a"), make_provider("b")])

        outcome = await orchestrator.resolve(BarcodeObservation(code="99999999"), "u1")

        assert isinstance(outcome, Unresolved)
        assert outcome.reason is UnresolvedReason.CHAIN_EXHAUSTED
        assert [a.failure_kind for a in outcome.attempts] == [FailureKind.NOT_FOUND] * 2

    @pytest.mark.asyncio
    async def test_every_failure_kind_advances(
        self, build: Any, make_provider: Any, make_failure: Any, make_result: MakeResult
    ) -> None:
        """Test rate limits, timeouts and garbage all fall through."""
        providers = [
            make_provider("a", make_failure(FailureKind.RATE_LIMITED, "a")),
            make_provider("b", make_failure(FailureKind.TIMEOUT, "b")),
            make_provider("c", make_failure(FailureKind.MALFORMED_RESPONSE, "c")),
            make_provider("d", make_result(provider="d")),
        ]
        orchestrator = build(barcode=providers)

        outcome = await orchestrator.resolve(BarcodeObservation(code="12345678"), "u1")

        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.result.provider == "d"

    @pytest.mark.asyncio
    async def test_unsupported_region_skipped(
        self, build: Any, make_provider: Any, make_result: MakeResult
    ) -> None:
        """Test a regional provider is not called outside its region."""
        regional = make_provider("regional", make_result(provider="regional"), supports=False)
        fallback = make_provider("usda", make_result(provider="usda"))
        orchestrator = build(barcode=[make_provider("off"), regional, fallback])

        outcome = await orchestrator.resolve(BarcodeObservation(code="3017620422003"), "u1")

        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.result.provider == "usda"
        assert regional.calls == 0
        assert outcome.attempts[1].outcome is AttemptOutcome.SKIPPED

    @pytest.mark.asyncio
    async def test_identity_only_result_becomes_name_hint(
        self, build: Any, make_provider: Any, make_result: MakeResult, samosa_result: ProviderResult
    ) -> None:
        """Test a result without nutrition only contributes its name."""
        identity = make_result(
            name="Samosa",
            portion_g=None,
            confidence=0.15,
            provider="upcitemdb",
            calories=0.0,
            protein=None,
            carbs=None,
            fat=None,
        )
        upc = make_provider("upcitemdb", identity)
        dishes = make_provider("dishes", samosa_result)
        orchestrator = build(barcode=[upc, dishes])

        outcome = await orchestrator.resolve(BarcodeObservation(code="12345678"), "u1")

        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.result.provider == "dish_database"
        assert dishes.hints == ["Samosa"]

    @pytest.mark.asyncio
    async def test_identity_title_replaces_neighbouring_product_name(
        self, build: Any, make_provider: Any, make_result: MakeResult, make_failure: Any
    ) -> None:
        """Test the dish stage gets the identity title, not a low neighbour's name."""
        # ARRANGE
        off = make_provider("off", make_failure(FailureKind.NOT_FOUND, "off"))
        usda = make_provider(
            "usda", make_result(name="Chicken Biryani Frozen Meal", confidence=0.3, provider="usda")
        )
        upc = make_provider(
            "upc",
            make_result(
                name="Masala Dosa Mix",
                portion_g=None,
                confidence=0.15,
                provider="upcitemdb",
                calories=0.0,
                protein=None,
                carbs=None,
                fat=None,
            ),
        )
        dishes = make_provider("dishes")
        orchestrator = build(barcode=[off, usda, upc, dishes])

        # ACT
        outcome = await orchestrator.resolve(BarcodeObservation(code="12345678"), "u1")

        # ASSERT
        assert usda.hints == [None]
        assert upc.hints == [None]
        assert dishes.hints == ["Masala Dosa Mix"]
        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.result.provider == "usda"

    @pytest.mark.asyncio
    async def test_identity_only_last_result_is_not_nutrition(
        self, build: Any, make_provider: Any, make_result: MakeResult
    ) -> None:
        """Test a name without nutrition never resolves the observation."""
        identity = make_result(
            portion_g=None, calories=0.0, protein=None, carbs=None, fat=None
        )
        orchestrator = build(barcode=[make_provider("upc", identity)])

        outcome = await orchestrator.resolve(BarcodeObservation(code="12345678"), "u1")

        assert isinstance(outcome, Unresolved)

    @pytest.mark.asyncio
    async def test_raising_adapter_treated_as_malformed(
        self, build: Any, make_provider: Any, make_result: MakeResult
    ) -> None:
        """Test an adapter bug does not sink the chain."""
        broken = make_provider("broken", RuntimeError("boom"))
        ok = make_provider("ok", make_result(provider="ok"))
        orchestrator = build(barcode=[broken, ok])

        outcome = await orchestrator.resolve(BarcodeObservation(code="12345678"), "u1")

        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.attempts[0].failure_kind is FailureKind.MALFORMED_RESPONSE


# ═══════════════════════════════════════════════════════════
# PHOTO CHAIN
# ═══════════════════════════════════════════════════════════


class TestPhotoChain:
    """Test primary and backup vision models."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kind", [FailureKind.TIMEOUT, FailureKind.MALFORMED_RESPONSE]
    )
    async def test_backup_used_on_timeout_or_garbage(
        self,
        build: Any,
        make_provider: Any,
        make_failure: Any,
        paneer_result: ProviderResult,
        photo: PhotoObservation,
        kind: FailureKind,
    ) -> None:
        """Test backup model answers when the primary times out or misbehaves."""
        primary = make_provider("vision_primary", make_failure(kind, "vision_primary"))
        backup = make_provider("vision_backup", paneer_result)
        orchestrator = build(photo=[primary, backup])

        outcome = await orchestrator.resolve(photo, "u1")

        assert isinstance(outcome, ResolvedNutrition)
        assert backup.calls == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", [FailureKind.NOT_FOUND, FailureKind.RATE_LIMITED])
    async def test_backup_not_used_otherwise(
        self,
        build: Any,
        make_provider: Any,
        make_failure: Any,
        paneer_result: ProviderResult,
        photo: PhotoObservation,
        kind: FailureKind,
    ) -> None:
        """Test no food or rate limiting on the primary ends the chain."""
        primary = make_provider("vision_primary", make_failure(kind, "vision_primary"))
        backup = make_provider("vision_backup", paneer_result)
        orchestrator = build(photo=[primary, backup])

        outcome = await orchestrator.resolve(photo, "u1")

        assert isinstance(outcome, Unresolved)
        assert outcome.reason is UnresolvedReason.CHAIN_EXHAUSTED
        assert backup.calls == 0

    @pytest.mark.asyncio
    async def test_low_primary_result_accepted(
        self, build: Any, make_provider: Any, make_result: MakeResult, photo: PhotoObservation
    ) -> None:
        """Test a low-tier primary answer is kept, the backup is not asked."""
        primary = make_provider("vision_primary", make_result(portion_g=None))
        backup = make_provider("vision_backup", make_result(provider="vision_backup"))
        orchestrator = build(photo=[primary, backup])

        outcome = await orchestrator.resolve(photo, "u1")

        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.tier is ConfidenceTier.LOW
        assert backup.calls == 0

    @pytest.mark.asyncio
    async def test_personalized_to_usual_portion(
        self,
        build: Any,
        make_provider: Any,
        paneer_result: ProviderResult,
        portion_store: InMemoryPortionStore,
        photo: PhotoObservation,
    ) -> None:
        """Test 300 g recognition rescaled to the user's confirmed 220 g."""
        # ARRANGE
        await portion_store.record_confirmation("user_123", "Paneer Butter Masala", 220)
        orchestrator = build(photo=[make_provider("vision_primary", paneer_result)])

        # ACT
        outcome = await orchestrator.resolve(photo, "user_123")

        # ASSERT
        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.tier is ConfidenceTier.HIGH
        assert outcome.portion_g == 220.0
        assert outcome.macros.calories == pytest.approx(504 * 220 / 300)
        assert outcome.macros.protein == pytest.approx(21.6 * 220 / 300)
        assert outcome.result.portion_g == 300.0

    @pytest.mark.asyncio
    async def test_other_users_history_not_applied(
        self,
        build: Any,
        make_provider: Any,
        paneer_result: ProviderResult,
        portion_store: InMemoryPortionStore,
        photo: PhotoObservation,
    ) -> None:
        """Test personalization is per user."""
        await portion_store.record_confirmation("someone_else", "Paneer Butter Masala", 220)
        orchestrator = build(photo=[make_provider("vision_primary", paneer_result)])

        outcome = await orchestrator.resolve(photo, "user_123")

        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.portion_g == 300.0
        assert not outcome.is_personalized


# ═══════════════════════════════════════════════════════════
# DEADLINE
# ═══════════════════════════════════════════════════════════


class TestDeadline:
    """Test deadline enforcement and cancellation."""

    @pytest.mark.asyncio
    async def test_slow_provider_cancelled(
        self, build: Any, make_provider: Any, paneer_result: ProviderResult, photo: PhotoObservation
    ) -> None:
        """Test a 5 s provider is cancelled by a 200 ms deadline."""
        slow = make_provider("vision_primary", paneer_result, delay_s=5.0)
        orchestrator = build(photo=[slow])

        start = time.perf_counter()
        outcome = await orchestrator.resolve(photo, "u1", deadline=0.2)
        elapsed = time.perf_counter() - start

        assert isinstance(outcome, Unresolved)
        assert outcome.reason is UnresolvedReason.DEADLINE_EXCEEDED
        assert slow.cancelled
        assert elapsed < 2.0

    @pytest.mark.asyncio
    async def test_deadline_cut_after_low_result_is_unresolved(
        self,
        build: Any,
        make_provider: Any,
        make_result: MakeResult,
        cache: InMemoryResponseCache,
    ) -> None:
        """Test an earlier low result is not returned once the deadline cuts the chain."""
        low = make_provider("off", make_result(confidence=0.2, provider="off"))
        slow = make_provider("usda", make_result(provider="usda"), delay_s=5.0)
        orchestrator = build(barcode=[low, slow])
        obs = BarcodeObservation(code="12345678")

        outcome = await orchestrator.resolve(obs, "u1", deadline=0.2)

        assert isinstance(outcome, Unresolved)
        assert outcome.reason is UnresolvedReason.DEADLINE_EXCEEDED
        assert [a.provider for a in outcome.attempts] == ["off", "usda"]
        assert outcome.attempts[0].tier is ConfidenceTier.LOW
        assert slow.cancelled
        assert cache.get(cache_key(obs)) is None

    @pytest.mark.asyncio
    async def test_non_positive_deadline_rejected(self, build: Any, photo: PhotoObservation) -> None:
        """Test zero deadline is a caller error."""
        with pytest.raises(ValueError):
            await build().resolve(photo, "u1", deadline=0)


# ═══════════════════════════════════════════════════════════
# CACHE
# ═══════════════════════════════════════════════════════════


class TestResponseCaching:
    """Test cache reads and writes around the chain."""

    @pytest.mark.asyncio
    async def test_second_resolution_served_from_cache(
        self, build: Any, make_provider: Any, paneer_result: ProviderResult, photo: PhotoObservation
    ) -> None:
        """Test repeated observation skips the providers and returns equal nutrition."""
        primary = make_provider("vision_primary", paneer_result)
        orchestrator = build(photo=[primary])

        first = await orchestrator.resolve(photo, "u1")
        second = await orchestrator.resolve(photo, "u1")

        assert isinstance(first, ResolvedNutrition)
        assert isinstance(second, ResolvedNutrition)
        assert primary.calls == 1
        assert not first.from_cache
        assert second.from_cache
        assert second.macros == first.macros
        assert second.tier is first.tier

    @pytest.mark.asyncio
    async def test_cache_stores_raw_result_shared_across_users(
        self,
        build: Any,
        make_provider: Any,
        paneer_result: ProviderResult,
        portion_store: InMemoryPortionStore,
        photo: PhotoObservation,
    ) -> None:
        """Test one user's personalization never leaks through the cache."""
        await portion_store.record_confirmation("user_a", "Paneer Butter Masala", 220)
        orchestrator = build(photo=[make_provider("vision_primary", paneer_result)])

        for_a = await orchestrator.resolve(photo, "user_a")
        for_b = await orchestrator.resolve(photo, "user_b")

        assert isinstance(for_a, ResolvedNutrition)
        assert isinstance(for_b, ResolvedNutrition)
        assert for_a.portion_g == 220.0
        assert for_b.from_cache
        assert for_b.portion_g == 300.0

    @pytest.mark.asyncio
    async def test_unresolved_not_cached(
        self, build: Any, make_provider: Any, cache: InMemoryResponseCache
    ) -> None:
        """Test failures leave the cache empty."""
        orchestrator = build(barcode=[make_provider("a")])

        await orchestrator.resolve(BarcodeObservation(code="12345678"), "u1")

        assert cache.size() == 0

    @pytest.mark.asyncio
    async def test_cache_failure_is_a_miss(
        self, build: Any, make_provider: Any, paneer_result: ProviderResult, photo: PhotoObservation
    ) -> None:
        """Test a failing cache degrades to pass-through."""
        broken_cache = MagicMock()
        broken_cache.get.side_effect = CacheError("down")
        broken_cache.put.side_effect = CacheError("down")
        orchestrator = build(
            photo=[make_provider("vision_primary", paneer_result)], cache=broken_cache
        )

        outcome = await orchestrator.resolve(photo, "u1")

        assert isinstance(outcome, ResolvedNutrition)
        assert not outcome.from_cache

    @pytest.mark.asyncio
    async def test_without_cache(
        self, build: Any, make_provider: Any, paneer_result: ProviderResult, photo: PhotoObservation
    ) -> None:
        """Test caching is optional."""
        primary = make_provider("vision_primary", paneer_result)
        orchestrator = build(photo=[primary], cache=None)

        await orchestrator.resolve(photo, "u1")
        await orchestrator.resolve(photo, "u1")

        assert primary.calls == 2


# ═══════════════════════════════════════════════════════════
# PERSONALIZATION STORE FAILURES
# ═══════════════════════════════════════════════════════════


class TestPortionStoreFailure:
    """Test store outages never fail a resolution."""

    @pytest.mark.asyncio
    async def test_store_unavailable_passes_through(
        self, build: Any, make_provider: Any, paneer_result: ProviderResult, photo: PhotoObservation
    ) -> None:
        """Test raw result returned when the store is down."""
        store = AsyncMock(spec=IPortionStore)
        store.get.side_effect = StoreUnavailableError("mongo down")
        orchestrator = build(
            photo=[make_provider("vision_primary", paneer_result)], portion_store=store
        )

        outcome = await orchestrator.resolve(photo, "u1")

        assert isinstance(outcome, ResolvedNutrition)
        assert outcome.portion_g == 300.0
        assert not outcome.is_personalized
        store.get.assert_awaited_once_with("u1", "Paneer Butter Masala")


class TestInvalidInput:
    """Test programmer errors."""

    @pytest.mark.asyncio
    async def test_unsupported_observation(self, build: Any) -> None:
        """Test unknown observation types raise TypeError."""
        with pytest.raises(TypeError):
            await build().resolve("not an observation", "u1")  # type: ignore[arg-type]

    def test_non_positive_default_deadline(self, make_provider: Any) -> None:
        """Test the default deadline must be positive."""
        with pytest.raises(ValueError):
            ResolutionOrchestrator(
                photo_chain=ResolutionChain.photo(make_provider("p")),
                barcode_chain=ResolutionChain.barcode(make_provider("b")),
                default_deadline_s=0,
            )
