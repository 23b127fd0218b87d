"""
Resolution Orchestrator.

Turns an observation into ResolvedNutrition by walking the provider
chain for its kind, scoring each result, applying the user's usual
portion and caching the raw provider result.

States:
    Start -> cache hit -> PersonalizationApply -> Done
    Start -> cache miss -> TryProvider(0..n) -> PersonalizationApply -> Done
    TryProvider -> chain exhausted / deadline -> Unresolved

Provider calls are strictly sequential. Every call is bounded by the
remaining deadline and cancelled when it runs out.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

import structlog

from nutriscan.application.resolution.chains import ResolutionChain
from nutriscan.domain.nutrition import confidence
from nutriscan.domain.nutrition.models import (
    ConfidenceTier,
    PersonalizedPortion,
    ProviderResult,
)
from nutriscan.domain.nutrition.scaling import personalize
from nutriscan.domain.observation.models import (
    BarcodeObservation,
    Observation,
    PhotoObservation,
    cache_key,
)
from nutriscan.domain.personalization.ports import IPortionStore
from nutriscan.domain.resolution.models import (
    AttemptOutcome,
    Deadline,
    FailureKind,
    ProviderFailure,
    ProviderOutcome,
    ResolutionAttempt,
    ResolutionOutcome,
    ResolvedNutrition,
    Unresolved,
    UnresolvedReason,
)
from nutriscan.domain.resolution.ports import INutritionProvider, IResponseCache

logger = structlog.get_logger(__name__)


@dataclass
class _ChainRun:
    """Mutable bookkeeping of one walk through a chain."""

    attempts: List[ResolutionAttempt] = field(default_factory=list)
    accepted: Optional[Tuple[ProviderResult, ConfidenceTier]] = None
    candidate: Optional[Tuple[ProviderResult, ConfidenceTier]] = None
    hint: Optional[str] = None
    deadline_hit: bool = False


class ResolutionOrchestrator:
    """
    Resolves photo and barcode observations into nutrition records.

    Responsibilities:
    - Serve repeated observations from the response cache
    - Walk the provider chain in precedence order, falling through on
      failures and on low-confidence results
    - Accept the last provider's low-confidence result rather than fail
    - Rescale to the user's usual portion when there is history
    - Return Unresolved, never a fabricated record, when nothing matched

    Dependencies (injected via Ports/Interfaces):
    - photo_chain / barcode_chain: immutable provider chains
    - cache: IResponseCache (optional)
    - portion_store: IPortionStore (optional)

    Cache and store failures degrade to pass-through; they never fail
    a resolution.

    Example:
        >>> orchestrator = ResolutionOrchestrator(
        ...     photo_chain=ResolutionChain.photo(primary, backup),
        ...     barcode_chain=ResolutionChain.barcode(off, regional, usda, upc, dishes),
        ...     cache=InMemoryResponseCache(),
        ...     portion_store=InMemoryPortionStore(),
        ... )
        >>> outcome = await orchestrator.resolve(
        ...     BarcodeObservation(code="3017620422003"), "user_123", deadline=10.0
        ... )
    """

    def __init__(
        self,
        photo_chain: ResolutionChain,
        barcode_chain: ResolutionChain,
        cache: Optional[IResponseCache] = None,
        portion_store: Optional[IPortionStore] = None,
        cache_ttl_s: Optional[float] = None,
        default_deadline_s: float = 30.0,
    ):
        """
        Initialize orchestrator.

        Args:
            photo_chain: Chain for photo observations
            barcode_chain: Chain for barcode observations
            cache: Response cache (None disables caching)
            portion_store: Personalization store (None disables rescaling)
            cache_ttl_s: TTL for new cache entries (cache default when None)
            default_deadline_s: Deadline used when resolve() gets none
        """
        if default_deadline_s <= 0:
            raise ValueError(f"Default deadline must be positive: {default_deadline_s}")
        self._chains = {"photo": photo_chain, "barcode": barcode_chain}
        self._cache = cache
        self._portion_store = portion_store
        self._cache_ttl_s = cache_ttl_s
        self._default_deadline_s = default_deadline_s

    # ═══════════════════════════════════════════════════════════
    # ENTRY POINT
    # ═══════════════════════════════════════════════════════════

    async def resolve(
        self,
        observation: Observation,
        user_id: str,
        deadline: Union[Deadline, float, None] = None,
    ) -> ResolutionOutcome:
        """
        Resolve an observation for a user.

        Args:
            observation: Photo or barcode observation
            user_id: User whose usual portions apply
            deadline: Deadline object or seconds from now

        Returns:
            ResolvedNutrition, or Unresolved when no provider produced
            usable data in time

        Raises:
            TypeError: Unsupported observation type
            ValueError: Non-positive deadline
        """
        deadline = self._as_deadline(deadline)
        chain = self._chain_for(observation)
        key = cache_key(observation)
        log = logger.bind(observation_kind=chain.kind, cache_key=key, user_id=user_id)

        cached = self._cache_get(key, log)
        if cached is not None:
            log.info("Resolved from cache", provider=cached.provider, dish=cached.name)
            return await self._finish(
                cached, confidence.score(cached), user_id, from_cache=True, attempts=[], log=log
            )

        run = await self._run_chain(chain, observation, deadline, log)

        # A walk cut by the deadline never degrades to an earlier low candidate
        chosen = run.accepted or (None if run.deadline_hit else run.candidate)
        if chosen is None:
            reason = (
                UnresolvedReason.DEADLINE_EXCEEDED
                if run.deadline_hit
                else UnresolvedReason.CHAIN_EXHAUSTED
            )
            log.info(
                "Observation unresolved",
                reason=reason.value,
                providers_tried=len(run.attempts),
            )
            return Unresolved(reason=reason, attempts=run.attempts)

        result, tier = chosen
        self._cache_put(key, result, log)
        return await self._finish(
            result, tier, user_id, from_cache=False, attempts=run.attempts, log=log
        )

    # ═══════════════════════════════════════════════════════════
    # TRY PROVIDER
    # ═══════════════════════════════════════════════════════════

    async def _run_chain(
        self,
        chain: ResolutionChain,
        observation: Observation,
        deadline: Deadline,
        log: structlog.BoundLogger,
    ) -> _ChainRun:
        run = _ChainRun()
        previous: Optional[ProviderOutcome] = None
        previous_tier: Optional[ConfidenceTier] = None
        last_index = len(chain.stages) - 1

        for index, stage in enumerate(chain.stages):
            if not stage.accepts(previous, previous_tier):
                log.debug("Chain stops", next_provider=stage.name)
                break

            if isinstance(observation, BarcodeObservation) and not _supports(
                stage.adapter, observation.code
            ):
                run.attempts.append(
                    ResolutionAttempt(
                        provider=stage.name,
                        outcome=AttemptOutcome.SKIPPED,
                        detail="region not supported",
                    )
                )
                continue

            if deadline.expired:
                run.deadline_hit = True
                break

            outcome, elapsed_ms = await self._call(stage.adapter, observation, run.hint, deadline)
            if outcome is None:
                run.deadline_hit = True
                run.attempts.append(
                    ResolutionAttempt(
                        provider=stage.name,
                        outcome=AttemptOutcome.FAILURE,
                        failure_kind=FailureKind.TIMEOUT,
                        elapsed_ms=elapsed_ms,
                        detail="deadline exceeded, call cancelled",
                    )
                )
                log.warning("Deadline exceeded", provider=stage.name, elapsed_ms=elapsed_ms)
                break

            previous = outcome
            if isinstance(outcome, ProviderFailure):
                previous_tier = None
                run.attempts.append(
                    ResolutionAttempt(
                        provider=stage.name,
                        outcome=AttemptOutcome.FAILURE,
                        failure_kind=outcome.kind,
                        elapsed_ms=elapsed_ms,
                        detail=outcome.message,
                    )
                )
                log.info(
                    "Provider failed",
                    provider=stage.name,
                    kind=outcome.kind.value,
                    retry_after_s=outcome.retry_after_s,
                    elapsed_ms=elapsed_ms,
                )
                continue

            assessment = confidence.explain(outcome)
            tier = assessment.tier
            previous_tier = tier
            identity_only = not outcome.macros.has_nutrition
            run.attempts.append(
                ResolutionAttempt(
                    provider=stage.name,
                    outcome=AttemptOutcome.SUCCESS,
                    tier=tier,
                    elapsed_ms=elapsed_ms,
                    detail="identity only" if identity_only else "",
                )
            )
            log.info(
                "Provider answered",
                provider=stage.name,
                dish=outcome.name,
                tier=tier.value,
                demotions=assessment.demotions,
                elapsed_ms=elapsed_ms,
            )

            if identity_only:
                # Name only: the product identity for later stages, never nutrition
                run.hint = outcome.name
                previous_tier = ConfidenceTier.LOW
                continue

            if tier is not ConfidenceTier.LOW or index == last_index:
                run.accepted = (outcome, tier)
                return run

            if run.candidate is None:
                run.candidate = (outcome, tier)

        return run

    async def _call(
        self,
        adapter: INutritionProvider,
        observation: Observation,
        hint: Optional[str],
        deadline: Deadline,
    ) -> Tuple[Optional[ProviderOutcome], float]:
        """
        One adapter call bounded by the remaining deadline.

        Returns (None, elapsed) when the deadline ran out; the in-flight
        call has been cancelled by then.
        """
        start = time.perf_counter()
        try:
            outcome = await asyncio.wait_for(
                adapter.resolve(observation, hint=hint), timeout=deadline.remaining()
            )
        except asyncio.TimeoutError:
            return None, _elapsed_ms(start)
        except Exception as e:
            # Adapters must not raise; a bug in one must not sink the chain
            logger.exception("Provider raised unexpectedly", provider=adapter.name)
            outcome = ProviderFailure(
                kind=FailureKind.MALFORMED_RESPONSE,
                provider=adapter.name,
                message=f"{type(e).__name__}: {e}",
            )
        return outcome, _elapsed_ms(start)

    # ═══════════════════════════════════════════════════════════
    # PERSONALIZATION APPLY / DONE
    # ═══════════════════════════════════════════════════════════

    async def _finish(
        self,
        result: ProviderResult,
        tier: ConfidenceTier,
        user_id: str,
        from_cache: bool,
        attempts: List[ResolutionAttempt],
        log: structlog.BoundLogger,
    ) -> ResolvedNutrition:
        personalization = await self._personalize(result, user_id, log)
        resolved = ResolvedNutrition(
            result=result,
            tier=tier,
            personalization=personalization,
            from_cache=from_cache,
            attempts=attempts,
        )
        log.info(
            "Observation resolved",
            provider=result.provider,
            dish=result.name,
            tier=tier.value,
            portion_g=resolved.portion_g,
            personalized=personalization is not None,
            from_cache=from_cache,
        )
        return resolved

    async def _personalize(
        self, result: ProviderResult, user_id: str, log: structlog.BoundLogger
    ) -> Optional[PersonalizedPortion]:
        if self._portion_store is None:
            return None
        try:
            entry = await self._portion_store.get(user_id, result.name)
        except Exception as e:
            log.warning("Portion store unavailable, skipping personalization", error=str(e))
            return None
        return personalize(result, entry)

    def _cache_get(self, key: str, log: structlog.BoundLogger) -> Optional[ProviderResult]:
        if self._cache is None:
            return None
        try:
            return self._cache.get(key)
        except Exception as e:
            log.warning("Response cache read failed, treating as miss", error=str(e))
            return None

    def _cache_put(
        self, key: str, result: ProviderResult, log: structlog.BoundLogger
    ) -> None:
        if self._cache is None:
            return
        try:
            self._cache.put(key, result, self._cache_ttl_s)
        except Exception as e:
            log.warning("Response cache write failed", error=str(e))

    # ═══════════════════════════════════════════════════════════
    # HELPERS
    # ═══════════════════════════════════════════════════════════

    def _chain_for(self, observation: Observation) -> ResolutionChain:
        if isinstance(observation, PhotoObservation):
            return self._chains["photo"]
        if isinstance(observation, BarcodeObservation):
            return self._chains["barcode"]
        raise TypeError(f"Unsupported observation: {type(observation).__name__}")

    def _as_deadline(self, deadline: Union[Deadline, float, None]) -> Deadline:
        if deadline is None:
            return Deadline.after(self._default_deadline_s)
        if isinstance(deadline, Deadline):
            return deadline
        return Deadline.after(float(deadline))


def _supports(adapter: INutritionProvider, code: str) -> bool:
    supports_region = getattr(adapter, "supports_region", None)
    return supports_region is None or supports_region(code)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 1)
