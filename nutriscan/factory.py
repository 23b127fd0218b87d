"""Pipeline factory.

Builds the full resolution pipeline from PipelineSettings: the two
provider chains, response cache, personalization store, history
writer and orchestrator.

Storage selection:
- MONGODB_URI set: MongoDB history and usual portions (motor)
- otherwise: in-memory history and usual portions

Usage:
    from nutriscan.factory import get_pipeline

    pipeline = get_pipeline()
    outcome = await pipeline.resolve(BarcodeObservation(code="8901058000290"), "user_123")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, List, Optional, Union

import structlog
from motor.motor_asyncio import AsyncIOMotorClient

from nutriscan.application.history.history_writer import HistoryWriter
from nutriscan.application.resolution.chains import ResolutionChain
from nutriscan.application.resolution.orchestrator import ResolutionOrchestrator
from nutriscan.config import PipelineSettings
from nutriscan.logging_config import configure_logging
from nutriscan.domain.history.models import HistoryEntry
from nutriscan.domain.history.ports import IHistoryRepository
from nutriscan.domain.observation.models import Observation
from nutriscan.domain.personalization.ports import IPortionStore
from nutriscan.domain.resolution.models import (
    Deadline,
    ResolutionOutcome,
    ResolvedNutrition,
)
from nutriscan.infrastructure.cache.response_cache import InMemoryResponseCache
from nutriscan.infrastructure.dishes.adapter import DishDatabaseAdapter
from nutriscan.infrastructure.openfoodfacts.adapter import OpenFoodFactsAdapter
from nutriscan.infrastructure.persistence.in_memory_history import (
    InMemoryHistoryRepository,
)
from nutriscan.infrastructure.persistence.mongo import (
    MongoHistoryRepository,
    MongoPortionStore,
)
from nutriscan.infrastructure.personalization.in_memory_store import (
    InMemoryPortionStore,
)
from nutriscan.infrastructure.regional.adapter import RegionalDatasetAdapter
from nutriscan.infrastructure.upcitemdb.adapter import UPCItemDBAdapter
from nutriscan.infrastructure.usda.adapter import USDABrandedAdapter
from nutriscan.infrastructure.vision.adapter import VisionAdapter

logger = structlog.get_logger(__name__)


@dataclass
class Pipeline:
    """
    Wired pipeline: the two entry points plus the resources to close.

    Example:
        >>> pipeline = build_pipeline(PipelineSettings.from_env())
        >>> outcome = await pipeline.resolve(observation, "user_123", deadline=10)
        >>> if isinstance(outcome, ResolvedNutrition):
        ...     await pipeline.persist("user_123", outcome, confirmed_portion_g=220)
        >>> await pipeline.aclose()
    """

    orchestrator: ResolutionOrchestrator
    history_writer: HistoryWriter
    cache: InMemoryResponseCache
    portion_store: IPortionStore
    history_repository: IHistoryRepository
    _adapters: List[Any] = field(default_factory=list, repr=False)
    _mongo_client: Optional[Any] = field(default=None, repr=False)

    async def resolve(
        self,
        observation: Observation,
        user_id: str,
        deadline: Union[Deadline, float, None] = None,
    ) -> ResolutionOutcome:
        """Resolve an observation (see ResolutionOrchestrator.resolve)."""
        return await self.orchestrator.resolve(observation, user_id, deadline)

    async def persist(
        self, user_id: str, resolved: ResolvedNutrition, confirmed_portion_g: float
    ) -> HistoryEntry:
        """Persist a confirmation (see HistoryWriter.persist)."""
        return await self.history_writer.persist(user_id, resolved, confirmed_portion_g)

    async def prune_personalization(self, max_age: timedelta) -> int:
        return await self.history_writer.prune_personalization(max_age)

    async def aclose(self) -> None:
        """Close HTTP clients and database connections."""
        for adapter in self._adapters:
            await adapter.aclose()
        self._adapters.clear()
        if self._mongo_client is not None:
            self._mongo_client.close()
            self._mongo_client = None


def create_vision_chain(settings: PipelineSettings) -> ResolutionChain:
    """Primary and backup vision models behind the same endpoint.

    Raises:
        ValueError: OPENROUTER_API_KEY not configured
    """
    if not settings.openrouter_api_key:
        raise ValueError(
            "OPENROUTER_API_KEY not found in environment. "
            "Set it in .env file or pass it in PipelineSettings."
        )
    primary = VisionAdapter(
        name="vision_primary",
        model=settings.vision_primary_model,
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        timeout_s=settings.vision_primary_timeout_s,
        rpm_limit=settings.vision_rpm_limit,
    )
    backup = VisionAdapter(
        name="vision_backup",
        model=settings.vision_backup_model,
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        timeout_s=settings.vision_backup_timeout_s,
        rpm_limit=settings.vision_rpm_limit,
    )
    return ResolutionChain.photo(primary, backup)


def create_barcode_chain(settings: PipelineSettings) -> ResolutionChain:
    """Five barcode stages in precedence order."""
    return ResolutionChain.barcode(
        OpenFoodFactsAdapter(timeout_s=settings.provider_timeout_s),
        RegionalDatasetAdapter(path=settings.regional_dataset_path),
        USDABrandedAdapter(
            api_key=settings.usda_api_key, timeout_s=settings.provider_timeout_s
        ),
        UPCItemDBAdapter(timeout_s=settings.provider_timeout_s),
        DishDatabaseAdapter(path=settings.dish_database_path),
    )


def build_pipeline(settings: Optional[PipelineSettings] = None) -> Pipeline:
    """
    Wire the pipeline.

    Args:
        settings: Pipeline settings (default: read from environment)

    Raises:
        ValueError: Missing vision API key or invalid numeric setting
    """
    settings = settings or PipelineSettings.from_env()

    photo_chain = create_vision_chain(settings)
    barcode_chain = create_barcode_chain(settings)
    adapters: List[Any] = [
        stage.adapter for stage in photo_chain.stages + barcode_chain.stages
        if hasattr(stage.adapter, "aclose")
    ]

    portion_store: IPortionStore
    history_repository: IHistoryRepository
    mongo_client: Optional[Any]
    if settings.mongodb_uri:
        client = AsyncIOMotorClient(settings.mongodb_uri)
        db = client[settings.mongodb_database]
        portion_store = MongoPortionStore(db)
        history_repository = MongoHistoryRepository(db)
        mongo_client = client
        storage = "mongodb"
    else:
        portion_store = InMemoryPortionStore()
        history_repository = InMemoryHistoryRepository()
        mongo_client = None
        storage = "memory"

    cache = InMemoryResponseCache(
        default_ttl_seconds=settings.response_cache_ttl_s,
        max_entries=settings.response_cache_max_entries,
    )
    orchestrator = ResolutionOrchestrator(
        photo_chain=photo_chain,
        barcode_chain=barcode_chain,
        cache=cache,
        portion_store=portion_store,
        default_deadline_s=settings.resolve_deadline_s,
    )

    logger.info(
        "Pipeline built",
        photo_chain=photo_chain.provider_names,
        barcode_chain=barcode_chain.provider_names,
        storage=storage,
        cache_ttl_s=settings.response_cache_ttl_s,
    )
    return Pipeline(
        orchestrator=orchestrator,
        history_writer=HistoryWriter(history_repository, portion_store),
        cache=cache,
        portion_store=portion_store,
        history_repository=history_repository,
        _adapters=adapters,
        _mongo_client=mongo_client,
    )


_pipeline: Optional[Pipeline] = None


def get_pipeline() -> Pipeline:
    """Get singleton pipeline instance built from the environment."""
    global _pipeline
    if _pipeline is None:
        settings = PipelineSettings.from_env()
        configure_logging(settings.log_level)
        _pipeline = build_pipeline(settings)
    return _pipeline


def reset_pipeline() -> None:
    """Reset the singleton.

    Useful for testing to force re-creation with different env vars.
    """
    global _pipeline
    _pipeline = None
