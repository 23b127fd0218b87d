"""Regional packaged-goods adapter - second stage of the barcode chain.

Backed by a bundled catalogue of Indian packaged foods. Only consulted
for GS1 India barcodes (prefix 890), where it is more complete than the
global databases.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

import structlog

from nutriscan.domain.nutrition.models import Macros, ProviderResult
from nutriscan.domain.observation.models import BarcodeObservation, Observation
from nutriscan.domain.resolution.models import (
    FailureKind,
    ProviderFailure,
    ProviderOutcome,
)
from nutriscan.infrastructure.datasets import load_records
from nutriscan.infrastructure.http.base import as_float

logger = structlog.get_logger(__name__)


class RegionalDatasetAdapter:
    """
    Lookup in the regional packaged-goods dataset.

    Records hold per-100g values and a serving size; results are
    scaled to the serving.

    Example:
        >>> adapter = RegionalDatasetAdapter()
        >>> outcome = await adapter.resolve(BarcodeObservation(code="8901058000290"))
        >>> outcome.name
        'Maggi 2-Minute Masala Noodles'
    """

    name = "regional_dataset"
    CONFIDENCE = 0.85
    GS1_PREFIXES = ("890",)

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        prefixes: Iterable[str] = GS1_PREFIXES,
    ) -> None:
        records = load_records(
            path, "nutriscan.infrastructure.regional", "data/indian_packaged.json"
        )
        self._prefixes = tuple(prefixes)
        self._by_barcode: Dict[str, Dict[str, Any]] = {
            str(r["barcode"]): r for r in records if r.get("barcode")
        }

    def supports_region(self, code: str) -> bool:
        return code.startswith(self._prefixes)

    async def resolve(
        self, observation: Observation, *, hint: Optional[str] = None
    ) -> ProviderOutcome:
        if not isinstance(observation, BarcodeObservation):
            return ProviderFailure(
                kind=FailureKind.NOT_FOUND,
                provider=self.name,
                message="Only barcodes supported",
            )

        record = self._by_barcode.get(observation.code)
        if record is None:
            return ProviderFailure(
                kind=FailureKind.NOT_FOUND,
                provider=self.name,
                message=f"Barcode {observation.code} not in regional dataset",
            )

        try:
            result = self.to_result(record)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(
                "Regional record unusable", barcode=observation.code, error=str(e)
            )
            return ProviderFailure(
                kind=FailureKind.MALFORMED_RESPONSE,
                provider=self.name,
                message=str(e),
            )

        logger.info("Regional product found", barcode=observation.code, product=result.name)
        return result

    def to_result(self, record: Dict[str, Any]) -> ProviderResult:
        """Map a dataset record to a ProviderResult."""
        serving = as_float(record.get("serving_size_grams")) or 100.0
        per_100g = Macros(
            calories=as_float(record.get("calories_per_100g")) or 0.0,
            protein=as_float(record.get("protein_per_100g")),
            carbs=as_float(record.get("carbs_per_100g")),
            fat=as_float(record.get("fat_per_100g")),
            fiber=as_float(record.get("fiber_per_100g")),
            sugar=as_float(record.get("sugar_per_100g")),
        )
        return ProviderResult(
            name=record["name"],
            category=record.get("category"),
            portion_g=serving,
            macros=per_100g.scale(serving / 100.0),
            confidence=self.CONFIDENCE,
            provider=self.name,
            brand=record.get("brand"),
        )
