"""Dish database adapter - last stage of the barcode chain.

Covers prepared, non-packaged foods: deli and canteen labels that
carry an in-store code, and products the earlier stages could only
name. Values are per typical portion.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog

from nutriscan.domain.nutrition.models import Macros, ProviderResult
from nutriscan.domain.observation.models import BarcodeObservation, Observation
from nutriscan.domain.personalization.models import normalize_dish_name
from nutriscan.domain.resolution.models import (
    FailureKind,
    ProviderFailure,
    ProviderOutcome,
)
from nutriscan.domain.shared.errors import ValidationError
from nutriscan.infrastructure.datasets import load_records
from nutriscan.infrastructure.http.base import as_float

logger = structlog.get_logger(__name__)


class DishDatabaseAdapter:
    """
    Lookup in the bundled dish catalogue.

    Match order:
    1. In-store barcode listed on the dish
    2. Hint equal to the dish name or an alias
    3. Hint containing the dish name (or the reverse)

    Example:
        >>> dishes = DishDatabaseAdapter()
        >>> outcome = await dishes.resolve(
        ...     BarcodeObservation(code="4006381333931"), hint="Masala Dosa"
        ... )
        >>> outcome.portion_g
        300.0
    """

    name = "dish_database"
    BARCODE_CONFIDENCE = 0.5
    EXACT_CONFIDENCE = 0.75
    PARTIAL_CONFIDENCE = 0.5

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self._dishes = load_records(
            path, "nutriscan.infrastructure.dishes", "data/dishes.json"
        )
        self._by_barcode: Dict[str, Dict[str, Any]] = {}
        self._names: List[Tuple[str, Dict[str, Any]]] = []
        for dish in self._dishes:
            for code in dish.get("barcodes") or []:
                self._by_barcode[str(code)] = dish
            for label in [dish["name"], *(dish.get("aliases") or [])]:
                self._names.append((normalize_dish_name(label), dish))

    def supports_region(self, code: str) -> bool:
        return True

    def find_by_name(self, name: str) -> Optional[Tuple[Dict[str, Any], float]]:
        """Best catalogue match for a free-text name, with its confidence."""
        try:
            wanted = normalize_dish_name(name)
        except ValidationError:
            return None

        for label, dish in self._names:
            if label == wanted:
                return dish, self.EXACT_CONFIDENCE

        # Longest label first so "chicken biryani" beats "biryani"
        for label, dish in sorted(self._names, key=lambda item: -len(item[0])):
            if label in wanted or wanted in label:
                return dish, self.PARTIAL_CONFIDENCE
        return None

    async def resolve(
        self, observation: Observation, *, hint: Optional[str] = None
    ) -> ProviderOutcome:
        if not isinstance(observation, BarcodeObservation):
            return self._not_found("Only barcodes supported")

        dish = self._by_barcode.get(observation.code)
        if dish is not None:
            logger.info("Dish matched by barcode", barcode=observation.code, dish=dish["name"])
            return self.to_result(dish, self.BARCODE_CONFIDENCE)

        if hint:
            match = self.find_by_name(hint)
            if match is not None:
                dish, confidence = match
                logger.info(
                    "Dish matched by name",
                    barcode=observation.code,
                    hint=hint,
                    dish=dish["name"],
                    confidence=confidence,
                )
                return self.to_result(dish, confidence)

        return self._not_found(f"No dish for barcode {observation.code}")

    def to_result(self, dish: Dict[str, Any], confidence: float) -> ProviderResult:
        """Map a catalogue record to a ProviderResult."""
        return ProviderResult(
            name=dish["name"],
            category=dish.get("cuisine"),
            portion_g=as_float(dish.get("portion_g")),
            macros=Macros(
                calories=as_float(dish.get("calories")) or 0.0,
                protein=as_float(dish.get("protein")),
                carbs=as_float(dish.get("carbs")),
                fat=as_float(dish.get("fat")),
                fiber=as_float(dish.get("fiber")),
                sugar=as_float(dish.get("sugar")),
            ),
            ingredients=list(dish.get("ingredients") or []),
            confidence=confidence,
            provider=self.name,
        )

    def _not_found(self, message: str) -> ProviderFailure:
        return ProviderFailure(
            kind=FailureKind.NOT_FOUND, provider=self.name, message=message
        )
