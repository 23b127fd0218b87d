"""OpenFoodFacts adapter - first stage of the barcode chain.

Key Features:
- OpenFoodFacts API v2 product lookup
- Nutrient extraction with fallbacks (energy kJ -> kcal, per-serving values)
- Per-100g values scaled to the declared serving size
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from nutriscan.domain.nutrition.models import Macros, ProviderResult
from nutriscan.domain.observation.models import BarcodeObservation
from nutriscan.infrastructure.http.base import HttpProviderAdapter, NotFound, as_float

KJ_PER_KCAL = 4.184
DEFAULT_PORTION_G = 100.0

_WEIGHT = re.compile(r"(\d+(?:[.,]\d+)?)\s*(kg|g|gr|grams?|ml|l)\b", re.IGNORECASE)
_UNIT_FACTOR = {"kg": 1000.0, "l": 1000.0}


def parse_weight_g(text: Optional[str]) -> Optional[float]:
    """
    Grams from a free-text serving or quantity label.

    The last weight mentioned wins, so "1 bar (45 g)" yields 45.
    Millilitres are taken as grams.

    Example:
        >>> parse_weight_g("1 bar (45 g)")
        45.0
        >>> parse_weight_g("1.5 kg")
        1500.0
    """
    if not text:
        return None
    matches = _WEIGHT.findall(text)
    if not matches:
        return None
    amount, unit = matches[-1]
    grams = float(amount.replace(",", ".")) * _UNIT_FACTOR.get(unit.lower(), 1.0)
    return grams if grams > 0 else None


class OpenFoodFactsAdapter(HttpProviderAdapter):
    """
    OpenFoodFacts product lookup.

    Authoritative for packaged goods worldwide. Nutriments are reported
    per 100 g; the result is scaled to the product's serving size,
    falling back to 100 g.

    Example:
        >>> async with OpenFoodFactsAdapter() as off:
        ...     outcome = await off.resolve(BarcodeObservation(code="3017620422003"))
    """

    name = "openfoodfacts"
    BASE_URL = "https://world.openfoodfacts.org/api/v2/product"
    CONFIDENCE = 0.9
    FIELDS = "product_name,product_name_en,generic_name,brands,categories,serving_size,quantity,nutriments,ingredients_text"

    async def _lookup(
        self, observation: BarcodeObservation, hint: Optional[str]
    ) -> ProviderResult:
        data = await self._get_json(
            f"{self.BASE_URL}/{observation.code}.json",
            params={"fields": self.FIELDS},
        )
        if data is None or data.get("status") != 1 or not data.get("product"):
            raise NotFound(f"Barcode {observation.code} not in OpenFoodFacts")
        return self.to_result(data["product"])

    def to_result(self, product: Dict[str, Any]) -> ProviderResult:
        """Map an OpenFoodFacts product document to a ProviderResult."""
        name = (
            product.get("product_name")
            or product.get("product_name_en")
            or product.get("generic_name")
        )
        if not name or not str(name).strip():
            raise ValueError("OpenFoodFacts product has no name")

        nutriments = product.get("nutriments") or {}
        if not isinstance(nutriments, dict):
            raise ValueError("OpenFoodFacts nutriments is not an object")

        portion_g = parse_weight_g(product.get("serving_size"))
        per_100g = self._extract(nutriments, "_100g")

        if per_100g is not None:
            base_portion = portion_g or DEFAULT_PORTION_G
            macros = per_100g.scale(base_portion / 100.0)
        else:
            # Some products only carry per-serving values; without a parsed
            # serving size their weight is unknown
            macros = self._extract(nutriments, "_serving")
            base_portion = portion_g
            if macros is None:
                macros = Macros(calories=0.0)

        return ProviderResult(
            name=str(name),
            category=_first_category(product.get("categories")),
            portion_g=base_portion,
            macros=macros,
            ingredients=_ingredients(product.get("ingredients_text")),
            confidence=self.CONFIDENCE,
            provider=self.name,
            brand=_first(product.get("brands")),
        )

    @staticmethod
    def _extract(nutriments: Dict[str, Any], suffix: str) -> Optional[Macros]:
        """Macros for one basis ("_100g" or "_serving"); None when all absent."""

        def get_float(key: str) -> Optional[float]:
            return as_float(nutriments.get(f"{key}{suffix}"))

        calories = get_float("energy-kcal")
        if calories is None:
            kj = get_float("energy-kj")
            if kj is None:
                kj = get_float("energy")
            calories = kj / KJ_PER_KCAL if kj is not None else None

        protein = get_float("proteins")
        carbs = get_float("carbohydrates")
        fat = get_float("fat")

        if calories is None and protein is None and carbs is None and fat is None:
            return None

        return Macros(
            calories=calories or 0.0,
            protein=protein,
            carbs=carbs,
            fat=fat,
            fiber=get_float("fiber"),
            sugar=get_float("sugars"),
        )


def _first(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    head = str(value).split(",")[0].strip()
    return head or None


def _first_category(value: Optional[str]) -> Optional[str]:
    category = _first(value)
    if category and ":" in category:
        # Taxonomy tags look like "en:spreads"
        category = category.split(":", 1)[1]
    return category


def _ingredients(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [part.strip() for part in str(text).split(",") if part.strip()][:20]
