"""USDA FoodData Central adapter - GTIN lookup among branded foods.

Third stage of the barcode chain. The free API key has an hourly quota,
so calls go through a token bucket before reaching the network.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from nutriscan.domain.nutrition.models import Macros, ProviderResult
from nutriscan.domain.observation.models import BarcodeObservation
from nutriscan.infrastructure.http.base import HttpProviderAdapter, NotFound, as_float
from nutriscan.infrastructure.http.rate_limiter import RateLimiter

# Legacy nutrient numbers and current nutrient ids, both seen in search payloads
NUTRIENT_MAP = {
    "208": "calories",
    "203": "protein",
    "205": "carbs",
    "204": "fat",
    "291": "fiber",
    "269": "sugar",
    "1008": "calories",
    "1003": "protein",
    "1005": "carbs",
    "1004": "fat",
    "1079": "fiber",
    "2000": "sugar",
}

GRAM_UNITS = {"g", "grm", "gram", "grams", "ml", "mlt"}


class USDABrandedAdapter(HttpProviderAdapter):
    """
    Branded food search by GTIN/UPC.

    Branded search values are per 100 g; they are scaled to the label
    serving size when it is expressed in grams (or millilitres).
    A hit whose gtinUpc differs from the scanned code is returned with
    low confidence.
    """

    name = "usda_branded"
    BASE_URL = "https://api.nal.usda.gov/fdc/v1"
    MATCH_CONFIDENCE = 0.8
    FUZZY_CONFIDENCE = 0.3

    def __init__(
        self,
        api_key: str = "DEMO_KEY",
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: Optional[float] = None,
        max_attempts: Optional[int] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        """Initialize adapter.

        Args:
            api_key: FoodData Central key (DEMO_KEY works with a low quota)
            client: Pre-built httpx client
            timeout_s: Per-request timeout
            max_attempts: Attempts per request for transient errors
            rate_limiter: Shared token bucket
        """
        super().__init__(client=client, timeout_s=timeout_s, max_attempts=max_attempts)
        self.api_key = api_key
        self.rate_limiter = rate_limiter or RateLimiter(
            requests_per_hour=1000, burst_size=10
        )

    async def _lookup(
        self, observation: BarcodeObservation, hint: Optional[str]
    ) -> ProviderResult:
        await self.rate_limiter.acquire()

        data = await self._get_json(
            f"{self.BASE_URL}/foods/search",
            params={
                "query": observation.code,
                "dataType": "Branded",
                "pageSize": 5,
                "api_key": self.api_key,
            },
        )
        if data is None:
            raise NotFound(f"Barcode {observation.code} not in USDA")

        foods = data.get("foods")
        if not isinstance(foods, list):
            raise ValueError("USDA payload missing 'foods' list")
        if not foods:
            raise NotFound(f"Barcode {observation.code} not in USDA")

        match = _match_gtin(foods, observation.code)
        if match is not None:
            return self.to_result(match, self.MATCH_CONFIDENCE)
        return self.to_result(foods[0], self.FUZZY_CONFIDENCE)

    def to_result(self, food: Dict[str, Any], confidence: float) -> ProviderResult:
        """Map a branded search hit to a ProviderResult."""
        per_100g = _extract_nutrients(food.get("foodNutrients") or [])

        portion_g = 100.0
        serving = as_float(food.get("servingSize"))
        unit = str(food.get("servingSizeUnit") or "").strip().lower()
        if serving and serving > 0 and unit in GRAM_UNITS:
            portion_g = serving

        return ProviderResult(
            name=_title(food.get("description")),
            category=food.get("brandedFoodCategory") or food.get("foodCategory"),
            portion_g=portion_g,
            macros=per_100g.scale(portion_g / 100.0),
            ingredients=_ingredients(food.get("ingredients")),
            confidence=confidence,
            provider=self.name,
            brand=food.get("brandOwner") or food.get("brandName"),
            notes=f"fdcId={food.get('fdcId')}",
        )


def _match_gtin(foods: List[Dict[str, Any]], code: str) -> Optional[Dict[str, Any]]:
    wanted = code.lstrip("0")
    for food in foods:
        gtin = str(food.get("gtinUpc") or "").lstrip("0")
        if gtin and gtin == wanted:
            return food
    return None


def _extract_nutrients(nutrients: List[Dict[str, Any]]) -> Macros:
    values: Dict[str, float] = {}
    for nutrient in nutrients:
        key = str(nutrient.get("nutrientNumber") or nutrient.get("nutrientId") or "")
        field = NUTRIENT_MAP.get(key)
        if field is None or field in values:
            continue
        # kJ energy rows share the energy id range; only keep kcal
        if field == "calories" and str(nutrient.get("unitName", "KCAL")).upper() != "KCAL":
            continue
        value = as_float(nutrient.get("value"))
        if value is not None:
            values[field] = value

    return Macros(
        calories=values.get("calories", 0.0),
        protein=values.get("protein"),
        carbs=values.get("carbs"),
        fat=values.get("fat"),
        fiber=values.get("fiber"),
        sugar=values.get("sugar"),
    )


def _title(description: Any) -> str:
    if not description or not str(description).strip():
        raise ValueError("USDA food has no description")
    # Branded descriptions are upper case
    return str(description).strip().title()


def _ingredients(text: Any) -> List[str]:
    if not text:
        return []
    return [part.strip().lower() for part in str(text).split(",") if part.strip()][:20]
