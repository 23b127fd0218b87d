"""UPCitemdb adapter - generic UPC/GTIN identity lookup.

Fourth stage of the barcode chain. The trial endpoint knows a huge
number of products but carries no nutrition: it contributes the
product identity (title, brand, category), which later stages use as
a name hint.
"""

from __future__ import annotations

from typing import Optional

from nutriscan.domain.nutrition.models import Macros, ProviderResult
from nutriscan.domain.observation.models import BarcodeObservation
from nutriscan.infrastructure.http.base import HttpProviderAdapter, NotFound


class UPCItemDBAdapter(HttpProviderAdapter):
    """
    UPCitemdb trial lookup.

    Results have zero energy, no macros and no portion, so they always
    score low and are never accepted as nutrition on their own.
    """

    name = "upcitemdb"
    BASE_URL = "https://api.upcitemdb.com/prod/trial/lookup"
    CONFIDENCE = 0.15

    async def _lookup(
        self, observation: BarcodeObservation, hint: Optional[str]
    ) -> ProviderResult:
        # INVALID_UPC comes back as HTTP 400
        data = await self._get_json(
            self.BASE_URL,
            params={"upc": observation.code},
            not_found_statuses=(400, 404),
        )
        if data is None:
            raise NotFound(f"Barcode {observation.code} not in UPCitemdb")

        items = data.get("items")
        if not isinstance(items, list):
            raise ValueError("UPCitemdb payload missing 'items' list")
        if not items or not isinstance(items[0], dict):
            raise NotFound(f"Barcode {observation.code} not in UPCitemdb")

        item = items[0]
        title = str(item.get("title") or "").strip()
        if not title:
            raise NotFound(f"UPCitemdb item {observation.code} has no title")

        category = item.get("category")
        if category:
            # "Food, Beverages & Tobacco > Food Items > Snack Foods"
            category = str(category).split(">")[-1].strip()

        return ProviderResult(
            name=title,
            category=category or None,
            portion_g=None,
            macros=Macros(calories=0.0),
            confidence=self.CONFIDENCE,
            provider=self.name,
            brand=item.get("brand") or None,
            notes="identity only",
        )
