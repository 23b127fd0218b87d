"""
MongoDB persistence for confirmed history and usual portions.

Both collections are small per user: history is trimmed to the most
recent entries, portions hold one document per (user, dish).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from nutriscan.domain.history.models import HistoryEntry
from nutriscan.domain.nutrition.models import ConfidenceTier, Macros
from nutriscan.domain.personalization.models import (
    PersonalizationEntry,
    normalize_dish_name,
)
from nutriscan.domain.shared.errors import (
    DatabaseError,
    StoreUnavailableError,
    ValidationError,
)


class MongoHistoryRepository:
    """
    MongoDB implementation of IHistoryRepository.

    Storage design:
    - Collection: food_history
    - Unique index on entry_id (idempotent saves)
    - Index on (user_id, confirmed_at DESC) (recent queries, trimming)

    Example:
        >>> from motor.motor_asyncio import AsyncIOMotorClient
        >>> client = AsyncIOMotorClient("mongodb://localhost:27017")
        >>> repository = MongoHistoryRepository(client.nutriscan)
        >>> await repository.save(entry)
    """

    COLLECTION_NAME = "food_history"

    def __init__(self, db: AsyncIOMotorDatabase[Any]):
        """
        Initialize repository with MongoDB database.

        Creates indexes on first use.

        Args:
            db: Motor AsyncIOMotorDatabase instance
        """
        self.db = db
        self.collection = db[self.COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        if self._indexes_created:
            return

        await self.collection.create_index(
            "entry_id",
            unique=True,
            name="unique_entry_id",
        )
        await self.collection.create_index(
            [("user_id", 1), ("confirmed_at", -1)],
            name="idx_user_recent",
        )

        self._indexes_created = True

    def _to_document(self, entry: HistoryEntry) -> dict[str, Any]:
        return {
            "entry_id": entry.entry_id,
            "user_id": entry.user_id,
            "dish_name": entry.dish_name,
            "provider": entry.provider,
            "tier": entry.tier.value,
            "confirmed_portion_g": entry.confirmed_portion_g,
            "macros": entry.macros.model_dump(),
            "category": entry.category,
            "brand": entry.brand,
            "from_cache": entry.from_cache,
            "confirmed_at": entry.confirmed_at,
        }

    def _from_document(self, doc: dict[str, Any]) -> HistoryEntry:
        return HistoryEntry(
            entry_id=doc["entry_id"],
            user_id=doc["user_id"],
            dish_name=doc["dish_name"],
            provider=doc["provider"],
            tier=ConfidenceTier(doc["tier"]),
            confirmed_portion_g=doc["confirmed_portion_g"],
            macros=Macros(**doc["macros"]),
            category=doc.get("category"),
            brand=doc.get("brand"),
            from_cache=doc.get("from_cache", False),
            confirmed_at=doc["confirmed_at"],
        )

    async def save(self, entry: HistoryEntry) -> None:
        """Save or update an entry (upsert on entry_id)."""
        try:
            await self._ensure_indexes()
            doc = self._to_document(entry)
            await self.collection.update_one(
                {"entry_id": doc["entry_id"]},
                {"$set": doc},
                upsert=True,
            )
        except PyMongoError as e:
            raise DatabaseError(f"Saving history entry failed: {e}") from e

    async def recent(self, user_id: str, limit: int = 20) -> List[HistoryEntry]:
        """Most recent entries for a user, newest first."""
        try:
            await self._ensure_indexes()
            cursor = (
                self.collection.find({"user_id": user_id})
                .sort("confirmed_at", -1)
                .limit(limit)
            )
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise DatabaseError(f"Reading history failed: {e}") from e
        return [self._from_document(doc) for doc in docs]

    async def trim(self, user_id: str, keep: int) -> int:
        """Delete all but the newest `keep` entries. Returns count deleted."""
        try:
            await self._ensure_indexes()
            cursor = (
                self.collection.find({"user_id": user_id}, {"entry_id": 1})
                .sort("confirmed_at", -1)
                .skip(keep)
            )
            stale = [doc["entry_id"] for doc in await cursor.to_list(length=None)]
            if not stale:
                return 0
            result = await self.collection.delete_many({"entry_id": {"$in": stale}})
        except PyMongoError as e:
            raise DatabaseError(f"Trimming history failed: {e}") from e
        return result.deleted_count


class MongoPortionStore:
    """
    MongoDB implementation of IPortionStore.

    Storage design:
    - Collection: user_portions
    - Unique index on (user_id, dish_name)
    - Index on last_seen (pruning)

    Confirmations are a single atomic upsert, so concurrent writers on
    the same key never lose a scan_count increment.
    """

    COLLECTION_NAME = "user_portions"

    def __init__(self, db: AsyncIOMotorDatabase[Any]):
        self.db = db
        self.collection = db[self.COLLECTION_NAME]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        if self._indexes_created:
            return

        await self.collection.create_index(
            [("user_id", 1), ("dish_name", 1)],
            unique=True,
            name="unique_user_dish",
        )
        await self.collection.create_index("last_seen", name="idx_last_seen")

        self._indexes_created = True

    @staticmethod
    def _from_document(doc: dict[str, Any]) -> PersonalizationEntry:
        return PersonalizationEntry(
            user_id=doc["user_id"],
            dish_name=doc["dish_name"],
            usual_portion_g=doc["usual_portion_g"],
            scan_count=doc["scan_count"],
            last_seen=doc["last_seen"],
        )

    async def get(
        self, user_id: str, dish_name: str
    ) -> Optional[PersonalizationEntry]:
        """
        Usual portion for the dish, or None without history.

        Raises:
            StoreUnavailableError: MongoDB unreachable
        """
        try:
            key = normalize_dish_name(dish_name)
        except ValidationError:
            return None
        try:
            await self._ensure_indexes()
            doc = await self.collection.find_one(
                {"user_id": user_id, "dish_name": key}
            )
        except PyMongoError as e:
            raise StoreUnavailableError(f"Portion lookup failed: {e}") from e
        return self._from_document(doc) if doc else None

    async def record_confirmation(
        self, user_id: str, dish_name: str, confirmed_portion_g: float
    ) -> PersonalizationEntry:
        """Upsert the latest confirmed portion and bump scan_count."""
        if confirmed_portion_g is None or confirmed_portion_g <= 0:
            raise ValidationError(
                f"Confirmed portion must be positive: {confirmed_portion_g}g"
            )
        key = normalize_dish_name(dish_name)
        now = datetime.now(timezone.utc)
        try:
            await self._ensure_indexes()
            doc = await self.collection.find_one_and_update(
                {"user_id": user_id, "dish_name": key},
                {
                    "$set": {
                        "usual_portion_g": float(confirmed_portion_g),
                        "last_seen": now,
                    },
                    "$inc": {"scan_count": 1},
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise StoreUnavailableError(f"Recording portion failed: {e}") from e
        return self._from_document(doc)

    async def prune(self, older_than: datetime) -> int:
        """Delete entries last seen before the cutoff. Returns count."""
        try:
            await self._ensure_indexes()
            result = await self.collection.delete_many(
                {"last_seen": {"$lt": older_than}}
            )
        except PyMongoError as e:
            raise StoreUnavailableError(f"Pruning portions failed: {e}") from e
        return result.deleted_count
