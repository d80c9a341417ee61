"""
MongoDB implementation of the key-value cache store.

Each key is one document: ``{_id: key, value: str, updated_at: datetime}``.
Expiry is decided by the result cache on read, not by MongoDB.
"""

import re
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

import structlog
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from whatcanieat.domain.shared.errors import CacheError

logger = structlog.get_logger(__name__)


class MongoCacheStore:
    """
    Motor-backed async key-value store.

    Storage design:
    - Collection: analysis_cache
    - Document id is the cache key (prefix queries use the _id index)

    Example:
        >>> from motor.motor_asyncio import AsyncIOMotorClient
        >>> client = AsyncIOMotorClient("mongodb://localhost:27017")
        >>> store = MongoCacheStore(client.whatcanieat)
        >>> await store.set("trial_usage", "{}")
    """

    COLLECTION_NAME = "analysis_cache"

    def __init__(self, db: AsyncIOMotorDatabase[Any]):
        """
        Initialize store with MongoDB database.

        Args:
            db: Motor AsyncIOMotorDatabase instance
        """
        self.db = db
        self.collection = db[self.COLLECTION_NAME]

    async def get(self, key: str) -> Optional[str]:
        try:
            doc = await self.collection.find_one({"_id": key})
        except PyMongoError as e:
            raise CacheError(f"Cache read failed: {e}") from e
        if doc is None:
            return None
        return doc.get("value")

    async def set(self, key: str, value: str) -> None:
        try:
            await self.collection.update_one(
                {"_id": key},
                {"$set": {"value": value, "updated_at": datetime.now(timezone.utc)}},
                upsert=True,
            )
        except PyMongoError as e:
            raise CacheError(f"Cache write failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.collection.delete_one({"_id": key})
        except PyMongoError as e:
            raise CacheError(f"Cache delete failed: {e}") from e

    async def keys(self, prefix: str = "") -> List[str]:
        query = {"_id": {"$regex": f"^{re.escape(prefix)}"}} if prefix else {}
        try:
            cursor = self.collection.find(query, {"_id": 1})
            return [doc["_id"] async for doc in cursor]
        except PyMongoError as e:
            raise CacheError(f"Cache key scan failed: {e}") from e

    async def delete_many(self, keys: Sequence[str]) -> int:
        if not keys:
            return 0
        try:
            result = await self.collection.delete_many({"_id": {"$in": list(keys)}})
        except PyMongoError as e:
            raise CacheError(f"Cache delete failed: {e}") from e
        logger.debug("Deleted cache documents", count=result.deleted_count)
        return int(result.deleted_count)
