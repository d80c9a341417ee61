"""Cache store factory.

Environment variable: CACHE_STORE
Values:
    - "memory": process-local store (default)
    - "mongodb": MongoDB via motor (requires MONGODB_URI)
"""

from motor.motor_asyncio import AsyncIOMotorClient

from whatcanieat.domain.analysis.ports import ICacheStore
from whatcanieat.domain.shared.errors import ConfigurationError
from whatcanieat.infrastructure.cache.in_memory_store import InMemoryCacheStore
from whatcanieat.infrastructure.cache.mongo_store import MongoCacheStore
from whatcanieat.infrastructure.config import (
    get_cache_store_kind,
    get_mongodb_database,
    get_mongodb_uri,
)


def create_cache_store() -> ICacheStore:
    """Create the cache store selected by CACHE_STORE.

    Raises:
        ConfigurationError: Unknown store, or mongodb without MONGODB_URI
    """
    kind = get_cache_store_kind()

    if kind == "mongodb":
        uri = get_mongodb_uri()
        if not uri:
            raise ConfigurationError(
                "CACHE_STORE=mongodb but MONGODB_URI not set. "
                "Set MONGODB_URI in .env or use CACHE_STORE=memory"
            )
        client: AsyncIOMotorClient = AsyncIOMotorClient(uri)
        return MongoCacheStore(client[get_mongodb_database()])

    if kind == "memory":
        return InMemoryCacheStore()

    raise ConfigurationError(f"Unknown CACHE_STORE: {kind!r} (expected memory or mongodb)")
