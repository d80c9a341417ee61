"""
Content-addressed cache for analysis responses.

Keys are derived from the semantic content of a request only, so the
same menu analyzed for the same diet hits the cache regardless of
request id or timing. Entries expire after a fixed TTL. Expired entries
are purged on lookup and by a periodic sweep run from writes, and once
the cache outgrows its entry bound the oldest entries are evicted.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
import weakref
from typing import Any, Callable, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel, ValidationError

from whatcanieat.domain.analysis.models import (
    AnalysisRequest,
    AnalysisResponse,
    CacheEntry,
    ContentType,
    DietaryPreferences,
    MultimodalAnalysisRequest,
    elapsed_ms,
)
from whatcanieat.domain.analysis.ports import ICacheStore
from whatcanieat.domain.shared.errors import CacheError
from whatcanieat.infrastructure.config import (
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS,
    DEFAULT_CACHE_TTL_SECONDS,
)

logger = structlog.get_logger(__name__)

CACHE_KEY_PREFIX = "menu_analysis_cache_"
EVICTION_TARGET_RATIO = 0.8

AnyAnalysisRequest = Union[AnalysisRequest, MultimodalAnalysisRequest]


def _normalize(value: Optional[str]) -> str:
    return " ".join((value or "").lower().split())


def _preferences_document(preferences: DietaryPreferences) -> Dict[str, Any]:
    return {
        "dietaryType": preferences.dietary_type.value,
        "customRestrictions": _normalize(preferences.custom_restrictions),
    }


def make_cache_key(request: AnyAnalysisRequest) -> str:
    """
    Derive the content key for a request.

    SHA-256 over canonical JSON of the dietary type, the custom
    restriction text and, per item in order, the normalized name,
    description and sorted ingredients. Multimodal requests use the
    ordered parts (images by digest). Request id, context and
    timestamps never contribute.

    Example:
        >>> a = AnalysisRequest(dietary_preferences=prefs, menu_items=items, request_id="1")
        >>> b = a.model_copy(update={"request_id": "2"})
        >>> assert make_cache_key(a) == make_cache_key(b)
    """
    document: Dict[str, Any] = _preferences_document(request.dietary_preferences)

    if isinstance(request, MultimodalAnalysisRequest):
        parts = []
        for part in request.content_parts:
            if part.type is ContentType.TEXT:
                parts.append({"text": _normalize(part.data)})
            else:
                parts.append({"image": hashlib.sha256(part.data.encode("utf-8")).hexdigest()})
        document["parts"] = parts
    else:
        document["items"] = [
            {
                "name": _normalize(item.name),
                "description": _normalize(item.description),
                "ingredients": sorted(_normalize(i) for i in item.ingredients if i.strip()),
            }
            for item in request.menu_items
        ]

    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class CacheStats(BaseModel):
    """Counters since the cache was created."""

    entries: int = 0
    hits: int = 0
    misses: int = 0
    stores: int = 0
    expirations: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ResultCache:
    """
    TTL cache of successful analysis responses over an ICacheStore.

    Lookups on the same key are serialized with a per-key lock, so a
    concurrent reader never sees an entry mid purge or mid replace.

    Example:
        >>> cache = ResultCache(InMemoryCacheStore())
        >>> key = cache.make_key(request)
        >>> await cache.put(key, response)
        >>> hit = await cache.get(key, request_id="new-id")
    """

    def __init__(
        self,
        store: ICacheStore,
        ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        sweep_interval_seconds: int = DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        """Initialize cache.

        Args:
            store: Backing key-value store
            ttl_seconds: Entry lifetime (default 7 days)
            clock: Epoch-seconds clock (for testing)
            max_entries: Entry bound, 0 for unbounded (default 1000)
            sweep_interval_seconds: Minimum gap between expiry sweeps
        """
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._last_sweep = clock()
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._stats = CacheStats()

    make_key = staticmethod(make_cache_key)

    def _store_key(self, key: str) -> str:
        return f"{CACHE_KEY_PREFIX}{key}"

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _load(self, store_key: str) -> Optional[CacheEntry]:
        """Read and decode one entry, deleting it if undecodable or expired."""
        raw = await self.store.get(store_key)
        if raw is None:
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding undecodable cache entry", key=store_key[:32])
            await self.store.delete(store_key)
            return None

        if entry.is_expired(self._clock()):
            logger.debug("Cache expired", key=store_key[:32])
            await self.store.delete(store_key)
            self._stats.expirations += 1
            return None

        return entry

    async def get(
        self,
        key: str,
        request_id: str,
        started_at: Optional[float] = None,
    ) -> Optional[AnalysisResponse]:
        """
        Look up a valid entry.

        Args:
            key: Content key from ``make_key``
            request_id: Caller's request id, substituted into the hit
            started_at: ``time.monotonic()`` at request start, for timing

        Returns:
            Cached response with request id and processing time replaced,
            or None on miss, expiry or store failure
        """
        store_key = self._store_key(key)
        async with self._lock_for(key):
            try:
                entry = await self._load(store_key)
            except CacheError as e:
                logger.warning("Cache lookup failed", key=store_key[:32], error=str(e))
                entry = None

        if entry is None:
            self._stats.misses += 1
            logger.debug("Cache miss", key=store_key[:32])
            return None

        self._stats.hits += 1
        logger.debug("Cache hit", key=store_key[:32], request_id=request_id)
        return entry.data.model_copy(
            update={
                "request_id": request_id,
                "processing_time_ms": elapsed_ms(started_at) if started_at else 0,
            }
        )

    async def put(self, key: str, response: AnalysisResponse) -> bool:
        """
        Store a successful response with a fresh TTL.

        Failed responses are never cached. A successful write may trigger
        an expiry sweep and eviction of the oldest entries.

        Returns:
            True if the entry was written
        """
        if not response.success:
            return False

        store_key = self._store_key(key)
        now = self._clock()
        entry = CacheEntry(
            key=key,
            data=response,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )

        async with self._lock_for(key):
            try:
                await self.store.set(store_key, entry.model_dump_json(by_alias=True))
            except CacheError as e:
                logger.warning("Cache write failed", key=store_key[:32], error=str(e))
                return False

        self._stats.stores += 1
        logger.debug("Cached analysis", key=store_key[:32], ttl=self.ttl_seconds)
        await self._maintain()
        return True

    async def _maintain(self) -> None:
        """Run the scheduled expiry sweep and enforce the entry bound."""
        try:
            now = self._clock()
            if now - self._last_sweep >= self.sweep_interval_seconds:
                self._last_sweep = now
                await self.purge_expired()
            await self.evict_oldest()
        except CacheError as e:
            logger.warning("Cache maintenance failed", error=str(e))

    async def _created_at(self, store_key: str) -> float:
        raw = await self.store.get(store_key)
        if raw is None:
            return 0.0
        try:
            return CacheEntry.model_validate_json(raw).created_at
        except ValidationError:
            return 0.0

    async def evict_oldest(self) -> int:
        """
        Drop the oldest entries once the cache holds more than max_entries.

        Trims to 80% of the bound. Undecodable entries go first.

        Returns:
            Number of entries removed
        """
        store_keys = await self._own_keys()
        if self.max_entries <= 0 or len(store_keys) <= self.max_entries:
            return 0

        aged = sorted([(await self._created_at(k), k) for k in store_keys])
        keep = int(self.max_entries * EVICTION_TARGET_RATIO)
        removed = await self.store.delete_many([k for _, k in aged[: len(aged) - keep]])

        self._stats.evictions += removed
        logger.info("Evicted oldest cache entries", count=removed, max_entries=self.max_entries)
        return removed

    async def _own_keys(self) -> List[str]:
        return await self.store.keys(CACHE_KEY_PREFIX)

    async def clear(self) -> int:
        """Remove every cached analysis.

        Returns:
            Number of entries removed
        """
        removed = await self.store.delete_many(await self._own_keys())
        logger.info("Cache cleared", count=removed)
        return removed

    async def purge_expired(self) -> int:
        """Remove expired and undecodable entries.

        Returns:
            Number of entries removed
        """
        removed = 0
        for store_key in await self._own_keys():
            key = store_key[len(CACHE_KEY_PREFIX):]
            async with self._lock_for(key):
                if await self.store.get(store_key) is not None and await self._load(store_key) is None:
                    removed += 1

        if removed:
            logger.info("Removed expired entries", count=removed)
        return removed

    async def stats(self) -> CacheStats:
        """Counters plus the current number of stored entries."""
        return self._stats.model_copy(update={"entries": len(await self._own_keys())})
