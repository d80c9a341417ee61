"""
Unit tests for the content-addressed result cache.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from whatcanieat.domain.analysis.models import (
    AnalysisRequest,
    AnalysisResponse,
    ContentPart,
    ContentType,
    DietaryPreferences,
    DietaryType,
    MenuItem,
    MultimodalAnalysisRequest,
)
from whatcanieat.domain.shared.errors import CacheError, ErrorCode
from whatcanieat.infrastructure.cache.in_memory_store import InMemoryCacheStore
from whatcanieat.infrastructure.cache.result_cache import (
    CACHE_KEY_PREFIX,
    ResultCache,
    make_cache_key,
)


@pytest.fixture
def cache(memory_store: InMemoryCacheStore, clock) -> ResultCache:
    return ResultCache(memory_store, ttl_seconds=3600, clock=clock)


# ═══════════════════════════════════════════════════════════
# KEY DERIVATION
# ═══════════════════════════════════════════════════════════


class TestMakeCacheKey:
    def test_request_id_excluded(self, analysis_request: AnalysisRequest) -> None:
        other = analysis_request.model_copy(update={"request_id": "req-2"})
        assert make_cache_key(analysis_request) == make_cache_key(other)

    def test_is_sha256_hex(self, analysis_request: AnalysisRequest) -> None:
        key = make_cache_key(analysis_request)
        assert len(key) == 64
        int(key, 16)

    def test_normalizes_case_whitespace_and_ingredient_order(
        self, vegan_preferences: DietaryPreferences
    ) -> None:
        a = AnalysisRequest(
            dietary_preferences=vegan_preferences,
            menu_items=[MenuItem(id="1", name="Garden Salad", ingredients=["Tomato", "lettuce"])],
            request_id="a",
        )
        b = AnalysisRequest(
            dietary_preferences=vegan_preferences,
            menu_items=[MenuItem(id="99", name="  garden   salad ", ingredients=["lettuce", " tomato"])],
            request_id="b",
        )
        assert make_cache_key(a) == make_cache_key(b)

    def test_diet_changes_key(self, analysis_request: AnalysisRequest) -> None:
        vegetarian = analysis_request.model_copy(
            update={"dietary_preferences": DietaryPreferences(dietary_type=DietaryType.VEGETARIAN)}
        )
        assert make_cache_key(analysis_request) != make_cache_key(vegetarian)

    def test_custom_restrictions_change_key(self) -> None:
        def request(text: str) -> AnalysisRequest:
            return AnalysisRequest(
                dietary_preferences=DietaryPreferences(dietary_type=DietaryType.CUSTOM, custom_restrictions=text),
                menu_items=[MenuItem(id="1", name="Satay")],
                request_id="r",
            )

        assert make_cache_key(request("no peanuts")) != make_cache_key(request("no shellfish"))

    def test_item_order_matters(self, vegan_preferences: DietaryPreferences) -> None:
        soup = MenuItem(id="1", name="Soup")
        salad = MenuItem(id="2", name="Salad")
        a = AnalysisRequest(dietary_preferences=vegan_preferences, menu_items=[soup, salad], request_id="a")
        b = AnalysisRequest(dietary_preferences=vegan_preferences, menu_items=[salad, soup], request_id="a")
        assert make_cache_key(a) != make_cache_key(b)

    def test_multimodal_key(self, vegan_preferences: DietaryPreferences) -> None:
        def request(image: str, request_id: str) -> MultimodalAnalysisRequest:
            return MultimodalAnalysisRequest(
                dietary_preferences=vegan_preferences,
                content_parts=[ContentPart(type=ContentType.IMAGE, data=image)],
                request_id=request_id,
            )

        assert make_cache_key(request("data:image/png;base64,AAAA", "1")) == make_cache_key(
            request("data:image/png;base64,AAAA", "2")
        )
        assert make_cache_key(request("data:image/png;base64,AAAA", "1")) != make_cache_key(
            request("data:image/png;base64,BBBB", "1")
        )


# ═══════════════════════════════════════════════════════════
# GET / PUT
# ═══════════════════════════════════════════════════════════


class TestResultCache:
    @pytest.mark.asyncio
    async def test_miss(self, cache: ResultCache) -> None:
        assert await cache.get("unknown", request_id="r") is None
        assert (await cache.stats()).misses == 1

    @pytest.mark.asyncio
    async def test_hit_substitutes_request_id(
        self, cache: ResultCache, analysis_request: AnalysisRequest, success_response: AnalysisResponse
    ) -> None:
        key = cache.make_key(analysis_request)
        assert await cache.put(key, success_response) is True

        hit = await cache.get(key, request_id="req-2")

        assert hit is not None
        assert hit.request_id == "req-2"
        assert hit.results == success_response.results
        assert hit.processing_time_ms == 0
        assert (await cache.stats()).hits == 1

    @pytest.mark.asyncio
    async def test_entries_are_namespaced(
        self, cache: ResultCache, memory_store: InMemoryCacheStore, success_response: AnalysisResponse
    ) -> None:
        await cache.put("abc", success_response)
        assert await memory_store.keys() == [f"{CACHE_KEY_PREFIX}abc"]

    @pytest.mark.asyncio
    async def test_failed_response_not_cached(self, cache: ResultCache, memory_store: InMemoryCacheStore) -> None:
        failure = AnalysisResponse.failure("r", "boom", ErrorCode.TRANSPORT)

        assert await cache.put("abc", failure) is False
        assert memory_store.size() == 0

    @pytest.mark.asyncio
    async def test_expired_entry_removed(
        self, cache: ResultCache, memory_store: InMemoryCacheStore, clock, success_response: AnalysisResponse
    ) -> None:
        await cache.put("abc", success_response)
        clock.advance(3600)

        assert await cache.get("abc", request_id="r") is None
        assert memory_store.size() == 0
        assert (await cache.stats()).expirations == 1

    @pytest.mark.asyncio
    async def test_recache_replaces_entry(
        self, cache: ResultCache, clock, success_response: AnalysisResponse
    ) -> None:
        await cache.put("abc", success_response)
        clock.advance(3000)
        await cache.put("abc", success_response.model_copy(update={"confidence": 0.5}))
        clock.advance(3000)

        hit = await cache.get("abc", request_id="r")

        assert hit is not None
        assert hit.confidence == 0.5

    @pytest.mark.asyncio
    async def test_corrupt_entry_discarded(self, cache: ResultCache, memory_store: InMemoryCacheStore) -> None:
        await memory_store.set(f"{CACHE_KEY_PREFIX}abc", "{not json")

        assert await cache.get("abc", request_id="r") is None
        assert memory_store.size() == 0

    @pytest.mark.asyncio
    async def test_store_failure_is_a_miss(self, success_response: AnalysisResponse) -> None:
        store = AsyncMock()
        store.get.side_effect = CacheError("mongo down")
        store.set.side_effect = CacheError("mongo down")
        cache = ResultCache(store)

        assert await cache.put("abc", success_response) is False
        assert await cache.get("abc", request_id="r") is None

    @pytest.mark.asyncio
    async def test_concurrent_readers_see_whole_entries(
        self, cache: ResultCache, success_response: AnalysisResponse
    ) -> None:
        await cache.put("abc", success_response)

        hits = await asyncio.gather(*(cache.get("abc", request_id=f"r{i}") for i in range(10)))

        assert [h.request_id for h in hits if h] == [f"r{i}" for i in range(10)]


class TestResultCacheMaintenance:
    @pytest.mark.asyncio
    async def test_clear_only_touches_cache_keys(
        self, cache: ResultCache, memory_store: InMemoryCacheStore, success_response: AnalysisResponse
    ) -> None:
        await cache.put("a", success_response)
        await cache.put("b", success_response)
        await memory_store.set("trial_usage", "{}")

        assert await cache.clear() == 2
        assert await memory_store.keys() == ["trial_usage"]

    @pytest.mark.asyncio
    async def test_purge_expired(
        self, cache: ResultCache, memory_store: InMemoryCacheStore, clock, success_response: AnalysisResponse
    ) -> None:
        await cache.put("old", success_response)
        clock.advance(3000)
        await cache.put("new", success_response)
        clock.advance(1000)

        assert await cache.purge_expired() == 1
        assert await memory_store.keys() == [f"{CACHE_KEY_PREFIX}new"]

    @pytest.mark.asyncio
    async def test_oldest_evicted_past_bound(
        self, memory_store: InMemoryCacheStore, clock, success_response: AnalysisResponse
    ) -> None:
        cache = ResultCache(memory_store, ttl_seconds=3600, clock=clock, max_entries=5)
        for i in range(6):
            await cache.put(f"k{i}", success_response)
            clock.advance(10)

        assert sorted(await memory_store.keys()) == [f"{CACHE_KEY_PREFIX}k{i}" for i in range(2, 6)]
        assert (await cache.stats()).evictions == 2

    @pytest.mark.asyncio
    async def test_write_sweeps_expired_entries(
        self, cache: ResultCache, memory_store: InMemoryCacheStore, clock, success_response: AnalysisResponse
    ) -> None:
        await cache.put("old", success_response)
        clock.advance(3600)

        await cache.put("new", success_response)

        assert await memory_store.keys() == [f"{CACHE_KEY_PREFIX}new"]
        assert (await cache.stats()).expirations == 1

    @pytest.mark.asyncio
    async def test_stats(
        self, cache: ResultCache, success_response: AnalysisResponse
    ) -> None:
        await cache.put("a", success_response)
        await cache.get("a", request_id="r")
        await cache.get("b", request_id="r")

        stats = await cache.stats()

        assert stats.entries == 1
        assert stats.stores == 1
        assert stats.hit_rate == 0.5
