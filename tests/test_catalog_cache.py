import asyncio
import json
from unittest.mock import AsyncMock

import pytest
import redis

from storefront.domain.errors import NetworkError
from storefront.repos.storage import MemoryStorage
from storefront.services.catalog_cache import CatalogCache

TTL = 300_000
GRACE = 60_000


@pytest.fixture
def cache(storage, clock):
    return CatalogCache(storage, clock=clock, default_ttl=TTL, grace=GRACE)


class TestFreshness:
    def test_fresh_then_stale_then_gone(self, cache, clock):
        cache.set("products", "all", ["p1", "p2"], ttl=TTL)

        hit = cache.get("products", "all")
        assert hit.data == ["p1", "p2"]
        assert hit.is_stale is False

        clock.advance(TTL + 1)
        stale = cache.get("products", "all")
        assert stale.data == ["p1", "p2"]
        assert stale.is_stale is True
        assert cache.has("products", "all") is False

        clock.advance(GRACE)
        assert cache.get("products", "all") is None

    def test_survives_a_new_cache_instance(self, cache, storage, clock):
        cache.set("products", "all", ["p1"])

        other = CatalogCache(storage, clock=clock)
        hit = other.get("products", "all")

        assert hit.data == ["p1"]
        assert hit.source == "storage"

    def test_other_schema_version_is_a_miss(self, cache, storage, clock):
        cache.set("products", "all", ["p1"])

        upgraded = CatalogCache(storage, clock=clock, version="2.0.0")

        assert upgraded.get("products", "all") is None
        assert storage.keys("cache_") == []

    def test_corrupt_record_is_a_miss(self, cache, storage):
        storage.set(cache.key("products", "all"), "garbage")
        assert cache.get("products", "all") is None

    def test_update_ttl_restarts_the_window(self, cache, clock):
        cache.set("products", "all", ["p1"], ttl=1000)
        clock.advance(1500)

        assert cache.update_ttl("products", "all", 5000) is True
        assert cache.get("products", "all").is_stale is False
        assert cache.update_ttl("products", "missing", 5000) is False


class TestMaintenance:
    def test_full_memory_tier_drops_oldest_quarter(self, storage, clock):
        cache = CatalogCache(storage, clock=clock, max_entries=4)
        for i in range(5):
            cache.set("p", str(i), i)
            clock.advance(10)

        assert cache.stats()["memory"]["size"] == 4
        assert cache.get("p", "4").source == "memory"
        # still in the durable tier
        assert cache.get("p", "0").source == "storage"

    def test_purge_expired(self, cache, storage, clock):
        cache.set("products", "old", [1], ttl=1000)
        clock.advance(1000 + GRACE + 1)
        cache.set("products", "new", [2], ttl=1000)

        assert cache.purge_expired() == 1
        assert storage.keys("cache_") == [cache.key("products", "new")]

    def test_clear_namespace_leaves_others(self, cache, storage):
        cache.set("products", "1", 1)
        cache.set("products", "2", 2)
        cache.set("brands", "1", 3)

        assert cache.clear_namespace("products") == 2
        assert cache.get("products", "1") is None
        assert cache.get("brands", "1").data == 3

    def test_clear_all_keeps_the_cart(self, cache, storage):
        storage.set("cart-storage", json.dumps({"items": []}))
        cache.set("products", "all", [])

        cache.clear_all()

        assert storage.keys() == ["cart-storage"]


class TestFetchThrough:
    def test_miss_loads_and_stores(self, cache):
        loader = AsyncMock(return_value=["p1"])

        result = asyncio.run(cache.fetch_through("products", "all", loader))

        assert result.data == ["p1"]
        assert result.source == "network"
        assert cache.get("products", "all").data == ["p1"]

    def test_fresh_hit_skips_loader(self, cache):
        cache.set("products", "all", ["p1"])
        loader = AsyncMock(return_value=["p2"])

        result = asyncio.run(cache.fetch_through("products", "all", loader))

        assert result.data == ["p1"]
        loader.assert_not_called()

    def test_stale_hit_refreshes_in_background(self, cache, clock):
        cache.set("products", "all", ["old"], ttl=1000)
        clock.advance(2000)
        loader = AsyncMock(return_value=["new"])

        async def scenario():
            first = await cache.fetch_through("products", "all", loader, ttl=1000)
            second = await cache.fetch_through("products", "all", loader, ttl=1000)
            await cache.wait_revalidations()
            return first, second

        first, second = asyncio.run(scenario())

        assert first.data == ["old"] and first.is_stale
        assert second.data == ["old"]
        loader.assert_awaited_once()
        fresh = cache.get("products", "all")
        assert fresh.data == ["new"]
        assert fresh.is_stale is False

    def test_failed_refresh_serves_expired_data_as_degraded(self, cache, clock):
        cache.set("products", "all", ["old"], ttl=1000)
        clock.advance(5000)
        loader = AsyncMock(side_effect=NetworkError("down"))

        result = asyncio.run(
            cache.fetch_through("products", "all", loader, revalidate=False)
        )

        assert result.data == ["old"]
        assert result.is_stale is True
        assert result.degraded is True
        assert isinstance(result.error, NetworkError)

    def test_failed_background_refresh_marks_later_reads(self, cache, clock):
        cache.set("products", "all", ["old"], ttl=1000)
        clock.advance(5000)
        loader = AsyncMock(side_effect=NetworkError("down"))

        async def scenario():
            await cache.fetch_through("products", "all", loader)
            await cache.wait_revalidations()

        asyncio.run(scenario())

        result = cache.get("products", "all")
        assert result.degraded is True
        assert result.data == ["old"]

    def test_failure_with_nothing_cached_raises(self, cache):
        loader = AsyncMock(side_effect=NetworkError("down"))

        with pytest.raises(NetworkError):
            asyncio.run(cache.fetch_through("products", "all", loader))

    def test_unexpected_background_failure_is_recorded(self, cache, clock):
        cache.set("products", "all", ["old"], ttl=1000)
        clock.advance(2000)
        loader = AsyncMock(side_effect=RuntimeError("boom"))

        async def scenario():
            await cache.fetch_through("products", "all", loader)
            await cache.wait_revalidations()

        asyncio.run(scenario())

        result = cache.get("products", "all")
        assert result.degraded is True
        assert isinstance(result.error, RuntimeError)
        assert result.data == ["old"]


class UnreachableStorage(MemoryStorage):
    def set(self, key, value):
        raise redis.ConnectionError("storage down")


class TestDurableTierFailure:
    def test_memory_tier_serves_when_durable_write_fails(self, shared, clock):
        cache = CatalogCache(UnreachableStorage(shared), clock=clock, default_ttl=TTL, grace=GRACE)
        loader = AsyncMock(return_value=["p1"])

        result = asyncio.run(cache.fetch_through("products", "all", loader))

        assert result.data == ["p1"]
        hit = cache.get("products", "all")
        assert hit.data == ["p1"]
        assert hit.source == "memory"

    def test_update_ttl_survives_durable_failure(self, shared, clock):
        cache = CatalogCache(UnreachableStorage(shared), clock=clock, default_ttl=TTL, grace=GRACE)
        cache.set("products", "all", ["p1"], ttl=1000)
        clock.advance(1500)

        assert cache.update_ttl("products", "all", 5000) is True
        assert cache.has("products", "all") is True
