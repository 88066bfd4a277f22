from storefront.services.catalog_cache import CatalogCache
from storefront.tasks.purge import purge_cache


class TestPurgeTask:
    def test_purges_expired_and_unreadable_records(self, storage, clock):
        cache = CatalogCache(storage, clock=clock)
        cache.set("products", "live", [1], ttl=1000)
        storage.set("cache_products_broken", "not json")

        assert purge_cache(storage, clock=clock) == 1
        assert storage.keys("cache_") == ["cache_products_live"]

    def test_task_is_on_the_beat_schedule(self):
        from storefront.celery_worker import celery_app

        schedule = celery_app.conf.beat_schedule["purge-catalog-cache"]
        assert schedule["task"] == "storefront.tasks.purge.purge_cache_task"
