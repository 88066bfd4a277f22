# storefront/tasks/purge.py
from storefront.celery_worker import celery_app
from storefront.repos.storage import KeyValueStorage, RedisStorage
from storefront.services.catalog_cache import CatalogCache
from storefront.utils.clock import Clock, now_ms
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def purge_cache(storage: KeyValueStorage, clock: Clock = now_ms) -> int:
    cache = CatalogCache(storage, clock=clock)
    return cache.purge_expired()


@celery_app.task(name="storefront.tasks.purge.purge_cache_task")
def purge_cache_task():
    logger.info("Purge cache task started")

    storage = RedisStorage()
    try:
        purged = purge_cache(storage)
        logger.info(f"Purge cache task removed {purged} record(s)")
        return purged
    finally:
        storage.close()
