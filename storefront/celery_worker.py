# storefront/celery_worker.py
from celery import Celery

from storefront.utils.settings import (
    CACHE_PURGE_INTERVAL_SECONDS,
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
)

celery_app = Celery(
    "storefront",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# tasks must be imported explicitly to get registered
celery_app.conf.imports = ("storefront.tasks.purge",)

celery_app.conf.beat_schedule = {
    "purge-catalog-cache": {
        "task": "storefront.tasks.purge.purge_cache_task",
        "schedule": float(CACHE_PURGE_INTERVAL_SECONDS),
    },
}

celery_app.conf.timezone = "UTC"
