# storefront/utils/settings.py
import os
from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# durable storage: "memory" (single process, many contexts) or "redis"
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
STORAGE_QUOTA_BYTES = int(os.getenv("STORAGE_QUOTA_BYTES", 5 * 1024 * 1024))

CATALOG_URL = os.getenv("CATALOG_URL", "http://catalog-service:8000")
CATALOG_TIMEOUT_SECONDS = float(os.getenv("CATALOG_TIMEOUT_SECONDS", 10))
FETCH_MAX_ATTEMPTS = int(os.getenv("FETCH_MAX_ATTEMPTS", 3))
FETCH_BASE_DELAY_SECONDS = float(os.getenv("FETCH_BASE_DELAY_SECONDS", 1.0))
FETCH_JITTER_RATIO = float(os.getenv("FETCH_JITTER_RATIO", 0.1))

CACHE_DEFAULT_TTL_MS = int(os.getenv("CACHE_DEFAULT_TTL_MS", 5 * 60 * 1000))
CACHE_GRACE_MS = int(os.getenv("CACHE_GRACE_MS", 24 * 60 * 60 * 1000))
CACHE_MAX_ENTRIES = int(os.getenv("CACHE_MAX_ENTRIES", 100))
CACHE_SCHEMA_VERSION = os.getenv("CACHE_SCHEMA_VERSION", "1.0.0")
CACHE_PURGE_INTERVAL_SECONDS = float(os.getenv("CACHE_PURGE_INTERVAL_SECONDS", 10 * 60))

CART_STORAGE_KEY = os.getenv("CART_STORAGE_KEY", "cart-storage")
CART_SCHEMA_VERSION = 2

SYNC_CHANNEL = os.getenv("SYNC_CHANNEL", "cart-sync")
SYNC_DEBOUNCE_MS = int(os.getenv("SYNC_DEBOUNCE_MS", 150))
SYNC_GUARD_MS = int(os.getenv("SYNC_GUARD_MS", 100))

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/2")
