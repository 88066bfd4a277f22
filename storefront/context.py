# storefront/context.py
import uuid

from storefront.repos.cart_repo import CartRepo
from storefront.repos.storage import (
    KeyValueStorage,
    MemoryStorage,
    RedisStorage,
    SharedMemoryStore,
)
from storefront.services.cart_store import CartStore
from storefront.services.cart_sync import CartSync
from storefront.services.catalog_cache import CatalogCache
from storefront.services.catalog_client import CatalogClient
from storefront.services.catalog_service import CatalogService
from storefront.services.message_bus import BroadcastHub, LocalBus, MessageBus, RedisBus
from storefront.services.validation_service import ValidationService
from storefront.utils.clock import Clock, now_ms
from storefront.utils.logging import get_logger
from storefront.utils.settings import (
    STORAGE_BACKEND,
    STORAGE_QUOTA_BYTES,
    SYNC_DEBOUNCE_MS,
    SYNC_GUARD_MS,
)

logger = get_logger(__name__)


class StorefrontContext:
    """
    One execution context (one open tab): its cart, cross-context sync,
    catalog cache and validator, wired together.

    Lifecycle: construct -> await start() -> ... -> await close().
    Nothing here is global, so several contexts can share one
    storage/bus pair inside a single process.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        bus: MessageBus,
        client: CatalogClient | None = None,
        clock: Clock = now_ms,
        debounce_ms: int = SYNC_DEBOUNCE_MS,
        guard_ms: int = SYNC_GUARD_MS,
        instance_id: str | None = None,
    ):
        self.instance_id = instance_id or uuid.uuid4().hex
        self.storage = storage
        self.bus = bus

        self.repo = CartRepo(storage)
        self.store = CartStore(self.repo, clock=clock, instance_id=self.instance_id)
        self.sync = CartSync(
            self.store,
            self.repo,
            bus,
            storage,
            debounce_ms=debounce_ms,
            guard_ms=guard_ms,
        )

        self.client = client or CatalogClient(clock=clock)
        self.cache = CatalogCache(storage, clock=clock)
        self.catalog = CatalogService(self.client, self.cache)
        self.validator = ValidationService()
        self.started = False

    async def start(self) -> None:
        self.store.hydrate()
        self.sync.start()
        self.started = True
        logger.info(f"Context {self.instance_id} started")

    async def close(self) -> None:
        if self.started:
            self.sync.stop()
        await self.cache.close()
        self.store.dispose()
        self.client.close()
        self.bus.close()
        self.storage.close()
        self.started = False
        logger.info(f"Context {self.instance_id} closed")

    async def __aenter__(self) -> "StorefrontContext":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


def create_context(
    backend: str = STORAGE_BACKEND,
    shared: SharedMemoryStore | None = None,
    hub: BroadcastHub | None = None,
    **kwargs,
) -> StorefrontContext:
    """
    Build a context on the configured backend.
    memory: pass the same `shared`/`hub` to every context of one origin.
    redis: every context talks to REDIS_URL.
    """
    if backend == "redis":
        storage: KeyValueStorage = RedisStorage()
        bus: MessageBus = RedisBus()
    elif backend == "memory":
        storage = MemoryStorage(shared or SharedMemoryStore(quota_bytes=STORAGE_QUOTA_BYTES))
        bus = LocalBus(hub)
    else:
        raise ValueError(f"Unknown storage backend: {backend}")
    return StorefrontContext(storage, bus, **kwargs)
