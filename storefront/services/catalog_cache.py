# storefront/services/catalog_cache.py
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Tuple, TypeVar

import redis
from pydantic import ValidationError as PydanticValidationError

from storefront.domain.errors import FetchError, SchemaError, StorefrontError
from storefront.domain.schemas import CacheRecord
from storefront.repos.storage import CACHE_PREFIX, KeyValueStorage, save_with_eviction
from storefront.utils.clock import Clock, now_ms
from storefront.utils.logging import get_logger
from storefront.utils.settings import (
    CACHE_DEFAULT_TTL_MS,
    CACHE_GRACE_MS,
    CACHE_MAX_ENTRIES,
    CACHE_SCHEMA_VERSION,
)

logger = get_logger(__name__)

T = TypeVar("T")

# fraction of the memory tier dropped when it is full
EVICT_FRACTION = 0.25


@dataclass(frozen=True)
class CacheResult(Generic[T]):
    """Cache read with freshness metadata."""

    data: T
    is_stale: bool = False
    degraded: bool = False
    error: Exception | None = None
    source: str = "memory"
    timestamp: int = 0


class CatalogCache:
    """
    Two-tier cache for catalog data.

    memory tier: in-process dict, bounded, always checked first
    durable tier: KeyValueStorage records {data, timestamp, ttl, version}

    An entry is fresh while age <= ttl, stale-but-usable until
    age <= ttl + grace, and purged after that. Records with another
    schema version are treated as a miss and deleted.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Clock = now_ms,
        max_entries: int = CACHE_MAX_ENTRIES,
        default_ttl: int = CACHE_DEFAULT_TTL_MS,
        grace: int = CACHE_GRACE_MS,
        version: str = CACHE_SCHEMA_VERSION,
    ):
        self.storage = storage
        self.clock = clock
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self.grace = grace
        self.version = version
        self._memory: Dict[str, CacheRecord] = {}
        self._revalidating: Dict[str, asyncio.Task] = {}
        self._errors: Dict[str, Exception] = {}

    @staticmethod
    def key(namespace: str, identifier: str) -> str:
        return f"{CACHE_PREFIX}{namespace}_{identifier}"

    # ------------------------------------------------------------ reads

    def get(self, namespace: str, identifier: str) -> CacheResult | None:
        """Fresh or stale-but-usable entry, or None. Never touches the network."""
        key = self.key(namespace, identifier)
        found = self._lookup(key)
        if found is None:
            return None
        record, source = found
        return self._result(key, record, source)

    def has(self, namespace: str, identifier: str) -> bool:
        result = self.get(namespace, identifier)
        return result is not None and not result.is_stale

    async def fetch_through(
        self,
        namespace: str,
        identifier: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: int | None = None,
        revalidate: bool = True,
    ) -> CacheResult:
        """
        Read through the cache.

        fresh hit  -> cached data
        stale hit  -> cached data marked stale, refreshed in the background
                      (or refreshed inline when revalidate=False)
        miss       -> loader result, stored in both tiers
        loader failing with a stale entry at hand -> stale data tagged degraded
        """
        key = self.key(namespace, identifier)
        found = self._lookup(key)

        if found is not None:
            record, source = found
            if record.is_fresh(self.clock()):
                return self._result(key, record, source)
            if revalidate:
                self._revalidate(namespace, identifier, loader, ttl)
                return self._result(key, record, source)

        try:
            data = await loader()
        except (FetchError, SchemaError) as e:
            if found is None:
                logger.error(f"Loading {key} failed and nothing is cached: {e}")
                raise
            record, source = found
            self._errors[key] = e
            logger.warning(f"Serving stale {key} after failed refresh: {e}")
            return CacheResult(
                data=record.data,
                is_stale=True,
                degraded=True,
                error=e,
                source=source,
                timestamp=record.timestamp,
            )

        record = self.set(namespace, identifier, data, ttl)
        return CacheResult(data=data, source="network", timestamp=record.timestamp)

    # ------------------------------------------------------------ writes

    def set(self, namespace: str, identifier: str, data: Any, ttl: int | None = None) -> CacheRecord:
        key = self.key(namespace, identifier)
        record = CacheRecord(
            data=data,
            timestamp=self.clock(),
            ttl=ttl if ttl is not None else self.default_ttl,
            version=self.version,
        )
        self._remember(key, record)
        self._persist(key, record)
        self._errors.pop(key, None)
        return record

    def update_ttl(self, namespace: str, identifier: str, ttl: int) -> bool:
        """Give an existing entry a new ttl, counted from now."""
        key = self.key(namespace, identifier)
        found = self._lookup(key)
        if found is None:
            return False
        record = found[0].model_copy(update={"ttl": ttl, "timestamp": self.clock()})
        self._memory[key] = record
        self._persist(key, record)
        return True

    def remove(self, namespace: str, identifier: str) -> None:
        key = self.key(namespace, identifier)
        self._memory.pop(key, None)
        self._errors.pop(key, None)
        self.storage.delete(key)

    def clear_namespace(self, namespace: str) -> int:
        prefix = self.key(namespace, "")
        for key in [k for k in self._memory if k.startswith(prefix)]:
            del self._memory[key]
        removed = self.storage.keys(prefix)
        for key in removed:
            self.storage.delete(key)
        return len(removed)

    def clear_all(self) -> int:
        self._memory.clear()
        self._errors.clear()
        removed = self.storage.keys(CACHE_PREFIX)
        for key in removed:
            self.storage.delete(key)
        return len(removed)

    def purge_expired(self) -> int:
        """Drop grace-expired and unreadable records from both tiers."""
        now = self.clock()
        purged = 0
        for key in list(self._memory):
            if not self._memory[key].is_usable(now, self.grace):
                del self._memory[key]

        for key in self.storage.keys(CACHE_PREFIX):
            raw = self.storage.get(key)
            if raw is None:
                continue
            try:
                record = self._decode(raw)
            except SchemaError:
                record = None
            if record is None or not record.is_usable(now, self.grace):
                self.storage.delete(key)
                purged += 1

        if purged:
            logger.info(f"Purged {purged} expired cache record(s)")
        return purged

    def stats(self) -> Dict[str, Any]:
        durable = self.storage.keys(CACHE_PREFIX)
        size = 0
        for key in durable:
            raw = self.storage.get(key)
            size += len(raw) if raw else 0
        return {
            "memory": {"size": len(self._memory), "max_size": self.max_entries},
            "storage": {"count": len(durable), "size_bytes": size},
            "revalidating": len(self._revalidating),
            "version": self.version,
        }

    # ------------------------------------------------------------ background refresh

    async def wait_revalidations(self) -> None:
        tasks = list(self._revalidating.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._revalidating.values()):
            task.cancel()
        await self.wait_revalidations()

    def _revalidate(
        self,
        namespace: str,
        identifier: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: int | None,
    ) -> None:
        key = self.key(namespace, identifier)
        running = self._revalidating.get(key)
        if running is not None and not running.done():
            return
        logger.info(f"Serving stale {key}, refreshing in background")
        self._revalidating[key] = asyncio.get_running_loop().create_task(
            self._refresh(namespace, identifier, loader, ttl)
        )

    async def _refresh(
        self,
        namespace: str,
        identifier: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: int | None,
    ) -> None:
        key = self.key(namespace, identifier)
        try:
            data = await loader()
        except StorefrontError as e:
            self._errors[key] = e
            logger.warning(f"Background refresh of {key} failed: {e}")
        except Exception as e:
            self._errors[key] = e
            logger.exception(f"Background refresh of {key} crashed: {e}")
        else:
            self.set(namespace, identifier, data, ttl)
            logger.info(f"Background refresh of {key} done")
        finally:
            self._revalidating.pop(key, None)

    # ------------------------------------------------------------ internals

    def _result(self, key: str, record: CacheRecord, source: str) -> CacheResult:
        stale = not record.is_fresh(self.clock())
        error = self._errors.get(key) if stale else None
        return CacheResult(
            data=record.data,
            is_stale=stale,
            degraded=error is not None,
            error=error,
            source=source,
            timestamp=record.timestamp,
        )

    def _lookup(self, key: str) -> Tuple[CacheRecord, str] | None:
        now = self.clock()

        memory = self._memory.get(key)
        if memory is not None:
            if memory.version != self.version or not memory.is_usable(now, self.grace):
                del self._memory[key]
                memory = None
            elif memory.is_fresh(now):
                return memory, "memory"

        durable = self._read_durable(key)
        if durable is not None:
            if not durable.is_usable(now, self.grace):
                self.storage.delete(key)
                durable = None
            elif durable.is_fresh(now):
                self._remember(key, durable)
                return durable, "storage"

        # only stale candidates left; take the newest
        if memory is not None and (durable is None or memory.timestamp >= durable.timestamp):
            return memory, "memory"
        if durable is not None:
            return durable, "storage"
        return None

    def _persist(self, key: str, record: CacheRecord) -> None:
        # memory tier stays authoritative when the durable write fails
        try:
            save_with_eviction(self.storage, key, record.model_dump_json())
        except redis.RedisError as e:
            logger.warning(f"Durable write of {key} failed, kept in memory only: {e}")

    def _read_durable(self, key: str) -> CacheRecord | None:
        raw = self.storage.get(key)
        if raw is None:
            return None
        try:
            return self._decode(raw)
        except SchemaError as e:
            logger.warning(f"Dropping cache record {key}: {e}")
            self.storage.delete(key)
            return None

    def _decode(self, raw: str) -> CacheRecord:
        try:
            record = CacheRecord.model_validate_json(raw)
        except PydanticValidationError as e:
            raise SchemaError(f"Corrupt cache record: {e}") from e
        if record.version != self.version:
            raise SchemaError(f"Cache version {record.version} != {self.version}")
        return record

    def _remember(self, key: str, record: CacheRecord) -> None:
        if key not in self._memory and len(self._memory) >= self.max_entries:
            oldest = sorted(self._memory, key=lambda k: self._memory[k].timestamp)
            count = max(1, int(self.max_entries * EVICT_FRACTION))
            for old in oldest[:count]:
                del self._memory[old]
            logger.debug(f"Memory cache full, evicted {count} oldest entries")
        self._memory[key] = record
