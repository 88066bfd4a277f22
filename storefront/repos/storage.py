# storefront/repos/storage.py
"""
Durable, synchronous, per-origin key-value storage.

Every execution context gets its own handle; handles of one origin share
the same records. `watch` listeners fire only for writes made through
*another* handle, so a context never hears its own writes.
"""
import json
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Protocol, Tuple

import redis
from redis.exceptions import ResponseError

from storefront.domain.errors import StorageQuotaError
from storefront.utils.logging import get_logger
from storefront.utils.retry import redis_retry
from storefront.utils.settings import REDIS_URL

logger = get_logger(__name__)

CACHE_PREFIX = "cache_"
EVENTS_CHANNEL = "storage-events"


def log_pubsub_error(exc: BaseException, pubsub, thread) -> None:
    # keeps the listener thread alive; redis-py stops it when no handler is set
    logger.error(f"Pub/sub listener error: {exc!r}")
    if isinstance(exc, redis.ConnectionError):
        # avoid spinning while the server is unreachable
        time.sleep(0.5)


@dataclass(frozen=True)
class StorageEvent:
    key: str
    new_value: str | None
    old_value: str | None = None


StorageListener = Callable[[StorageEvent], None]


class KeyValueStorage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None:
        """Raises StorageQuotaError when the store is full."""
        ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> List[str]: ...

    def watch(self, listener: StorageListener) -> Callable[[], None]:
        """Subscribe to writes from other contexts. Returns unsubscribe."""
        ...

    def close(self) -> None: ...


class SharedMemoryStore:
    """Records of one origin, shared by all MemoryStorage handles."""

    def __init__(self, quota_bytes: int | None = None):
        self.quota_bytes = quota_bytes
        self.data: Dict[str, str] = {}
        self._watchers: List[Tuple["MemoryStorage", StorageListener]] = []

    def used_bytes(self) -> int:
        return sum(_size(k, v) for k, v in self.data.items())

    def write(self, writer: "MemoryStorage", key: str, value: str | None) -> None:
        old = self.data.get(key)
        if value is not None and self.quota_bytes is not None:
            used = self.used_bytes() - (_size(key, old) if old is not None else 0)
            if used + _size(key, value) > self.quota_bytes:
                raise StorageQuotaError(
                    f"Writing {key} would exceed quota of {self.quota_bytes} bytes"
                )

        if value is None:
            self.data.pop(key, None)
        else:
            self.data[key] = value

        event = StorageEvent(key=key, new_value=value, old_value=old)
        for handle, listener in list(self._watchers):
            if handle is not writer:
                listener(event)

    def add_watcher(self, handle: "MemoryStorage", listener: StorageListener) -> Callable[[], None]:
        entry = (handle, listener)
        self._watchers.append(entry)

        def unsubscribe() -> None:
            if entry in self._watchers:
                self._watchers.remove(entry)

        return unsubscribe

    def drop_watchers(self, handle: "MemoryStorage") -> None:
        self._watchers = [w for w in self._watchers if w[0] is not handle]


def _size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class MemoryStorage:
    """In-process storage handle; pass the same SharedMemoryStore to every context."""

    def __init__(self, shared: SharedMemoryStore | None = None):
        self.shared = shared or SharedMemoryStore()

    def get(self, key: str) -> str | None:
        return self.shared.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.shared.write(self, key, value)

    def delete(self, key: str) -> None:
        if key in self.shared.data:
            self.shared.write(self, key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self.shared.data if k.startswith(prefix)]

    def watch(self, listener: StorageListener) -> Callable[[], None]:
        return self.shared.add_watcher(self, listener)

    def close(self) -> None:
        self.shared.drop_watchers(self)


class RedisStorage:
    """
    Redis-backed storage handle.
    Every write also publishes {key, writer} on EVENTS_CHANNEL so other
    handles can observe it; the listener runs on redis-py's pubsub thread.
    """

    def __init__(
        self,
        url: str | None = None,
        client: redis.Redis | None = None,
        prefix: str = "storefront:",
    ):
        self.redis = client or redis.Redis.from_url(url or REDIS_URL, decode_responses=True)
        self.prefix = prefix
        self.instance_id = uuid.uuid4().hex
        self._listeners: List[StorageListener] = []
        self._pubsub = None
        self._thread = None

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    @redis_retry()
    def get(self, key: str) -> str | None:
        return self.redis.get(self._key(key))

    @redis_retry()
    def set(self, key: str, value: str) -> None:
        pipe = self.redis.pipeline()
        pipe.set(self._key(key), value)
        pipe.publish(self._channel(), json.dumps({"key": key, "writer": self.instance_id}))
        try:
            pipe.execute()
        except ResponseError as e:
            #maxmemory reached
            if "OOM" in str(e):
                raise StorageQuotaError(str(e)) from e
            raise

    @redis_retry()
    def delete(self, key: str) -> None:
        pipe = self.redis.pipeline()
        pipe.delete(self._key(key))
        pipe.publish(self._channel(), json.dumps({"key": key, "writer": self.instance_id}))
        pipe.execute()

    @redis_retry()
    def keys(self, prefix: str = "") -> List[str]:
        start = len(self.prefix)
        return [k[start:] for k in self.redis.scan_iter(match=f"{self._key(prefix)}*")]

    def _channel(self) -> str:
        return f"{self.prefix}{EVENTS_CHANNEL}"

    def watch(self, listener: StorageListener) -> Callable[[], None]:
        self._listeners.append(listener)
        if self._pubsub is None:
            self._pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
            self._pubsub.subscribe(**{self._channel(): self._on_message})
            self._thread = self._pubsub.run_in_thread(
                sleep_time=0.05, daemon=True, exception_handler=log_pubsub_error
            )

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _on_message(self, message: dict) -> None:
        try:
            payload = json.loads(message["data"])
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed storage event: {message!r}")
            return
        if not isinstance(payload, dict) or not isinstance(payload.get("key"), str):
            logger.warning(f"Ignoring storage event without a key: {payload!r}")
            return
        if payload.get("writer") == self.instance_id:
            return

        key = payload["key"]
        try:
            value = self.get(key)
        except redis.RedisError as e:
            logger.warning(f"Cannot read {key} after storage event: {e}")
            return
        event = StorageEvent(key=key, new_value=value)
        for listener in list(self._listeners):
            listener(event)

    def close(self) -> None:
        self._listeners.clear()
        if self._thread is not None:
            self._thread.stop()
            self._thread = None
        if self._pubsub is not None:
            self._pubsub.close()
            self._pubsub = None


def evict_oldest(
    storage: KeyValueStorage,
    prefix: str = CACHE_PREFIX,
    fraction: float = 0.25,
    keep: str | None = None,
) -> int:
    """
    Drop the least-recently-written records under `prefix`.
    Records that cannot be parsed count as oldest.
    """
    aged: List[Tuple[int, str]] = []
    for key in storage.keys(prefix):
        if key == keep:
            continue
        raw = storage.get(key)
        try:
            ts = int(json.loads(raw)["timestamp"]) if raw else -1
        except (TypeError, ValueError, KeyError):
            ts = -1
        aged.append((ts, key))

    if not aged:
        return 0

    aged.sort()
    count = max(1, int(len(aged) * fraction))
    for _, key in aged[:count]:
        storage.delete(key)

    logger.info(f"Evicted {count} record(s) under '{prefix}' to free storage")
    return count


def save_with_eviction(storage: KeyValueStorage, key: str, value: str) -> bool:
    """
    Write `value`; on quota failure evict our own old cache records and retry once.
    Returns False when the record could not be made durable.
    """
    try:
        storage.set(key, value)
        return True
    except StorageQuotaError as e:
        logger.warning(f"Storage full while writing {key}: {e}; evicting old cache records")
        evict_oldest(storage, CACHE_PREFIX, keep=key)

    try:
        storage.set(key, value)
        return True
    except StorageQuotaError as e:
        logger.error(f"Storage still full, {key} kept in memory only: {e}")
        return False
