# storefront/services/message_bus.py
"""
Best-effort broadcast between execution contexts of one origin.
Delivery is not guaranteed; a suspended or slow context may miss messages.
"""
import json
from typing import Any, Callable, Dict, List, Protocol, Tuple

import redis

from storefront.repos.storage import log_pubsub_error
from storefront.utils.logging import get_logger
from storefront.utils.settings import REDIS_URL, SYNC_CHANNEL

logger = get_logger(__name__)

MessageHandler = Callable[[Dict[str, Any]], None]


class MessageBus(Protocol):
    def publish(self, message: Dict[str, Any]) -> None: ...

    def subscribe(self, handler: MessageHandler) -> Callable[[], None]: ...

    def close(self) -> None: ...


class BroadcastHub:
    """One named channel shared by every LocalBus handle in the process."""

    def __init__(self, name: str = SYNC_CHANNEL):
        self.name = name
        self._handlers: List[Tuple["LocalBus", MessageHandler]] = []

    def deliver(self, sender: "LocalBus", message: Dict[str, Any]) -> None:
        # json round-trip: receivers never share objects with the sender
        encoded = json.dumps(message)
        for bus, handler in list(self._handlers):
            if bus is sender or bus.suspended:
                continue
            handler(json.loads(encoded))

    def attach(self, bus: "LocalBus", handler: MessageHandler) -> Callable[[], None]:
        entry = (bus, handler)
        self._handlers.append(entry)

        def detach() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return detach

    def detach_all(self, bus: "LocalBus") -> None:
        self._handlers = [h for h in self._handlers if h[0] is not bus]


class LocalBus:
    def __init__(self, hub: BroadcastHub | None = None):
        self.hub = hub or BroadcastHub()
        self.suspended = False
        self._closed = False

    def publish(self, message: Dict[str, Any]) -> None:
        if self._closed:
            return
        self.hub.deliver(self, message)

    def subscribe(self, handler: MessageHandler) -> Callable[[], None]:
        return self.hub.attach(self, handler)

    def close(self) -> None:
        self._closed = True
        self.hub.detach_all(self)


class RedisBus:
    """Redis pub/sub channel. Handlers run on redis-py's listener thread."""

    def __init__(
        self,
        url: str | None = None,
        client: redis.Redis | None = None,
        channel: str = SYNC_CHANNEL,
    ):
        self.redis = client or redis.Redis.from_url(url or REDIS_URL, decode_responses=True)
        self.channel = channel
        self._handlers: List[MessageHandler] = []
        self._pubsub = None
        self._thread = None

    def publish(self, message: Dict[str, Any]) -> None:
        try:
            self.redis.publish(self.channel, json.dumps(message))
        except redis.RedisError as e:
            # best effort; the storage observer still carries the change
            logger.warning(f"Broadcast on {self.channel} failed: {e}")

    def subscribe(self, handler: MessageHandler) -> Callable[[], None]:
        self._handlers.append(handler)
        if self._pubsub is None:
            self._pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
            self._pubsub.subscribe(**{self.channel: self._on_message})
            self._thread = self._pubsub.run_in_thread(
                sleep_time=0.05, daemon=True, exception_handler=log_pubsub_error
            )

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def _on_message(self, message: dict) -> None:
        try:
            payload = json.loads(message["data"])
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed message on {self.channel}")
            return
        if not isinstance(payload, dict):
            logger.warning(f"Ignoring non-object message on {self.channel}: {payload!r}")
            return
        for handler in list(self._handlers):
            handler(payload)

    def close(self) -> None:
        self._handlers.clear()
        if self._thread is not None:
            self._thread.stop()
            self._thread = None
        if self._pubsub is not None:
            self._pubsub.close()
            self._pubsub = None
