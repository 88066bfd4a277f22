# storefront/services/cart_sync.py
import asyncio
import json
from typing import Any, Callable, Dict, List

from pydantic import ValidationError as PydanticValidationError

from storefront.domain.errors import SchemaError
from storefront.domain.schemas import CartRecord, CartSnapshot, SyncKind, SyncMessage
from storefront.repos.cart_repo import CartRepo
from storefront.repos.storage import KeyValueStorage, StorageEvent
from storefront.services.cart_store import CartStore
from storefront.services.message_bus import MessageBus
from storefront.utils.logging import get_logger
from storefront.utils.settings import SYNC_DEBOUNCE_MS, SYNC_GUARD_MS

logger = get_logger(__name__)


class CartSync:
    """
    Keeps the CartStore of this context converged with the other open contexts.

    Two inbound paths are used together:
    - the message bus (fast, best effort)
    - the storage observer (fires on every cart write made elsewhere)
    Conflicts resolve last-write-wins on the cart's lastUpdated; equal
    timestamps fall back to the id of the context that made the commit.
    Outbound broadcasts are debounced and carry the whole cart record.
    """

    def __init__(
        self,
        store: CartStore,
        repo: CartRepo,
        bus: MessageBus,
        storage: KeyValueStorage,
        debounce_ms: int = SYNC_DEBOUNCE_MS,
        guard_ms: int = SYNC_GUARD_MS,
    ):
        self.store = store
        self.repo = repo
        self.bus = bus
        self.storage = storage
        self.debounce = debounce_ms / 1000
        self.guard = guard_ms / 1000

        self.sent = 0
        self.applied = 0
        self.discarded = 0

        self._loop: asyncio.AbstractEventLoop | None = None
        self._running = False
        self._unsubscribers: List[Callable[[], None]] = []
        self._pending: SyncMessage | None = None
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._guard_handle: asyncio.TimerHandle | None = None
        self._applying_remote = False

    @property
    def applying_remote(self) -> bool:
        return self._applying_remote

    def start(self) -> None:
        """Must be called from the context's running event loop."""
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._unsubscribers = [
            self.store.subscribe(self._on_local_mutation),
            self.bus.subscribe(self._on_loop(self._on_bus_message)),
            self.storage.watch(self._on_loop(self._on_storage_event)),
        ]
        # ask peers for their state so a fresh context converges right away
        request = SyncMessage(
            kind=SyncKind.SYNC_REQUEST,
            timestamp=self.store.last_updated,
            origin_id=self.store.instance_id,
        )
        self.bus.publish(request.to_wire())
        logger.info(f"Cart sync started for context {self.store.instance_id}")

    def stop(self) -> None:
        if not self._running:
            return
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        if self._guard_handle is not None:
            self._guard_handle.cancel()
            self._guard_handle = None
        # last local change still goes out
        self._applying_remote = False
        self._flush()

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._running = False
        logger.info(f"Cart sync stopped for context {self.store.instance_id}")

    def _on_loop(self, fn: Callable[[Any], None]) -> Callable[[Any], None]:
        # transports may call back from their own thread
        def handler(arg: Any) -> None:
            if not self._running or self._loop is None:
                return
            try:
                self._loop.call_soon_threadsafe(self._dispatch, fn, arg)
            except RuntimeError:
                logger.debug("Event loop closed, dropping sync callback")

        return handler

    def _dispatch(self, fn: Callable[[Any], None], arg: Any) -> None:
        # stop() may have run between scheduling and now
        if self._running:
            fn(arg)

    #outbound
    def _on_local_mutation(self, message: SyncMessage) -> None:
        if message.origin_id != self.store.instance_id:
            return
        self._pending = message
        if self._applying_remote:
            # flushed when the guard resets
            return
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = self._loop.call_later(self.debounce, self._flush)

    def _flush(self) -> None:
        self._debounce_handle = None
        if self._applying_remote:
            # _reset_guard flushes what is still pending
            return
        message, self._pending = self._pending, None
        if message is None:
            return
        self._broadcast(message.kind)

    def _broadcast(self, kind: SyncKind) -> None:
        snapshot = self.store.snapshot()
        record = CartRecord.from_snapshot(snapshot, self.repo.schema_version)
        message = SyncMessage(
            kind=kind,
            payload={"cart": record.to_json()},
            timestamp=snapshot.last_updated,
            origin_id=self.store.instance_id,
        )
        self.bus.publish(message.to_wire())
        self.sent += 1
        logger.debug(f"Broadcast {kind.value} at {snapshot.last_updated}")

    #inbound
    def _on_bus_message(self, raw: Dict[str, Any]) -> None:
        try:
            message = SyncMessage.from_wire(raw)
        except (PydanticValidationError, ValueError) as e:
            logger.warning(f"Ignoring malformed sync message: {e}")
            return

        if message.origin_id == self.store.instance_id:
            return

        if message.kind == SyncKind.SYNC_REQUEST:
            if self.store.last_updated > 0:
                self._broadcast(SyncKind.UPDATED)
            return

        self.receive(message)

    def receive(self, message: SyncMessage) -> bool:
        """Apply an incoming message if it is newer than local state."""
        if message.timestamp < self.store.last_updated:
            self.discarded += 1
            return False

        cart = message.payload.get("cart")
        try:
            snapshot = self.repo.parse(json.dumps(cart)) if cart is not None else self.repo.load()
        except SchemaError as e:
            logger.warning(f"Ignoring sync message with bad cart: {e}")
            return False
        if snapshot is None:
            return False

        return self._apply(snapshot, message.origin_id)

    def _on_storage_event(self, event: StorageEvent) -> None:
        if event.key != self.repo.key or event.new_value is None:
            return
        try:
            snapshot = self.repo.parse(event.new_value)
        except SchemaError as e:
            logger.warning(f"Ignoring unreadable cart write from another context: {e}")
            return
        self._apply(snapshot, origin_id="storage")

    def _apply(self, snapshot: CartSnapshot, origin_id: str) -> bool:
        local = self.store.snapshot()
        if snapshot.stamp() <= local.stamp():
            self.discarded += 1
            if snapshot.last_updated == local.last_updated and not snapshot.same_state(local):
                # tie lost by the sender: the durable copy must hold the winner
                self._persist(local)
            return False

        self._set_guard()
        self.store.apply_remote(snapshot, origin_id)
        self.applied += 1
        logger.info(
            f"Applied remote cart {snapshot.session_id} "
            f"({len(snapshot.items)} item(s)) from {origin_id}"
        )
        return True

    def _persist(self, snapshot: CartSnapshot) -> None:
        try:
            self.repo.save(snapshot)
        except Exception as e:
            logger.error(f"Durable write of cart {snapshot.session_id} failed: {e}")

    def _set_guard(self) -> None:
        self._applying_remote = True
        if self._guard_handle is not None:
            self._guard_handle.cancel()
        self._guard_handle = self._loop.call_later(self.guard, self._reset_guard)

    def _reset_guard(self) -> None:
        self._guard_handle = None
        self._applying_remote = False
        if self._pending is not None:
            self._schedule_flush()
