# storefront/services/cart_store.py
import uuid
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping

from pydantic import ValidationError as PydanticValidationError

from storefront.domain.errors import StockError, ValidationError
from storefront.domain.schemas import (
    CartItem,
    CartSnapshot,
    CatalogProduct,
    ProductRef,
    SyncKind,
    SyncMessage,
    as_product_ref,
)
from storefront.repos.cart_repo import CartRepo
from storefront.utils.clock import Clock, now_ms
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

MutationListener = Callable[[SyncMessage], None]


def _check_whole(quantity: Any) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"Quantity must be a whole number, got {quantity!r}")


class CartStore:
    """
    Authoritative in-memory cart of one execution context.
    commands (add, remove, update, clear) change state synchronously, then
    persist and notify listeners; queries only read.
    """

    def __init__(
        self,
        repo: CartRepo,
        clock: Clock = now_ms,
        instance_id: str | None = None,
    ):
        self.repo = repo
        self.clock = clock
        self.instance_id = instance_id or uuid.uuid4().hex
        self._items: Dict[str, CartItem] = {}
        self._session_id = self._new_session_id()
        self._last_updated = 0
        self._updated_by = ""
        self._listeners: List[MutationListener] = []
        self._disposed = False

    def _new_session_id(self) -> str:
        return f"cart_{self.clock()}_{uuid.uuid4().hex[:9]}"

    #lifecycle
    def hydrate(self) -> bool:
        """Load the durable copy, if any. Called once when the context starts."""
        snapshot = self.repo.load()
        if snapshot is None:
            return False
        self._replace(snapshot)
        logger.info(
            f"Cart {snapshot.session_id} hydrated with {len(snapshot.items)} item(s)"
        )
        return True

    def dispose(self) -> None:
        self._listeners.clear()
        self._disposed = True

    def subscribe(self, listener: MutationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    #queries
    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def last_updated(self) -> int:
        return self._last_updated

    @property
    def items(self) -> List[CartItem]:
        return list(self._items.values())

    @property
    def item_count(self) -> int:
        return sum(i.quantity for i in self._items.values())

    @property
    def total_amount(self) -> Decimal:
        return sum((i.subtotal for i in self._items.values()), Decimal("0"))

    def is_empty(self) -> bool:
        return not self._items

    def get_item(self, product_id: str) -> CartItem | None:
        return self._items.get(product_id)

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(
            items=list(self._items.values()),
            session_id=self._session_id,
            last_updated=self._last_updated,
            updated_by=self._updated_by,
        )

    #commands
    def add_item(
        self,
        product: ProductRef | CatalogProduct | Mapping[str, Any],
        quantity: int = 1,
    ) -> CartSnapshot:
        _check_whole(quantity)
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than 0")
        self._check_open()

        try:
            ref = as_product_ref(product)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid product: {e}") from e

        existing = self._items.get(ref.id)
        current = existing.quantity if existing else 0
        wanted = current + quantity

        # known ceiling: clamp and tell the caller; unknown: accept as is
        stock_error = None
        if ref.available_quantity is not None and wanted > ref.available_quantity:
            stock_error = StockError(ref.id, wanted, ref.available_quantity)
            wanted = ref.available_quantity
            if wanted <= current:
                raise stock_error

        if existing:
            logger.info(
                f"Product {ref.id} already in cart, quantity {current} -> {wanted}"
            )
            self._items[ref.id] = existing.model_copy(update={"quantity": wanted})
        else:
            logger.info(f"Adding product {ref.id} x{wanted} to cart {self._session_id}")
            self._items[ref.id] = CartItem(
                id=ref.id,
                quantity=wanted,
                price=ref.price,
                display=ref.display(),
                added_at=self.clock(),
            )

        snapshot = self._commit(
            SyncKind.ADDED, {"productId": ref.id, "quantity": wanted - current}
        )
        if stock_error is not None:
            raise stock_error
        return snapshot

    def remove_item(self, product_id: str) -> CartSnapshot:
        self._check_open()
        if product_id not in self._items:
            return self.snapshot()

        del self._items[product_id]
        logger.info(f"Removed product {product_id} from cart {self._session_id}")
        return self._commit(SyncKind.REMOVED, {"productId": product_id})

    def update_quantity(self, product_id: str, quantity: int) -> CartSnapshot:
        _check_whole(quantity)
        # 0 or less removes the item; kept as policy, not an error
        if quantity <= 0:
            return self.remove_item(product_id)
        self._check_open()

        item = self._items.get(product_id)
        if item is None or item.quantity == quantity:
            return self.snapshot()

        self._items[product_id] = item.model_copy(update={"quantity": quantity})
        return self._commit(
            SyncKind.UPDATED, {"productId": product_id, "quantity": quantity}
        )

    def reprice(self, product_id: str, price: Decimal) -> CartSnapshot:
        """Refresh the unit price snapshot, e.g. after checkout validation."""
        self._check_open()
        item = self._items.get(product_id)
        if item is None or item.price == price:
            return self.snapshot()

        self._items[product_id] = item.model_copy(update={"price": Decimal(str(price))})
        return self._commit(
            SyncKind.UPDATED, {"productId": product_id, "price": str(price)}
        )

    def clear_cart(self) -> CartSnapshot:
        self._check_open()
        old_session = self._session_id
        self._items.clear()
        self._session_id = self._new_session_id()
        logger.info(f"Cart {old_session} cleared, new session {self._session_id}")
        return self._commit(SyncKind.CLEARED, {})

    def apply_remote(self, snapshot: CartSnapshot, origin_id: str) -> None:
        """
        Adopt state committed by another context. Not persisted again:
        the durable copy already holds it.
        """
        self._check_open()
        self._replace(snapshot)
        kind = SyncKind.CLEARED if not snapshot.items else SyncKind.UPDATED
        self._emit(
            SyncMessage(
                kind=kind,
                payload={"remote": True},
                timestamp=snapshot.last_updated,
                origin_id=origin_id,
            )
        )

    #internals
    def _check_open(self) -> None:
        if self._disposed:
            raise RuntimeError("CartStore has been disposed")

    def _replace(self, snapshot: CartSnapshot) -> None:
        self._items = {i.id: i for i in snapshot.items}
        self._session_id = snapshot.session_id
        self._last_updated = snapshot.last_updated
        self._updated_by = snapshot.updated_by

    def _commit(self, kind: SyncKind, payload: Dict[str, Any]) -> CartSnapshot:
        # strictly increasing, so same-millisecond mutations still order under LWW
        self._last_updated = max(self.clock(), self._last_updated + 1)
        self._updated_by = self.instance_id
        snapshot = self.snapshot()

        try:
            self.repo.save(snapshot)
        except Exception as e:
            logger.error(f"Durable write of cart {snapshot.session_id} failed: {e}")

        self._emit(
            SyncMessage(
                kind=kind,
                payload=payload,
                timestamp=self._last_updated,
                origin_id=self.instance_id,
            )
        )
        return snapshot

    def _emit(self, message: SyncMessage) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as e:
                logger.error(f"Cart listener failed on {message.kind.value}: {e}")
