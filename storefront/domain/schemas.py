# storefront/domain/schemas.py
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Mapping, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    computed_field,
    field_validator,
)

# Decimal in memory, JSON number on the wire and in durable records
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(v), return_type=float, when_used="json"),
]


class DisplaySnapshot(BaseModel):
    """What the cart shows for an item, frozen at the moment it was added."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    image: str = ""
    brand: str = ""
    category: str = ""
    unit: str = ""


class ProductRef(BaseModel):
    """Product as handed to the cart by the UI."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    price: Money
    name: str = ""
    image: str = ""
    brand: str = ""
    category: str = ""
    unit: str = ""
    # None = stock ceiling unknown until the cart is validated
    available_quantity: int | None = Field(None, alias="availableQuantity")

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v):
        return str(v) if v is not None else v

    def display(self) -> DisplaySnapshot:
        return DisplaySnapshot(
            name=self.name,
            image=self.image,
            brand=self.brand,
            category=self.category,
            unit=self.unit,
        )


class CatalogProduct(BaseModel):
    """Normalized read-only view of one remote catalog entry."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="externalId")
    name: str
    price: Money
    available_quantity: int = Field(0, alias="availableQuantity")
    category: str = ""
    brand: str = ""
    image: str = ""
    unit: str = ""
    is_active: bool = Field(True, alias="isActive")
    last_sync_at: int = Field(0, alias="lastSyncAt")

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v):
        return str(v) if v is not None else v

    def as_ref(self) -> ProductRef:
        return ProductRef(
            id=self.id,
            price=self.price,
            name=self.name,
            image=self.image,
            brand=self.brand,
            category=self.category,
            unit=self.unit,
            available_quantity=self.available_quantity,
        )


def as_product_ref(product: "ProductRef | CatalogProduct | Mapping[str, Any]") -> ProductRef:
    if isinstance(product, ProductRef):
        return product
    if isinstance(product, CatalogProduct):
        return product.as_ref()
    return ProductRef.model_validate(product)


class BrandCount(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    product_count: int = Field(0, alias="productCount")


class CategoryCount(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    product_count: int = Field(0, alias="productCount")
    percentage: int = 0


class CategoryStats(BaseModel):
    """Categories derived from the catalog, with their share of products."""

    model_config = ConfigDict(populate_by_name=True)

    total_categories: int = Field(0, alias="totalCategories")
    total_products: int = Field(0, alias="totalProducts")
    avg_products_per_category: float = Field(0.0, alias="avgProductsPerCategory")
    categories: List[CategoryCount] = Field(default_factory=list)


# ---------------------------------------------------------------- cart


class CartItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    quantity: int = Field(..., ge=1)
    price: Money
    display: DisplaySnapshot = Field(default_factory=DisplaySnapshot)
    added_at: int = 0

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


class CartTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_count: int = 0
    total_amount: Money = Decimal("0")

    @classmethod
    def of(cls, items: List[CartItem]) -> "CartTotals":
        return cls(
            item_count=sum(i.quantity for i in items),
            total_amount=sum((i.subtotal for i in items), Decimal("0")),
        )


class CartSnapshot(BaseModel):
    """Immutable view of the cart. Totals are always derived from items."""

    model_config = ConfigDict(frozen=True)

    items: List[CartItem] = Field(default_factory=list)
    session_id: str
    last_updated: int = 0
    # context that made the last commit; breaks last_updated ties
    updated_by: str = ""

    @computed_field
    @property
    def totals(self) -> CartTotals:
        return CartTotals.of(self.items)

    def stamp(self) -> Tuple[int, str]:
        return (self.last_updated, self.updated_by)

    def same_state(self, other: "CartSnapshot") -> bool:
        return self.session_id == other.session_id and self.items == other.items


class CartItemRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    quantity: int = Field(..., ge=1)
    price: Money
    name: str = ""
    image: str = ""
    brand: str = ""
    category: str = ""
    unit: str = ""
    added_at: int = Field(0, alias="addedAt")

    @classmethod
    def from_item(cls, item: CartItem) -> "CartItemRecord":
        d = item.display
        return cls(
            id=item.id,
            quantity=item.quantity,
            price=item.price,
            name=d.name,
            image=d.image,
            brand=d.brand,
            category=d.category,
            unit=d.unit,
            added_at=item.added_at,
        )

    def to_item(self) -> CartItem:
        return CartItem(
            id=self.id,
            quantity=self.quantity,
            price=self.price,
            display=DisplaySnapshot(
                name=self.name,
                image=self.image,
                brand=self.brand,
                category=self.category,
                unit=self.unit,
            ),
            added_at=self.added_at,
        )


class CartRecord(BaseModel):
    """Durable subset of the cart, stored as JSON under the cart key."""

    model_config = ConfigDict(populate_by_name=True)

    items: List[CartItemRecord] = Field(default_factory=list)
    session_id: str = Field(..., alias="sessionId")
    total_items: int = Field(0, alias="totalItems")
    total_amount: Money = Field(Decimal("0"), alias="totalAmount")
    last_updated: int = Field(0, alias="lastUpdated")
    updated_by: str = Field("", alias="updatedBy")
    schema_version: int = Field(..., alias="schemaVersion")

    @classmethod
    def from_snapshot(cls, snapshot: CartSnapshot, schema_version: int) -> "CartRecord":
        return cls(
            items=[CartItemRecord.from_item(i) for i in snapshot.items],
            session_id=snapshot.session_id,
            total_items=snapshot.totals.item_count,
            total_amount=snapshot.totals.total_amount,
            last_updated=snapshot.last_updated,
            updated_by=snapshot.updated_by,
            schema_version=schema_version,
        )

    def to_snapshot(self) -> CartSnapshot:
        return CartSnapshot(
            items=[i.to_item() for i in self.items],
            session_id=self.session_id,
            last_updated=self.last_updated,
            updated_by=self.updated_by,
        )

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------- cache


class CacheRecord(BaseModel):
    """One cache entry, identical in both tiers."""

    data: Any
    timestamp: int
    ttl: int
    version: str

    def age(self, now: int) -> int:
        return now - self.timestamp

    def is_fresh(self, now: int) -> bool:
        return self.age(now) <= self.ttl

    def is_usable(self, now: int, grace: int) -> bool:
        # fresh or stale-but-usable; past this point the entry is purged
        return self.age(now) <= self.ttl + grace


# ---------------------------------------------------------------- sync


class SyncKind(str, Enum):
    ADDED = "ADDED"
    REMOVED = "REMOVED"
    UPDATED = "UPDATED"
    CLEARED = "CLEARED"
    SYNC_REQUEST = "SYNC_REQUEST"


WireType = Literal["CART_UPDATED", "CART_CLEARED", "SYNC_REQUEST"]

_WIRE_TYPES: Dict[SyncKind, str] = {
    SyncKind.ADDED: "CART_UPDATED",
    SyncKind.REMOVED: "CART_UPDATED",
    SyncKind.UPDATED: "CART_UPDATED",
    SyncKind.CLEARED: "CART_CLEARED",
    SyncKind.SYNC_REQUEST: "SYNC_REQUEST",
}


class WireMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: WireType
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int
    origin_id: str = Field(..., alias="originId")


class SyncMessage(BaseModel):
    """A cart mutation as seen by other contexts. Never persisted."""

    model_config = ConfigDict(frozen=True)

    kind: SyncKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int
    origin_id: str

    def to_wire(self) -> Dict[str, Any]:
        return WireMessage(
            type=_WIRE_TYPES[self.kind],
            data={"action": self.kind.value, **self.payload},
            timestamp=self.timestamp,
            origin_id=self.origin_id,
        ).model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any]) -> "SyncMessage":
        wire = WireMessage.model_validate(raw)
        data = dict(wire.data)
        action = data.pop("action", None)
        if action is not None:
            kind = SyncKind(action)
        elif wire.type == "CART_CLEARED":
            kind = SyncKind.CLEARED
        elif wire.type == "SYNC_REQUEST":
            kind = SyncKind.SYNC_REQUEST
        else:
            kind = SyncKind.UPDATED
        return cls(kind=kind, payload=data, timestamp=wire.timestamp, origin_id=wire.origin_id)


# ---------------------------------------------------------------- validation


class IssueType(str, Enum):
    NOT_FOUND = "not_found"
    PRODUCT_INACTIVE = "product_inactive"
    INSUFFICIENT_STOCK = "insufficient_stock"
    PRICE_CHANGED = "price_changed"


class ValidationIssue(BaseModel):
    product_id: str
    type: IssueType
    message: str
    available_quantity: int | None = None
    old_price: Money | None = None
    new_price: Money | None = None


class ValidationResult(BaseModel):
    issues: List[ValidationIssue] = Field(default_factory=list)

    @computed_field
    @property
    def has_issues(self) -> bool:
        return len(self.issues) > 0


# ---------------------------------------------------------------- api


class ItemIn(BaseModel):
    """Schema for adding a product to the cart."""

    product: ProductRef
    quantity: int = Field(1, description="How many units to add (> 0)")


class QuantityIn(BaseModel):
    """Schema for setting an item quantity. 0 or less removes the item."""

    quantity: int


class CartOut(BaseModel):
    items: List[CartItem]
    session_id: str
    last_updated: int
    item_count: int
    total_amount: Money

    @classmethod
    def from_snapshot(cls, snapshot: CartSnapshot) -> "CartOut":
        return cls(
            items=snapshot.items,
            session_id=snapshot.session_id,
            last_updated=snapshot.last_updated,
            item_count=snapshot.totals.item_count,
            total_amount=snapshot.totals.total_amount,
        )


class CatalogOut(BaseModel):
    items: List[CatalogProduct]
    stale: bool = False
    degraded: bool = False
    error: str | None = None


class BrandsOut(BaseModel):
    items: List[BrandCount]
    stale: bool = False
    degraded: bool = False
    error: str | None = None


class CategoriesOut(BaseModel):
    stats: CategoryStats
    stale: bool = False
    degraded: bool = False
    error: str | None = None


class CheckoutOut(BaseModel):
    validation: ValidationResult
    cart: CartOut
    degraded: bool = False
