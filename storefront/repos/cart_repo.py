# storefront/repos/cart_repo.py
import json
from decimal import Decimal
from typing import Any, Callable, Dict

from pydantic import ValidationError as PydanticValidationError

from storefront.domain.errors import SchemaError
from storefront.domain.schemas import CartRecord, CartSnapshot
from storefront.repos.storage import KeyValueStorage, save_with_eviction
from storefront.utils.logging import get_logger
from storefront.utils.settings import CART_SCHEMA_VERSION, CART_STORAGE_KEY

logger = get_logger(__name__)


def _v1_to_v2(data: Dict[str, Any]) -> Dict[str, Any]:
    # v1 stored bare {id, quantity, price} items and no totals
    last_updated = int(data.get("lastUpdated") or 0)
    items = []
    for item in data.get("items", []):
        items.append(
            {
                "name": "",
                "image": "",
                "brand": "",
                "category": "",
                "unit": "",
                "addedAt": last_updated,
                **item,
            }
        )
    return {
        **data,
        "items": items,
        "totalItems": sum(int(i["quantity"]) for i in items),
        "totalAmount": sum((Decimal(str(i["price"])) * int(i["quantity"]) for i in items), Decimal("0")),
        "lastUpdated": last_updated,
        "schemaVersion": 2,
    }


def _schema_version(data: Dict[str, Any]) -> int:
    # records written before versioning carry no field at all
    version = data.get("schemaVersion", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise SchemaError(f"Cart record has an invalid schema version: {version!r}")
    return version


MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    1: _v1_to_v2,
}


class CartRepo:
    """
    Durable copy of the cart: one JSON record under a single key.
    Only the minimal subset is stored (items, session, totals, lastUpdated, version).
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str = CART_STORAGE_KEY,
        schema_version: int = CART_SCHEMA_VERSION,
    ):
        self.storage = storage
        self.key = key
        self.schema_version = schema_version

    def load(self) -> CartSnapshot | None:
        raw = self.storage.get(self.key)
        if raw is None:
            return None
        try:
            return self.parse(raw)
        except SchemaError as e:
            logger.warning(f"Discarding unreadable cart record: {e}")
            return None

    def save(self, snapshot: CartSnapshot) -> bool:
        record = CartRecord.from_snapshot(snapshot, self.schema_version)
        saved = save_with_eviction(self.storage, self.key, json.dumps(record.to_json()))
        if not saved:
            logger.warning(
                f"Cart {snapshot.session_id} is memory-only until storage frees up"
            )
        return saved

    def parse(self, raw: str) -> CartSnapshot:
        """Decode a stored record, migrating older schema versions."""
        try:
            data = json.loads(raw, parse_float=Decimal)
        except ValueError as e:
            raise SchemaError(f"Cart record is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise SchemaError("Cart record is not an object")

        version = _schema_version(data)
        if version > self.schema_version:
            raise SchemaError(
                f"Cart record version {version} is newer than {self.schema_version}"
            )

        while version < self.schema_version:
            migrate = MIGRATIONS.get(version)
            if migrate is None:
                raise SchemaError(f"No migration from cart schema version {version}")
            logger.info(f"Migrating cart record from version {version}")
            try:
                data = migrate(data)
            except (KeyError, TypeError, ValueError, ArithmeticError) as e:
                raise SchemaError(f"Cart record v{version} could not be migrated: {e}") from e
            version = _schema_version(data)

        try:
            return CartRecord.model_validate(data).to_snapshot()
        except PydanticValidationError as e:
            raise SchemaError(f"Cart record is malformed: {e}") from e
