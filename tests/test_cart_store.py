from decimal import Decimal

import pytest

from storefront.domain.errors import StockError, ValidationError
from storefront.domain.schemas import CatalogProduct, SyncKind
from storefront.services.cart_store import CartStore
from tests.helpers import catalog_entry, product


class TestAddItem:
    def test_accumulates_same_product(self, store):
        store.add_item(product("A", "10"), 2)
        snapshot = store.add_item(product("A", "10"), 3)

        assert len(snapshot.items) == 1
        assert snapshot.items[0].quantity == 5
        assert snapshot.totals.total_amount == Decimal("50")
        assert snapshot.totals.item_count == 5

    def test_totals_follow_items(self, store):
        store.add_item(product("A", "10.50"), 2)
        store.add_item(product("B", "3.25"), 4)

        assert store.item_count == 6
        assert store.total_amount == Decimal("34.00")
        snapshot = store.snapshot()
        assert snapshot.totals.total_amount == sum(i.price * i.quantity for i in snapshot.items)

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_rejects_non_positive_quantity(self, store, quantity):
        with pytest.raises(ValidationError):
            store.add_item(product("A"), quantity)
        assert store.is_empty()
        assert store.last_updated == 0

    @pytest.mark.parametrize("quantity", [1.5, "2", True])
    def test_rejects_fractional_and_non_numeric_quantity(self, store, quantity):
        store.add_item(product("A"), 1)

        with pytest.raises(ValidationError):
            store.add_item(product("A"), quantity)
        with pytest.raises(ValidationError):
            store.add_item(product("B"), quantity)
        assert store.get_item("A").quantity == 1
        assert store.get_item("B") is None

    def test_rejects_invalid_product(self, store):
        with pytest.raises(ValidationError):
            store.add_item({"id": "A"}, 1)
        assert store.is_empty()

    def test_accepts_catalog_product(self, store):
        entry = CatalogProduct.model_validate(catalog_entry("7", price=4.5, available=3))
        store.add_item(entry, 2)

        item = store.get_item("7")
        assert item.quantity == 2
        assert item.display.brand == "Acme"

    def test_keeps_first_price_on_accumulate(self, store):
        store.add_item(product("A", "10"), 1)
        store.add_item(product("A", "12"), 1)

        assert store.get_item("A").price == Decimal("10")

    def test_stock_ceiling_clamps_then_raises(self, store):
        store.add_item(product("A", "10", available=4), 3)

        with pytest.raises(StockError) as exc:
            store.add_item(product("A", "10", available=4), 3)

        assert exc.value.available == 4
        assert exc.value.requested == 6
        assert store.get_item("A").quantity == 4

    def test_stock_ceiling_reached_changes_nothing(self, store):
        store.add_item(product("A", "10", available=2), 2)
        before = store.last_updated

        with pytest.raises(StockError):
            store.add_item(product("A", "10", available=2), 1)

        assert store.get_item("A").quantity == 2
        assert store.last_updated == before


class TestOtherCommands:
    def test_remove_absent_is_noop(self, store):
        store.add_item(product("A"), 1)
        before = store.last_updated

        snapshot = store.remove_item("missing")

        assert store.last_updated == before
        assert [i.id for i in snapshot.items] == ["A"]

    def test_update_quantity_to_zero_removes(self, store):
        store.add_item(product("A"), 2)
        store.update_quantity("A", 0)

        assert store.get_item("A") is None
        assert store.is_empty()

    def test_update_quantity_sets_exact_value(self, store):
        store.add_item(product("A", "2"), 2)
        snapshot = store.update_quantity("A", 7)

        assert snapshot.items[0].quantity == 7
        assert snapshot.totals.total_amount == Decimal("14")

    def test_update_quantity_rejects_fractions(self, store):
        store.add_item(product("A"), 2)

        with pytest.raises(ValidationError):
            store.update_quantity("A", 2.5)
        assert store.get_item("A").quantity == 2

    def test_update_unknown_item_is_noop(self, store):
        before = store.last_updated
        store.update_quantity("nope", 3)
        assert store.last_updated == before

    def test_clear_rotates_session(self, store):
        store.add_item(product("A"), 1)
        old_session = store.session_id

        snapshot = store.clear_cart()

        assert snapshot.items == []
        assert snapshot.session_id != old_session
        assert snapshot.session_id.startswith("cart_")

    def test_reprice(self, store):
        store.add_item(product("A", "10"), 2)
        store.reprice("A", Decimal("12"))

        assert store.total_amount == Decimal("24")


class TestCommitAndNotify:
    def test_last_updated_strictly_increases(self, store, clock):
        store.add_item(product("A"), 1)
        first = store.last_updated
        # same millisecond
        store.add_item(product("B"), 1)

        assert store.last_updated == first + 1
        clock.advance(1000)
        store.add_item(product("C"), 1)
        assert store.last_updated == clock.now

    def test_listeners_get_typed_messages(self, store):
        seen = []
        unsubscribe = store.subscribe(seen.append)

        store.add_item(product("A"), 2)
        store.update_quantity("A", 3)
        store.remove_item("A")
        store.clear_cart()
        unsubscribe()
        store.add_item(product("B"), 1)

        assert [m.kind for m in seen] == [
            SyncKind.ADDED,
            SyncKind.UPDATED,
            SyncKind.REMOVED,
            SyncKind.CLEARED,
        ]
        assert all(m.origin_id == "ctx-a" for m in seen)

    def test_failing_listener_does_not_break_commit(self, store):
        def broken(message):
            raise RuntimeError("boom")

        store.subscribe(broken)
        store.add_item(product("A"), 1)

        assert store.get_item("A").quantity == 1

    def test_state_is_persisted(self, store, repo):
        store.add_item(product("A", "10"), 2)

        loaded = repo.load()
        assert loaded.items == store.snapshot().items
        assert loaded.last_updated == store.last_updated

    def test_hydrate_restores_previous_cart(self, store, repo, clock):
        store.add_item(product("A", "10"), 2)

        other = CartStore(repo, clock=clock, instance_id="ctx-b")
        assert other.hydrate() is True
        assert other.session_id == store.session_id
        assert other.item_count == 2

    def test_disposed_store_refuses_commands(self, store):
        store.dispose()
        with pytest.raises(RuntimeError):
            store.add_item(product("A"), 1)
