import json
from decimal import Decimal

import pytest

from storefront.domain.errors import SchemaError
from storefront.repos.cart_repo import CartRepo
from storefront.repos.storage import MemoryStorage, SharedMemoryStore, save_with_eviction
from storefront.services.cart_store import CartStore
from tests.helpers import product


def cache_record(ts, size=10):
    return json.dumps({"data": "x" * size, "timestamp": ts, "ttl": 1000, "version": "1.0.0"})


class TestCartRecord:
    def test_round_trip_keeps_items_and_totals(self, store, repo):
        store.add_item(product("A", "19.99", brand="Acme"), 3)

        raw = json.loads(repo.storage.get(repo.key))
        assert raw["schemaVersion"] == 2
        assert raw["totalItems"] == 3
        assert raw["items"][0]["brand"] == "Acme"

        loaded = repo.load()
        assert loaded.totals.total_amount == Decimal("59.97")
        assert loaded.session_id == store.session_id

    def test_missing_record(self, repo):
        assert repo.load() is None

    def test_corrupt_record_is_discarded(self, storage, repo):
        storage.set(repo.key, "{not json")
        assert repo.load() is None

    def test_newer_version_is_rejected(self, repo):
        raw = json.dumps({"items": [], "sessionId": "s", "schemaVersion": 99})
        with pytest.raises(SchemaError):
            repo.parse(raw)

    @pytest.mark.parametrize("version", ["two", None, 2.5, True])
    def test_unusable_schema_version_is_discarded(self, storage, repo, clock, version):
        storage.set(repo.key, json.dumps({"items": [], "sessionId": "s", "schemaVersion": version}))

        assert repo.load() is None
        assert CartStore(repo, clock=clock).hydrate() is False

    def test_malformed_item_is_schema_error(self, repo):
        raw = json.dumps(
            {"items": [{"id": "A", "quantity": 0, "price": 1}], "sessionId": "s", "schemaVersion": 2}
        )
        with pytest.raises(SchemaError):
            repo.parse(raw)


class TestMigration:
    def test_v1_record_is_upgraded(self, repo):
        v1 = {
            "items": [{"id": "A", "quantity": 2, "price": 5.5}],
            "sessionId": "cart_1_abc",
            "lastUpdated": 1234,
        }

        snapshot = repo.parse(json.dumps(v1))

        assert snapshot.session_id == "cart_1_abc"
        assert snapshot.last_updated == 1234
        assert snapshot.items[0].added_at == 1234
        assert snapshot.items[0].display.name == ""
        assert snapshot.totals.total_amount == Decimal("11.0")

    def test_v1_without_quantity_fails_cleanly(self, repo):
        v1 = {"items": [{"id": "A", "price": 1}], "sessionId": "s"}
        with pytest.raises(SchemaError):
            repo.parse(json.dumps(v1))


class TestQuota:
    def test_eviction_frees_room_for_cart(self):
        shared = SharedMemoryStore(quota_bytes=520)
        storage = MemoryStorage(shared)
        for i in range(4):
            storage.set(f"cache_products_{i}", cache_record(ts=i, size=40))

        big = "y" * 80
        assert save_with_eviction(storage, "cart-storage", big) is True

        assert storage.get("cart-storage") == big
        # oldest quarter (one of four) went first
        assert "cache_products_0" not in storage.keys()
        assert "cache_products_3" in storage.keys()

    def test_cart_stays_in_memory_when_store_is_full(self, clock):
        shared = SharedMemoryStore(quota_bytes=50)
        store = CartStore(CartRepo(MemoryStorage(shared)), clock=clock)

        snapshot = store.add_item(product("A", "10"), 1)

        assert snapshot.items[0].quantity == 1
        assert store.item_count == 1
        assert shared.data == {}
