"""Shared fixtures: a controllable clock and in-process storage/bus."""

import pytest

from storefront.repos.cart_repo import CartRepo
from storefront.repos.storage import MemoryStorage, SharedMemoryStore
from storefront.services.cart_store import CartStore
from storefront.services.message_bus import BroadcastHub
from tests.helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def shared():
    return SharedMemoryStore()


@pytest.fixture
def hub():
    return BroadcastHub()


@pytest.fixture
def storage(shared):
    return MemoryStorage(shared)


@pytest.fixture
def repo(storage):
    return CartRepo(storage)


@pytest.fixture
def store(repo, clock):
    return CartStore(repo, clock=clock, instance_id="ctx-a")
