"""
Shared fixtures for integration tests.

Every test gets a fully wired WoningStore over an in-memory persistent
store and an in-memory remote, logged in as agency-1.
"""

import pytest

from localfirst.woning_store.config import StoreConfig
from localfirst.woning_store.kvs import InMemoryPersistentStore
from localfirst.woning_store.main import WoningStore
from localfirst.woning_store.replicate import InMemoryDocumentStore

AGENCY = "agency-1"


@pytest.fixture
def backend():
    return InMemoryPersistentStore(capacity_bytes=5 * 1024 * 1024)


@pytest.fixture
def remote():
    return InMemoryDocumentStore()


@pytest.fixture
def store(backend, remote):
    woning = WoningStore(StoreConfig(), backend=backend, remote=remote)
    woning.switch_namespace(AGENCY)
    return woning


@pytest.fixture
def repo(store):
    return store.repository


@pytest.fixture
def owner(repo):
    return repo.add_owner({"name": "Kouassi", "first_name": "Ama", "phone": "0700000000"})


@pytest.fixture
def yard(repo, owner):
    return repo.add_property(
        {
            "owner_id": owner["id"],
            "kind": "shared_yard",
            "rent_amount": 25000,
            "unit_count": 3,
            "city": "Abidjan",
        }
    )


@pytest.fixture
def house(repo, owner):
    return repo.add_property({"owner_id": owner["id"], "kind": "single_unit", "rent_amount": 40000})

