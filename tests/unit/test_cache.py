"""
Unit tests for the read-through cache.

Tests cover:
- Miss, hit and TTL expiry
- Deep copies on read
- Priming and invalidation
- Namespace isolation
"""

import pytest

from localfirst.woning_store.cache import ReadThroughCache
from localfirst.woning_store.context import StorageContext
from localfirst.woning_store.kvs import InMemoryPersistentStore, KeyValueStore
from localfirst.woning_store.schema import EntityKind


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestReadThroughCache:
    """Tests for ReadThroughCache."""

    @pytest.fixture
    def context(self):
        return StorageContext(namespace="a1")

    @pytest.fixture
    def kvs(self, context):
        return KeyValueStore(InMemoryPersistentStore(), context)

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, kvs, context, clock):
        return ReadThroughCache(kvs, context, ttl_seconds=30, clock=clock)

    def test_miss_reads_through_then_hits(self, cache, kvs):
        kvs.set(EntityKind.OWNER.storage_key, [{"id": "o1"}])
        reads = kvs.reads

        assert cache.get_cached(EntityKind.OWNER) == [{"id": "o1"}]
        assert cache.get_cached(EntityKind.OWNER) == [{"id": "o1"}]

        assert kvs.reads == reads + 1
        assert cache.misses == 1
        assert cache.hits == 1

    def test_empty_collection(self, cache):
        assert cache.get_cached(EntityKind.TENANT) == []

    def test_returns_deep_copies(self, cache, kvs):
        """Mutating a returned list never changes cached state."""
        kvs.set(EntityKind.OWNER.storage_key, [{"id": "o1", "name": "Ama"}])

        first = cache.get_cached(EntityKind.OWNER)
        first[0]["name"] = "changed"
        first.append({"id": "o2"})

        assert cache.get_cached(EntityKind.OWNER) == [{"id": "o1", "name": "Ama"}]

    def test_entry_expires_after_ttl(self, cache, kvs, clock):
        kvs.set(EntityKind.OWNER.storage_key, [{"id": "o1"}])
        cache.get_cached(EntityKind.OWNER)

        # Another writer changes the store behind the cache
        kvs.set(EntityKind.OWNER.storage_key, [{"id": "o1"}, {"id": "o2"}])
        clock.now += 29
        assert len(cache.get_cached(EntityKind.OWNER)) == 1

        clock.now += 1
        assert len(cache.get_cached(EntityKind.OWNER)) == 2

    def test_prime_serves_without_store_read(self, cache, kvs):
        reads = kvs.reads

        cache.prime(EntityKind.PAYMENT, [{"id": "pay1"}])

        assert cache.get_cached(EntityKind.PAYMENT) == [{"id": "pay1"}]
        assert kvs.reads == reads

    def test_prime_copies_input(self, cache):
        items = [{"id": "pay1"}]
        cache.prime(EntityKind.PAYMENT, items)
        items[0]["id"] = "mutated"

        assert cache.get_cached(EntityKind.PAYMENT) == [{"id": "pay1"}]

    def test_invalidate_one_kind(self, cache):
        cache.prime(EntityKind.OWNER, [{"id": "o1"}])
        cache.prime(EntityKind.TENANT, [{"id": "t1"}])

        cache.invalidate(EntityKind.OWNER)

        assert cache.stats()["entries"] == 1

    def test_invalidate_all(self, cache):
        cache.prime(EntityKind.OWNER, [{"id": "o1"}])
        cache.prime(EntityKind.TENANT, [{"id": "t1"}])

        cache.invalidate()

        assert cache.stats()["entries"] == 0

    def test_namespace_switch_drops_entries(self, cache, kvs, context):
        """Lists cached for one agency are never served to another."""
        kvs.set(EntityKind.OWNER.storage_key, [{"id": "o1"}])
        assert cache.get_cached(EntityKind.OWNER) == [{"id": "o1"}]

        context.switch_namespace("b2")

        assert cache.get_cached(EntityKind.OWNER) == []
