"""
Unit tests for the namespaced key-value store.

Tests cover:
- Namespace prefixing and sensitive envelopes
- Size governance (per-item ceiling, cycles, non-JSON values)
- Quota recovery: prune, retry once, memory fallback, rejection
- Availability check and corrupt values
- Namespace clearing
"""

import json
from datetime import datetime, timezone

import pytest

from localfirst.woning_store.context import MemoryFallback, StorageContext
from localfirst.woning_store.kvs import InMemoryPersistentStore, KeyValueStore, WriteResult
from localfirst.woning_store.schema import PRUNABLE_ARCHIVE_KEYS, EntityKind

FIXED_NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
ARCHIVE_KEY = EntityKind.ARCHIVED_PAYMENTS.storage_key


class TestKeyValueStore:
    """Tests for KeyValueStore."""

    @pytest.fixture
    def backend(self):
        return InMemoryPersistentStore(capacity_bytes=64 * 1024)

    @pytest.fixture
    def context(self):
        return StorageContext(namespace="a1")

    @pytest.fixture
    def kvs(self, backend, context):
        return KeyValueStore(
            backend,
            context,
            max_item_bytes=4096,
            prunable_keys=PRUNABLE_ARCHIVE_KEYS,
            clock=lambda: FIXED_NOW,
        )

    def test_keys_are_prefixed_with_namespace(self, kvs, backend):
        """Values land under agency_{id}_."""
        assert kvs.set("crm_owners", [{"id": "o1"}]) is WriteResult.PERSISTED

        assert "agency_a1_crm_owners" in backend.raw_items()
        assert kvs.get("crm_owners", []) == [{"id": "o1"}]

    def test_check_key_is_cleaned_up(self, kvs, backend):
        """The availability check leaves nothing behind."""
        assert kvs.available
        assert KeyValueStore.CHECK_KEY not in backend.raw_items()

    def test_missing_key_returns_default(self, kvs):
        assert kvs.get("nothing", "fallback") == "fallback"

    def test_sensitive_values_are_wrapped(self, kvs, backend):
        """Sensitive writes are stored in an envelope and unwrapped on read."""
        kvs.set("crm_tenants", [{"id": "t1"}], sensitive=True)

        raw = json.loads(backend.raw_items()["agency_a1_crm_tenants"])
        assert raw["__sensitive__"] is True
        assert raw["version"] == 1
        assert isinstance(raw["timestamp"], int)
        assert raw["data"] == [{"id": "t1"}]

        assert kvs.get("crm_tenants") == [{"id": "t1"}]

    def test_plain_values_are_not_wrapped(self, kvs, backend):
        kvs.set("crm_properties", [{"id": "p1"}])

        raw = json.loads(backend.raw_items()["agency_a1_crm_properties"])
        assert raw == [{"id": "p1"}]

    def test_oversized_value_rejected_and_previous_kept(self, kvs):
        """A value above the per-item ceiling is rejected without a write."""
        kvs.set("notes", "small")

        result = kvs.set("notes", "x" * 5000)

        assert result is WriteResult.REJECTED
        assert not result.ok
        assert kvs.get("notes") == "small"
        assert kvs.rejected_writes == 1

    def test_circular_reference_rejected(self, kvs, backend):
        cyclic = []
        cyclic.append(cyclic)

        assert kvs.set("cyclic", cyclic) is WriteResult.REJECTED
        assert "agency_a1_cyclic" not in backend.raw_items()

    def test_non_json_value_rejected(self, kvs):
        assert kvs.set("odd", {"handler": object()}) is WriteResult.REJECTED

    def test_rejection_is_logged_with_prefixed_key(self, kvs, caplog):
        with caplog.at_level("WARNING", logger="localfirst.woning_store.kvs.store"):
            kvs.set("odd", {"handler": object()})

        rejected = [r for r in caplog.records if r.getMessage() == "Write rejected"]
        assert [r.key for r in rejected] == ["agency_a1_odd"]

    def test_quota_prunes_old_archives_then_retries(self, kvs, backend):
        """On quota errors old archives are pruned and the write retried once."""
        kvs.set(
            ARCHIVE_KEY,
            [
                {"id": "old", "archived_at": "2023-01-01T00:00:00+00:00"},
                {"id": "recent", "archived_at": "2026-09-01T00:00:00+00:00"},
            ],
            sensitive=True,
        )
        backend.fail_next_writes(1)

        result = kvs.set("crm_owners", [{"id": "o1"}])

        assert result is WriteResult.PERSISTED
        assert kvs.get("crm_owners") == [{"id": "o1"}]
        assert [a["id"] for a in kvs.get(ARCHIVE_KEY)] == ["recent"]
        # Pruning keeps the envelope
        raw = json.loads(backend.raw_items()["agency_a1_" + ARCHIVE_KEY])
        assert raw["__sensitive__"] is True

    def test_quota_retry_failure_uses_memory_fallback(self, kvs, backend, context):
        """If the retry also fails the value is held in memory only."""
        before = backend.write_attempts
        backend.fail_next_writes(2)

        result = kvs.set("crm_owners", [{"id": "o1"}])

        assert result is WriteResult.MEMORY_ONLY
        assert result.ok
        # First attempt plus exactly one retry
        assert backend.write_attempts - before == 2
        assert "agency_a1_crm_owners" not in backend.raw_items()
        assert "agency_a1_crm_owners" in context.fallback
        assert kvs.get("crm_owners") == [{"id": "o1"}]

    def test_full_fallback_rejects_write(self, backend):
        """When the fallback has no room the value is lost."""
        context = StorageContext(namespace="a1", fallback=MemoryFallback(budget_bytes=10))
        kvs = KeyValueStore(backend, context)
        backend.fail_next_writes(2)

        result = kvs.set("crm_owners", [{"id": "o1"}])

        assert result is WriteResult.REJECTED
        assert kvs.get("crm_owners") is None

    def test_persistent_write_evicts_fallback_copy(self, kvs, backend, context):
        backend.fail_next_writes(2)
        kvs.set("crm_owners", [{"id": "o1"}])
        assert "agency_a1_crm_owners" in context.fallback

        assert kvs.set("crm_owners", [{"id": "o2"}]) is WriteResult.PERSISTED

        assert "agency_a1_crm_owners" not in context.fallback
        assert kvs.get("crm_owners") == [{"id": "o2"}]

    def test_unavailable_store_uses_memory_only(self, context):
        """A store failing the availability check is never used again."""
        backend = InMemoryPersistentStore(available=False)
        kvs = KeyValueStore(backend, context)

        assert not kvs.available
        assert kvs.set("crm_owners", [{"id": "o1"}]) is WriteResult.MEMORY_ONLY
        assert kvs.get("crm_owners") == [{"id": "o1"}]
        assert kvs.stats()["using_fallback"] is True

    def test_corrupt_value_returns_default(self, kvs, backend):
        backend.set_item("agency_a1_crm_owners", "{not json")

        assert kvs.get("crm_owners", []) == []

    def test_remove(self, kvs):
        kvs.set("key", 1)
        kvs.remove("key")
        assert kvs.get("key") is None

    def test_clear_namespace_only_touches_active_namespace(self, kvs, backend, context):
        kvs.set("crm_owners", [{"id": "o1"}])
        backend.set_item("agency_b2_crm_owners", "[]")

        removed = kvs.clear_namespace()

        assert removed == 1
        assert "agency_b2_crm_owners" in backend.raw_items()
        assert kvs.get("crm_owners") is None

    def test_clear_namespace_spares_namespace_sharing_its_prefix(self, backend):
        context = StorageContext(namespace="a_b")
        kvs = KeyValueStore(backend, context)
        kvs.set("crm_owners", [{"id": "b-owner"}])
        context.switch_namespace("a")
        kvs.set("crm_owners", [{"id": "a-owner"}])

        assert kvs.stats()["used_bytes"] == len("agency_a_crm_owners") + len('[{"id":"a-owner"}]')
        assert kvs.clear_namespace() == 1

        context.switch_namespace("a_b")
        assert kvs.get("crm_owners") == [{"id": "b-owner"}]

    def test_clear_namespace_without_namespace_is_noop(self, backend):
        """Before login nothing is cleared, not even unprefixed keys."""
        kvs = KeyValueStore(backend, StorageContext())
        kvs.set("crm_owners", [{"id": "o1"}])

        assert kvs.clear_namespace() == 0
        assert kvs.get("crm_owners") == [{"id": "o1"}]

    def test_stats(self, kvs):
        kvs.set("crm_owners", [])
        kvs.get("crm_owners")

        stats = kvs.stats()

        assert stats["namespace"] == "a1"
        assert stats["available"] is True
        assert stats["writes"] == 1
        assert stats["reads"] == 1
        assert stats["used_bytes"] > 0


class TestPruneArchives:
    """Tests for archive pruning."""

    def test_prune_uses_each_kind_timestamp(self):
        backend = InMemoryPersistentStore()
        kvs = KeyValueStore(
            backend,
            StorageContext(namespace="a1"),
            prunable_keys=PRUNABLE_ARCHIVE_KEYS,
            clock=lambda: FIXED_NOW,
        )
        kvs.set(
            EntityKind.ARCHIVED_REMITTANCES.storage_key,
            [
                {"id": "r-old", "validated_at": "2020-05-01T00:00:00+00:00"},
                {"id": "r-new", "validated_at": "2026-01-01T00:00:00+00:00"},
                {"id": "r-undated"},
            ],
        )

        removed = kvs.prune_archives()

        assert removed == 1
        remaining = kvs.get(EntityKind.ARCHIVED_REMITTANCES.storage_key)
        assert [r["id"] for r in remaining] == ["r-new", "r-undated"]

    def test_prune_without_archives(self):
        kvs = KeyValueStore(InMemoryPersistentStore(), StorageContext(namespace="a1"))
        assert kvs.prune_archives() == 0
