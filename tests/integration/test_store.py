"""
Integration tests for the WoningStore orchestrator.

Tests cover:
- Start and stop lifecycle
- Archive check on start
- Outbox flush on stop
- Maintenance cycle
- Logging setup
"""

import json
import logging
from datetime import date

import json_log_formatter
import pytest

from localfirst.woning_store.config import (
    ArchiverConfig,
    ObservabilityConfig,
    RemoteBackend,
    ReplicatorConfig,
    StoreConfig,
)
from localfirst.woning_store.kvs import InMemoryPersistentStore
from localfirst.woning_store.main import WoningStore, run_maintenance, setup_logging
from localfirst.woning_store.replicate import InMemoryDocumentStore

AGENCY = "agency-1"


class TestLifecycle:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_start_stop(self, store):
        await store.start(today=date(2024, 4, 15))
        assert store.is_running
        assert store.replicator.stats()["running"]

        await store.stop()
        assert not store.is_running
        assert not store.replicator.stats()["running"]

    @pytest.mark.asyncio
    async def test_start_twice_is_harmless(self, store):
        await store.start(today=date(2024, 4, 15))
        await store.start(today=date(2024, 4, 15))

        assert store.is_running
        await store.stop()

    @pytest.mark.asyncio
    async def test_stop_flushes_outbox(self, store, remote):
        await store.start(today=date(2024, 4, 15))
        owner = store.repository.add_owner({"name": "Kouassi"})

        await store.stop()

        assert store.replicator.pending == 0
        assert remote.get_document(AGENCY, "owners", owner["id"])["name"] == "Kouassi"

    @pytest.mark.asyncio
    async def test_start_runs_archive_check(self, store, repo, yard):
        tenant = repo.add_tenant(
            {
                "name": "Yao",
                "property_id": yard["id"],
                "unit_number": 1,
                "rent_amount": 25000,
                "entry_date": "2024-01-15",
            }
        )
        repo.add_payment({"tenant_id": tenant["id"], "month": 3, "year": 2024, "amount_paid": 25000})

        await store.start(today=date(2024, 4, 1))
        await store.stop()

        archives = store.archiver.get_archived_payments()
        assert [a["month_key"] for a in archives] == ["2024-03"]

    @pytest.mark.asyncio
    async def test_archive_check_disabled(self, backend, remote):
        store = WoningStore(
            StoreConfig(archiver=ArchiverConfig(enabled=False)), backend=backend, remote=remote
        )
        store.switch_namespace(AGENCY)

        await store.start(today=date(2024, 4, 1))
        await store.stop()

        assert store.kvs.get("woning_last_archive_check") is None

    def test_archive_check_needs_namespace(self, store):
        store.logout()

        assert store.run_archive_check(date(2024, 4, 1)) is None

    def test_repository_usable_before_start(self, store):
        owner = store.repository.add_owner({"name": "Kouassi"})

        assert store.repository.get_owner(owner["id"]) is not None
        assert store.replicator.pending == 1

    def test_without_remote(self, backend):
        store = WoningStore(StoreConfig(), backend=backend)
        store.switch_namespace(AGENCY)

        store.repository.add_owner({"name": "Kouassi"})

        assert not store.replicator.enabled
        assert store.replicator.pending == 0


class TestMaintenance:
    """Tests for the maintenance cycle and stats."""

    @pytest.mark.asyncio
    async def test_run_maintenance(self):
        config = StoreConfig(replicator=ReplicatorConfig(backend=RemoteBackend.MEMORY))
        store = WoningStore(config, backend=InMemoryPersistentStore())

        stats = await run_maintenance(store, "agency-9")

        assert isinstance(store.remote, InMemoryDocumentStore)
        assert stats["storage"]["namespace"] == "agency-9"
        assert stats["replication"]["pending"] == 0
        assert stats["archives"]["payment_archives"] == 0
        assert not store.is_running
        json.dumps(stats, default=str)

    def test_stats_without_namespace(self, store):
        store.logout()

        assert store.stats()["archives"] is None


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        setup_logging(StoreConfig(observability=ObservabilityConfig(log_format="json", log_level="DEBUG")))

        root = logging.getLogger()
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert root.level == logging.DEBUG

    def test_text_format(self):
        setup_logging(StoreConfig(observability=ObservabilityConfig(log_format="text")))

        root = logging.getLogger()
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING
