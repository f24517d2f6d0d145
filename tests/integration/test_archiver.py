"""
Integration tests for the archival scheduler.

Tests cover:
- Monthly check on the first day, once per day
- Re-archiving a month keeps one snapshot and its id
- Grouped payment totals
- Owner remittances and commission
- Archive search, export and statistics
- Replication of archive documents
"""

import json
from datetime import date, datetime, timezone

import pytest

from localfirst.woning_store.errors import NotFoundError, ValidationError
from localfirst.woning_store.schema import ARCHIVE_MARKER_KEY

AGENCY = "agency-1"


class FrozenClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestMonthlyArchive:
    """Tests for check_and_archive and archive_month."""

    @pytest.fixture
    def clock(self, store):
        clock = FrozenClock(datetime(2024, 4, 1, 8, 0, tzinfo=timezone.utc))
        store.archiver.clock = clock
        return clock

    @pytest.fixture
    def tenant(self, repo, yard):
        return repo.add_tenant(
            {
                "name": "Yao",
                "property_id": yard["id"],
                "unit_number": 1,
                "rent_amount": 100000,
                "entry_date": "2024-01-15",
            }
        )

    @pytest.fixture
    def march_payments(self, repo, tenant):
        return [
            repo.add_payment(
                {"tenant_id": tenant["id"], "month": 3, "year": 2024, "amount_paid": 100000, "note": "Loyer mars"}
            ),
            repo.add_payment({"tenant_id": tenant["id"], "month": 3, "year": 2024, "amount_paid": 50000}),
        ]

    def test_first_of_month_archives_previous_month(self, store, clock, march_payments):
        snapshot = store.archiver.check_and_archive(date(2024, 4, 1))

        assert snapshot["month_key"] == "2024-03"
        assert snapshot["month_label"] == "March 2024"
        assert snapshot["total_payments"] == 2
        assert snapshot["total_amount"] == 150000
        assert snapshot["id"].startswith("arch_")
        assert all(r["archived_at"] == snapshot["archived_at"] for r in snapshot["records"])
        assert len(store.archiver.get_archived_payments()) == 1

    def test_second_run_same_day_is_noop(self, store, clock, march_payments):
        store.archiver.check_and_archive(date(2024, 4, 1))

        assert store.archiver.check_and_archive(date(2024, 4, 1)) is None
        assert len(store.archiver.get_archived_payments()) == 1

    def test_marker_is_written(self, store, clock, march_payments):
        store.archiver.check_and_archive(date(2024, 4, 1))

        marker = store.kvs.get(ARCHIVE_MARKER_KEY)
        assert marker == {"last_check": "2024-04-01", "last_archive_date": "2024-04-01"}

    def test_other_days_do_nothing(self, store, clock, march_payments):
        assert store.archiver.check_and_archive(date(2024, 4, 2)) is None
        assert store.archiver.get_archived_payments() == []

    def test_month_without_payments(self, store, clock):
        assert store.archiver.check_and_archive(date(2024, 4, 1)) is None
        assert store.kvs.get(ARCHIVE_MARKER_KEY)["last_archive_date"] == "2024-04-01"

    def test_rearchive_keeps_id(self, store, repo, clock, tenant, march_payments):
        first = store.archiver.archive_month("2024-03")
        repo.add_payment({"tenant_id": tenant["id"], "month": 3, "year": 2024, "amount_paid": 25000})

        clock.now = datetime(2024, 4, 2, 8, 0, tzinfo=timezone.utc)
        second = store.archiver.archive_month("2024-03")

        archives = store.archiver.get_archived_payments()
        assert len(archives) == 1
        assert second["id"] == first["id"]
        assert archives[0]["total_amount"] == 175000
        assert archives[0]["total_payments"] == 3

    def test_archives_sorted_newest_first(self, store, repo, clock, tenant, march_payments):
        repo.add_payment({"tenant_id": tenant["id"], "month": 4, "year": 2024, "amount_paid": 100000})
        store.archiver.check_and_archive(date(2024, 4, 1))

        clock.now = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)
        store.archiver.check_and_archive(date(2024, 5, 1))

        assert [a["month_key"] for a in store.archiver.get_archived_payments()] == ["2024-04", "2024-03"]

    def test_grouped_payments_counted_once(self, store, repo, clock, tenant):
        for _ in range(3):
            repo.add_payment(
                {
                    "tenant_id": tenant["id"],
                    "month": 3,
                    "year": 2024,
                    "amount_paid": 50000,
                    "group_id": "grp-1",
                    "group_total": 150000,
                }
            )

        snapshot = store.archiver.archive_month("2024-03")

        assert snapshot["total_payments"] == 3
        assert snapshot["total_amount"] == 150000

    @pytest.mark.asyncio
    async def test_snapshot_is_replicated(self, store, remote, clock, march_payments):
        snapshot = store.archiver.check_and_archive(date(2024, 4, 1))

        await store.replicator.drain()

        doc = remote.get_document(AGENCY, "archived_payments", snapshot["id"])
        assert doc["total_amount"] == 150000

    def test_search_and_stats(self, store, clock, march_payments):
        store.archiver.check_and_archive(date(2024, 4, 1))

        results = store.archiver.search_archives("LOYER")
        assert len(results) == 1
        assert results[0]["type"] == "payment"
        assert results[0]["archive"] == "March 2024"
        assert store.archiver.search_archives("") == []
        assert store.archiver.search_archives("loyer", scope="remittances") == []

        stats = store.archiver.archive_stats()
        assert stats["payment_archives"] == 1
        assert stats["total_archived_payments"] == 2
        assert stats["total_archived_amount"] == 150000

    def test_invalid_scope(self, store):
        with pytest.raises(ValueError):
            store.archiver.search_archives("x", scope="owners")
        with pytest.raises(ValueError):
            store.archiver.export_archives(scope="owners")


class TestRemittances:
    """Tests for owner remittances."""

    @pytest.fixture
    def payments(self, repo, house):
        tenant = repo.add_tenant(
            {"name": "Koffi", "property_id": house["id"], "rent_amount": 40000, "entry_date": "2024-01-15"}
        )
        return [
            repo.add_payment({"tenant_id": tenant["id"], "month": m, "year": 2024, "amount_paid": 40000})
            for m in (1, 2)
        ]

    def test_remittance_withholds_commission(self, store, owner, payments):
        remittance = store.archiver.archive_remittance(
            owner["id"], "2024-Q1", [p["id"] for p in payments], 80000
        )

        assert remittance["commission"] == 8000
        assert remittance["net_amount"] == 72000
        assert remittance["owner_name"] == "Ama Kouassi"
        assert remittance["status"] == "validated"
        assert remittance["total_payments"] == 2
        assert len(store.archiver.get_archived_remittances()) == 1

    def test_unknown_owner(self, store, payments):
        with pytest.raises(NotFoundError):
            store.archiver.archive_remittance("missing", "2024-Q1", [], 0)

    def test_unknown_payment(self, store, owner, payments):
        with pytest.raises(ValidationError):
            store.archiver.archive_remittance(owner["id"], "2024-Q1", ["missing"], 1000)

        assert store.archiver.get_archived_remittances() == []

    def test_negative_amount(self, store, owner):
        with pytest.raises(ValidationError):
            store.archiver.archive_remittance(owner["id"], "2024-Q1", [], -1)

    def test_export(self, store, owner, payments):
        store.archiver.archive_remittance(owner["id"], "2024-Q1", [payments[0]["id"]], 40000)

        exported = json.loads(store.archiver.export_archives())
        assert exported["payments"] == []
        assert exported["remittances"][0]["period"] == "2024-Q1"

        only_remittances = json.loads(store.archiver.export_archives(scope="remittances"))
        assert "payments" not in only_remittances

    def test_search_finds_remittance(self, store, owner, payments):
        store.archiver.archive_remittance(owner["id"], "2024-Q1", [payments[0]["id"]], 40000)

        results = store.archiver.search_archives("ama kouassi")

        assert [r["type"] for r in results] == ["remittance"]
        assert results[0]["archive"] == "2024-Q1"
