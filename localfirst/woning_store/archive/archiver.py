"""
Monthly payment archival for Woning Store.

On the first day of each month the scheduler rolls the previous calendar
month's payments into an Archive Snapshot. It also records owner
remittances (rent handed over to an owner minus the agency commission).

Snapshot format:
    {
        "id": "arch_...",
        "month_key": "2024-03",
        "month_label": "March 2024",
        "archived_at": "2024-04-01T08:00:00+00:00",
        "records": [...payments, each with archived_at...],
        "total_payments": 12,
        "total_amount": 150000.0
    }

Invariants:
    - At most one snapshot per month key; re-archiving a month overwrites
      it and keeps its id
    - Grouped payments count once per group_id in total_amount
    - Snapshots and remittances are kept sorted newest first
    - The "last run" marker makes the monthly check run once per day

How to change safely:
    - Archive records are pruned by archived_at / validated_at when storage
      runs out; keep those fields ISO-8601
    - Never mutate records inside an existing snapshot except by
      re-archiving the whole month
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..errors import NotFoundError, ValidationError
from ..kvs.store import KeyValueStore
from ..replicate.base import ReplicationAction
from ..replicate.replicator import Replicator
from ..repository.ids import generate_id
from ..repository.repository import EntityRepository, payment_month_key
from ..schema.kinds import ARCHIVE_MARKER_KEY, EntityKind
from ..schema.models import MONTH_NAMES

logger = logging.getLogger(__name__)

ARCHIVE_SCOPES = ("all", "payments", "remittances")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def previous_month_key(today: date) -> str:
    """Key of the calendar month before today's."""
    if today.month == 1:
        return month_key(today.year - 1, 12)
    return month_key(today.year, today.month - 1)


def month_label(key: str) -> str:
    year, month = key.split("-")
    return f"{MONTH_NAMES[int(month) - 1]} {year}"


def group_payments_by_month(payments: Iterable[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for payment in payments:
        try:
            grouped[payment_month_key(payment)].append(payment)
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping payment without a valid month", extra={"payment_id": payment.get("id")})
    return dict(grouped)


def compute_total(payments: Sequence[Dict[str, Any]]) -> float:
    """Sum of amounts, counting each payment group once.

    A grouped payment contributes its group_total (or, without one, its own
    amount) the first time its group_id is seen.
    """
    total = 0.0
    seen_groups = set()
    for payment in payments:
        group_id = payment.get("group_id")
        if group_id:
            if group_id in seen_groups:
                continue
            seen_groups.add(group_id)
            amount = payment.get("group_total")
            if amount is None:
                amount = payment.get("amount_paid")
        else:
            amount = payment.get("amount_paid")
        total += float(amount or 0)
    return total


def _matches(item: Any, term: str) -> bool:
    return term.lower() in json.dumps(item, ensure_ascii=False, default=str).lower()


class ArchivalScheduler:
    """Archives payments and remittances through the repository.

    Attributes:
        repository: Entity repository (reads payments, stores archive sets)
        replicator: Remote replicator for archive documents
        kvs: Key-value store holding the "last run" marker
        commission_rate: Agency share withheld from remittances

    Example:
        >>> scheduler = ArchivalScheduler(repository, replicator, kvs)
        >>> scheduler.check_and_archive(date(2024, 4, 1))
        {'id': 'arch_...', 'month_key': '2024-03', ...}
    """

    def __init__(
        self,
        repository: EntityRepository,
        replicator: Replicator,
        kvs: KeyValueStore,
        commission_rate: float = 0.10,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.replicator = replicator
        self.kvs = kvs
        self.commission_rate = commission_rate
        self.clock = clock
        self._archived_count = 0

    def check_and_archive(self, today: Optional[date] = None) -> Optional[Dict[str, Any]]:
        """Archive last month if today is the 1st and it has not run today.

        Returns:
            The snapshot written, or None
        """
        today = today or self.clock().date()
        marker = self.kvs.get(ARCHIVE_MARKER_KEY, None) or {}
        if today.day != 1 or marker.get("last_archive_date") == today.isoformat():
            return None

        snapshot = self.archive_month(previous_month_key(today))
        self.kvs.set(
            ARCHIVE_MARKER_KEY,
            {"last_check": today.isoformat(), "last_archive_date": today.isoformat()},
        )
        return snapshot

    def archive_month(self, key: str) -> Optional[Dict[str, Any]]:
        """Write (or rewrite) the snapshot for month key "YYYY-MM".

        Returns:
            The snapshot, or None when the month has no payments
        """
        payments = group_payments_by_month(self.repository.get_payments()).get(key, [])
        if not payments:
            logger.info("No payments to archive", extra={"month_key": key})
            return None

        archived_at = self.clock().isoformat()
        archives = self.repository.list(EntityKind.ARCHIVED_PAYMENTS)
        existing = next((i for i, a in enumerate(archives) if a.get("month_key") == key), None)

        snapshot = {
            "id": archives[existing]["id"] if existing is not None else generate_id("arch"),
            "month_key": key,
            "month_label": month_label(key),
            "archived_at": archived_at,
            "records": [{**p, "archived_at": archived_at} for p in payments],
            "total_payments": len(payments),
            "total_amount": compute_total(payments),
        }
        if existing is not None:
            archives[existing] = snapshot
        else:
            archives.append(snapshot)
        archives.sort(key=lambda a: a.get("archived_at") or "", reverse=True)

        self.repository.store_collection(EntityKind.ARCHIVED_PAYMENTS, archives)
        self._archived_count += 1
        logger.info(
            "Month archived",
            extra={
                "month_key": key,
                "total_payments": snapshot["total_payments"],
                "total_amount": snapshot["total_amount"],
                "replaced": existing is not None,
            },
        )
        action = ReplicationAction.UPDATE if existing is not None else ReplicationAction.ADD
        self.replicator.push(EntityKind.ARCHIVED_PAYMENTS, action, snapshot["id"], snapshot)
        return snapshot

    def archive_remittance(
        self,
        owner_id: str,
        period: str,
        payment_ids: Sequence[str],
        gross_amount: float,
    ) -> Dict[str, Any]:
        """Record a validated remittance to an owner.

        Raises:
            NotFoundError: If the owner does not exist
            ValidationError: If an amount or payment id is invalid
        """
        owner = self.repository.get_owner(owner_id)
        if owner is None:
            raise NotFoundError(f"Owner not found: {owner_id}", resource_type="owner", resource_id=owner_id)
        if gross_amount < 0:
            raise ValidationError.for_field("gross_amount", "cannot be negative", entity_kind="remittance")

        payments = {p["id"]: p for p in self.repository.get_payments()}
        missing = [pid for pid in payment_ids if pid not in payments]
        if missing:
            raise ValidationError.for_field(
                "payment_ids", f"unknown payments: {', '.join(missing)}", entity_kind="remittance"
            )

        validated_at = self.clock().isoformat()
        commission = round(gross_amount * self.commission_rate, 2)
        remittance = {
            "id": generate_id("arch"),
            "owner_id": owner_id,
            "owner_name": " ".join(filter(None, [owner.get("first_name"), owner.get("name")])),
            "period": period,
            "validated_at": validated_at,
            "gross_amount": gross_amount,
            "commission": commission,
            "net_amount": round(gross_amount - commission, 2),
            "records": [{**payments[pid], "archived_at": validated_at} for pid in payment_ids],
            "total_payments": len(payment_ids),
            "status": "validated",
        }

        remittances = self.repository.list(EntityKind.ARCHIVED_REMITTANCES)
        remittances.append(remittance)
        remittances.sort(key=lambda r: r.get("validated_at") or "", reverse=True)
        self.repository.store_collection(EntityKind.ARCHIVED_REMITTANCES, remittances)

        logger.info(
            "Remittance archived",
            extra={"owner_id": owner_id, "period": period, "net_amount": remittance["net_amount"]},
        )
        self.replicator.push(
            EntityKind.ARCHIVED_REMITTANCES, ReplicationAction.ADD, remittance["id"], remittance
        )
        return remittance

    def get_archived_payments(self) -> List[Dict[str, Any]]:
        return self.repository.list(EntityKind.ARCHIVED_PAYMENTS)

    def get_archived_remittances(self) -> List[Dict[str, Any]]:
        return self.repository.list(EntityKind.ARCHIVED_REMITTANCES)

    def archive_stats(self) -> Dict[str, Any]:
        payment_archives = self.get_archived_payments()
        remittances = self.get_archived_remittances()
        return {
            "payment_archives": len(payment_archives),
            "total_archived_payments": sum(a.get("total_payments", 0) for a in payment_archives),
            "total_archived_amount": sum(a.get("total_amount", 0) for a in payment_archives),
            "remittance_archives": len(remittances),
            "total_remittance_amount": sum(r.get("gross_amount", 0) for r in remittances),
            "last_archive_date": payment_archives[0].get("archived_at") if payment_archives else None,
            "archived_this_process": self._archived_count,
        }

    @staticmethod
    def _check_scope(scope: str) -> None:
        if scope not in ARCHIVE_SCOPES:
            raise ValueError(f"Invalid archive scope '{scope}'. Valid scopes: {list(ARCHIVE_SCOPES)}")

    def search_archives(self, term: str, scope: str = "all") -> List[Dict[str, Any]]:
        """Case-insensitive text search over archived records.

        Returns:
            Matches as {"type", "archive", "data"}
        """
        self._check_scope(scope)
        results: List[Dict[str, Any]] = []
        if not term:
            return results

        if scope in ("all", "payments"):
            for archive in self.get_archived_payments():
                for record in archive.get("records", []):
                    if _matches(record, term):
                        results.append({"type": "payment", "archive": archive.get("month_label"), "data": record})

        if scope in ("all", "remittances"):
            for remittance in self.get_archived_remittances():
                if _matches(remittance, term):
                    results.append({"type": "remittance", "archive": remittance.get("period"), "data": remittance})

        return results

    def export_archives(self, scope: str = "all") -> str:
        """Archives as an indented JSON document."""
        self._check_scope(scope)
        data: Dict[str, Any] = {}
        if scope in ("all", "payments"):
            data["payments"] = self.get_archived_payments()
        if scope in ("all", "remittances"):
            data["remittances"] = self.get_archived_remittances()
        return json.dumps(data, indent=2, ensure_ascii=False)
