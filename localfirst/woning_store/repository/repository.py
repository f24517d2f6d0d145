"""
Entity repository for Woning Store.

The repository is the only writer of entity collections. Every mutation
follows the same steps:

1. Validate the payload (full for create, partial for update)
2. Apply domain invariants on copies of the affected collections
3. Persist every touched collection through the KVS; if one write is
   rejected, collections already written in this call are restored and
   CapacityError is raised
4. Invalidate and prime the cache with the persisted collections
5. Enqueue replication pushes and return

Invariants:
    - ValidationError, ConflictError, NotFoundError and CapacityError leave
      no partial writes behind
    - A unit references at most one tenant and a tenant at most one unit
    - Deleting a property deletes its tenants
    - Deleting or moving a tenant frees its previous placement
    - Payments of an archived month cannot be changed or deleted
    - Replication never affects the outcome of a local write

How to change safely:
    - Keep every mutation inside context.operation() so namespace switches
      cannot interleave with it
    - Persist collections in dependency order (referenced before referencing)
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Any, Callable, Mapping

from ..cache import ReadThroughCache
from ..context import StorageContext
from ..errors import CapacityError, ConflictError, NotFoundError, ValidationError
from ..kvs.store import KeyValueStore, WriteResult
from ..replicate.base import ReplicationAction
from ..replicate.replicator import Replicator
from ..schema.kinds import EntityKind
from ..schema.models import month_from_value
from ..schema.validator import Validator
from .ids import generate_id
from .stats import compute_statistics
from .units import (
    assign_tenant,
    build_units,
    find_unit,
    free_units,
    is_shared_yard,
    regenerate_units,
    release_tenant,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def payment_month_key(payment: Mapping[str, Any]) -> str:
    """Month key "YYYY-MM" a payment belongs to."""
    return f"{int(payment['year']):04d}-{int(payment['month']):02d}"


class EntityRepository:
    """CRUD over owners, properties, tenants and payments.

    Attributes:
        kvs: Key-value store
        cache: Read-through cache
        validator: Payload validator
        replicator: Remote replicator
        context: Shared storage context

    Example:
        >>> repo = EntityRepository(kvs, cache, PydanticValidator(), replicator, context)
        >>> owner = repo.add_owner({"name": "Kouassi"})
        >>> prop = repo.add_property({
        ...     "owner_id": owner["id"], "kind": "shared_yard",
        ...     "rent_amount": 25000, "unit_count": 3,
        ... })
        >>> repo.add_tenant({
        ...     "name": "Yao", "property_id": prop["id"], "unit_number": 2,
        ...     "rent_amount": 25000, "entry_date": "2024-03-01",
        ... })
    """

    def __init__(
        self,
        kvs: KeyValueStore,
        cache: ReadThroughCache,
        validator: Validator,
        replicator: Replicator,
        context: StorageContext,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        self.kvs = kvs
        self.cache = cache
        self.validator = validator
        self.replicator = replicator
        self.context = context
        self.clock = clock
        self.id_factory = id_factory

        self._tenant_index: dict[str, set[str]] | None = None
        self._tenant_index_generation = -1

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, kind: EntityKind) -> list[dict[str, Any]]:
        return self.cache.get_cached(kind)

    @staticmethod
    def _index_of(items: list[dict[str, Any]], entity_id: str) -> int:
        for i, item in enumerate(items):
            if item.get("id") == entity_id:
                return i
        return -1

    def _require(self, kind: EntityKind, items: list[dict[str, Any]], entity_id: str) -> int:
        index = self._index_of(items, entity_id)
        if index < 0:
            raise NotFoundError(
                f"{kind.label.capitalize()} not found: {entity_id}",
                resource_type=kind.label,
                resource_id=entity_id,
            )
        return index

    def _reference(
        self,
        kind: EntityKind,
        entity_id: str,
        field_name: str,
        entity_kind: EntityKind,
    ) -> dict[str, Any]:
        """Look up a referenced entity or fail validation on field_name."""
        items = self._load(kind)
        index = self._index_of(items, entity_id)
        if index < 0:
            raise ValidationError.for_field(
                field_name,
                f"{kind.label} {entity_id} does not exist",
                entity_kind=entity_kind.label,
            )
        return items[index]

    def _now(self) -> str:
        return self.clock().isoformat()

    def _persist(self, *changes: tuple[EntityKind, list[dict[str, Any]]]) -> None:
        """Write collections in order, all or nothing.

        Raises:
            CapacityError: If a write is rejected (earlier writes are restored)
        """
        written: list[tuple[EntityKind, list[dict[str, Any]]]] = []
        for kind, items in changes:
            previous = self._load(kind)
            result = self.kvs.set(kind.storage_key, items, sensitive=kind.sensitive)
            if result is WriteResult.REJECTED:
                for done_kind, done_previous in reversed(written):
                    restored = self.kvs.set(
                        done_kind.storage_key, done_previous, sensitive=done_kind.sensitive
                    )
                    if not restored.ok:
                        logger.error(
                            "Rollback failed, collection may be inconsistent",
                            extra={"kind": done_kind.label},
                        )
                    self.cache.invalidate(done_kind)
                self.cache.invalidate(kind)
                raise CapacityError(
                    f"Local storage is full, could not save {kind.label} data",
                    key=kind.storage_key,
                )
            if result is WriteResult.MEMORY_ONLY:
                logger.warning(
                    "Collection saved in memory only, it will be lost on exit",
                    extra={"kind": kind.label},
                )
            written.append((kind, previous))

        for kind, items in changes:
            self.cache.invalidate(kind)
            self.cache.prime(kind, items)

    def _tenants_by_property(self) -> dict[str, set[str]]:
        """Property id -> tenant ids, rebuilt after tenant writes or a namespace switch."""
        if self._tenant_index is None or self._tenant_index_generation != self.context.generation:
            index: dict[str, set[str]] = defaultdict(set)
            for tenant in self._load(EntityKind.TENANT):
                if tenant.get("property_id"):
                    index[tenant["property_id"]].add(tenant["id"])
            self._tenant_index = dict(index)
            self._tenant_index_generation = self.context.generation
        return self._tenant_index

    def _archived_month_keys(self) -> set[str]:
        return {
            snapshot.get("month_key")
            for snapshot in self._load(EntityKind.ARCHIVED_PAYMENTS)
            if snapshot.get("month_key")
        }

    def _push_placement(self, prop: dict[str, Any]) -> None:
        self.replicator.push(
            EntityKind.PROPERTY,
            ReplicationAction.UPDATE,
            prop["id"],
            {"status": prop.get("status"), "units": prop.get("units", [])},
        )

    # ------------------------------------------------------------------
    # Generic access
    # ------------------------------------------------------------------

    def list(self, kind: EntityKind) -> list[dict[str, Any]]:
        """Return every entity of kind (deep copy)."""
        return self._load(kind)

    def store_collection(self, kind: EntityKind, items: list[dict[str, Any]]) -> None:
        """Replace a whole collection without validation.

        Used by the archival scheduler for archive snapshots.

        Raises:
            CapacityError: If the write is rejected
        """
        with self.context.operation():
            self._persist((kind, items))
            if kind is EntityKind.TENANT:
                self._tenant_index = None

    # ------------------------------------------------------------------
    # Owners
    # ------------------------------------------------------------------

    def get_owners(self) -> list[dict[str, Any]]:
        return self._load(EntityKind.OWNER)

    def get_owner(self, owner_id: str) -> dict[str, Any] | None:
        owners = self._load(EntityKind.OWNER)
        index = self._index_of(owners, owner_id)
        return owners[index] if index >= 0 else None

    def add_owner(self, data: Mapping[str, Any]) -> dict[str, Any]:
        with self.context.operation():
            payload = self.validator.validate(EntityKind.OWNER, data)
            owner = {"id": self.id_factory(), **payload, "created_at": self._now()}
            owners = self._load(EntityKind.OWNER)
            owners.append(owner)
            self._persist((EntityKind.OWNER, owners))

        logger.info("Owner added", extra={"owner_id": owner["id"]})
        self.replicator.push(EntityKind.OWNER, ReplicationAction.ADD, owner["id"], owner)
        return owner

    def update_owner(self, owner_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        with self.context.operation():
            payload = self.validator.validate(EntityKind.OWNER, changes, partial=True)
            owners = self._load(EntityKind.OWNER)
            index = self._require(EntityKind.OWNER, owners, owner_id)
            owners[index] = {**owners[index], **payload}
            self._persist((EntityKind.OWNER, owners))

        self.replicator.push(EntityKind.OWNER, ReplicationAction.UPDATE, owner_id, payload)
        return owners[index]

    def delete_owner(self, owner_id: str) -> None:
        """Delete an owner. Properties referencing it are left in place."""
        with self.context.operation():
            owners = self._load(EntityKind.OWNER)
            self._require(EntityKind.OWNER, owners, owner_id)
            owners = [o for o in owners if o.get("id") != owner_id]
            self._persist((EntityKind.OWNER, owners))

        logger.info("Owner deleted", extra={"owner_id": owner_id})
        self.replicator.push(EntityKind.OWNER, ReplicationAction.DELETE, owner_id)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    def get_properties(self) -> list[dict[str, Any]]:
        return self._load(EntityKind.PROPERTY)

    def get_property(self, property_id: str) -> dict[str, Any] | None:
        props = self._load(EntityKind.PROPERTY)
        index = self._index_of(props, property_id)
        return props[index] if index >= 0 else None

    def get_properties_by_owner(self, owner_id: str) -> list[dict[str, Any]]:
        return [p for p in self._load(EntityKind.PROPERTY) if p.get("owner_id") == owner_id]

    def get_units(self, property_id: str) -> list[dict[str, Any]]:
        prop = self.get_property(property_id)
        if prop is None:
            return []
        return prop.get("units") or []

    def get_free_units(self, property_id: str) -> list[dict[str, Any]]:
        prop = self.get_property(property_id)
        if prop is None:
            return []
        return free_units(prop)

    def is_unit_occupied(self, property_id: str, unit_number: int) -> bool:
        prop = self.get_property(property_id)
        if prop is None:
            return False
        unit = find_unit(prop, unit_number)
        return unit is not None and unit.get("status") == "occupied"

    def add_property(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Create a property; shared yards get unit_count free units."""
        with self.context.operation():
            payload = self.validator.validate(EntityKind.PROPERTY, data)
            self._reference(EntityKind.OWNER, payload["owner_id"], "owner_id", EntityKind.PROPERTY)

            meters = payload.pop("unit_meters", None)
            prop = {"id": self.id_factory(), **payload, "created_at": self._now()}
            if is_shared_yard(prop):
                prop["units"] = build_units(prop["unit_count"], meters, id_factory=self.id_factory)
            else:
                prop["unit_count"] = 1
                prop["units"] = []

            props = self._load(EntityKind.PROPERTY)
            props.append(prop)
            self._persist((EntityKind.PROPERTY, props))

        logger.info(
            "Property added",
            extra={"property_id": prop["id"], "kind": prop["kind"], "units": len(prop["units"])},
        )
        self.replicator.push(EntityKind.PROPERTY, ReplicationAction.ADD, prop["id"], prop)
        return prop

    def update_property(self, property_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        """Merge changes into a property.

        Changing unit_count of a shared yard regenerates its units, keeping
        existing units and their occupancy by position.

        Raises:
            ConflictError: If the kind changes while tenants are attached, or
                the yard would shrink below an occupied unit
        """
        with self.context.operation():
            payload = self.validator.validate(EntityKind.PROPERTY, changes, partial=True)
            props = self._load(EntityKind.PROPERTY)
            index = self._require(EntityKind.PROPERTY, props, property_id)
            current = props[index]

            if payload.get("owner_id"):
                self._reference(EntityKind.OWNER, payload["owner_id"], "owner_id", EntityKind.PROPERTY)

            updated = {**current, **payload}
            kind_changed = "kind" in payload and payload["kind"] != current.get("kind")
            if kind_changed:
                if self._tenants_by_property().get(property_id):
                    raise ConflictError(
                        "Cannot change the kind of a property that has tenants",
                        resource_type="property",
                        resource_id=property_id,
                    )
                if is_shared_yard(updated):
                    if not payload.get("unit_count"):
                        raise ValidationError.for_field(
                            "unit_count", "required for shared yards", entity_kind="property"
                        )
                    updated["units"] = build_units(payload["unit_count"], id_factory=self.id_factory)
                else:
                    updated["unit_count"] = 1
                    updated["units"] = []
            elif "unit_count" in payload and payload["unit_count"] is not None:
                if not is_shared_yard(updated):
                    raise ValidationError.for_field(
                        "unit_count", "only shared yards have units", entity_kind="property"
                    )
                updated["units"] = regenerate_units(
                    current.get("units") or [],
                    payload["unit_count"],
                    property_id=property_id,
                    id_factory=self.id_factory,
                )

            props[index] = updated
            self._persist((EntityKind.PROPERTY, props))

        patch = dict(payload)
        if "units" in updated and updated.get("units") != current.get("units"):
            patch["units"] = updated["units"]
            patch["unit_count"] = updated["unit_count"]
        self.replicator.push(EntityKind.PROPERTY, ReplicationAction.UPDATE, property_id, patch)
        return updated

    def delete_property(self, property_id: str) -> list[str]:
        """Delete a property and every tenant attached to it.

        Returns:
            Ids of the tenants deleted with the property
        """
        with self.context.operation():
            props = self._load(EntityKind.PROPERTY)
            self._require(EntityKind.PROPERTY, props, property_id)

            tenant_ids = set(self._tenants_by_property().get(property_id, set()))
            tenants = self._load(EntityKind.TENANT)
            remaining = [t for t in tenants if t.get("id") not in tenant_ids]
            props = [p for p in props if p.get("id") != property_id]

            if len(remaining) != len(tenants):
                self._persist((EntityKind.PROPERTY, props), (EntityKind.TENANT, remaining))
                self._tenant_index = None
            else:
                self._persist((EntityKind.PROPERTY, props))

        logger.info(
            "Property deleted",
            extra={"property_id": property_id, "cascaded_tenants": len(tenant_ids)},
        )
        self.replicator.push(EntityKind.PROPERTY, ReplicationAction.DELETE, property_id)
        for tenant_id in sorted(tenant_ids):
            self.replicator.push(EntityKind.TENANT, ReplicationAction.DELETE, tenant_id)
        return sorted(tenant_ids)

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    def get_tenants(self) -> list[dict[str, Any]]:
        return self._load(EntityKind.TENANT)

    def get_tenant(self, tenant_id: str) -> dict[str, Any] | None:
        tenants = self._load(EntityKind.TENANT)
        index = self._index_of(tenants, tenant_id)
        return tenants[index] if index >= 0 else None

    def get_tenants_by_property(self, property_id: str) -> list[dict[str, Any]]:
        ids = self._tenants_by_property().get(property_id, set())
        return [t for t in self._load(EntityKind.TENANT) if t.get("id") in ids]

    def add_tenant(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Create a tenant and occupy its unit (or simple property).

        Raises:
            ValidationError: If the property or unit does not exist
            ConflictError: If the unit or property is already occupied
        """
        with self.context.operation():
            payload = self.validator.validate(EntityKind.TENANT, data)
            props = self._load(EntityKind.PROPERTY)
            prop_index = self._index_of(props, payload["property_id"])
            if prop_index < 0:
                raise ValidationError.for_field(
                    "property_id",
                    f"property {payload['property_id']} does not exist",
                    entity_kind=EntityKind.TENANT.label,
                )

            tenant = {"id": self.id_factory(), **payload, "created_at": self._now()}
            prop = props[prop_index]
            if tenant["status"] == "active":
                assign_tenant(prop, tenant.get("unit_number"), tenant["id"])

            tenants = self._load(EntityKind.TENANT)
            tenants.append(tenant)
            self._persist((EntityKind.PROPERTY, props), (EntityKind.TENANT, tenants))
            self._tenant_index = None

        logger.info(
            "Tenant added",
            extra={
                "tenant_id": tenant["id"],
                "property_id": tenant["property_id"],
                "unit_number": tenant.get("unit_number"),
            },
        )
        self.replicator.push(EntityKind.TENANT, ReplicationAction.ADD, tenant["id"], tenant)
        self._push_placement(prop)
        return tenant

    def update_tenant(self, tenant_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        """Merge changes into a tenant.

        Moving to another property or unit, or changing status, releases the
        old placement and assigns the new one in the same write.
        """
        with self.context.operation():
            payload = self.validator.validate(EntityKind.TENANT, changes, partial=True)
            tenants = self._load(EntityKind.TENANT)
            index = self._require(EntityKind.TENANT, tenants, tenant_id)
            current = tenants[index]
            updated = {**current, **payload}

            placement = ("property_id", "unit_number", "status")
            moved = any(current.get(f) != updated.get(f) for f in placement)
            touched: dict[str, dict[str, Any]] = {}

            if moved:
                props = self._load(EntityKind.PROPERTY)
                if current.get("status") == "active":
                    old_index = self._index_of(props, current.get("property_id"))
                    if old_index >= 0 and release_tenant(props[old_index], tenant_id):
                        touched[props[old_index]["id"]] = props[old_index]
                if updated.get("status") == "active":
                    new_index = self._index_of(props, updated.get("property_id"))
                    if new_index < 0:
                        raise ValidationError.for_field(
                            "property_id",
                            f"property {updated.get('property_id')} does not exist",
                            entity_kind=EntityKind.TENANT.label,
                        )
                    assign_tenant(props[new_index], updated.get("unit_number"), tenant_id)
                    touched[props[new_index]["id"]] = props[new_index]

            tenants[index] = updated
            if touched:
                self._persist((EntityKind.PROPERTY, props), (EntityKind.TENANT, tenants))
            else:
                self._persist((EntityKind.TENANT, tenants))
            if "property_id" in payload:
                self._tenant_index = None

        self.replicator.push(EntityKind.TENANT, ReplicationAction.UPDATE, tenant_id, payload)
        for prop in touched.values():
            self._push_placement(prop)
        return updated

    def delete_tenant(self, tenant_id: str) -> None:
        """Delete a tenant and free its unit or simple property if it is active."""
        with self.context.operation():
            tenants = self._load(EntityKind.TENANT)
            index = self._require(EntityKind.TENANT, tenants, tenant_id)
            tenant = tenants.pop(index)

            # Only an active tenant holds a placement
            released = None
            props = self._load(EntityKind.PROPERTY)
            if tenant.get("status") == "active":
                prop_index = self._index_of(props, tenant.get("property_id"))
                if prop_index >= 0 and release_tenant(props[prop_index], tenant_id):
                    released = props[prop_index]

            if released is not None:
                self._persist((EntityKind.PROPERTY, props), (EntityKind.TENANT, tenants))
            else:
                self._persist((EntityKind.TENANT, tenants))
            self._tenant_index = None

        logger.info("Tenant deleted", extra={"tenant_id": tenant_id})
        self.replicator.push(EntityKind.TENANT, ReplicationAction.DELETE, tenant_id)
        if released is not None:
            self._push_placement(released)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def get_payments(self) -> list[dict[str, Any]]:
        return self._load(EntityKind.PAYMENT)

    def get_payment(self, payment_id: str) -> dict[str, Any] | None:
        payments = self._load(EntityKind.PAYMENT)
        index = self._index_of(payments, payment_id)
        return payments[index] if index >= 0 else None

    def get_payments_by_tenant(self, tenant_id: str) -> list[dict[str, Any]]:
        return [p for p in self._load(EntityKind.PAYMENT) if p.get("tenant_id") == tenant_id]

    def get_payments_for_period(self, month: Any, year: int) -> list[dict[str, Any]]:
        """Payments for a month (number or month name) of a year."""
        month_number = month_from_value(month)
        return [
            p
            for p in self._load(EntityKind.PAYMENT)
            if p.get("month") == month_number and p.get("year") == int(year)
        ]

    def _ensure_not_archived(self, payment: Mapping[str, Any]) -> None:
        if payment_month_key(payment) in self._archived_month_keys():
            raise ConflictError(
                f"Payment {payment.get('id')} belongs to archived month {payment_month_key(payment)}",
                resource_type="payment",
                resource_id=payment.get("id"),
            )

    def add_payment(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Record a payment. property_id defaults to the tenant's property."""
        with self.context.operation():
            payload = self.validator.validate(EntityKind.PAYMENT, data)
            tenant = self._reference(EntityKind.TENANT, payload["tenant_id"], "tenant_id", EntityKind.PAYMENT)
            if not payload.get("property_id"):
                payload["property_id"] = tenant.get("property_id")
            if not payload.get("date"):
                payload["date"] = self.clock().date().isoformat()

            payment = {"id": self.id_factory(), **payload, "created_at": self._now()}
            payments = self._load(EntityKind.PAYMENT)
            payments.append(payment)
            self._persist((EntityKind.PAYMENT, payments))

        logger.info(
            "Payment added",
            extra={"payment_id": payment["id"], "tenant_id": payment["tenant_id"], "month_key": payment_month_key(payment)},
        )
        self.replicator.push(EntityKind.PAYMENT, ReplicationAction.ADD, payment["id"], payment)
        return payment

    def update_payment(self, payment_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        """Merge changes into a payment.

        Raises:
            ConflictError: If the payment's current or new month is archived
        """
        with self.context.operation():
            payload = self.validator.validate(EntityKind.PAYMENT, changes, partial=True)
            payments = self._load(EntityKind.PAYMENT)
            index = self._require(EntityKind.PAYMENT, payments, payment_id)
            current = payments[index]
            updated = {**current, **payload}
            self._ensure_not_archived(current)
            self._ensure_not_archived(updated)

            payments[index] = updated
            self._persist((EntityKind.PAYMENT, payments))

        self.replicator.push(EntityKind.PAYMENT, ReplicationAction.UPDATE, payment_id, payload)
        return updated

    def delete_payment(self, payment_id: str) -> None:
        """Delete a payment.

        Raises:
            ConflictError: If the payment's month is archived
        """
        with self.context.operation():
            payments = self._load(EntityKind.PAYMENT)
            index = self._require(EntityKind.PAYMENT, payments, payment_id)
            self._ensure_not_archived(payments[index])
            del payments[index]
            self._persist((EntityKind.PAYMENT, payments))

        self.replicator.push(EntityKind.PAYMENT, ReplicationAction.DELETE, payment_id)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_statistics(self, today: date | None = None) -> dict[str, Any]:
        """Occupancy and revenue figures for the current month."""
        return compute_statistics(
            owners=self._load(EntityKind.OWNER),
            properties=self._load(EntityKind.PROPERTY),
            tenants=self._load(EntityKind.TENANT),
            payments=self._load(EntityKind.PAYMENT),
            today=today or self.clock().date(),
        )

    def snapshot(self) -> dict[str, list[dict[str, Any]]]:
        """Deep copy of every entity collection, keyed by storage key."""
        return {kind.storage_key: self._load(kind) for kind in EntityKind}
