"""
Unit bookkeeping for properties.

Shared yards own a numbered list of units; every other property kind is a
single rentable unit whose occupancy is the property status itself.

All helpers mutate the property dict they are given. The repository only
ever passes copies, so a raised error leaves stored state untouched.

Invariants:
    - unit["tenant_id"] is set if and only if unit["status"] == "occupied"
    - At most one unit references a given tenant
    - unit_number is 1-based and matches the unit's position
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from ..errors import ConflictError, ValidationError
from .ids import generate_id

logger = logging.getLogger(__name__)

SHARED_YARD = "shared_yard"

UNIT_FREE = "free"
UNIT_OCCUPIED = "occupied"


def is_shared_yard(prop: dict[str, Any]) -> bool:
    return prop.get("kind") == SHARED_YARD


def build_units(
    count: int,
    meters: Sequence[dict[str, Any]] | None = None,
    id_factory: Callable[[], str] = generate_id,
) -> list[dict[str, Any]]:
    """Create count free units numbered from 1.

    Args:
        count: Number of units
        meters: Optional per-unit meter numbers, by position
        id_factory: Id generator
    """
    meters = list(meters or [])
    units = []
    for number in range(1, count + 1):
        unit_meters = meters[number - 1] if number <= len(meters) else {}
        units.append(
            {
                "id": id_factory(),
                "unit_number": number,
                "status": UNIT_FREE,
                "tenant_id": None,
                "water_meter": unit_meters.get("water_meter", ""),
                "electricity_meter": unit_meters.get("electricity_meter", ""),
            }
        )
    return units


def regenerate_units(
    units: Sequence[dict[str, Any]],
    count: int,
    property_id: str | None = None,
    id_factory: Callable[[], str] = generate_id,
) -> list[dict[str, Any]]:
    """Resize a unit list, keeping identity and occupancy by position.

    Raises:
        ConflictError: If a unit that would be removed is occupied
    """
    kept = [dict(u) for u in units[:count]]
    removed = units[count:]
    occupied = [u["unit_number"] for u in removed if u.get("status") == UNIT_OCCUPIED]
    if occupied:
        raise ConflictError(
            f"Cannot reduce to {count} units: unit(s) {occupied} are occupied",
            resource_type="property",
            resource_id=property_id,
        )
    for number in range(len(kept) + 1, count + 1):
        kept.extend(build_units(1, id_factory=id_factory))
        kept[-1]["unit_number"] = number
    return kept


def find_unit(prop: dict[str, Any], unit_number: int | None) -> dict[str, Any] | None:
    for unit in prop.get("units") or []:
        if unit.get("unit_number") == unit_number:
            return unit
    return None


def free_units(prop: dict[str, Any]) -> list[dict[str, Any]]:
    return [u for u in prop.get("units") or [] if u.get("status") == UNIT_FREE]


def assign_tenant(prop: dict[str, Any], unit_number: int | None, tenant_id: str) -> None:
    """Mark the tenant's placement as occupied.

    Raises:
        ValidationError: If the unit does not exist
        ConflictError: If the unit or simple property is not free
    """
    if is_shared_yard(prop):
        if unit_number is None:
            raise ValidationError.for_field(
                "unit_number", "required for tenants of a shared yard", entity_kind="tenant"
            )
        unit = find_unit(prop, unit_number)
        if unit is None:
            raise ValidationError.for_field(
                "unit_number",
                f"unit {unit_number} does not exist in property {prop['id']}",
                entity_kind="tenant",
            )
        if unit.get("status") != UNIT_FREE:
            raise ConflictError(
                f"Unit {unit_number} is already occupied",
                resource_type="unit",
                resource_id=unit.get("id"),
            )
        unit["status"] = UNIT_OCCUPIED
        unit["tenant_id"] = tenant_id
        return

    if unit_number is not None:
        raise ValidationError.for_field(
            "unit_number", "only shared yards have numbered units", entity_kind="tenant"
        )
    if prop.get("status") != "free":
        raise ConflictError(
            f"Property {prop['id']} is not free (status: {prop.get('status')})",
            resource_type="property",
            resource_id=prop["id"],
        )
    prop["status"] = "occupied"


def release_tenant(prop: dict[str, Any], tenant_id: str) -> bool:
    """Free whatever placement the tenant holds in prop.

    Returns:
        True if something was released
    """
    if is_shared_yard(prop):
        for unit in prop.get("units") or []:
            if unit.get("tenant_id") == tenant_id:
                unit["status"] = UNIT_FREE
                unit["tenant_id"] = None
                return True
        logger.warning(
            "Tenant holds no unit in property",
            extra={"tenant_id": tenant_id, "property_id": prop.get("id")},
        )
        return False

    if prop.get("status") == "occupied":
        prop["status"] = "free"
        return True
    return False


def count_units(prop: dict[str, Any]) -> tuple[int, int]:
    """Return (total, occupied) rentable units for one property.

    A simple property counts as one unit, occupied when its status says so.
    """
    if is_shared_yard(prop):
        units = prop.get("units") or []
        return len(units), sum(1 for u in units if u.get("status") == UNIT_OCCUPIED)
    return 1, 1 if prop.get("status") == "occupied" else 0
