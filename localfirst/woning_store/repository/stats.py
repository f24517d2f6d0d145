"""
Portfolio statistics computed from the entity collections.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Any

from ..schema.models import MONTH_NAMES
from .units import count_units


def _as_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _percent(part: float, whole: float, empty: int) -> int:
    if whole <= 0:
        return empty
    return round(part / whole * 100)


def compute_statistics(
    owners: list[dict[str, Any]],
    properties: list[dict[str, Any]],
    tenants: list[dict[str, Any]],
    payments: list[dict[str, Any]],
    today: date,
) -> dict[str, Any]:
    """Occupancy, revenue and arrears for the month containing today.

    A tenant is in arrears when the payments recorded for them this month
    add up to less than their rent.
    """
    active = [t for t in tenants if t.get("status") == "active"]

    total_units = 0
    occupied_units = 0
    for prop in properties:
        total, occupied = count_units(prop)
        total_units += total
        occupied_units += occupied

    paid_by_tenant: dict[str, float] = defaultdict(float)
    revenue = 0.0
    for payment in payments:
        if payment.get("month") == today.month and payment.get("year") == today.year:
            amount = _as_float(payment.get("amount_paid"))
            revenue += amount
            paid_by_tenant[payment.get("tenant_id")] += amount

    expected = sum(_as_float(t.get("rent_amount")) for t in active)
    in_arrears = [
        t for t in active if paid_by_tenant.get(t["id"], 0.0) < _as_float(t.get("rent_amount"))
    ]

    return {
        "total_owners": len(owners),
        "total_properties": len(properties),
        "total_tenants": len(tenants),
        "active_tenants": len(active),
        "total_units": total_units,
        "occupied_units": occupied_units,
        "occupancy_rate": _percent(occupied_units, total_units, empty=0),
        "revenue_current_month": revenue,
        "expected_current_month": expected,
        "outstanding_amount": max(0.0, expected - revenue),
        "recovery_rate": _percent(revenue, expected, empty=100),
        "arrears_alerts": len(in_arrears),
        "current_month": MONTH_NAMES[today.month - 1],
        "current_year": today.year,
    }
