"""
Unit tests for archive helper functions.
"""

from datetime import date

from localfirst.woning_store.archive import (
    compute_total,
    group_payments_by_month,
    month_label,
    previous_month_key,
)


class TestMonthKeys:
    """Tests for month key helpers."""

    def test_previous_month(self):
        assert previous_month_key(date(2024, 4, 1)) == "2024-03"

    def test_previous_month_across_year(self):
        assert previous_month_key(date(2025, 1, 1)) == "2024-12"

    def test_month_label(self):
        assert month_label("2024-03") == "March 2024"


class TestGrouping:
    """Tests for grouping and totals."""

    def test_group_by_month(self):
        payments = [
            {"id": "p1", "month": 3, "year": 2024},
            {"id": "p2", "month": 3, "year": 2024},
            {"id": "p3", "month": 12, "year": 2023},
            {"id": "broken"},
        ]

        grouped = group_payments_by_month(payments)

        assert sorted(grouped) == ["2023-12", "2024-03"]
        assert [p["id"] for p in grouped["2024-03"]] == ["p1", "p2"]

    def test_total_simple(self):
        assert compute_total([{"amount_paid": 100000}, {"amount_paid": 50000}]) == 150000

    def test_grouped_payments_counted_once(self):
        """A multi-month payment counts its group total a single time."""
        payments = [
            {"amount_paid": 25000, "group_id": "g1", "group_total": 75000},
            {"amount_paid": 25000, "group_id": "g1", "group_total": 75000},
            {"amount_paid": 25000, "group_id": "g1", "group_total": 75000},
            {"amount_paid": 10000},
        ]

        assert compute_total(payments) == 85000

    def test_group_without_total_uses_first_amount(self):
        payments = [
            {"amount_paid": 30000, "group_id": "g2"},
            {"amount_paid": 30000, "group_id": "g2"},
        ]

        assert compute_total(payments) == 30000

    def test_empty(self):
        assert compute_total([]) == 0
