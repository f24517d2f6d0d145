"""
Payment and remittance archival for Woning Store.
"""

from .archiver import (
    ArchivalScheduler,
    compute_total,
    group_payments_by_month,
    month_label,
    previous_month_key,
)

__all__ = [
    "ArchivalScheduler",
    "compute_total",
    "group_payments_by_month",
    "month_label",
    "previous_month_key",
]
