"""
Entity repository for Woning Store.

This module provides:
- EntityRepository: Validated CRUD with domain invariants
- Unit helpers for shared yards
- Portfolio statistics
- Id generation
"""

from .ids import generate_id, is_valid_id
from .repository import EntityRepository, payment_month_key
from .stats import compute_statistics
from .units import build_units, regenerate_units

__all__ = [
    "EntityRepository",
    "build_units",
    "compute_statistics",
    "generate_id",
    "is_valid_id",
    "payment_month_key",
    "regenerate_units",
]
