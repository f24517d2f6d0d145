"""
Entity kinds, schemas and validation for Woning Store.
"""

from .kinds import ARCHIVE_MARKER_KEY, PRUNABLE_ARCHIVE_KEYS, EntityKind
from .models import MAX_UNITS_PER_YARD, MONTH_NAMES
from .validator import PydanticValidator, Validator

__all__ = [
    "ARCHIVE_MARKER_KEY",
    "PRUNABLE_ARCHIVE_KEYS",
    "EntityKind",
    "MAX_UNITS_PER_YARD",
    "MONTH_NAMES",
    "PydanticValidator",
    "Validator",
]
