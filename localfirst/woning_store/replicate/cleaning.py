"""
Payload cleaning before documents leave the process.

The remote store rejects values it cannot encode, and owns its own
timestamps, so payloads are normalized first.
"""

from __future__ import annotations

from typing import Any

# Fields the remote store manages itself
SERVER_MANAGED_FIELDS = frozenset({"created_at", "updated_at"})


class _Absent:
    """Marker for "no value", distinct from None which is sent as null."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()


def _droppable(value: Any) -> bool:
    return value is ABSENT or callable(value)


def _clean_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            str(k): _clean_value(v)
            for k, v in value.items()
            if not _droppable(v)
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_clean_value(v) for v in value if not _droppable(v)]
    return value


def clean_for_remote(payload: dict[str, Any]) -> dict[str, Any]:
    """Return a remote-safe copy of payload.

    Drops callables, ABSENT values and server-managed timestamps at the top
    level; keeps None; recurses into dicts and lists; turns tuples and sets
    into lists.

    Example:
        >>> clean_for_remote({"id": "o1", "phone": None, "created_at": "2024-01-01"})
        {'id': 'o1', 'phone': None}
    """
    cleaned = _clean_value(payload)
    for name in SERVER_MANAGED_FIELDS:
        cleaned.pop(name, None)
    return cleaned
