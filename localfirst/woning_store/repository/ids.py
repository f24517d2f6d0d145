"""
Identifier generation.

Ids are "{prefix}_{epoch_ms}_{random}" (or "{epoch_ms}{random}" without a
prefix). The random part comes from the secrets module, so ids created in
the same millisecond on different devices do not collide in practice.
"""

from __future__ import annotations

import secrets
import string
import time

_ALPHABET = string.digits + string.ascii_lowercase


def _random_part(length: int = 10) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_id(prefix: str = "") -> str:
    """Generate a unique id.

    Example:
        >>> generate_id("arch")
        'arch_1704967890123_abc7def2xy'
    """
    timestamp = int(time.time() * 1000)
    if prefix:
        return f"{prefix}_{timestamp}_{_random_part()}"
    return f"{timestamp}{_random_part()}"


def is_valid_id(value: object) -> bool:
    """Check the shape of an id produced by generate_id."""
    if not value or not isinstance(value, str):
        return False
    if "_" in value:
        parts = value.split("_")
        return len(parts) >= 3 and parts[1].isdigit()
    return len(value) >= 13
