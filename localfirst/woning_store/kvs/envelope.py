"""
Sensitive-value envelope.

Values of sensitive entity kinds (owner and tenant personal data, payment
records, archives) are wrapped before serialization:

    {"__sensitive__": true, "version": 1, "timestamp": <unix ms>, "data": <value>}

The envelope marks intent only. It provides no confidentiality; a real
cipher can replace wrap/unwrap without changing callers.
"""

from __future__ import annotations

import time
from typing import Any

ENVELOPE_MARKER = "__sensitive__"
ENVELOPE_VERSION = 1


def wrap(value: Any) -> dict[str, Any]:
    return {
        ENVELOPE_MARKER: True,
        "version": ENVELOPE_VERSION,
        "timestamp": int(time.time() * 1000),
        "data": value,
    }


def is_envelope(value: Any) -> bool:
    return isinstance(value, dict) and value.get(ENVELOPE_MARKER) is True and "data" in value


def unwrap(value: Any) -> Any:
    """Return the payload of an envelope, or the value unchanged."""
    if is_envelope(value):
        return value["data"]
    return value
