"""
Entity kinds stored by Woning Store.

Each kind declares, next to its schema:
- label: Human-readable name used in logs and errors
- storage_key: KVS key holding the JSON array of the kind
- collection: Remote document store collection
- sensitive: Whether stored values are wrapped in a sensitive envelope

Invariants:
    - storage_key and collection never change once data exists
    - Archive kinds are written only by the archival scheduler
"""

from __future__ import annotations

from enum import Enum


class EntityKind(Enum):
    """Kinds of persisted entity collections."""

    OWNER = ("owner", "crm_owners", "owners", True)
    PROPERTY = ("property", "crm_properties", "properties", False)
    TENANT = ("tenant", "crm_tenants", "tenants", True)
    PAYMENT = ("payment", "crm_payments", "payments", True)
    ARCHIVED_PAYMENTS = ("archived_payments", "woning_archived_payments", "archived_payments", True)
    ARCHIVED_REMITTANCES = (
        "archived_remittances",
        "woning_archived_remittances",
        "archived_remittances",
        True,
    )

    def __init__(self, label: str, storage_key: str, collection: str, sensitive: bool) -> None:
        self.label = label
        self.storage_key = storage_key
        self.collection = collection
        self.sensitive = sensitive

    @property
    def is_archive(self) -> bool:
        return self in (EntityKind.ARCHIVED_PAYMENTS, EntityKind.ARCHIVED_REMITTANCES)

    @classmethod
    def from_label(cls, label: str) -> EntityKind:
        """Look up a kind by label.

        Raises:
            ValueError: If label is not a known kind
        """
        for kind in cls:
            if kind.label == label:
                return kind
        valid = [k.label for k in cls]
        raise ValueError(f"Invalid entity kind '{label}'. Valid kinds: {valid}")


# KVS key of the archival "last run" marker
ARCHIVE_MARKER_KEY = "woning_last_archive_check"

# Archive storage keys mapped to the timestamp used for retention pruning
PRUNABLE_ARCHIVE_KEYS = {
    EntityKind.ARCHIVED_PAYMENTS.storage_key: "archived_at",
    EntityKind.ARCHIVED_REMITTANCES.storage_key: "validated_at",
}
