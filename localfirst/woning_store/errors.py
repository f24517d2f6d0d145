"""
Error types for Woning Store.

This module defines the exceptions raised by the persistence core:
- StoreError: Base exception
- ValidationError: Payload failed shape or business rules
- ConflictError: An invariant would be violated (e.g. unit already occupied)
- CapacityError: Local write rejected after quota recovery and fallback
- ReplicationError: Remote push failed (logged only, never raised to callers)
- NotFoundError: Entity does not exist
- NamespaceError: Namespace switch attempted during a mutation

Invariants:
    - All errors inherit from StoreError
    - ValidationError, ConflictError and CapacityError are raised before
      any partial state becomes visible
    - Error messages are safe to show to end users
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Base exception for all Woning Store errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "STORE_ERROR"
        self.details = details or {}


class ValidationError(StoreError):
    """Payload validation failed.

    Raised when:
    - Required field is missing
    - Field value has wrong type or range
    - A referenced entity does not exist

    Attributes:
        errors: Mapping of field name to message
    """

    def __init__(
        self,
        message: str,
        errors: Optional[Dict[str, str]] = None,
        entity_kind: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"entity_kind": entity_kind, "errors": errors or {}},
        )
        self.errors = errors or {}
        self.entity_kind = entity_kind

    @classmethod
    def for_field(cls, field_name: str, message: str, entity_kind: Optional[str] = None) -> ValidationError:
        """Build an error for a single field."""
        return cls(f"{field_name}: {message}", errors={field_name: message}, entity_kind=entity_kind)


class ConflictError(StoreError):
    """Invariant violation.

    Raised when:
    - Assigning a tenant to an occupied unit or property
    - Shrinking a shared yard below an occupied unit
    - Modifying a payment that has been archived
    """

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONFLICT",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class CapacityError(StoreError):
    """Local store rejected a write.

    The write is lost: the underlying store was full after pruning old
    archives and the memory fallback had no room either, or the value
    exceeded the per-item ceiling.
    """

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        super().__init__(message, code="CAPACITY_EXCEEDED", details={"key": key})
        self.key = key


class ReplicationError(StoreError):
    """Remote push failed after all attempts.

    Never raised to repository callers; instances are logged and kept in
    the replicator's dead-letter counter.
    """

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        doc_id: Optional[str] = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(
            message,
            code="REPLICATION_FAILED",
            details={"collection": collection, "doc_id": doc_id, "attempts": attempts},
        )
        self.collection = collection
        self.doc_id = doc_id
        self.attempts = attempts


class NotFoundError(StoreError):
    """Entity not found."""

    def __init__(self, message: str, resource_type: str, resource_id: str) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class NamespaceError(StoreError):
    """Namespace switch crossed an in-flight operation."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="NAMESPACE_BARRIER")
