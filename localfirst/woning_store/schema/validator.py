"""
Payload validation for Woning Store.

The repository only depends on the Validator protocol:

    validate(kind, payload, partial=False) -> dict   (raises ValidationError)

PydanticValidator implements it with the models in models.py and turns
pydantic errors into per-field messages, suggesting close field names for
unknown keys.

Invariants:
    - Validation errors are deterministic
    - The returned dict is JSON-safe (dates become ISO strings)
    - Partial validation returns only the fields the caller provided
"""

from __future__ import annotations

from difflib import get_close_matches
from typing import Any, Dict, Mapping, Protocol, Type

import pydantic

from ..errors import ValidationError
from .kinds import EntityKind
from .models import (
    OwnerCreate,
    OwnerUpdate,
    PaymentCreate,
    PaymentUpdate,
    PropertyCreate,
    PropertyUpdate,
    TenantCreate,
    TenantUpdate,
)


class Validator(Protocol):
    """Shape-checking collaborator used by the repository."""

    def validate(
        self,
        kind: EntityKind,
        payload: Mapping[str, Any],
        partial: bool = False,
    ) -> Dict[str, Any]:
        ...


class PydanticValidator:
    """Validator backed by pydantic models.

    Example:
        >>> PydanticValidator().validate(EntityKind.OWNER, {"name": "Kouassi"})
        {'name': 'Kouassi', 'first_name': None, 'phone': None, 'email': None, 'address': None}
    """

    CREATE_MODELS: Dict[EntityKind, Type[pydantic.BaseModel]] = {
        EntityKind.OWNER: OwnerCreate,
        EntityKind.PROPERTY: PropertyCreate,
        EntityKind.TENANT: TenantCreate,
        EntityKind.PAYMENT: PaymentCreate,
    }

    UPDATE_MODELS: Dict[EntityKind, Type[pydantic.BaseModel]] = {
        EntityKind.OWNER: OwnerUpdate,
        EntityKind.PROPERTY: PropertyUpdate,
        EntityKind.TENANT: TenantUpdate,
        EntityKind.PAYMENT: PaymentUpdate,
    }

    def validate(
        self,
        kind: EntityKind,
        payload: Mapping[str, Any],
        partial: bool = False,
    ) -> Dict[str, Any]:
        """Validate a payload for kind.

        Args:
            kind: Entity kind
            payload: Caller-provided fields
            partial: Validate as a partial update

        Returns:
            Normalized payload

        Raises:
            ValidationError: If the payload is invalid
            ValueError: If kind has no schema
        """
        models = self.UPDATE_MODELS if partial else self.CREATE_MODELS
        model = models.get(kind)
        if model is None:
            raise ValueError(f"No schema registered for {kind.label}")

        if not isinstance(payload, Mapping):
            raise ValidationError.for_field("_payload", "must be an object", entity_kind=kind.label)

        try:
            instance = model.model_validate(dict(payload))
        except pydantic.ValidationError as e:
            errors = _field_errors(e, list(model.model_fields))
            summary = "; ".join(f"{name}: {msg}" for name, msg in errors.items())
            raise ValidationError(
                f"Validation failed for {kind.label}: {summary}",
                errors=errors,
                entity_kind=kind.label,
            ) from None

        return instance.model_dump(mode="json", exclude_unset=partial)


def _field_errors(error: pydantic.ValidationError, known_fields: list[str]) -> Dict[str, str]:
    """Flatten pydantic errors into {field: message}, first message per field."""
    errors: Dict[str, str] = {}
    for item in error.errors():
        field_name = ".".join(str(part) for part in item["loc"]) or "_payload"
        if item["type"] == "extra_forbidden":
            suggestions = get_close_matches(str(item["loc"][-1]), known_fields, n=3)
            message = "Unknown field"
            if suggestions:
                message += f". Did you mean: {', '.join(suggestions)}?"
        else:
            message = item["msg"]
        errors.setdefault(field_name, message)
    return errors
