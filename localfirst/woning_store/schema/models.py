"""
Pydantic schemas for Woning entities.

Every kind has a create model (full payload, defaults applied) and an
update model (every field optional, only provided fields are kept).
In update models a field the entity cannot lack rejects an explicit null.
Ids, creation timestamps and unit lists are assigned by the repository
and are rejected if supplied by callers.
"""

from __future__ import annotations

from datetime import date as Date
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationInfo, field_validator

PropertyKind = Literal["single_unit", "shared_yard", "shop"]
PropertyStatus = Literal["free", "occupied", "renovation"]
TenantStatus = Literal["active", "former"]
PaymentMethod = Literal["cash", "mobile_money", "bank_transfer", "cheque"]

MAX_UNITS_PER_YARD = 20

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
FRENCH_MONTH_NAMES = (
    "Janvier", "Février", "Mars", "Avril", "Mai", "Juin",
    "Juillet", "Août", "Septembre", "Octobre", "Novembre", "Décembre",
)


def _reject_null(value: Any) -> Any:
    """Explicit nulls are only legal for fields an entity may lack."""
    if value is None:
        raise ValueError("cannot be null")
    return value


def month_from_value(value: Any) -> Any:
    """Accept a month number, numeric string or English/French month name."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return int(stripped)
        for names in (MONTH_NAMES, FRENCH_MONTH_NAMES):
            lowered = [n.lower() for n in names]
            if stripped.lower() in lowered:
                return lowered.index(stripped.lower()) + 1
    return value


Month = Annotated[int, BeforeValidator(month_from_value), Field(ge=1, le=12)]


class _Schema(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


# Owners


class OwnerCreate(_Schema):
    name: str = Field(min_length=1, max_length=120)
    first_name: Optional[str] = Field(default=None, max_length=120)
    phone: Optional[str] = Field(default=None, max_length=30)
    email: Optional[str] = Field(default=None, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    address: Optional[str] = Field(default=None, max_length=250)


class OwnerUpdate(_Schema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    first_name: Optional[str] = Field(default=None, max_length=120)
    phone: Optional[str] = Field(default=None, max_length=30)
    email: Optional[str] = Field(default=None, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    address: Optional[str] = Field(default=None, max_length=250)

    @field_validator("name", mode="before")
    @classmethod
    def _required_not_null(cls, value: Any) -> Any:
        return _reject_null(value)


# Properties


class UnitMeters(_Schema):
    water_meter: str = ""
    electricity_meter: str = ""


class PropertyCreate(_Schema):
    owner_id: str = Field(min_length=1)
    kind: PropertyKind
    status: PropertyStatus = "free"
    rent_amount: float = Field(gt=0)
    unit_count: Optional[int] = Field(
        default=None, ge=1, le=MAX_UNITS_PER_YARD, validate_default=True
    )
    unit_meters: Optional[list[UnitMeters]] = None
    city: Optional[str] = Field(default=None, max_length=120)
    address: Optional[str] = Field(default=None, max_length=250)
    description: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("unit_count")
    @classmethod
    def _yards_need_units(cls, value: Optional[int], info: ValidationInfo) -> Optional[int]:
        if info.data.get("kind") == "shared_yard" and value is None:
            raise ValueError(f"required for shared yards (1-{MAX_UNITS_PER_YARD})")
        return value


class PropertyUpdate(_Schema):
    owner_id: Optional[str] = Field(default=None, min_length=1)
    kind: Optional[PropertyKind] = None
    status: Optional[PropertyStatus] = None
    rent_amount: Optional[float] = Field(default=None, gt=0)
    unit_count: Optional[int] = Field(default=None, ge=1, le=MAX_UNITS_PER_YARD)
    city: Optional[str] = Field(default=None, max_length=120)
    address: Optional[str] = Field(default=None, max_length=250)
    description: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("owner_id", "kind", "status", "rent_amount", "unit_count", mode="before")
    @classmethod
    def _required_not_null(cls, value: Any) -> Any:
        return _reject_null(value)


# Tenants


class TenantCreate(_Schema):
    name: str = Field(min_length=1, max_length=120)
    phone: Optional[str] = Field(default=None, max_length=30)
    email: Optional[str] = Field(default=None, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    property_id: str = Field(min_length=1)
    unit_number: Optional[int] = Field(default=None, ge=1, le=MAX_UNITS_PER_YARD)
    rent_amount: float = Field(gt=0)
    entry_date: Date
    status: TenantStatus = "active"


class TenantUpdate(_Schema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    phone: Optional[str] = Field(default=None, max_length=30)
    email: Optional[str] = Field(default=None, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    property_id: Optional[str] = Field(default=None, min_length=1)
    unit_number: Optional[int] = Field(default=None, ge=1, le=MAX_UNITS_PER_YARD)
    rent_amount: Optional[float] = Field(default=None, gt=0)
    entry_date: Optional[Date] = None
    status: Optional[TenantStatus] = None

    @field_validator("name", "property_id", "rent_amount", "entry_date", "status", mode="before")
    @classmethod
    def _required_not_null(cls, value: Any) -> Any:
        return _reject_null(value)


# Payments


class PaymentCreate(_Schema):
    tenant_id: str = Field(min_length=1)
    property_id: Optional[str] = Field(default=None, min_length=1)
    month: Month
    year: int = Field(ge=2000, le=2100)
    amount_paid: float = Field(gt=0)
    method: PaymentMethod = "cash"
    date: Optional[Date] = None
    group_id: Optional[str] = None
    group_total: Optional[float] = Field(default=None, ge=0)
    note: Optional[str] = Field(default=None, max_length=500)


class PaymentUpdate(_Schema):
    month: Optional[Month] = None
    year: Optional[int] = Field(default=None, ge=2000, le=2100)
    amount_paid: Optional[float] = Field(default=None, gt=0)
    method: Optional[PaymentMethod] = None
    date: Optional[Date] = None
    group_id: Optional[str] = None
    group_total: Optional[float] = Field(default=None, ge=0)
    note: Optional[str] = Field(default=None, max_length=500)

    @field_validator("month", "year", "amount_paid", "method", "date", mode="before")
    @classmethod
    def _required_not_null(cls, value: Any) -> Any:
        return _reject_null(value)
