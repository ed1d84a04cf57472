from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, field_validator


VendorStatus = Literal["Active", "Inactive"]

_URL_ADAPTER = TypeAdapter(AnyHttpUrl)


def _check_website(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return ""
    try:
        _URL_ADAPTER.validate_python(value)
    except ValueError:
        raise ValueError("website must be a valid URL")
    return value


class VendorCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    legal_name: str | None = Field(default=None, max_length=255)
    website: str | None = Field(default=None, max_length=500)
    support_email: EmailStr | Literal[""] | None = None
    support_phone: str | None = Field(default=None, max_length=64)
    address_line1: str | None = Field(default=None, max_length=255)
    address_line2: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=128)
    state: str | None = Field(default=None, max_length=128)
    postal_code: str | None = Field(default=None, max_length=32)
    country: str | None = Field(default=None, max_length=128)
    status: VendorStatus = "Active"
    categories: list[str] = Field(default_factory=list)
    notes: str | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name is required")
        return value

    @field_validator("website")
    @classmethod
    def _validate_website(cls, value: str | None) -> str | None:
        return _check_website(value)


class VendorUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    legal_name: str | None = Field(default=None, max_length=255)
    website: str | None = Field(default=None, max_length=500)
    support_email: EmailStr | Literal[""] | None = None
    support_phone: str | None = Field(default=None, max_length=64)
    address_line1: str | None = Field(default=None, max_length=255)
    address_line2: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=128)
    state: str | None = Field(default=None, max_length=128)
    postal_code: str | None = Field(default=None, max_length=32)
    country: str | None = Field(default=None, max_length=128)
    status: VendorStatus | None = None
    categories: list[str] | None = None
    notes: str | None = None

    @field_validator("website")
    @classmethod
    def _validate_website(cls, value: str | None) -> str | None:
        return _check_website(value)


class VendorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    legal_name: str | None
    website: str | None
    support_email: str | None
    support_phone: str | None
    address_line1: str | None
    address_line2: str | None
    city: str | None
    state: str | None
    postal_code: str | None
    country: str | None
    status: VendorStatus | str
    categories: list[str]
    notes: str | None
    created_at: datetime
    updated_at: datetime


class VendorOption(BaseModel):
    id: UUID
    name: str


class VendorHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    vendor_id: str
    event_type: str
    description: str
    user_id: str | None
    user_name: str | None
    user_email: str | None
    old_value: Any | None
    new_value: Any | None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="history_metadata")
    created_at: datetime
