from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


TaskType = Literal["call", "meeting", "todo", "email", "note"]
TaskStatus = Literal["open", "completed", "cancelled"]
TaskPriority = Literal["low", "normal", "high", "critical"]


class AccountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    company_name: str | None = Field(default=None, max_length=255)
    primary_contact_name: str | None = Field(default=None, max_length=255)
    primary_contact_email: EmailStr | None = None
    primary_contact_phone: str | None = Field(default=None, max_length=64)


class AccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_number: int
    name: str
    company_name: str | None
    primary_contact_name: str | None
    primary_contact_email: str | None
    primary_contact_phone: str | None
    created_at: datetime
    updated_at: datetime


class ContactCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr | None = None
    office_phone: str | None = Field(default=None, max_length=64)
    mobile_phone: str | None = Field(default=None, max_length=64)
    company: str | None = Field(default=None, max_length=255)
    account_id: UUID | None = None
    is_primary: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    name: str
    email: str | None
    office_phone: str | None
    mobile_phone: str | None
    company: str | None
    account_id: UUID | None
    is_primary: bool
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="contact_metadata")
    created_at: datetime


class TaskCreate(BaseModel):
    type: TaskType = "todo"
    subject: str = Field(min_length=1, max_length=180)
    description: str | None = None
    status: TaskStatus = "open"
    priority: TaskPriority = "normal"
    due_at: datetime | None = None
    owner_user_id: UUID | None = None
    related_type: str | None = Field(default=None, max_length=32)
    related_id: str | None = Field(default=None, max_length=64)
    metadata: dict[str, Any] = Field(default_factory=dict)


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    type: str
    subject: str
    description: str | None
    status: str
    priority: str
    due_at: datetime | None
    completed_at: datetime | None
    owner_user_id: UUID | None
    related_type: str | None
    related_id: str | None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="task_metadata")
    created_at: datetime
    updated_at: datetime
