from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
    name: str = Field(min_length=1, max_length=255)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=72)


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    name: str | None
    is_active: bool
    manager_id: UUID | None
    roles: list[str] = Field(default_factory=list)
    created_at: datetime


class AuthTokenRead(BaseModel):
    token: str
    user: UserRead


class MeRead(BaseModel):
    id: UUID
    email: str
    name: str | None
    roles: list[str]
    permissions: list[str]


class RoleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    permissions: list[str]


class RoleGrantRequest(BaseModel):
    role: str = Field(min_length=1, max_length=64)


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    manager_id: UUID | None = None
    is_active: bool | None = None
