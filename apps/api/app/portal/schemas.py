from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class PortalRegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=256)
    name: str = Field(min_length=2, max_length=255)
    company: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=64)


class PortalLoginRequest(BaseModel):
    email: EmailStr
    password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=8, max_length=256)


class PortalRegistered(BaseModel):
    message: str
    customer_id: UUID
    email_sent: bool


class PortalCustomerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    name: str
    company: str | None
    phone: str | None
    account_id: UUID | None
    email_verified: bool
    created_at: datetime
    last_login_at: datetime | None


class PortalLoginRead(BaseModel):
    token: str
    customer: PortalCustomerRead


class PortalMessage(BaseModel):
    message: str


class PortalTicketCreate(BaseModel):
    short_description: str | None = None
    description: str | None = None
    requester_name: str | None = None
    requester_email: str | None = None
    requester_phone: str | None = None
    priority: Literal["low", "normal", "high", "critical"] = "normal"


class PortalCommentCreate(BaseModel):
    body: str | None = None


class InvoiceStats(BaseModel):
    total: int
    unpaid: int
    overdue: int


class TicketStats(BaseModel):
    total: int
    open: int


class QuoteStats(BaseModel):
    total: int
    pending: int


class PortalDashboardRead(BaseModel):
    invoices: InvoiceStats
    tickets: TicketStats
    quotes: QuoteStats
