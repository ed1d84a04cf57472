from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


TicketPriority = Literal["low", "normal", "high", "critical"]
TicketStatus = Literal["open", "pending", "in_progress", "resolved", "closed"]
TicketType = Literal["internal", "external"]
SLAType = Literal["support", "subscription", "project", "other"]
SLAStatus = Literal["active", "expired", "scheduled", "cancelled"]


class TicketCreate(BaseModel):
    short_description: str | None = Field(default=None, max_length=255)
    title: str | None = Field(default=None, max_length=255)
    description: str | None = None
    status: TicketStatus = "open"
    priority: TicketPriority = "normal"
    type: TicketType = "internal"
    account_id: UUID | None = None
    contact_id: UUID | None = None
    assignee: str | None = Field(default=None, max_length=255)
    sla_due_at: datetime | None = None
    requester_name: str | None = Field(default=None, max_length=255)
    requester_email: str | None = Field(default=None, max_length=255)
    requester_phone: str | None = Field(default=None, max_length=64)


class TicketUpdate(BaseModel):
    short_description: str | None = Field(default=None, min_length=1, max_length=255)
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    account_id: UUID | None = None
    contact_id: UUID | None = None
    assignee: str | None = Field(default=None, max_length=255)
    sla_due_at: datetime | None = None


class TicketCommentCreate(BaseModel):
    author: str | None = Field(default=None, max_length=255)
    body: str = Field(min_length=1, max_length=10000)


class TicketAttachmentRead(BaseModel):
    id: str
    name: str
    size: int
    content_type: str | None = None
    uploaded_at: datetime
    uploaded_by_name: str | None = None


class TicketRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ticket_number: int
    short_description: str
    description: str
    status: str
    priority: str
    type: str
    account_id: UUID | None
    contact_id: UUID | None
    assignee: str | None
    sla_due_at: datetime | None
    requester_name: str | None
    requester_email: str | None
    requester_phone: str | None
    comments: list[dict[str, Any]]
    history: list[dict[str, Any]]
    attachments: list[TicketAttachmentRead] = Field(default_factory=list)
    last_sla_alert_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class TicketMetricsRead(BaseModel):
    open: int
    breached: int
    due_next_60: int


class SLAAlertRunRead(BaseModel):
    sent: int
    candidates: int


class SLAContractCreate(BaseModel):
    account_id: UUID
    name: str = Field(min_length=1, max_length=255)
    type: SLAType = "support"
    status: SLAStatus = "active"
    start_date: date | None = None
    end_date: date | None = None
    renewal_date: date | None = None
    auto_renew: bool = False
    response_target_minutes: int | None = Field(default=None, gt=0)
    resolution_target_minutes: int | None = Field(default=None, gt=0)
    entitlements: str | None = None
    notes: str | None = None


class SLAContractUpdate(BaseModel):
    account_id: UUID | None = None
    name: str | None = Field(default=None, min_length=1, max_length=255)
    type: SLAType | None = None
    status: SLAStatus | None = None
    start_date: date | None = None
    end_date: date | None = None
    renewal_date: date | None = None
    auto_renew: bool | None = None
    response_target_minutes: int | None = Field(default=None, gt=0)
    resolution_target_minutes: int | None = Field(default=None, gt=0)
    entitlements: str | None = None
    notes: str | None = None


class SLAContractRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: UUID
    name: str
    type: str
    status: str
    start_date: date | None
    end_date: date | None
    renewal_date: date | None
    auto_renew: bool
    response_target_minutes: int | None
    resolution_target_minutes: int | None
    entitlements: str | None
    notes: str | None
    created_at: datetime
    updated_at: datetime


class SLAAccountSummary(BaseModel):
    account_id: UUID
    active_count: int
    expiring_soon: int
    best_response: int | None
    best_resolution: int | None
    next_expiry: date | None
