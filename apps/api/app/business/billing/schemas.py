from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


InvoiceStatus = Literal["draft", "open", "paid", "void", "uncollectible"]
DunningState = Literal["none", "first_notice", "second_notice", "final_notice", "collections"]
SubscriptionInterval = Literal["monthly", "annual"]


class QuoteCreate(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    account_id: UUID | None = None
    account_number: int | None = None
    items: list[dict[str, Any]] = Field(default_factory=list)
    subtotal: float = 0
    tax: float = 0
    total: float = 0
    status: str | None = Field(default=None, max_length=32)
    approver: str | None = Field(default=None, max_length=255)
    signer_name: str | None = Field(default=None, max_length=255)
    signer_email: str | None = Field(default=None, max_length=255)
    esign_status: str | None = Field(default=None, max_length=32)


class QuoteUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    account_id: UUID | None = None
    items: list[dict[str, Any]] | None = None
    subtotal: float | None = None
    tax: float | None = None
    total: float | None = None
    status: str | None = Field(default=None, max_length=32)
    approver: str | None = Field(default=None, max_length=255)
    approved_at: datetime | None = None
    signer_name: str | None = Field(default=None, max_length=255)
    signer_email: str | None = Field(default=None, max_length=255)
    esign_status: str | None = Field(default=None, max_length=32)
    signed_at: datetime | None = None


class QuoteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    quote_number: int
    title: str
    account_id: UUID
    items: list[dict[str, Any]]
    subtotal: float
    tax: float
    total: float
    status: str
    approver: str | None
    approved_at: datetime | None
    signer_name: str | None
    signer_email: str | None
    esign_status: str
    signed_at: datetime | None
    version: int
    created_at: datetime
    updated_at: datetime


class QuoteApprovalRequestCreate(BaseModel):
    approver_email: EmailStr | None = None


class QuoteReviewRequest(BaseModel):
    review_notes: str | None = Field(default=None, max_length=5000)


class QuoteApprovalRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    quote_id: UUID
    quote_number: int | None
    quote_title: str | None
    requester_id: str
    requester_email: str | None
    requester_name: str | None
    approver_email: str
    status: str
    requested_at: datetime
    reviewed_at: datetime | None
    reviewed_by: str | None
    review_notes: str | None


class QuoteQueueItem(QuoteApprovalRequestRead):
    quote: QuoteRead | None = None


class InvoiceCreate(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    account_id: UUID | None = None
    account_number: int | None = None
    items: list[dict[str, Any]] = Field(default_factory=list)
    subtotal: float = 0
    tax: float = 0
    total: float | None = None
    currency: str = Field(default="USD", min_length=3, max_length=8)
    status: InvoiceStatus = "draft"
    due_date: date | None = None
    issued_at: datetime | None = None


class InvoiceUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    account_id: UUID | None = None
    items: list[dict[str, Any]] | None = None
    subtotal: float | None = None
    tax: float | None = None
    total: float | None = None
    status: InvoiceStatus | None = None
    due_date: date | None = None
    issued_at: datetime | None = None


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_number: int
    title: str
    account_id: UUID
    items: list[dict[str, Any]]
    subtotal: float
    tax: float
    total: float
    balance: float
    currency: str
    status: InvoiceStatus | str
    due_date: date | None
    issued_at: datetime | None
    paid_at: datetime | None
    payments: list[dict[str, Any]]
    refunds: list[dict[str, Any]]
    subscription: dict[str, Any] | None
    dunning_state: DunningState | str
    last_dunning_at: datetime | None
    created_at: datetime
    updated_at: datetime


class PaymentCreate(BaseModel):
    amount: float = 0
    method: str = Field(default="card", max_length=64)
    paid_at: datetime | None = None


class RefundCreate(BaseModel):
    amount: float = 0
    reason: str = Field(default="refund", max_length=500)
    refunded_at: datetime | None = None


class SubscribeRequest(BaseModel):
    interval: SubscriptionInterval = "monthly"
    start_at: datetime | None = None


class DunningRequest(BaseModel):
    state: DunningState


class BillingHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entity_type: str
    entity_id: UUID
    event_type: str
    description: str
    user_id: str | None
    user_name: str | None
    user_email: str | None
    old_value: Any | None
    new_value: Any | None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="history_metadata")
    created_at: datetime
