from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


ReviewStatus = Literal["pending", "viewed", "approved", "rejected"]


class TermsCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    content: str = Field(min_length=1)
    is_default: bool = False
    account_ids: list[UUID] = Field(default_factory=list)
    is_active: bool = True


class TermsUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    content: str | None = Field(default=None, min_length=1)
    is_default: bool | None = None
    account_ids: list[UUID] | None = None
    is_active: bool | None = None


class TermsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None
    content: str
    is_default: bool
    account_ids: list[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime


class SendForReviewRequest(BaseModel):
    recipient_email: EmailStr
    recipient_name: str | None = Field(default=None, max_length=255)
    account_id: UUID | None = None
    contact_id: UUID | None = None
    custom_message: str | None = Field(default=None, max_length=5000)


class ReviewRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    terms_id: UUID
    terms_name: str
    account_id: UUID | None
    contact_id: UUID | None
    recipient_email: str
    recipient_name: str | None
    sender_id: str | None
    sender_email: str | None
    sender_name: str | None
    status: ReviewStatus | str
    custom_message: str | None
    review_token: str
    sent_at: datetime
    viewed_at: datetime | None
    responded_at: datetime | None
    response_notes: str | None
    signer_name: str | None
    created_at: datetime


class PublicReviewRequestRead(BaseModel):
    """Review request as shown to the external recipient (no sender internals)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    terms_name: str
    recipient_email: str
    recipient_name: str | None
    sender_name: str | None
    status: ReviewStatus | str
    custom_message: str | None
    sent_at: datetime
    viewed_at: datetime | None
    responded_at: datetime | None


class PublicTermsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None
    content: str


class PublicReviewRead(BaseModel):
    request: PublicReviewRequestRead
    terms: PublicTermsRead


class ReviewResponseRequest(BaseModel):
    action: str
    notes: str | None = Field(default=None, max_length=5000)
    signer_name: str | None = Field(default=None, max_length=255)


class ReviewResponseRead(BaseModel):
    status: ReviewStatus | str
    responded_at: datetime
