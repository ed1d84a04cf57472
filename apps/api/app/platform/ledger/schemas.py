from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


LedgerAccountType = Literal["asset", "liability", "equity", "revenue", "expense"]
PeriodStatus = Literal["open", "closed"]
EntryStatus = Literal["posted", "reversed"]


class LedgerAccountCreate(BaseModel):
    account_number: str = Field(min_length=1, max_length=16)
    name: str = Field(min_length=1, max_length=255)
    type: LedgerAccountType
    is_active: bool = True


class LedgerAccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_number: str
    name: str
    type: str
    is_active: bool
    created_at: datetime


class LedgerPeriodCreate(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    start_date: date
    end_date: date


class LedgerPeriodRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    start_date: date
    end_date: date
    status: PeriodStatus | str
    closed_at: datetime | None
    created_at: datetime


class JournalLineInput(BaseModel):
    account_id: UUID | None = None
    account_number: str | None = Field(default=None, max_length=16)
    debit: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    credit: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    memo: str | None = None
    project_id: str | None = Field(default=None, max_length=64)


class JournalEntryPostRequest(BaseModel):
    entry_date: date
    description: str = Field(min_length=1)
    source_type: str = Field(default="manual", min_length=1, max_length=64)
    source_id: str | None = Field(default=None, max_length=128)
    lines: list[JournalLineInput] = Field(min_length=2)


class JournalLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    journal_entry_id: UUID
    account_id: UUID
    account_number: str | None = None
    debit: Decimal
    credit: Decimal
    memo: str | None
    project_id: str | None


class JournalEntryRead(BaseModel):
    id: UUID
    entry_number: int
    entry_date: date
    period_id: UUID
    description: str
    source_type: str
    source_id: str | None
    status: EntryStatus | str
    reversal_of_id: UUID | None
    created_by: str
    created_at: datetime
    lines: list[JournalLineRead] = Field(default_factory=list)


class JournalEntryReverseRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)
