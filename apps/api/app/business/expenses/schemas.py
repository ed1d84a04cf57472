from __future__ import annotations

import datetime as dt
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


ExpenseStatus = Literal[
    "draft",
    "pending_manager_approval",
    "pending_senior_approval",
    "pending_finance_approval",
    "approved",
    "rejected",
    "paid",
    "void",
]


class ExpenseLineInput(BaseModel):
    category: str = Field(min_length=1, max_length=64)
    account_number: str | None = Field(default=None, max_length=16)
    amount: float = Field(ge=0)
    description: str | None = Field(default=None, max_length=500)
    project_id: str | None = Field(default=None, max_length=64)


class ExpenseCreate(BaseModel):
    date: dt.date | None = None
    vendor_id: UUID | None = None
    vendor_name: str | None = Field(default=None, max_length=255)
    payee: str | None = Field(default=None, max_length=255)
    description: str = Field(min_length=1, max_length=2000)
    lines: list[ExpenseLineInput] = Field(min_length=1)
    payment_method: str | None = Field(default=None, max_length=64)
    reference_number: str | None = Field(default=None, max_length=128)
    notes: str | None = None


class ExpenseUpdate(BaseModel):
    date: dt.date | None = None
    vendor_id: UUID | None = None
    vendor_name: str | None = Field(default=None, max_length=255)
    payee: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, min_length=1, max_length=2000)
    lines: list[ExpenseLineInput] | None = Field(default=None, min_length=1)
    payment_method: str | None = Field(default=None, max_length=64)
    reference_number: str | None = Field(default=None, max_length=128)
    notes: str | None = None


class ExpenseSubmitRequest(BaseModel):
    manager_approver_id: str | None = None
    senior_manager_approver_id: str | None = None
    finance_manager_approver_id: str | None = None


class ExpenseApproveRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class ExpenseRejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class ExpenseVoidRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class ExpenseRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    expense_number: int
    date: dt.date
    vendor_id: UUID | None
    vendor_name: str | None
    payee: str | None
    description: str
    lines: list[dict[str, Any]]
    total: float
    payment_method: str | None
    reference_number: str | None
    notes: str | None
    status: ExpenseStatus | str
    created_by: str
    created_by_name: str | None
    submitted_by: str | None
    submitted_at: dt.datetime | None
    current_approval_level: int
    manager_approver_id: str | None
    manager_approver_name: str | None
    senior_manager_approver_id: str | None
    senior_manager_approver_name: str | None
    finance_manager_approver_id: str | None
    finance_manager_approver_name: str | None
    manager_approved_by: str | None
    manager_approved_at: dt.datetime | None
    senior_approved_by: str | None
    senior_approved_at: dt.datetime | None
    finance_approved_by: str | None
    finance_approved_at: dt.datetime | None
    rejected_by: str | None
    rejected_at: dt.datetime | None
    rejection_reason: str | None
    rejected_at_level: int | None
    paid_by: str | None
    paid_at: dt.datetime | None
    voided_by: str | None
    voided_at: dt.datetime | None
    void_reason: str | None
    journal_entry_id: UUID | None
    attachments: list[dict[str, Any]]
    approval_history: list[dict[str, Any]]
    created_at: dt.datetime
    updated_at: dt.datetime


class ExpenseCategory(BaseModel):
    name: str
    account_number: str


class ExpenseCategoriesRead(BaseModel):
    categories: list[ExpenseCategory]


class ApproverRead(BaseModel):
    id: UUID
    name: str
    email: str


class ApproversRead(BaseModel):
    managers: list[ApproverRead]
    senior_managers: list[ApproverRead]
    finance_managers: list[ApproverRead]


class StatusBucket(BaseModel):
    count: int
    total: float


class ExpenseSummaryRead(BaseModel):
    start_date: dt.date
    end_date: dt.date
    by_status: dict[str, StatusBucket]
    by_category: dict[str, float]


class ExpensePayRead(BaseModel):
    expense: ExpenseRead
    journal_entry_id: UUID | None


class AttachmentRead(BaseModel):
    id: str
    filename: str
    content_type: str
    size: int
    path: str
    url: str | None = None
    uploaded_by: str
    uploaded_at: str
