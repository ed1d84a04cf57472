from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from sqlalchemy import Date, DateTime, Index, Integer, JSON, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Expense(Base):
    __tablename__ = "crm_expense"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    expense_number: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    date: Mapped[dt.date] = mapped_column(Date(), nullable=False)
    vendor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    vendor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payee: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    lines: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    total: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    payment_method: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft", server_default="draft")
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    submitted_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    submitted_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    current_approval_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    manager_approver_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    manager_approver_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    senior_manager_approver_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    senior_manager_approver_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    finance_manager_approver_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    finance_manager_approver_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    manager_approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    manager_approved_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    senior_approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    senior_approved_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finance_approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    finance_approved_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    rejected_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejected_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_at_level: Mapped[int | None] = mapped_column(Integer, nullable=True)

    paid_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    paid_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    voided_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    journal_entry_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    attachments: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    approval_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        Index("ix_crm_expense_status", "status"),
        Index("ix_crm_expense_created_by", "created_by"),
        Index("ix_crm_expense_date", "date"),
    )
