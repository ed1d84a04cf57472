from __future__ import annotations

import datetime as dt
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import ColumnElement, Select, and_, func, or_, select
from sqlalchemy.orm import Session

from app import audit, events, files
from app.business.expenses.models import Expense
from app.business.expenses.schemas import (
    ApproverRead,
    ApproversRead,
    AttachmentRead,
    ExpenseApproveRequest,
    ExpenseCategoriesRead,
    ExpenseCategory,
    ExpenseCreate,
    ExpenseLineInput,
    ExpensePayRead,
    ExpenseRead,
    ExpenseRejectRequest,
    ExpenseSubmitRequest,
    ExpenseSummaryRead,
    ExpenseUpdate,
    ExpenseVoidRequest,
    StatusBucket,
)
from app.core.config import get_settings
from app.core.rbac import APPROVAL_ROLES, Actor, resolve_roles
from app.core.sequences import EXPENSE_NUMBER, next_value
from app.core.timeutils import utcnow
from app.identity.models import Role, User, UserRole
from app.metrics import observe_expense_transition
from app.notifications import send_email
from app.otel import traced
from app.platform.ledger.schemas import JournalEntryPostRequest, JournalLineInput
from app.platform.ledger.seed import CASH_ACCOUNT
from app.platform.ledger.service import ledger_service

logger = logging.getLogger("app.expenses")

CATEGORY_MAP: dict[str, str] = {
    "Cost of Services": "5000",
    "Contractor Costs": "5200",
    "Hosting & Infrastructure": "5300",
    "Third-Party Services": "5400",
    "Salaries & Wages": "6000",
    "Payroll Taxes": "6100",
    "Employee Benefits": "6150",
    "Rent": "6200",
    "Utilities": "6250",
    "Software Subscriptions": "6300",
    "Marketing & Advertising": "6400",
    "Professional Services": "6500",
    "Travel & Entertainment": "6600",
    "Insurance": "6700",
    "Office Supplies": "6800",
    "Bank Fees": "7100",
    "Other Expense": "6900",
}
FALLBACK_ACCOUNT = "6900"

EDITABLE_STATUSES = ("draft", "rejected")
PENDING_STATUSES = ("pending_manager_approval", "pending_senior_approval", "pending_finance_approval")
ALL_STATUSES = (
    "draft",
    *PENDING_STATUSES,
    "approved",
    "rejected",
    "paid",
    "void",
)
EXPENSE_SORT_FIELDS = {"expense_number", "date", "total", "status", "created_at", "updated_at"}
MAX_LIST_LIMIT = 200
ATTACHMENT_FOLDER = "expenses"
ALLOWED_ATTACHMENT_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
}


@dataclass(frozen=True, slots=True)
class ApprovalLevel:
    number: int
    role: str
    label: str
    status: str
    stamp: str

    @property
    def approver_field(self) -> str:
        return f"{self.role}_approver_id"


APPROVAL_LEVELS: tuple[ApprovalLevel, ...] = (
    ApprovalLevel(1, "manager", "Manager", "pending_manager_approval", "manager"),
    ApprovalLevel(2, "senior_manager", "Senior Manager", "pending_senior_approval", "senior"),
    ApprovalLevel(3, "finance_manager", "Finance Manager", "pending_finance_approval", "finance"),
)
LEVEL_BY_STATUS = {level.status: level for level in APPROVAL_LEVELS}


def _bad_request(code: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=code)


def _history_entry(action: str, actor: Actor, *, level: int | None = None, notes: str | None = None) -> dict[str, Any]:
    return {
        "action": action,
        "level": level,
        "by": actor.user_id,
        "by_name": actor.display_name,
        "at": utcnow().isoformat(),
        "notes": notes,
    }


def enrich_lines(lines: list[ExpenseLineInput]) -> list[dict[str, Any]]:
    return [
        {
            "category": line.category,
            "account_number": line.account_number or CATEGORY_MAP.get(line.category, FALLBACK_ACCOUNT),
            "amount": round(line.amount, 2),
            "description": line.description,
            "project_id": line.project_id,
        }
        for line in lines
    ]


def lines_total(lines: list[dict[str, Any]]) -> float:
    return round(sum(float(line.get("amount") or 0) for line in lines), 2)


@dataclass(slots=True)
class ExpenseService:
    def categories(self) -> ExpenseCategoriesRead:
        return ExpenseCategoriesRead(
            categories=[ExpenseCategory(name=name, account_number=number) for name, number in CATEGORY_MAP.items()]
        )

    def list_expenses(
        self,
        session: Session,
        actor: Actor,
        *,
        q: str | None = None,
        status_filter: str | None = None,
        vendor_id: uuid.UUID | None = None,
        start_date: dt.date | None = None,
        end_date: dt.date | None = None,
        sort: str | None = None,
        direction: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[ExpenseRead], int]:
        stmt: Select[tuple[Expense]] = select(Expense)
        visibility = self._visibility_clause(session, actor)
        if visibility is not None:
            stmt = stmt.where(visibility)

        term = (q or "").strip()
        if term:
            pattern = f"%{term}%"
            clauses = [
                Expense.description.ilike(pattern),
                Expense.vendor_name.ilike(pattern),
                Expense.payee.ilike(pattern),
                Expense.reference_number.ilike(pattern),
            ]
            if term.isdigit():
                clauses.append(Expense.expense_number == int(term))
            stmt = stmt.where(or_(*clauses))
        if status_filter:
            stmt = stmt.where(Expense.status == status_filter)
        if vendor_id is not None:
            stmt = stmt.where(Expense.vendor_id == vendor_id)
        if start_date is not None:
            stmt = stmt.where(Expense.date >= start_date)
        if end_date is not None:
            stmt = stmt.where(Expense.date <= end_date)

        total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        field_name = sort if sort in EXPENSE_SORT_FIELDS else "expense_number"
        column = getattr(Expense, field_name)
        stmt = stmt.order_by(column.asc() if (direction or "desc").lower() == "asc" else column.desc())
        rows = session.scalars(stmt.offset(max(skip, 0)).limit(max(1, min(limit, MAX_LIST_LIMIT)))).all()
        return [ExpenseRead.model_validate(row) for row in rows], total

    def _visibility_clause(self, session: Session, actor: Actor) -> ColumnElement[bool] | None:
        if actor.is_admin or actor.has_role("finance_manager"):
            return None
        if actor.has_role("manager") or actor.has_role("senior_manager"):
            clauses = [
                Expense.created_by == actor.user_id,
                Expense.manager_approver_id == actor.user_id,
                Expense.senior_manager_approver_id == actor.user_id,
                Expense.finance_manager_approver_id == actor.user_id,
            ]
            report_ids = [str(item) for item in session.scalars(
                select(User.id).where(User.manager_id == uuid.UUID(actor.user_id))
            ).all()]
            if report_ids:
                clauses.append(Expense.created_by.in_(report_ids))
            return or_(*clauses)
        return Expense.created_by == actor.user_id

    def list_approvers(self, session: Session) -> ApproversRead:
        links = session.execute(
            select(UserRole.user_id, Role.name, Role.permissions).join(Role, Role.id == UserRole.role_id)
        ).all()
        by_role: dict[str, set[uuid.UUID]] = defaultdict(set)
        admin_ids: set[uuid.UUID] = set()
        for user_id, role_name, permissions in links:
            by_role[role_name].add(user_id)
            if role_name == "admin" or "*" in (permissions or []):
                admin_ids.add(user_id)

        wanted = admin_ids.union(*(by_role[role] for role in APPROVAL_ROLES))
        users = {
            user.id: user
            for user in session.scalars(
                select(User).where(User.id.in_(wanted), User.is_active.is_(True)).order_by(User.name.asc())
            ).all()
        } if wanted else {}

        def build(role: str) -> list[ApproverRead]:
            ids = by_role[role] | admin_ids
            return [
                ApproverRead(id=user.id, name=user.name or user.email, email=user.email)
                for user_id, user in users.items()
                if user_id in ids
            ]

        return ApproversRead(
            managers=build("manager"),
            senior_managers=build("senior_manager"),
            finance_managers=build("finance_manager"),
        )

    def approval_queue(self, session: Session, actor: Actor) -> list[ExpenseRead]:
        stmt: Select[tuple[Expense]] = select(Expense)
        if actor.is_admin:
            stmt = stmt.where(Expense.status.in_(PENDING_STATUSES))
        else:
            clauses = [
                and_(Expense.status == level.status, getattr(Expense, level.approver_field) == actor.user_id)
                for level in APPROVAL_LEVELS
                if actor.has_role(level.role)
            ]
            if not clauses:
                raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="approval_role_required")
            stmt = stmt.where(or_(*clauses))
        rows = session.scalars(stmt.order_by(Expense.submitted_at.asc(), Expense.expense_number.asc())).all()
        return [ExpenseRead.model_validate(row) for row in rows]

    def summary(self, session: Session, *, start_date: dt.date | None, end_date: dt.date | None) -> ExpenseSummaryRead:
        today = utcnow().date()
        start = start_date or dt.date(today.year, 1, 1)
        end = end_date or today
        rows = session.scalars(select(Expense).where(Expense.date >= start, Expense.date <= end)).all()

        by_status = {name: StatusBucket(count=0, total=0.0) for name in ALL_STATUSES}
        by_category: dict[str, float] = defaultdict(float)
        for row in rows:
            bucket = by_status.setdefault(row.status, StatusBucket(count=0, total=0.0))
            bucket.count += 1
            bucket.total = round(bucket.total + float(row.total or 0), 2)
            if row.status == "paid":
                for line in row.lines or []:
                    by_category[line.get("category") or "Uncategorized"] += float(line.get("amount") or 0)

        ordered = sorted(by_category.items(), key=lambda item: item[1], reverse=True)
        return ExpenseSummaryRead(
            start_date=start,
            end_date=end,
            by_status=by_status,
            by_category={name: round(value, 2) for name, value in ordered},
        )

    def get_expense(self, session: Session, expense_id: uuid.UUID) -> ExpenseRead:
        return ExpenseRead.model_validate(self._get(session, expense_id))

    def create_expense(self, session: Session, actor: Actor, dto: ExpenseCreate) -> ExpenseRead:
        lines = enrich_lines(dto.lines)
        expense = Expense(
            expense_number=next_value(session, EXPENSE_NUMBER),
            date=dto.date or utcnow().date(),
            vendor_id=dto.vendor_id,
            vendor_name=dto.vendor_name or None,
            payee=dto.payee or None,
            description=dto.description.strip(),
            lines=lines,
            total=lines_total(lines),
            payment_method=dto.payment_method or None,
            reference_number=dto.reference_number or None,
            notes=dto.notes or None,
            status="draft",
            created_by=actor.user_id,
            created_by_name=actor.display_name,
            current_approval_level=0,
            attachments=[],
            approval_history=[_history_entry("created", actor)],
        )
        session.add(expense)
        session.flush()
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="expense",
            entity_id=str(expense.id),
            action="expense.created",
            before=None,
            after={"expense_number": expense.expense_number, "total": expense.total},
            session=session,
        )
        session.commit()
        session.refresh(expense)
        observe_expense_transition("create", expense.status)
        return ExpenseRead.model_validate(expense)

    def update_expense(self, session: Session, actor: Actor, expense_id: uuid.UUID, dto: ExpenseUpdate) -> ExpenseRead:
        expense = self._get(session, expense_id)
        if expense.status not in EDITABLE_STATUSES:
            raise _bad_request("cannot_edit_submitted_expense")
        self._ensure_owner(expense, actor)

        provided = dto.model_dump(exclude_unset=True)
        changed: list[str] = []
        before: dict[str, Any] = {}
        for key in ("date", "vendor_id", "vendor_name", "payee", "description", "payment_method", "reference_number", "notes"):
            if key not in provided:
                continue
            value = provided[key]
            if key == "description" and not value:
                continue
            if isinstance(value, str) and key != "description":
                value = value or None
            if key == "date" and value is None:
                continue
            if getattr(expense, key) != value:
                before[key] = getattr(expense, key)
                setattr(expense, key, value)
                changed.append(key)

        if dto.lines is not None:
            lines = enrich_lines(dto.lines)
            new_total = lines_total(lines)
            before["lines"] = expense.lines
            expense.lines = lines
            if float(expense.total or 0) != new_total:
                before["total"] = expense.total
                expense.total = new_total
                changed.append("total")
            changed.append("lines")

        previous_status = expense.status
        if changed and expense.status == "rejected":
            expense.status = "draft"
            self._clear_rejection(expense)
            changed.append("status")

        if changed:
            entry = _history_entry("edited", actor, notes=f"Modified fields: {', '.join(changed)}")
            entry["changed_fields"] = changed
            entry["previous_status"] = previous_status
            expense.approval_history = [*expense.approval_history, entry]
            audit.record(
                actor_user_id=actor.user_id,
                entity_type="expense",
                entity_id=str(expense.id),
                action="expense.updated",
                before=before,
                after={key: getattr(expense, key) for key in changed},
                session=session,
            )
        session.commit()
        session.refresh(expense)
        return ExpenseRead.model_validate(expense)

    def submit_expense(
        self,
        session: Session,
        actor: Actor,
        expense_id: uuid.UUID,
        dto: ExpenseSubmitRequest,
    ) -> ExpenseRead:
        requested: dict[str, str] = {}
        for level in APPROVAL_LEVELS:
            value = (getattr(dto, level.approver_field) or "").strip()
            if not value:
                raise _bad_request(f"{level.role}_approver_required")
            requested[level.role] = value

        expense = self._get(session, expense_id)
        if expense.status not in EDITABLE_STATUSES:
            raise _bad_request("can_only_submit_draft_or_rejected")

        approvers = {level.role: self._validate_approver(session, requested[level.role], level) for level in APPROVAL_LEVELS}

        is_resubmit = expense.status == "rejected"
        now = utcnow()
        expense.status = APPROVAL_LEVELS[0].status
        expense.current_approval_level = 1
        expense.submitted_by = actor.user_id
        expense.submitted_at = now
        for level in APPROVAL_LEVELS:
            user = approvers[level.role]
            setattr(expense, level.approver_field, str(user.id))
            setattr(expense, f"{level.role}_approver_name", user.name or user.email)
            setattr(expense, f"{level.stamp}_approved_by", None)
            setattr(expense, f"{level.stamp}_approved_at", None)
        self._clear_rejection(expense)

        chain = " → ".join(user.name or user.email for user in approvers.values())
        expense.approval_history = [
            *expense.approval_history,
            _history_entry(
                "resubmitted" if is_resubmit else "submitted",
                actor,
                level=1,
                notes=f"Submitted for approval chain: {chain}",
            ),
        ]
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="expense",
            entity_id=str(expense.id),
            action="expense.submitted",
            before={"status": "rejected" if is_resubmit else "draft"},
            after={"status": expense.status, "approvers": {role: str(user.id) for role, user in approvers.items()}},
            session=session,
        )
        session.commit()
        session.refresh(expense)

        observe_expense_transition("submit", expense.status)
        events.publish(
            {
                "event_type": "expense.submitted",
                "expense_id": str(expense.id),
                "expense_number": expense.expense_number,
                "resubmitted": is_resubmit,
            }
        )
        self._notify_approver(expense, approvers["manager"], APPROVAL_LEVELS[0])
        return ExpenseRead.model_validate(expense)

    def approve_expense(
        self,
        session: Session,
        actor: Actor,
        expense_id: uuid.UUID,
        dto: ExpenseApproveRequest,
    ) -> ExpenseRead:
        expense = self._get(session, expense_id)
        level = self._current_level(expense, "can_only_approve_pending")
        self._ensure_assigned(expense, actor, level)

        now = utcnow()
        notes = (dto.notes or "").strip() or None
        setattr(expense, f"{level.stamp}_approved_by", actor.user_id)
        setattr(expense, f"{level.stamp}_approved_at", now)
        final = level.number == len(APPROVAL_LEVELS)
        if final:
            expense.status = "approved"
        else:
            next_level = APPROVAL_LEVELS[level.number]
            expense.status = next_level.status
            expense.current_approval_level = next_level.number
        expense.approval_history = [
            *expense.approval_history,
            _history_entry("final_approved" if final else "level_approved", actor, level=level.number, notes=notes),
        ]
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="expense",
            entity_id=str(expense.id),
            action="expense.approved",
            before={"status": level.status},
            after={"status": expense.status, "level": level.number},
            session=session,
        )
        session.commit()
        session.refresh(expense)

        observe_expense_transition("approve", expense.status)
        events.publish(
            {
                "event_type": "expense.approved",
                "expense_id": str(expense.id),
                "expense_number": expense.expense_number,
                "level": level.number,
                "final": final,
            }
        )
        if final:
            self._notify_creator(session, expense, "approved", None)
        else:
            next_level = APPROVAL_LEVELS[level.number]
            approver_id = getattr(expense, next_level.approver_field)
            approver = session.get(User, uuid.UUID(approver_id)) if approver_id else None
            if approver is not None:
                self._notify_approver(expense, approver, next_level)
        return ExpenseRead.model_validate(expense)

    def reject_expense(
        self,
        session: Session,
        actor: Actor,
        expense_id: uuid.UUID,
        dto: ExpenseRejectRequest,
    ) -> ExpenseRead:
        expense = self._get(session, expense_id)
        level = self._current_level(expense, "can_only_reject_pending")
        self._ensure_assigned(expense, actor, level)

        reason = dto.reason.strip()
        expense.status = "rejected"
        expense.rejected_by = actor.user_id
        expense.rejected_at = utcnow()
        expense.rejection_reason = reason
        expense.rejected_at_level = level.number
        expense.approval_history = [
            *expense.approval_history,
            _history_entry("rejected", actor, level=level.number, notes=reason),
        ]
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="expense",
            entity_id=str(expense.id),
            action="expense.rejected",
            before={"status": level.status},
            after={"status": "rejected", "level": level.number, "reason": reason},
            session=session,
        )
        session.commit()
        session.refresh(expense)

        observe_expense_transition("reject", expense.status)
        events.publish(
            {
                "event_type": "expense.rejected",
                "expense_id": str(expense.id),
                "expense_number": expense.expense_number,
                "level": level.number,
            }
        )
        self._notify_creator(session, expense, "rejected", reason)
        return ExpenseRead.model_validate(expense)

    def pay_expense(self, session: Session, actor: Actor, expense_id: uuid.UUID) -> ExpensePayRead:
        expense = self._get(session, expense_id)
        if expense.status != "approved":
            raise _bad_request("can_only_pay_approved")

        with traced("expenses.pay", expense_id=expense.id, expense_number=expense.expense_number):
            journal_entry_id = None
            if get_settings().ledger_auto_post:
                journal_entry_id = self._post_payment_entry(session, actor, expense)

            expense.status = "paid"
            expense.paid_by = actor.user_id
            expense.paid_at = utcnow()
            expense.journal_entry_id = journal_entry_id
            expense.approval_history = [
                *expense.approval_history,
                _history_entry(
                    "paid",
                    actor,
                    notes=f"Journal entry {journal_entry_id}" if journal_entry_id else None,
                ),
            ]
            audit.record(
                actor_user_id=actor.user_id,
                entity_type="expense",
                entity_id=str(expense.id),
                action="expense.paid",
                before={"status": "approved"},
                after={"status": "paid", "journal_entry_id": journal_entry_id},
                session=session,
            )
            session.commit()
            session.refresh(expense)

        observe_expense_transition("pay", expense.status)
        events.publish(
            {
                "event_type": "expense.paid",
                "expense_id": str(expense.id),
                "expense_number": expense.expense_number,
                "total": expense.total,
                "journal_entry_id": str(journal_entry_id) if journal_entry_id else None,
            }
        )
        return ExpensePayRead(expense=ExpenseRead.model_validate(expense), journal_entry_id=journal_entry_id)

    def _post_payment_entry(self, session: Session, actor: Actor, expense: Expense) -> uuid.UUID | None:
        if ledger_service.find_open_period(session, expense.date) is None:
            logger.info("expense.ledger_skipped", extra={"entity_id": str(expense.id), "error": "no_open_period"})
            return None

        wanted = {str(line.get("account_number") or FALLBACK_ACCOUNT) for line in expense.lines}
        accounts = ledger_service.accounts_by_number(session, wanted | {FALLBACK_ACCOUNT, CASH_ACCOUNT})
        if CASH_ACCOUNT not in accounts:
            logger.info("expense.ledger_skipped", extra={"entity_id": str(expense.id), "error": "cash_account_missing"})
            return None

        debits: list[JournalLineInput] = []
        for line in expense.lines:
            amount = Decimal(str(line.get("amount") or 0))
            if amount <= 0:
                continue
            account_number = str(line.get("account_number") or FALLBACK_ACCOUNT)
            if account_number not in accounts:
                account_number = FALLBACK_ACCOUNT
            if account_number not in accounts:
                continue
            debits.append(
                JournalLineInput(
                    account_number=account_number,
                    debit=amount,
                    memo=line.get("description") or line.get("category"),
                    project_id=line.get("project_id"),
                )
            )
        if not debits:
            return None

        total = sum((line.debit for line in debits), Decimal("0"))
        entry = ledger_service.post_entry(
            session,
            actor.user_id,
            JournalEntryPostRequest(
                entry_date=expense.date,
                description=f"Expense #{expense.expense_number}: {expense.description}",
                source_type="expense",
                source_id=str(expense.id),
                lines=[*debits, JournalLineInput(account_number=CASH_ACCOUNT, credit=total, memo="Cash payment")],
            ),
            commit=False,
        )
        return entry.id

    def void_expense(self, session: Session, actor: Actor, expense_id: uuid.UUID, dto: ExpenseVoidRequest) -> ExpenseRead:
        expense = self._get(session, expense_id)
        if expense.status == "paid":
            raise _bad_request("cannot_void_paid_expense")
        previous = expense.status
        reason = (dto.reason or "").strip() or None
        expense.status = "void"
        expense.voided_by = actor.user_id
        expense.voided_at = utcnow()
        expense.void_reason = reason
        expense.approval_history = [*expense.approval_history, _history_entry("voided", actor, notes=reason)]
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="expense",
            entity_id=str(expense.id),
            action="expense.voided",
            before={"status": previous},
            after={"status": "void", "reason": reason},
            session=session,
        )
        session.commit()
        session.refresh(expense)
        observe_expense_transition("void", expense.status)
        return ExpenseRead.model_validate(expense)

    def delete_expense(self, session: Session, actor: Actor, expense_id: uuid.UUID) -> None:
        expense = self._get(session, expense_id)
        if expense.status != "draft":
            raise _bad_request("can_only_delete_draft")
        self._ensure_owner(expense, actor)
        for attachment in expense.attachments or []:
            files.remove_file(attachment.get("path"))
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="expense",
            entity_id=str(expense.id),
            action="expense.deleted",
            before={"expense_number": expense.expense_number, "total": expense.total},
            after=None,
            session=session,
        )
        session.delete(expense)
        session.commit()

    def list_attachments(self, session: Session, expense_id: uuid.UUID) -> list[AttachmentRead]:
        expense = self._get(session, expense_id)
        return [AttachmentRead(**item) for item in expense.attachments or []]

    def attachment_file(self, stored_name: str) -> Path:
        path = files.stored_path(ATTACHMENT_FOLDER, stored_name)
        if path is None:
            raise _bad_request("invalid_filename")
        if not path.is_file():
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="file_not_found")
        return path

    def add_attachment(
        self,
        session: Session,
        actor: Actor,
        expense_id: uuid.UUID,
        *,
        filename: str,
        content_type: str,
        content: bytes,
    ) -> AttachmentRead:
        expense = self._get(session, expense_id)
        if not (actor.is_admin or actor.user_id in (expense.created_by, expense.submitted_by)):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="not_authorized")
        if content_type not in ALLOWED_ATTACHMENT_TYPES:
            raise _bad_request("invalid_file_type")
        if len(content) > get_settings().max_upload_bytes:
            raise HTTPException(status_code=status.HTTP_413_CONTENT_TOO_LARGE, detail="file_too_large")

        file_id, path = files.store_bytes(content, filename, folder=ATTACHMENT_FOLDER)
        attachment = AttachmentRead(
            id=str(file_id),
            filename=filename or "attachment",
            content_type=content_type,
            size=len(content),
            path=path,
            url=f"/api/crm/expenses/attachments/{Path(path).name}",
            uploaded_by=actor.user_id,
            uploaded_at=utcnow().isoformat(),
        )
        expense.attachments = [*expense.attachments, attachment.model_dump()]
        expense.approval_history = [
            *expense.approval_history,
            _history_entry("attachment_added", actor, notes=f"Attached {attachment.filename}"),
        ]
        session.commit()
        logger.info(
            "expense.attachment_added",
            extra={"entity_type": "expense", "entity_id": str(expense.id), "action": "attachment_added"},
        )
        return attachment

    def remove_attachment(self, session: Session, actor: Actor, expense_id: uuid.UUID, attachment_id: str) -> None:
        expense = self._get(session, expense_id)
        match = next((item for item in expense.attachments or [] if item.get("id") == attachment_id), None)
        if match is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="attachment_not_found")
        if not (actor.is_admin or actor.user_id in (expense.created_by, match.get("uploaded_by"))):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="not_authorized")
        if expense.status not in EDITABLE_STATUSES:
            raise _bad_request("cannot_edit_submitted_expense")
        files.remove_file(match.get("path"))
        expense.attachments = [item for item in expense.attachments if item.get("id") != attachment_id]
        expense.approval_history = [
            *expense.approval_history,
            _history_entry("attachment_removed", actor, notes=f"Removed {match.get('filename')}"),
        ]
        session.commit()

    def _get(self, session: Session, expense_id: uuid.UUID) -> Expense:
        expense = session.get(Expense, expense_id)
        if expense is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        return expense

    def _ensure_owner(self, expense: Expense, actor: Actor) -> None:
        if expense.created_by != actor.user_id and not actor.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")

    def _current_level(self, expense: Expense, error_code: str) -> ApprovalLevel:
        level = LEVEL_BY_STATUS.get(expense.status)
        if level is None:
            raise _bad_request(error_code)
        return level

    def _ensure_assigned(self, expense: Expense, actor: Actor, level: ApprovalLevel) -> None:
        if actor.is_admin:
            return
        if getattr(expense, level.approver_field) != actor.user_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="not_assigned_approver")

    def _validate_approver(self, session: Session, raw_id: str, level: ApprovalLevel) -> User:
        try:
            user_id = uuid.UUID(raw_id)
        except ValueError:
            raise _bad_request(f"{level.role}_approver_not_found")
        user = session.get(User, user_id)
        if user is None or not user.is_active:
            raise _bad_request(f"{level.role}_approver_not_found")
        roles = resolve_roles(session, user.id)
        names = {role.name for role in roles}
        is_admin = "admin" in names or any("*" in (role.permissions or []) for role in roles)
        if level.role not in names and not is_admin:
            raise _bad_request(f"{level.role}_approver_not_authorized")
        return user

    def _clear_rejection(self, expense: Expense) -> None:
        expense.rejected_by = None
        expense.rejected_at = None
        expense.rejection_reason = None
        expense.rejected_at_level = None

    def _notify_approver(self, expense: Expense, approver: User, level: ApprovalLevel) -> None:
        link = f"{get_settings().public_base_url.rstrip('/')}/apps/crm/expenses?id={expense.id}"
        send_email(
            approver.email,
            f"Expense #{expense.expense_number} awaits your approval",
            (
                f"Hello {approver.name or approver.email},\n\n"
                f"Expense #{expense.expense_number} ({expense.description}) for {expense.total:.2f} "
                f"needs your approval as {level.label}.\n\nReview it here: {link}\n"
            ),
            template="expense.approval_requested",
        )

    def _notify_creator(self, session: Session, expense: Expense, outcome: str, reason: str | None) -> None:
        try:
            creator = session.get(User, uuid.UUID(expense.created_by))
        except ValueError:
            creator = None
        if creator is None:
            return
        body = f"Expense #{expense.expense_number} ({expense.description}) was {outcome}."
        if reason:
            body += f"\n\nReason: {reason}"
        send_email(
            creator.email,
            f"Expense #{expense.expense_number} {outcome}",
            body + "\n",
            template=f"expense.{outcome}",
        )


expense_service = ExpenseService()
