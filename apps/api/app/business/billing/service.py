from __future__ import annotations

import calendar
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, or_, select
from sqlalchemy.orm import Session

from app import audit, events
from app.business.billing.models import BillingHistory, Invoice, Quote, QuoteApprovalRequest
from app.business.billing.schemas import (
    BillingHistoryRead,
    DunningRequest,
    InvoiceCreate,
    InvoiceRead,
    InvoiceUpdate,
    PaymentCreate,
    QuoteApprovalRequestCreate,
    QuoteApprovalRequestRead,
    QuoteCreate,
    QuoteQueueItem,
    QuoteRead,
    QuoteReviewRequest,
    QuoteUpdate,
    RefundCreate,
    SubscribeRequest,
)
from app.core.config import get_settings
from app.core.listing import apply_sort
from app.core.rbac import Actor, resolve_roles
from app.core.sequences import INVOICE_NUMBER, QUOTE_NUMBER, next_value
from app.core.timeutils import ensure_utc, utcnow
from app.crm.models import CRMAccount
from app.identity.models import User
from app.notifications import send_email

logger = logging.getLogger("app.billing")

LIST_LIMIT = 200
QUEUE_LIMIT = 100
QUOTE_SORT_FIELDS = {"created_at", "updated_at", "quote_number", "status", "total", "title"}
INVOICE_SORT_FIELDS = {"created_at", "updated_at", "invoice_number", "total", "status", "due_date"}
QUOTE_REVIEW_ROLES = ("manager", "admin")


def _money(value: float | None) -> float:
    return round(float(value or 0), 2)


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def resolve_account_id(session: Session, account_id: uuid.UUID | None, account_number: int | None) -> uuid.UUID:
    if account_id is not None:
        if session.get(CRMAccount, account_id) is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="account_not_found")
        return account_id
    if account_number is not None:
        found = session.scalar(select(CRMAccount.id).where(CRMAccount.account_number == account_number))
        if found is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="account_not_found")
        return found
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing_account")


def record_history(
    session: Session,
    actor: Actor | None,
    entity_type: str,
    entity_id: uuid.UUID,
    event_type: str,
    description: str,
    *,
    old_value: Any = None,
    new_value: Any = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    session.add(
        BillingHistory(
            entity_type=entity_type,
            entity_id=entity_id,
            event_type=event_type,
            description=description,
            user_id=actor.user_id if actor else None,
            user_name=actor.name if actor else None,
            user_email=actor.email if actor else None,
            old_value=old_value,
            new_value=new_value,
            history_metadata=metadata,
        )
    )


def list_history(session: Session, entity_type: str, entity_id: uuid.UUID) -> list[BillingHistoryRead]:
    rows = session.scalars(
        select(BillingHistory)
        .where(BillingHistory.entity_type == entity_type, BillingHistory.entity_id == entity_id)
        .order_by(BillingHistory.created_at.desc())
    ).all()
    return [BillingHistoryRead.model_validate(row) for row in rows]


@dataclass(slots=True)
class QuoteService:
    def list_quotes(self, session: Session, *, q: str | None, sort: str | None, direction: str | None) -> list[QuoteRead]:
        stmt: Select[tuple[Quote]] = select(Quote)
        term = (q or "").strip()
        if term:
            pattern = f"%{term}%"
            stmt = stmt.where(
                or_(
                    Quote.title.ilike(pattern),
                    Quote.status.ilike(pattern),
                    Quote.signer_email.ilike(pattern),
                    Quote.signer_name.ilike(pattern),
                )
            )
        stmt = apply_sort(stmt, Quote, sort, direction, allowed=QUOTE_SORT_FIELDS, default="created_at")
        rows = session.scalars(stmt.limit(LIST_LIMIT)).all()
        return [QuoteRead.model_validate(row) for row in rows]

    def get_quote(self, session: Session, quote_id: uuid.UUID) -> QuoteRead:
        return QuoteRead.model_validate(self._get(session, quote_id))

    def create_quote(self, session: Session, actor: Actor, dto: QuoteCreate) -> QuoteRead:
        title = (dto.title or "").strip()
        if not title:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_payload")
        account_id = resolve_account_id(session, dto.account_id, dto.account_number)

        quote = Quote(
            quote_number=next_value(session, QUOTE_NUMBER),
            title=title,
            account_id=account_id,
            items=list(dto.items),
            subtotal=_money(dto.subtotal),
            tax=_money(dto.tax),
            total=_money(dto.total),
            status=dto.status or "Draft",
            approver=dto.approver or None,
            signer_name=dto.signer_name or None,
            signer_email=dto.signer_email or None,
            esign_status=dto.esign_status or "Not Sent",
            version=1,
        )
        session.add(quote)
        session.flush()
        record_history(session, actor, "quote", quote.id, "created", f"Quote created: {quote.title}")
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="quote",
            entity_id=str(quote.id),
            action="quote.created",
            before=None,
            after={"quote_number": quote.quote_number, "total": quote.total},
            session=session,
        )
        session.commit()
        session.refresh(quote)
        return QuoteRead.model_validate(quote)

    def update_quote(self, session: Session, actor: Actor, quote_id: uuid.UUID, dto: QuoteUpdate) -> QuoteRead:
        quote = self._get(session, quote_id)
        provided = dto.model_dump(exclude_unset=True)
        changes: dict[str, Any] = {}

        for key in ("title", "status", "approver", "approved_at", "signer_name", "signer_email", "signed_at"):
            if key in provided and provided[key] is not None:
                changes[key] = provided[key].strip() if isinstance(provided[key], str) else provided[key]
        if provided.get("account_id") is not None:
            changes["account_id"] = resolve_account_id(session, provided["account_id"], None)
        if provided.get("esign_status"):
            changes["esign_status"] = provided["esign_status"]
            if provided["esign_status"] == "Signed" and provided.get("signed_at") is None:
                changes["signed_at"] = utcnow()
        if provided.get("items") is not None:
            changes["items"] = provided["items"]
            changes["subtotal"] = _money(provided.get("subtotal"))
            changes["tax"] = _money(provided.get("tax"))
            changes["total"] = _money(provided.get("total"))
            changes["version"] = (quote.version or 1) + 1

        before = {key: getattr(quote, key) for key in changes}
        for key, value in changes.items():
            setattr(quote, key, value)

        if "status" in changes and before["status"] != changes["status"]:
            record_history(
                session,
                actor,
                "quote",
                quote.id,
                "status_changed",
                f'Status changed from "{before["status"]}" to "{changes["status"]}"',
                old_value=before["status"],
                new_value=changes["status"],
            )
        if "version" in changes:
            record_history(
                session,
                actor,
                "quote",
                quote.id,
                "version_bumped",
                f"Items updated, version {before['version']} → {changes['version']}",
                old_value=before["total"],
                new_value=changes["total"],
            )
        other = sorted(set(changes) - {"status", "items", "subtotal", "tax", "total", "version"})
        if other:
            record_history(
                session,
                actor,
                "quote",
                quote.id,
                "updated",
                f"Quote updated: {', '.join(other)}",
                metadata={"changed_fields": other},
            )
        if changes:
            audit.record(
                actor_user_id=actor.user_id,
                entity_type="quote",
                entity_id=str(quote.id),
                action="quote.updated",
                before=before,
                after=changes,
                session=session,
            )
        session.commit()
        session.refresh(quote)
        return QuoteRead.model_validate(quote)

    def delete_quote(self, session: Session, actor: Actor, quote_id: uuid.UUID) -> None:
        quote = self._get(session, quote_id)
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="quote",
            entity_id=str(quote.id),
            action="quote.deleted",
            before={"quote_number": quote.quote_number, "title": quote.title},
            after=None,
            session=session,
        )
        session.delete(quote)
        session.commit()

    def history(self, session: Session, quote_id: uuid.UUID) -> list[BillingHistoryRead]:
        self._get(session, quote_id)
        return list_history(session, "quote", quote_id)

    def request_approval(
        self,
        session: Session,
        actor: Actor,
        quote_id: uuid.UUID,
        dto: QuoteApprovalRequestCreate,
    ) -> QuoteApprovalRequestRead:
        quote = session.get(Quote, quote_id)
        if quote is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="quote_not_found")
        approver_email = str(dto.approver_email or quote.approver or "").strip().lower()
        if not approver_email:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="approver_email_required")

        approver = session.scalar(select(User).where(User.email == approver_email))
        if approver is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="approver_not_found")
        approver_roles = {role.name for role in resolve_roles(session, approver.id)}
        if not approver_roles.intersection(QUOTE_REVIEW_ROLES):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="approver_not_manager")

        existing = session.scalar(
            select(QuoteApprovalRequest).where(
                QuoteApprovalRequest.quote_id == quote.id,
                QuoteApprovalRequest.approver_email == approver_email,
                QuoteApprovalRequest.status == "pending",
            )
        )
        if existing is not None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="approval_request_already_exists")

        request = QuoteApprovalRequest(
            quote_id=quote.id,
            quote_number=quote.quote_number,
            quote_title=quote.title,
            requester_id=actor.user_id,
            requester_email=actor.email,
            requester_name=actor.name,
            approver_email=approver_email,
            approver_id=str(approver.id),
            status="pending",
            requested_at=utcnow(),
        )
        session.add(request)
        previous_status = quote.status
        quote.status = "Pending Approval"
        quote.approver = approver_email
        record_history(
            session,
            actor,
            "quote",
            quote.id,
            "approval_requested",
            f"Approval requested from {approver_email}",
            old_value=previous_status,
            new_value=quote.status,
        )
        session.commit()
        session.refresh(request)

        queue_url = f"{get_settings().public_base_url.rstrip('/')}/apps/crm/quotes/approval-queue"
        send_email(
            approver_email,
            f"Quote Approval Request: #{quote.quote_number}",
            (
                "A quote requires your approval:\n\n"
                f"Quote: #{quote.quote_number} - {quote.title}\n"
                f"Requested by: {actor.display_name}\n"
                f"Total: {quote.total:,.2f}\n\n"
                f"View the approval queue: {queue_url}\n"
            ),
            template="quote.approval_requested",
        )
        return QuoteApprovalRequestRead.model_validate(request)

    def approval_queue(self, session: Session, actor: Actor, *, status_filter: str | None) -> list[QuoteQueueItem]:
        self._ensure_reviewer(actor)
        stmt = select(QuoteApprovalRequest).where(QuoteApprovalRequest.approver_email == (actor.email or "").lower())
        wanted = status_filter or "pending"
        if wanted != "all":
            stmt = stmt.where(QuoteApprovalRequest.status == wanted)
        requests = session.scalars(stmt.order_by(QuoteApprovalRequest.requested_at.desc()).limit(QUEUE_LIMIT)).all()

        quote_ids = {item.quote_id for item in requests}
        quotes = {row.id: row for row in session.scalars(select(Quote).where(Quote.id.in_(quote_ids))).all()} if quote_ids else {}
        result: list[QuoteQueueItem] = []
        for item in requests:
            quote = quotes.get(item.quote_id)
            result.append(
                QuoteQueueItem(
                    **QuoteApprovalRequestRead.model_validate(item).model_dump(),
                    quote=QuoteRead.model_validate(quote) if quote is not None else None,
                )
            )
        return result

    def review(
        self,
        session: Session,
        actor: Actor,
        quote_id: uuid.UUID,
        dto: QuoteReviewRequest,
        *,
        approve: bool,
    ) -> QuoteRead:
        self._ensure_reviewer(actor)
        request = session.scalar(
            select(QuoteApprovalRequest).where(
                QuoteApprovalRequest.quote_id == quote_id,
                QuoteApprovalRequest.approver_email == (actor.email or "").lower(),
                QuoteApprovalRequest.status == "pending",
            )
        )
        if request is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="approval_request_not_found")
        quote = self._get(session, quote_id)

        now = utcnow()
        outcome = "approved" if approve else "rejected"
        notes = (dto.review_notes or "").strip() or None
        request.status = outcome
        request.reviewed_at = now
        request.reviewed_by = actor.user_id
        request.review_notes = notes

        previous_status = quote.status
        quote.status = "Approved" if approve else "Rejected"
        if approve:
            quote.approved_at = now
        record_history(
            session,
            actor,
            "quote",
            quote.id,
            outcome,
            f"Quote {outcome} by {actor.display_name}",
            old_value=previous_status,
            new_value=quote.status,
            metadata={"review_notes": notes} if notes else None,
        )
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="quote",
            entity_id=str(quote.id),
            action=f"quote.{outcome}",
            before={"status": previous_status},
            after={"status": quote.status},
            session=session,
        )
        session.commit()
        session.refresh(quote)

        if request.requester_email:
            body = f"Quote #{quote.quote_number} - {quote.title} was {outcome} by {actor.display_name}.\n"
            if notes:
                body += f"\nNotes: {notes}\n"
            send_email(
                request.requester_email,
                f"Quote {outcome.capitalize()}: #{quote.quote_number}",
                body,
                template=f"quote.{outcome}",
            )
        return QuoteRead.model_validate(quote)

    def _ensure_reviewer(self, actor: Actor) -> None:
        if not any(actor.has_role(role) for role in QUOTE_REVIEW_ROLES) and not actor.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="manager_access_required")

    def _get(self, session: Session, quote_id: uuid.UUID) -> Quote:
        quote = session.get(Quote, quote_id)
        if quote is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        return quote


@dataclass(slots=True)
class InvoiceService:
    def list_invoices(self, session: Session, *, q: str | None, sort: str | None, direction: str | None) -> list[InvoiceRead]:
        stmt: Select[tuple[Invoice]] = select(Invoice)
        term = (q or "").strip()
        if term:
            pattern = f"%{term}%"
            clauses = [Invoice.title.ilike(pattern), Invoice.status.ilike(pattern)]
            if term.isdigit():
                clauses.append(Invoice.invoice_number == int(term))
            stmt = stmt.where(or_(*clauses))
        stmt = apply_sort(stmt, Invoice, sort, direction, allowed=INVOICE_SORT_FIELDS, default="updated_at")
        rows = session.scalars(stmt.limit(LIST_LIMIT)).all()
        return [InvoiceRead.model_validate(row) for row in rows]

    def get_invoice(self, session: Session, invoice_id: uuid.UUID) -> InvoiceRead:
        return InvoiceRead.model_validate(self._get(session, invoice_id))

    def create_invoice(self, session: Session, actor: Actor, dto: InvoiceCreate) -> InvoiceRead:
        title = (dto.title or "").strip()
        if not title:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_payload")
        account_id = resolve_account_id(session, dto.account_id, dto.account_number)

        subtotal = _money(dto.subtotal)
        tax = _money(dto.tax)
        total = _money(dto.total) if dto.total else _money(subtotal + tax)
        invoice = Invoice(
            invoice_number=next_value(session, INVOICE_NUMBER),
            title=title,
            account_id=account_id,
            items=list(dto.items),
            subtotal=subtotal,
            tax=tax,
            total=total,
            balance=total,
            currency=dto.currency.upper(),
            status=dto.status,
            due_date=dto.due_date,
            issued_at=ensure_utc(dto.issued_at) or utcnow(),
            payments=[],
            refunds=[],
            dunning_state="none",
        )
        session.add(invoice)
        session.flush()
        record_history(session, actor, "invoice", invoice.id, "created", f"Invoice created: {invoice.title}")
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="invoice",
            entity_id=str(invoice.id),
            action="invoice.created",
            before=None,
            after={"invoice_number": invoice.invoice_number, "total": invoice.total},
            session=session,
        )
        session.commit()
        session.refresh(invoice)
        return InvoiceRead.model_validate(invoice)

    def update_invoice(self, session: Session, actor: Actor, invoice_id: uuid.UUID, dto: InvoiceUpdate) -> InvoiceRead:
        invoice = self._get(session, invoice_id)
        provided = dto.model_dump(exclude_unset=True)
        tracked = False

        if provided.get("status") and provided["status"] != invoice.status:
            record_history(
                session,
                actor,
                "invoice",
                invoice.id,
                "status_changed",
                f'Status changed from "{invoice.status}" to "{provided["status"]}"',
                old_value=invoice.status,
                new_value=provided["status"],
            )
            invoice.status = provided["status"]
            tracked = True

        new_title = (provided.get("title") or "").strip()
        if new_title and new_title != invoice.title:
            record_history(
                session,
                actor,
                "invoice",
                invoice.id,
                "field_changed",
                f'Title changed from "{invoice.title}" to "{new_title}"',
                old_value=invoice.title,
                new_value=new_title,
            )
            invoice.title = new_title
            tracked = True

        if "due_date" in provided and provided["due_date"] != invoice.due_date:
            old_due = invoice.due_date
            new_due = provided["due_date"]
            record_history(
                session,
                actor,
                "invoice",
                invoice.id,
                "field_changed",
                f"Due date changed{f' from {old_due.isoformat()}' if old_due else ''} to {new_due.isoformat() if new_due else 'removed'}",
                old_value=old_due.isoformat() if old_due else None,
                new_value=new_due.isoformat() if new_due else None,
            )
            invoice.due_date = new_due
            tracked = True

        if provided.get("issued_at") is not None:
            invoice.issued_at = ensure_utc(provided["issued_at"])
        if provided.get("account_id") is not None:
            invoice.account_id = resolve_account_id(session, provided["account_id"], None)

        if provided.get("items") is not None:
            old_total = _money(invoice.total)
            invoice.items = provided["items"]
            invoice.subtotal = _money(provided.get("subtotal"))
            invoice.tax = _money(provided.get("tax"))
            invoice.total = _money(provided.get("total")) or _money(invoice.subtotal + invoice.tax)
            paid = sum(float(item.get("amount") or 0) for item in invoice.payments or [])
            refunded = sum(float(item.get("amount") or 0) for item in invoice.refunds or [])
            invoice.balance = _money(max(0.0, invoice.total - paid + refunded))
            if invoice.total != old_total:
                record_history(
                    session,
                    actor,
                    "invoice",
                    invoice.id,
                    "total_changed",
                    f"Total changed from {old_total:.2f} to {invoice.total:.2f}",
                    old_value=old_total,
                    new_value=invoice.total,
                )
            tracked = True

        if not tracked:
            record_history(session, actor, "invoice", invoice.id, "updated", "Invoice updated")
        session.commit()
        session.refresh(invoice)
        return InvoiceRead.model_validate(invoice)

    def record_payment(self, session: Session, actor: Actor, invoice_id: uuid.UUID, dto: PaymentCreate) -> InvoiceRead:
        if not dto.amount > 0:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_amount")
        invoice = self._get(session, invoice_id)
        amount = _money(dto.amount)
        paid_at = ensure_utc(dto.paid_at) or utcnow()

        old_balance = _money(invoice.balance)
        new_balance = _money(max(0.0, old_balance - amount))
        payment = {"amount": amount, "method": dto.method or "card", "paid_at": paid_at.isoformat()}
        invoice.payments = [*invoice.payments, payment]
        invoice.balance = new_balance
        if new_balance == 0:
            invoice.paid_at = paid_at
            invoice.status = "paid"
        record_history(
            session,
            actor,
            "invoice",
            invoice.id,
            "payment_received",
            f"Payment received: {amount:.2f} via {payment['method']}. Balance: {old_balance:.2f} → {new_balance:.2f}",
            old_value=old_balance,
            new_value=new_balance,
            metadata=payment,
        )
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="invoice",
            entity_id=str(invoice.id),
            action="invoice.payment_received",
            before={"balance": old_balance},
            after={"balance": new_balance, "status": invoice.status},
            session=session,
        )
        session.commit()
        session.refresh(invoice)
        events.publish(
            {
                "event_type": "invoice.payment_received",
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "amount": amount,
                "balance": new_balance,
            }
        )
        logger.info("invoice.payment_received", extra={"entity_type": "invoice", "entity_id": str(invoice.id), "status": invoice.status})
        return InvoiceRead.model_validate(invoice)

    def record_refund(self, session: Session, actor: Actor, invoice_id: uuid.UUID, dto: RefundCreate) -> InvoiceRead:
        if not dto.amount > 0:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_amount")
        invoice = self._get(session, invoice_id)
        amount = _money(dto.amount)
        reason = (dto.reason or "").strip() or "refund"
        refunded_at = ensure_utc(dto.refunded_at) or utcnow()

        old_balance = _money(invoice.balance)
        new_balance = _money(old_balance + amount)
        refund = {"amount": amount, "reason": reason, "refunded_at": refunded_at.isoformat()}
        invoice.refunds = [*invoice.refunds, refund]
        invoice.balance = new_balance
        suffix = f" ({reason})" if reason != "refund" else ""
        record_history(
            session,
            actor,
            "invoice",
            invoice.id,
            "refund_issued",
            f"Refund issued: {amount:.2f}{suffix}. Balance: {old_balance:.2f} → {new_balance:.2f}",
            old_value=old_balance,
            new_value=new_balance,
            metadata=refund,
        )
        session.commit()
        session.refresh(invoice)
        return InvoiceRead.model_validate(invoice)

    def subscribe(self, session: Session, actor: Actor, invoice_id: uuid.UUID, dto: SubscribeRequest) -> InvoiceRead:
        invoice = self._get(session, invoice_id)
        start_at = ensure_utc(dto.start_at) or utcnow()
        next_invoice_at = add_months(start_at, 1 if dto.interval == "monthly" else 12)
        invoice.subscription = {
            "interval": dto.interval,
            "active": True,
            "started_at": start_at.isoformat(),
            "next_invoice_at": next_invoice_at.isoformat(),
        }
        record_history(
            session,
            actor,
            "invoice",
            invoice.id,
            "subscription_started",
            f"Subscription started: {dto.interval} billing",
            new_value=invoice.subscription,
        )
        session.commit()
        session.refresh(invoice)
        return InvoiceRead.model_validate(invoice)

    def cancel_subscription(self, session: Session, actor: Actor, invoice_id: uuid.UUID) -> InvoiceRead:
        invoice = self._get(session, invoice_id)
        if not invoice.subscription:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no_subscription")
        invoice.subscription = {**invoice.subscription, "active": False, "canceled_at": utcnow().isoformat()}
        record_history(session, actor, "invoice", invoice.id, "subscription_canceled", "Subscription canceled")
        session.commit()
        session.refresh(invoice)
        return InvoiceRead.model_validate(invoice)

    def set_dunning_state(self, session: Session, actor: Actor, invoice_id: uuid.UUID, dto: DunningRequest) -> InvoiceRead:
        invoice = self._get(session, invoice_id)
        old_state = invoice.dunning_state or "none"
        invoice.dunning_state = dto.state
        invoice.last_dunning_at = utcnow()
        if dto.state != old_state:
            record_history(
                session,
                actor,
                "invoice",
                invoice.id,
                "dunning_state_changed",
                f'Dunning state changed from "{old_state}" to "{dto.state}"',
                old_value=old_state,
                new_value=dto.state,
            )
        session.commit()
        session.refresh(invoice)
        return InvoiceRead.model_validate(invoice)

    def history(self, session: Session, invoice_id: uuid.UUID) -> list[BillingHistoryRead]:
        self._get(session, invoice_id)
        return list_history(session, "invoice", invoice_id)

    def delete_invoice(self, session: Session, actor: Actor, invoice_id: uuid.UUID) -> None:
        invoice = self._get(session, invoice_id)
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="invoice",
            entity_id=str(invoice.id),
            action="invoice.deleted",
            before={"invoice_number": invoice.invoice_number, "total": invoice.total},
            after=None,
            session=session,
        )
        session.delete(invoice)
        session.commit()

    def _get(self, session: Session, invoice_id: uuid.UUID) -> Invoice:
        invoice = session.get(Invoice, invoice_id)
        if invoice is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        return invoice


quote_service = QuoteService()
invoice_service = InvoiceService()
