from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit
from app.business.billing.models import Invoice, Quote
from app.business.billing.schemas import InvoiceRead, QuoteRead
from app.core.auth import create_access_token
from app.core.config import get_settings
from app.core.passwords import hash_password, verify_password
from app.core.timeutils import ensure_utc, utcnow
from app.crm.models import CRMAccount
from app.helpdesk.models import SupportTicket
from app.helpdesk.schemas import TicketAttachmentRead, TicketRead
from app.helpdesk.service import helpdesk_service
from app.notifications import send_email
from app.portal.deps import PORTAL_TOKEN_TYPE, PortalCustomer
from app.portal.models import CustomerPortalUser
from app.portal.schemas import (
    ForgotPasswordRequest,
    InvoiceStats,
    PortalCommentCreate,
    PortalCustomerRead,
    PortalDashboardRead,
    PortalLoginRead,
    PortalLoginRequest,
    PortalMessage,
    PortalRegistered,
    PortalRegisterRequest,
    PortalTicketCreate,
    QuoteStats,
    ResetPasswordRequest,
    TicketStats,
)

logger = logging.getLogger("app.portal")

RESET_TOKEN_TTL = timedelta(hours=1)
CLOSED_INVOICE_STATUSES = {"paid", "void"}
OPEN_TICKET_STATUSES = {"open", "in_progress"}
PENDING_QUOTE_STATUSES = {"Sent", "sent", "viewed"}
TICKET_REQUIRED_FIELDS = ("short_description", "description", "requester_name", "requester_email", "requester_phone")
LIST_LIMIT = 200


def parse_input(model: type[Any], payload: Any) -> Any:
    try:
        return model.model_validate(payload if payload is not None else {})
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_input")


def portal_url(path: str) -> str:
    return f"{get_settings().public_base_url.rstrip('/')}/portal/{path.lstrip('/')}"


@dataclass(slots=True)
class CustomerPortalService:
    def register(self, session: Session, payload: dict[str, Any]) -> PortalRegistered:
        dto: PortalRegisterRequest = parse_input(PortalRegisterRequest, payload)
        email = str(dto.email).lower()
        if session.scalar(select(CustomerPortalUser.id).where(CustomerPortalUser.email == email)) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="email_already_registered")

        account_id = session.scalar(select(CRMAccount.id).where(CRMAccount.primary_contact_email == email).limit(1))
        customer = CustomerPortalUser(
            email=email,
            password_hash=hash_password(dto.password),
            name=dto.name.strip(),
            company=(dto.company or "").strip() or None,
            phone=(dto.phone or "").strip() or None,
            account_id=account_id,
            is_active=True,
            email_verified=False,
            verification_token=secrets.token_urlsafe(24),
        )
        session.add(customer)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="email_already_registered")
        audit.record(
            actor_user_id=f"customer:{customer.id}",
            entity_type="portal.customer",
            entity_id=str(customer.id),
            action="portal.customer.registered",
            before=None,
            after={"email": email, "account_id": str(account_id) if account_id else None},
            session=session,
        )
        session.commit()

        message = send_email(
            email,
            "Welcome to the BOAZ-OS Customer Portal - Verify Your Email",
            (
                f"Hello {customer.name},\n\n"
                "Thank you for registering for the BOAZ-OS Customer Portal. "
                "Verify your email address to view your invoices, tickets and quotes:\n\n"
                f"{portal_url(f'verify-email?token={customer.verification_token}')}\n"
            ),
            template="portal.verify_email",
        )
        return PortalRegistered(
            message="Registration successful. Please check your email to verify your account.",
            customer_id=customer.id,
            email_sent=message["status"] != "failed",
        )

    def verify_email(self, session: Session, token: str | None) -> PortalMessage:
        if not token:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing_token")
        customer = session.scalar(select(CustomerPortalUser).where(CustomerPortalUser.verification_token == token))
        if customer is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_token")
        customer.email_verified = True
        customer.verification_token = None
        session.commit()
        return PortalMessage(message="Email verified successfully. You can now login.")

    def login(self, session: Session, payload: dict[str, Any]) -> PortalLoginRead:
        dto: PortalLoginRequest = parse_input(PortalLoginRequest, payload)
        customer = session.scalar(select(CustomerPortalUser).where(CustomerPortalUser.email == str(dto.email).lower()))
        if customer is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_credentials")
        if not customer.is_active:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="account_inactive")
        if not verify_password(dto.password, customer.password_hash):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_credentials")
        if not customer.email_verified:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="email_not_verified")

        customer.last_login_at = utcnow()
        session.commit()
        session.refresh(customer)
        token = create_access_token(
            str(customer.id),
            email=customer.email,
            token_type=PORTAL_TOKEN_TYPE,
            expires_delta=timedelta(days=get_settings().portal_jwt_expires_days),
            extra_claims={
                "customer_id": str(customer.id),
                "account_id": str(customer.account_id) if customer.account_id else None,
            },
        )
        logger.info("portal.login", extra={"entity_type": "portal.customer", "entity_id": str(customer.id)})
        return PortalLoginRead(token=token, customer=PortalCustomerRead.model_validate(customer))

    def me(self, session: Session, customer: PortalCustomer) -> PortalCustomerRead:
        row = session.get(CustomerPortalUser, customer.customer_id)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="customer_not_found")
        return PortalCustomerRead.model_validate(row)

    def forgot_password(self, session: Session, payload: dict[str, Any]) -> dict[str, bool]:
        dto: ForgotPasswordRequest = parse_input(ForgotPasswordRequest, payload)
        customer = session.scalar(select(CustomerPortalUser).where(CustomerPortalUser.email == str(dto.email).lower()))
        if customer is None:
            return {"ok": True}

        customer.reset_token = secrets.token_urlsafe(24)
        customer.reset_token_expires = utcnow() + RESET_TOKEN_TTL
        session.commit()
        send_email(
            customer.email,
            "Reset Your BOAZ-OS Customer Portal Password",
            (
                f"Hello {customer.name},\n\n"
                "We received a request to reset your Customer Portal password. "
                "This link expires in 1 hour:\n\n"
                f"{portal_url(f'reset-password?token={customer.reset_token}')}\n"
            ),
            template="portal.reset_password",
        )
        return {"ok": True}

    def reset_password(self, session: Session, payload: dict[str, Any]) -> PortalMessage:
        dto: ResetPasswordRequest = parse_input(ResetPasswordRequest, payload)
        customer = session.scalar(select(CustomerPortalUser).where(CustomerPortalUser.reset_token == dto.token))
        expires = ensure_utc(customer.reset_token_expires) if customer is not None else None
        if customer is None or expires is None or expires <= utcnow():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_or_expired_token")
        customer.password_hash = hash_password(dto.password)
        customer.reset_token = None
        customer.reset_token_expires = None
        session.commit()
        return PortalMessage(message="Password reset successfully. You can now login.")

    def list_invoices(self, session: Session, customer: PortalCustomer) -> list[InvoiceRead]:
        if customer.account_id is None:
            return []
        rows = session.scalars(
            select(Invoice)
            .where(Invoice.account_id == customer.account_id)
            .order_by(Invoice.created_at.desc())
            .limit(LIST_LIMIT)
        ).all()
        return [InvoiceRead.model_validate(row) for row in rows]

    def get_invoice(self, session: Session, customer: PortalCustomer, invoice_id: uuid.UUID) -> InvoiceRead:
        invoice = session.get(Invoice, invoice_id)
        if invoice is None or customer.account_id is None or invoice.account_id != customer.account_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="invoice_not_found")
        return InvoiceRead.model_validate(invoice)

    def list_tickets(self, session: Session, customer: PortalCustomer) -> list[TicketRead]:
        return helpdesk_service.list_customer_tickets(session, account_id=customer.account_id, email=customer.email)

    def create_ticket(self, session: Session, customer: PortalCustomer, dto: PortalTicketCreate) -> TicketRead:
        values = {field: (getattr(dto, field) or "").strip() for field in TICKET_REQUIRED_FIELDS}
        if not all(values.values()):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing_required_fields")
        return helpdesk_service.create_portal_ticket(
            session,
            customer_id=f"customer:{customer.customer_id}",
            account_id=customer.account_id,
            priority=dto.priority,
            **values,
        )

    def add_comment(
        self,
        session: Session,
        customer: PortalCustomer,
        ticket_id: uuid.UUID,
        dto: PortalCommentCreate,
    ) -> TicketRead:
        body = (dto.body or "").strip()
        if not body:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_comment")
        return helpdesk_service.add_customer_comment(
            session,
            ticket_id=ticket_id,
            account_id=customer.account_id,
            email=customer.email,
            author=self._display_name(session, customer),
            body=body,
        )

    def add_attachments(
        self,
        session: Session,
        customer: PortalCustomer,
        ticket_id: uuid.UUID,
        uploads: list[tuple[str, str | None, bytes]],
    ) -> list[TicketAttachmentRead]:
        settings = get_settings()
        if not uploads:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing_files")
        if len(uploads) > settings.portal_max_files:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="too_many_files")
        if any(len(content) > settings.portal_max_upload_bytes for _, _, content in uploads):
            raise HTTPException(status_code=status.HTTP_413_CONTENT_TOO_LARGE, detail="file_too_large")
        return helpdesk_service.add_customer_attachments(
            session,
            ticket_id=ticket_id,
            account_id=customer.account_id,
            email=customer.email,
            uploaded_by=self._display_name(session, customer),
            uploads=uploads,
        )

    def attachment_file(
        self,
        session: Session,
        customer: PortalCustomer,
        ticket_id: uuid.UUID,
        attachment_id: str,
    ) -> tuple[Path, dict[str, Any]]:
        return helpdesk_service.customer_attachment_file(
            session,
            ticket_id=ticket_id,
            attachment_id=attachment_id,
            account_id=customer.account_id,
            email=customer.email,
        )

    def remove_attachment(
        self,
        session: Session,
        customer: PortalCustomer,
        ticket_id: uuid.UUID,
        attachment_id: str,
    ) -> None:
        helpdesk_service.remove_customer_attachment(
            session,
            ticket_id=ticket_id,
            attachment_id=attachment_id,
            account_id=customer.account_id,
            email=customer.email,
            removed_by=self._display_name(session, customer),
        )

    def list_quotes(self, session: Session, customer: PortalCustomer) -> list[QuoteRead]:
        if customer.account_id is None:
            return []
        rows = session.scalars(
            select(Quote)
            .where(Quote.account_id == customer.account_id)
            .order_by(Quote.created_at.desc())
            .limit(LIST_LIMIT)
        ).all()
        return [QuoteRead.model_validate(row) for row in rows]

    def get_quote(self, session: Session, customer: PortalCustomer, quote_id: uuid.UUID) -> QuoteRead:
        quote = session.get(Quote, quote_id)
        if quote is None or customer.account_id is None or quote.account_id != customer.account_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="quote_not_found")
        return QuoteRead.model_validate(quote)

    def dashboard(self, session: Session, customer: PortalCustomer) -> PortalDashboardRead:
        invoice_stats = InvoiceStats(total=0, unpaid=0, overdue=0)
        quote_stats = QuoteStats(total=0, pending=0)
        if customer.account_id is not None:
            today = utcnow().date()
            invoices = session.execute(
                select(Invoice.status, Invoice.due_date).where(Invoice.account_id == customer.account_id)
            ).all()
            unpaid = [row for row in invoices if row.status not in CLOSED_INVOICE_STATUSES]
            invoice_stats = InvoiceStats(
                total=len(invoices),
                unpaid=len(unpaid),
                overdue=sum(1 for row in unpaid if row.due_date is not None and row.due_date < today),
            )
            quote_statuses = session.scalars(select(Quote.status).where(Quote.account_id == customer.account_id)).all()
            quote_stats = QuoteStats(
                total=len(quote_statuses),
                pending=sum(1 for value in quote_statuses if value in PENDING_QUOTE_STATUSES),
            )

        if customer.account_id is not None:
            ticket_filter = SupportTicket.account_id == customer.account_id
        else:
            ticket_filter = SupportTicket.requester_email == customer.email.lower()
        ticket_statuses = session.scalars(select(SupportTicket.status).where(ticket_filter)).all()
        ticket_stats = TicketStats(
            total=len(ticket_statuses),
            open=sum(1 for value in ticket_statuses if value in OPEN_TICKET_STATUSES),
        )
        return PortalDashboardRead(invoices=invoice_stats, tickets=ticket_stats, quotes=quote_stats)

    def _display_name(self, session: Session, customer: PortalCustomer) -> str:
        row = session.get(CustomerPortalUser, customer.customer_id)
        return row.name if row is not None else customer.email


portal_service = CustomerPortalService()
