from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, File, Query, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from app import files
from app.api.envelope import Envelope, ItemsPage, items, ok
from app.business.billing.schemas import InvoiceRead, QuoteRead
from app.core.config import get_settings
from app.core.database import get_db
from app.helpdesk.schemas import TicketAttachmentRead, TicketRead
from app.portal.deps import PortalCustomer, get_portal_customer
from app.portal.schemas import (
    PortalCommentCreate,
    PortalCustomerRead,
    PortalDashboardRead,
    PortalLoginRead,
    PortalMessage,
    PortalRegistered,
    PortalTicketCreate,
)
from app.portal.service import portal_service


router = APIRouter(prefix="/customer-portal", tags=["customer-portal"])


@router.post("/auth/register", response_model=Envelope[PortalRegistered], status_code=status.HTTP_201_CREATED)
def register(payload: dict[str, Any] | None = Body(default=None), db: Session = Depends(get_db)) -> dict:
    return ok(portal_service.register(db, payload))


@router.get("/auth/verify-email", response_model=Envelope[PortalMessage])
def verify_email(token: str | None = Query(default=None), db: Session = Depends(get_db)) -> dict:
    return ok(portal_service.verify_email(db, token))


@router.post("/auth/login", response_model=Envelope[PortalLoginRead])
def login(payload: dict[str, Any] | None = Body(default=None), db: Session = Depends(get_db)) -> dict:
    return ok(portal_service.login(db, payload))


@router.get("/auth/me", response_model=Envelope[PortalCustomerRead])
def me(db: Session = Depends(get_db), customer: PortalCustomer = Depends(get_portal_customer)) -> dict:
    return ok(portal_service.me(db, customer))


@router.post("/auth/forgot-password", response_model=Envelope[dict[str, bool]])
def forgot_password(payload: dict[str, Any] | None = Body(default=None), db: Session = Depends(get_db)) -> dict:
    return ok(portal_service.forgot_password(db, payload))


@router.post("/auth/reset-password", response_model=Envelope[PortalMessage])
def reset_password(payload: dict[str, Any] | None = Body(default=None), db: Session = Depends(get_db)) -> dict:
    return ok(portal_service.reset_password(db, payload))


@router.get("/invoices", response_model=Envelope[ItemsPage[InvoiceRead]])
def list_invoices(db: Session = Depends(get_db), customer: PortalCustomer = Depends(get_portal_customer)) -> dict:
    return items(portal_service.list_invoices(db, customer))


@router.get("/invoices/{invoice_id}", response_model=Envelope[InvoiceRead])
def get_invoice(
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    customer: PortalCustomer = Depends(get_portal_customer),
) -> dict:
    return ok(portal_service.get_invoice(db, customer, invoice_id))


@router.get("/tickets", response_model=Envelope[ItemsPage[TicketRead]])
def list_tickets(db: Session = Depends(get_db), customer: PortalCustomer = Depends(get_portal_customer)) -> dict:
    return items(portal_service.list_tickets(db, customer))


@router.post("/tickets", response_model=Envelope[TicketRead], status_code=status.HTTP_201_CREATED)
def create_ticket(
    payload: PortalTicketCreate,
    db: Session = Depends(get_db),
    customer: PortalCustomer = Depends(get_portal_customer),
) -> dict:
    return ok(portal_service.create_ticket(db, customer, payload))


@router.post("/tickets/{ticket_id}/comments", response_model=Envelope[TicketRead])
def add_ticket_comment(
    ticket_id: uuid.UUID,
    payload: PortalCommentCreate,
    db: Session = Depends(get_db),
    customer: PortalCustomer = Depends(get_portal_customer),
) -> dict:
    return ok(portal_service.add_comment(db, customer, ticket_id, payload))


@router.post(
    "/tickets/{ticket_id}/attachments",
    response_model=Envelope[ItemsPage[TicketAttachmentRead]],
    status_code=status.HTTP_201_CREATED,
)
async def upload_ticket_attachments(
    ticket_id: uuid.UUID,
    uploads: list[UploadFile] | None = File(default=None, alias="files"),
    db: Session = Depends(get_db),
    customer: PortalCustomer = Depends(get_portal_customer),
) -> dict:
    limit = get_settings().portal_max_upload_bytes
    contents = [
        (upload.filename or "attachment", upload.content_type, await files.read_upload(upload, limit))
        for upload in uploads or []
    ]
    return items(portal_service.add_attachments(db, customer, ticket_id, contents))


@router.get("/tickets/{ticket_id}/attachments/{attachment_id}/download", response_class=FileResponse)
def download_ticket_attachment(
    ticket_id: uuid.UUID,
    attachment_id: str,
    db: Session = Depends(get_db),
    customer: PortalCustomer = Depends(get_portal_customer),
) -> FileResponse:
    path, attachment = portal_service.attachment_file(db, customer, ticket_id, attachment_id)
    return FileResponse(
        path,
        media_type=attachment.get("content_type") or "application/octet-stream",
        filename=attachment.get("name") or path.name,
    )


@router.delete("/tickets/{ticket_id}/attachments/{attachment_id}", response_model=Envelope[dict[str, bool]])
def delete_ticket_attachment(
    ticket_id: uuid.UUID,
    attachment_id: str,
    db: Session = Depends(get_db),
    customer: PortalCustomer = Depends(get_portal_customer),
) -> dict:
    portal_service.remove_attachment(db, customer, ticket_id, attachment_id)
    return ok({"ok": True})


@router.get("/quotes", response_model=Envelope[ItemsPage[QuoteRead]])
def list_quotes(db: Session = Depends(get_db), customer: PortalCustomer = Depends(get_portal_customer)) -> dict:
    return items(portal_service.list_quotes(db, customer))


@router.get("/quotes/{quote_id}", response_model=Envelope[QuoteRead])
def get_quote(
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    customer: PortalCustomer = Depends(get_portal_customer),
) -> dict:
    return ok(portal_service.get_quote(db, customer, quote_id))


@router.get("/dashboard", response_model=Envelope[PortalDashboardRead])
def dashboard(db: Session = Depends(get_db), customer: PortalCustomer = Depends(get_portal_customer)) -> dict:
    return ok(portal_service.dashboard(db, customer))
