from __future__ import annotations

import uuid

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.envelope import Envelope, ItemsPage, items, ok
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
from app.business.billing.service import invoice_service, quote_service
from app.core.database import get_db
from app.core.rbac import Actor, get_current_actor


quotes_router = APIRouter(prefix="/crm/quotes", tags=["quotes"])
invoices_router = APIRouter(prefix="/crm/invoices", tags=["invoices"])


@quotes_router.get("", response_model=Envelope[ItemsPage[QuoteRead]])
def list_quotes(
    q: str | None = Query(default=None),
    sort: str | None = Query(default=None),
    dir: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return items(quote_service.list_quotes(db, q=q, sort=sort, direction=dir))


@quotes_router.post("", response_model=Envelope[QuoteRead], status_code=status.HTTP_201_CREATED)
def create_quote(payload: QuoteCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> dict:
    return ok(quote_service.create_quote(db, actor, payload))


@quotes_router.get("/approval-queue", response_model=Envelope[ItemsPage[QuoteQueueItem]])
def approval_queue(
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return items(quote_service.approval_queue(db, actor, status_filter=status_filter))


@quotes_router.get("/{quote_id}", response_model=Envelope[QuoteRead])
def get_quote(quote_id: uuid.UUID, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return ok(quote_service.get_quote(db, quote_id))


@quotes_router.put("/{quote_id}", response_model=Envelope[QuoteRead])
def update_quote(
    quote_id: uuid.UUID,
    payload: QuoteUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(quote_service.update_quote(db, actor, quote_id, payload))


@quotes_router.delete("/{quote_id}", response_model=Envelope[dict[str, bool]])
def delete_quote(quote_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> dict:
    quote_service.delete_quote(db, actor, quote_id)
    return ok({"ok": True})


@quotes_router.get("/{quote_id}/history", response_model=Envelope[ItemsPage[BillingHistoryRead]])
def quote_history(quote_id: uuid.UUID, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return items(quote_service.history(db, quote_id))


@quotes_router.post(
    "/{quote_id}/request-approval",
    response_model=Envelope[QuoteApprovalRequestRead],
    status_code=status.HTTP_201_CREATED,
)
def request_approval(
    quote_id: uuid.UUID,
    payload: QuoteApprovalRequestCreate | None = Body(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(quote_service.request_approval(db, actor, quote_id, payload or QuoteApprovalRequestCreate()))


@quotes_router.post("/{quote_id}/approve", response_model=Envelope[QuoteRead])
def approve_quote(
    quote_id: uuid.UUID,
    payload: QuoteReviewRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(quote_service.review(db, actor, quote_id, payload or QuoteReviewRequest(), approve=True))


@quotes_router.post("/{quote_id}/reject", response_model=Envelope[QuoteRead])
def reject_quote(
    quote_id: uuid.UUID,
    payload: QuoteReviewRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(quote_service.review(db, actor, quote_id, payload or QuoteReviewRequest(), approve=False))


@invoices_router.get("", response_model=Envelope[ItemsPage[InvoiceRead]])
def list_invoices(
    q: str | None = Query(default=None),
    sort: str | None = Query(default=None),
    dir: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return items(invoice_service.list_invoices(db, q=q, sort=sort, direction=dir))


@invoices_router.post("", response_model=Envelope[InvoiceRead], status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(invoice_service.create_invoice(db, actor, payload))


@invoices_router.get("/{invoice_id}", response_model=Envelope[InvoiceRead])
def get_invoice(invoice_id: uuid.UUID, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return ok(invoice_service.get_invoice(db, invoice_id))


@invoices_router.put("/{invoice_id}", response_model=Envelope[InvoiceRead])
def update_invoice(
    invoice_id: uuid.UUID,
    payload: InvoiceUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(invoice_service.update_invoice(db, actor, invoice_id, payload))


@invoices_router.delete("/{invoice_id}", response_model=Envelope[dict[str, bool]])
def delete_invoice(
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    invoice_service.delete_invoice(db, actor, invoice_id)
    return ok({"ok": True})


@invoices_router.get("/{invoice_id}/history", response_model=Envelope[ItemsPage[BillingHistoryRead]])
def invoice_history(invoice_id: uuid.UUID, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return items(invoice_service.history(db, invoice_id))


@invoices_router.post("/{invoice_id}/payments", response_model=Envelope[InvoiceRead])
def record_payment(
    invoice_id: uuid.UUID,
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(invoice_service.record_payment(db, actor, invoice_id, payload))


@invoices_router.post("/{invoice_id}/refunds", response_model=Envelope[InvoiceRead])
def record_refund(
    invoice_id: uuid.UUID,
    payload: RefundCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(invoice_service.record_refund(db, actor, invoice_id, payload))


@invoices_router.post("/{invoice_id}/subscribe", response_model=Envelope[InvoiceRead])
def subscribe(
    invoice_id: uuid.UUID,
    payload: SubscribeRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(invoice_service.subscribe(db, actor, invoice_id, payload or SubscribeRequest()))


@invoices_router.post("/{invoice_id}/cancel-subscription", response_model=Envelope[InvoiceRead])
def cancel_subscription(
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(invoice_service.cancel_subscription(db, actor, invoice_id))


@invoices_router.post("/{invoice_id}/dunning", response_model=Envelope[InvoiceRead])
def set_dunning_state(
    invoice_id: uuid.UUID,
    payload: DunningRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(invoice_service.set_dunning_state(db, actor, invoice_id, payload))
