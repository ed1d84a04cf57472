from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.envelope import Envelope, ItemsPage, items, ok
from app.core.database import get_db
from app.core.rbac import Actor, get_current_actor
from app.helpdesk.schemas import (
    SLAAccountSummary,
    SLAAlertRunRead,
    SLAContractCreate,
    SLAContractRead,
    SLAContractUpdate,
    TicketCommentCreate,
    TicketCreate,
    TicketMetricsRead,
    TicketRead,
    TicketUpdate,
)
from app.helpdesk.service import helpdesk_service


router = APIRouter(prefix="/crm/support", tags=["helpdesk"])
sla_router = APIRouter(prefix="/crm/slas", tags=["helpdesk"])


def _parse_uuid_list(raw: str | None) -> list[uuid.UUID]:
    values: list[uuid.UUID] = []
    for item in (raw or "").split(","):
        try:
            values.append(uuid.UUID(item.strip()))
        except ValueError:
            continue
    return values


@router.get("/tickets", response_model=Envelope[ItemsPage[TicketRead]])
def list_tickets(
    q: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    priority: str | None = Query(default=None),
    account_id: uuid.UUID | None = Query(default=None),
    contact_id: uuid.UUID | None = Query(default=None),
    breached: str | None = Query(default=None),
    due_within: int | None = Query(default=None),
    sort: str | None = Query(default=None),
    dir: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return items(
        helpdesk_service.list_tickets(
            db,
            q=q,
            status_filter=status_filter,
            priority=priority,
            account_id=account_id,
            contact_id=contact_id,
            breached=breached == "1",
            due_within=due_within,
            sort=sort,
            direction=dir,
        )
    )


@router.get("/tickets/metrics", response_model=Envelope[TicketMetricsRead])
def ticket_metrics(db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return ok(helpdesk_service.ticket_metrics(db))


@router.post("/tickets", response_model=Envelope[TicketRead], status_code=status.HTTP_201_CREATED)
def create_ticket(
    payload: TicketCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(helpdesk_service.create_ticket(db, actor, payload))


@router.get("/tickets/{ticket_id}", response_model=Envelope[TicketRead])
def get_ticket(
    ticket_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return ok(helpdesk_service.get_ticket(db, ticket_id))


@router.put("/tickets/{ticket_id}", response_model=Envelope[TicketRead])
def update_ticket(
    ticket_id: uuid.UUID,
    payload: TicketUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(helpdesk_service.update_ticket(db, actor, ticket_id, payload))


@router.post("/tickets/{ticket_id}/comments", response_model=Envelope[TicketRead])
def add_comment(
    ticket_id: uuid.UUID,
    payload: TicketCommentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(helpdesk_service.add_comment(db, actor, ticket_id, payload))


@router.post("/alerts/run", response_model=Envelope[SLAAlertRunRead])
def run_sla_alerts(db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return ok(helpdesk_service.run_sla_alerts(db))


@sla_router.get("", response_model=Envelope[ItemsPage[SLAContractRead]])
def list_slas(
    account_id: uuid.UUID | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    type_filter: str | None = Query(default=None, alias="type"),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return items(
        helpdesk_service.list_slas(db, account_id=account_id, status_filter=status_filter, type_filter=type_filter)
    )


@sla_router.get("/by-account", response_model=Envelope[ItemsPage[SLAAccountSummary]])
def slas_by_account(
    account_ids: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return items(helpdesk_service.summarize_slas_by_account(db, _parse_uuid_list(account_ids)))


@sla_router.get("/{sla_id}", response_model=Envelope[SLAContractRead])
def get_sla(sla_id: uuid.UUID, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return ok(helpdesk_service.get_sla(db, sla_id))


@sla_router.post("", response_model=Envelope[SLAContractRead], status_code=status.HTTP_201_CREATED)
def create_sla(
    payload: SLAContractCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(helpdesk_service.create_sla(db, actor, payload))


@sla_router.put("/{sla_id}", response_model=Envelope[SLAContractRead])
def update_sla(
    sla_id: uuid.UUID,
    payload: SLAContractUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(helpdesk_service.update_sla(db, actor, sla_id, payload))


@sla_router.delete("/{sla_id}", response_model=Envelope[dict[str, bool]])
def delete_sla(sla_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> dict:
    helpdesk_service.delete_sla(db, actor, sla_id)
    return ok({"ok": True})
