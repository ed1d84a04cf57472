from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.envelope import Envelope, ItemsPage, items, ok
from app.core.database import get_db
from app.core.rbac import Actor, get_current_actor
from app.crm.schemas import AccountCreate, AccountRead, ContactCreate, ContactRead, TaskCreate, TaskRead
from app.crm.service import crm_service


router = APIRouter(prefix="/crm", tags=["crm"])


@router.get("/accounts", response_model=Envelope[ItemsPage[AccountRead]])
def list_accounts(
    q: str | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return items(crm_service.list_accounts(db, q=q, limit=limit))


@router.post("/accounts", response_model=Envelope[AccountRead], status_code=status.HTTP_201_CREATED)
def create_account(
    payload: AccountCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(crm_service.create_account(db, actor, payload))


@router.get("/accounts/{account_id}", response_model=Envelope[AccountRead])
def get_account(
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return ok(crm_service.get_account(db, account_id))


@router.get("/contacts", response_model=Envelope[ItemsPage[ContactRead]])
def list_contacts(
    q: str | None = Query(default=None),
    account_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return items(crm_service.list_contacts(db, q=q, account_id=account_id))


@router.post("/contacts", response_model=Envelope[ContactRead], status_code=status.HTTP_201_CREATED)
def create_contact(
    payload: ContactCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(crm_service.create_contact(db, actor, payload))


@router.get("/tasks", response_model=Envelope[ItemsPage[TaskRead]])
def list_tasks(
    status_filter: str | None = Query(default=None, alias="status"),
    related_type: str | None = Query(default=None),
    related_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return items(
        crm_service.list_tasks(db, status_filter=status_filter, related_type=related_type, related_id=related_id)
    )


@router.post("/tasks", response_model=Envelope[TaskRead], status_code=status.HTTP_201_CREATED)
def create_task(
    payload: TaskCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(crm_service.create_task(db, actor, payload))


@router.post("/tasks/{task_id}/complete", response_model=Envelope[TaskRead])
def complete_task(
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(crm_service.complete_task(db, actor, task_id))
