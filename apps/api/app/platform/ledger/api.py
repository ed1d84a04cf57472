from __future__ import annotations

from datetime import date
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.envelope import Envelope, ItemsPage, items, ok
from app.core.database import get_db
from app.core.rbac import Actor, require_permissions
from app.platform.ledger.schemas import (
    JournalEntryPostRequest,
    JournalEntryRead,
    JournalEntryReverseRequest,
    LedgerAccountCreate,
    LedgerAccountRead,
    LedgerPeriodCreate,
    LedgerPeriodRead,
)
from app.platform.ledger.seed import seed_default_chart_of_accounts
from app.platform.ledger.service import ledger_service


router = APIRouter(prefix="/ledger", tags=["ledger"])

read_actor = require_permissions("ledger.read")
write_actor = require_permissions("ledger.write")


@router.post("/accounts", response_model=Envelope[LedgerAccountRead], status_code=status.HTTP_201_CREATED)
def create_account(
    payload: LedgerAccountCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(write_actor),
) -> dict:
    return ok(ledger_service.create_account(db, actor, payload))


@router.get("/accounts", response_model=Envelope[ItemsPage[LedgerAccountRead]])
def list_accounts(db: Session = Depends(get_db), _: Actor = Depends(read_actor)) -> dict:
    return items(ledger_service.list_accounts(db))


@router.post("/seeds/chart-of-accounts", response_model=Envelope[ItemsPage[LedgerAccountRead]])
def seed_chart_of_accounts(db: Session = Depends(get_db), _: Actor = Depends(write_actor)) -> dict:
    return items(seed_default_chart_of_accounts(db))


@router.post("/periods", response_model=Envelope[LedgerPeriodRead], status_code=status.HTTP_201_CREATED)
def create_period(
    payload: LedgerPeriodCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(write_actor),
) -> dict:
    return ok(ledger_service.create_period(db, actor, payload))


@router.get("/periods", response_model=Envelope[ItemsPage[LedgerPeriodRead]])
def list_periods(db: Session = Depends(get_db), _: Actor = Depends(read_actor)) -> dict:
    return items(ledger_service.list_periods(db))


@router.post("/periods/{period_id}/close", response_model=Envelope[LedgerPeriodRead])
def close_period(
    period_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(write_actor),
) -> dict:
    return ok(ledger_service.close_period(db, actor, period_id))


@router.post("/journal-entries", response_model=Envelope[JournalEntryRead], status_code=status.HTTP_201_CREATED)
def post_journal_entry(
    payload: JournalEntryPostRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(write_actor),
) -> dict:
    return ok(ledger_service.post_entry(db, actor.user_id, payload))


@router.post("/journal-entries/{entry_id}/reverse", response_model=Envelope[JournalEntryRead])
def reverse_journal_entry(
    entry_id: uuid.UUID,
    payload: JournalEntryReverseRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(write_actor),
) -> dict:
    return ok(ledger_service.reverse_entry(db, actor, entry_id, payload))


@router.get("/journal-entries/{entry_id}", response_model=Envelope[JournalEntryRead])
def get_journal_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: Actor = Depends(read_actor),
) -> dict:
    return ok(ledger_service.get_entry(db, entry_id))


@router.get("/journal-entries", response_model=Envelope[ItemsPage[JournalEntryRead]])
def list_journal_entries(
    source_type: str | None = Query(default=None),
    source_id: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    _: Actor = Depends(read_actor),
) -> dict:
    return items(
        ledger_service.list_entries(
            db,
            source_type=source_type,
            source_id=source_id,
            start_date=start_date,
            end_date=end_date,
        )
    )
