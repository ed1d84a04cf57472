from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.envelope import Envelope, ItemsPage, items, ok
from app.core.database import get_db
from app.core.rbac import Actor, get_current_actor
from app.terms.schemas import (
    PublicReviewRead,
    ReviewRequestRead,
    ReviewResponseRead,
    ReviewResponseRequest,
    SendForReviewRequest,
    TermsCreate,
    TermsRead,
    TermsUpdate,
)
from app.terms.service import terms_service


router = APIRouter(prefix="/crm/terms", tags=["terms"])
public_router = APIRouter(prefix="/terms/review", tags=["terms-public"])


@router.get("", response_model=Envelope[ItemsPage[TermsRead]])
def list_terms(
    q: str | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    sort: str | None = Query(default=None),
    dir: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return items(terms_service.list_terms(db, q=q, is_active=is_active, sort=sort, direction=dir))


@router.post("", response_model=Envelope[TermsRead], status_code=status.HTTP_201_CREATED)
def create_terms(
    payload: TermsCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(terms_service.create_terms(db, actor, payload))


@router.get("/review-requests", response_model=Envelope[ItemsPage[ReviewRequestRead]])
def list_review_requests(
    status_filter: str | None = Query(default=None, alias="status"),
    account_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return items(terms_service.list_review_requests(db, status_filter=status_filter, account_id=account_id))


@router.get("/{terms_id}", response_model=Envelope[TermsRead])
def get_terms(terms_id: uuid.UUID, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return ok(terms_service.get_terms(db, terms_id))


@router.put("/{terms_id}", response_model=Envelope[TermsRead])
def update_terms(
    terms_id: uuid.UUID,
    payload: TermsUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(terms_service.update_terms(db, actor, terms_id, payload))


@router.delete("/{terms_id}", response_model=Envelope[dict[str, bool]])
def delete_terms(
    terms_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    terms_service.delete_terms(db, actor, terms_id)
    return ok({"ok": True})


@router.post(
    "/{terms_id}/send-for-review",
    response_model=Envelope[ReviewRequestRead],
    status_code=status.HTTP_201_CREATED,
)
def send_for_review(
    terms_id: uuid.UUID,
    payload: SendForReviewRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(terms_service.send_for_review(db, actor, terms_id, payload))


@public_router.get("/{token}", response_model=Envelope[PublicReviewRead])
def view_review(token: str, db: Session = Depends(get_db)) -> dict:
    return ok(terms_service.view_review(db, token))


@public_router.post("/{token}/respond", response_model=Envelope[ReviewResponseRead])
def respond_to_review(token: str, payload: ReviewResponseRequest, db: Session = Depends(get_db)) -> dict:
    return ok(terms_service.respond(db, token, payload))
