from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.envelope import Envelope, ItemsPage, items, ok
from app.core.database import get_db
from app.core.rbac import Actor, get_current_actor
from app.kb.schemas import ArticleCreate, ArticleRead, ArticleUpdate
from app.kb.service import kb_service


router = APIRouter(prefix="/crm/kb", tags=["kb"])


@router.get("", response_model=Envelope[ItemsPage[ArticleRead]])
def list_articles(
    q: str | None = Query(default=None),
    tag: str | None = Query(default=None),
    category: str | None = Query(default=None),
    sort: str | None = Query(default=None),
    dir: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return items(kb_service.list_articles(db, q=q, tag=tag, category=category, sort=sort, direction=dir))


@router.post("", response_model=Envelope[ArticleRead], status_code=status.HTTP_201_CREATED)
def create_article(
    payload: ArticleCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(kb_service.create_article(db, actor, payload))


@router.get("/{article_id}", response_model=Envelope[ArticleRead])
def get_article(article_id: uuid.UUID, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return ok(kb_service.get_article(db, article_id))


@router.put("/{article_id}", response_model=Envelope[ArticleRead])
def update_article(
    article_id: uuid.UUID,
    payload: ArticleUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(kb_service.update_article(db, actor, article_id, payload))


@router.delete("/{article_id}", response_model=Envelope[dict[str, bool]])
def delete_article(
    article_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    kb_service.delete_article(db, actor, article_id)
    return ok({"ok": True})
