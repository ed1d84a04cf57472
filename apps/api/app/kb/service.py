from __future__ import annotations

import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from app import audit
from app.core.listing import apply_search, apply_sort
from app.core.rbac import Actor
from app.kb.models import KBArticle
from app.kb.schemas import ArticleCreate, ArticleRead, ArticleUpdate

ARTICLE_SORT_FIELDS = {"updated_at", "created_at", "title"}
LIST_LIMIT = 200


@dataclass(slots=True)
class KnowledgeBaseService:
    def list_articles(
        self,
        session: Session,
        *,
        q: str | None,
        tag: str | None,
        category: str | None,
        sort: str | None,
        direction: str | None,
    ) -> list[ArticleRead]:
        stmt: Select[tuple[KBArticle]] = select(KBArticle)
        stmt = apply_search(stmt, q, KBArticle.title, KBArticle.body)
        if category:
            stmt = stmt.where(KBArticle.category == category)
        stmt = apply_sort(stmt, KBArticle, sort, direction, allowed=ARTICLE_SORT_FIELDS, default="updated_at")
        if not tag:
            stmt = stmt.limit(LIST_LIMIT)
        rows = session.scalars(stmt).all()
        # tags is a JSON array; membership is checked here to stay portable across backends
        if tag:
            rows = [row for row in rows if tag in (row.tags or [])][:LIST_LIMIT]
        return [ArticleRead.model_validate(row) for row in rows]

    def get_article(self, session: Session, article_id: uuid.UUID) -> ArticleRead:
        return ArticleRead.model_validate(self._get(session, article_id))

    def create_article(self, session: Session, actor: Actor, dto: ArticleCreate) -> ArticleRead:
        title = (dto.title or "").strip()
        body = dto.body or ""
        if not title or not body.strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_payload")

        article = KBArticle(
            title=title,
            body=body,
            tags=[tag.strip() for tag in dto.tags if tag.strip()],
            category=dto.category,
            author=(dto.author or "").strip() or actor.email or "system",
        )
        session.add(article)
        session.flush()
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="kb.article",
            entity_id=str(article.id),
            action="kb.article.created",
            before=None,
            after={"title": article.title},
            session=session,
        )
        session.commit()
        session.refresh(article)
        return ArticleRead.model_validate(article)

    def update_article(self, session: Session, actor: Actor, article_id: uuid.UUID, dto: ArticleUpdate) -> ArticleRead:
        article = self._get(session, article_id)
        changes = {
            key: value
            for key, value in dto.model_dump(exclude_unset=True).items()
            if value is not None or key == "category"
        }
        if "tags" in changes:
            changes["tags"] = [tag.strip() for tag in changes["tags"] if tag.strip()]
        before = {key: getattr(article, key) for key in changes}
        for key, value in changes.items():
            setattr(article, key, value)
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="kb.article",
            entity_id=str(article.id),
            action="kb.article.updated",
            before=before,
            after=changes,
            session=session,
        )
        session.commit()
        session.refresh(article)
        return ArticleRead.model_validate(article)

    def delete_article(self, session: Session, actor: Actor, article_id: uuid.UUID) -> None:
        article = self._get(session, article_id)
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="kb.article",
            entity_id=str(article.id),
            action="kb.article.deleted",
            before={"title": article.title},
            after=None,
            session=session,
        )
        session.delete(article)
        session.commit()

    def _get(self, session: Session, article_id: uuid.UUID) -> KBArticle:
        article = session.get(KBArticle, article_id)
        if article is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        return article


kb_service = KnowledgeBaseService()
