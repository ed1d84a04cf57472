from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy import Select, delete, select, update
from sqlalchemy.orm import Session

from app import audit, events
from app.core.config import get_settings
from app.core.listing import apply_search, apply_sort
from app.core.rbac import Actor
from app.core.timeutils import utcnow
from app.notifications import send_email
from app.terms.models import CustomTerms, TermsReviewRequest
from app.terms.schemas import (
    PublicReviewRead,
    PublicReviewRequestRead,
    PublicTermsRead,
    ReviewRequestRead,
    ReviewResponseRead,
    ReviewResponseRequest,
    SendForReviewRequest,
    TermsCreate,
    TermsRead,
    TermsUpdate,
)

logger = logging.getLogger("app.terms")

TERMS_SORT_FIELDS = {"name", "is_default", "created_at", "updated_at"}
LIST_LIMIT = 500
RESPONSE_ACTIONS = {"approve": "approved", "reject": "rejected"}


def review_link(token: str) -> str:
    return f"{get_settings().public_base_url.rstrip('/')}/terms/review/{token}"


@dataclass(slots=True)
class TermsService:
    def list_terms(
        self,
        session: Session,
        *,
        q: str | None,
        is_active: bool | None,
        sort: str | None,
        direction: str | None,
    ) -> list[TermsRead]:
        stmt: Select[tuple[CustomTerms]] = select(CustomTerms)
        stmt = apply_search(stmt, q, CustomTerms.name, CustomTerms.description, CustomTerms.content)
        if is_active is not None:
            stmt = stmt.where(CustomTerms.is_active.is_(is_active))
        stmt = apply_sort(stmt, CustomTerms, sort, direction, allowed=TERMS_SORT_FIELDS, default="updated_at")
        rows = session.scalars(stmt.limit(LIST_LIMIT)).all()
        return [TermsRead.model_validate(row) for row in rows]

    def get_terms(self, session: Session, terms_id: uuid.UUID) -> TermsRead:
        return TermsRead.model_validate(self._get(session, terms_id))

    def create_terms(self, session: Session, actor: Actor, dto: TermsCreate) -> TermsRead:
        name = dto.name.strip()
        content = dto.content.strip()
        if not name or not content:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_payload")
        if dto.is_default:
            self._clear_default(session)
        terms = CustomTerms(
            name=name,
            description=(dto.description or "").strip() or None,
            content=content,
            is_default=dto.is_default,
            account_ids=[str(item) for item in dto.account_ids],
            is_active=dto.is_active,
        )
        session.add(terms)
        session.flush()
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="terms",
            entity_id=str(terms.id),
            action="terms.created",
            before=None,
            after={"name": terms.name, "is_default": terms.is_default},
            session=session,
        )
        session.commit()
        session.refresh(terms)
        return TermsRead.model_validate(terms)

    def update_terms(self, session: Session, actor: Actor, terms_id: uuid.UUID, dto: TermsUpdate) -> TermsRead:
        terms = self._get(session, terms_id)
        changes = dto.model_dump(exclude_unset=True)
        for key in ("name", "content", "is_default", "is_active"):
            if key in changes and changes[key] is None:
                changes.pop(key)
        if "name" in changes:
            changes["name"] = changes["name"].strip() or terms.name
        if "content" in changes:
            changes["content"] = changes["content"].strip() or terms.content
        if "description" in changes:
            changes["description"] = (changes["description"] or "").strip() or None
        if "account_ids" in changes:
            changes["account_ids"] = [str(item) for item in changes["account_ids"] or []]
        if changes.get("is_default"):
            self._clear_default(session, exclude_id=terms.id)

        before = {key: getattr(terms, key) for key in changes}
        for key, value in changes.items():
            setattr(terms, key, value)
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="terms",
            entity_id=str(terms.id),
            action="terms.updated",
            before=before,
            after=changes,
            session=session,
        )
        session.commit()
        session.refresh(terms)
        return TermsRead.model_validate(terms)

    def delete_terms(self, session: Session, actor: Actor, terms_id: uuid.UUID) -> None:
        terms = self._get(session, terms_id)
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="terms",
            entity_id=str(terms.id),
            action="terms.deleted",
            before={"name": terms.name},
            after=None,
            session=session,
        )
        session.execute(delete(TermsReviewRequest).where(TermsReviewRequest.terms_id == terms.id))
        session.delete(terms)
        session.commit()

    def send_for_review(
        self,
        session: Session,
        actor: Actor,
        terms_id: uuid.UUID,
        dto: SendForReviewRequest,
    ) -> ReviewRequestRead:
        terms = session.get(CustomTerms, terms_id)
        if terms is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="terms_not_found")

        request = TermsReviewRequest(
            terms_id=terms.id,
            terms_name=terms.name,
            account_id=dto.account_id,
            contact_id=dto.contact_id,
            recipient_email=str(dto.recipient_email).lower(),
            recipient_name=(dto.recipient_name or "").strip() or None,
            sender_id=actor.user_id,
            sender_email=actor.email,
            sender_name=actor.name,
            status="pending",
            custom_message=(dto.custom_message or "").strip() or None,
            review_token=secrets.token_urlsafe(32),
            sent_at=utcnow(),
        )
        session.add(request)
        session.flush()
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="terms.review_request",
            entity_id=str(request.id),
            action="terms.review.sent",
            before=None,
            after={"terms_id": str(terms.id), "recipient_email": request.recipient_email},
            session=session,
        )
        session.commit()
        session.refresh(request)

        greeting = request.recipient_name or request.recipient_email
        body = (
            f"Hello {greeting},\n\n"
            f"{actor.display_name} has asked you to review the terms \"{terms.name}\".\n\n"
        )
        if request.custom_message:
            body += f"{request.custom_message}\n\n"
        body += f"Review and respond here: {review_link(request.review_token)}\n"
        send_email(
            request.recipient_email,
            f"Please review: {terms.name}",
            body,
            template="terms.review_requested",
        )
        return ReviewRequestRead.model_validate(request)

    def list_review_requests(
        self,
        session: Session,
        *,
        status_filter: str | None,
        account_id: uuid.UUID | None,
    ) -> list[ReviewRequestRead]:
        stmt: Select[tuple[TermsReviewRequest]] = select(TermsReviewRequest)
        if status_filter:
            stmt = stmt.where(TermsReviewRequest.status == status_filter)
        if account_id is not None:
            stmt = stmt.where(TermsReviewRequest.account_id == account_id)
        rows = session.scalars(stmt.order_by(TermsReviewRequest.sent_at.desc()).limit(LIST_LIMIT)).all()
        return [ReviewRequestRead.model_validate(row) for row in rows]

    def view_review(self, session: Session, token: str) -> PublicReviewRead:
        request = self._get_by_token(session, token)
        terms = session.get(CustomTerms, request.terms_id)
        if terms is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="terms_not_found")
        if request.status == "pending":
            request.status = "viewed"
            request.viewed_at = utcnow()
            session.commit()
            session.refresh(request)
        return PublicReviewRead(
            request=PublicReviewRequestRead.model_validate(request),
            terms=PublicTermsRead.model_validate(terms),
        )

    def respond(self, session: Session, token: str, dto: ReviewResponseRequest) -> ReviewResponseRead:
        outcome = RESPONSE_ACTIONS.get((dto.action or "").strip().lower())
        if outcome is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_action")
        request = self._get_by_token(session, token)
        if request.status in ("approved", "rejected"):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="already_responded")

        now = utcnow()
        request.status = outcome
        request.responded_at = now
        request.response_notes = (dto.notes or "").strip() or None
        request.signer_name = (dto.signer_name or "").strip() or None
        audit.record(
            actor_user_id=f"reviewer:{request.recipient_email}",
            entity_type="terms.review_request",
            entity_id=str(request.id),
            action=f"terms.review.{outcome}",
            before=None,
            after={"status": outcome, "signer_name": request.signer_name},
            session=session,
        )
        session.commit()
        session.refresh(request)

        events.publish(
            {
                "event_type": "terms.review.responded",
                "review_request_id": str(request.id),
                "terms_id": str(request.terms_id),
                "status": outcome,
            }
        )
        if request.sender_email:
            responder = request.signer_name or request.recipient_name or request.recipient_email
            body = f"The terms review for \"{request.terms_name}\" was {outcome} by {responder}.\n"
            if request.response_notes:
                body += f"\nNotes: {request.response_notes}\n"
            send_email(
                request.sender_email,
                f"Terms Review {outcome.capitalize()}: {request.terms_name}",
                body,
                template="terms.review_responded",
            )
        return ReviewResponseRead(status=request.status, responded_at=now)

    def _clear_default(self, session: Session, *, exclude_id: uuid.UUID | None = None) -> None:
        stmt = update(CustomTerms).where(CustomTerms.is_default.is_(True))
        if exclude_id is not None:
            stmt = stmt.where(CustomTerms.id != exclude_id)
        session.execute(stmt.values(is_default=False))

    def _get(self, session: Session, terms_id: uuid.UUID) -> CustomTerms:
        terms = session.get(CustomTerms, terms_id)
        if terms is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        return terms

    def _get_by_token(self, session: Session, token: str) -> TermsReviewRequest:
        request = session.scalar(select(TermsReviewRequest).where(TermsReviewRequest.review_token == token))
        if request is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="review_request_not_found")
        return request


terms_service = TermsService()
