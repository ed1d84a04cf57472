from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from app import audit
from app.core.listing import apply_search
from app.core.rbac import Actor
from app.core.sequences import ACCOUNT_NUMBER, next_value
from app.core.timeutils import utcnow
from app.crm.models import CRMAccount, CRMContact, CRMTask
from app.crm.schemas import (
    AccountCreate,
    AccountRead,
    ContactCreate,
    ContactRead,
    TaskCreate,
    TaskRead,
)

logger = logging.getLogger("app.crm")


@dataclass(slots=True)
class CRMService:
    def list_accounts(self, session: Session, *, q: str | None, limit: int) -> list[AccountRead]:
        stmt: Select[tuple[CRMAccount]] = select(CRMAccount)
        stmt = apply_search(stmt, q, CRMAccount.name, CRMAccount.company_name, CRMAccount.primary_contact_email)
        rows = session.scalars(stmt.order_by(CRMAccount.name.asc()).limit(limit)).all()
        return [AccountRead.model_validate(row) for row in rows]

    def create_account(self, session: Session, actor: Actor, dto: AccountCreate) -> AccountRead:
        payload = dto.model_dump()
        if payload.get("primary_contact_email"):
            payload["primary_contact_email"] = payload["primary_contact_email"].lower()
        account = CRMAccount(account_number=next_value(session, ACCOUNT_NUMBER), **payload)
        session.add(account)
        session.flush()
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="crm.account",
            entity_id=str(account.id),
            action="crm.account.created",
            before=None,
            after={"name": account.name, "account_number": account.account_number},
            session=session,
        )
        session.commit()
        session.refresh(account)
        return AccountRead.model_validate(account)

    def get_account(self, session: Session, account_id: uuid.UUID) -> AccountRead:
        return AccountRead.model_validate(self.require_account(session, account_id))

    def require_account(self, session: Session, account_id: uuid.UUID, *, detail: str = "not_found") -> CRMAccount:
        account = session.get(CRMAccount, account_id)
        if account is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
        return account

    def find_account_by_contact_email(self, session: Session, email: str) -> CRMAccount | None:
        return session.scalar(
            select(CRMAccount).where(CRMAccount.primary_contact_email == email.lower()).order_by(CRMAccount.created_at.asc())
        )

    def list_contacts(self, session: Session, *, q: str | None, account_id: uuid.UUID | None) -> list[ContactRead]:
        stmt: Select[tuple[CRMContact]] = select(CRMContact)
        stmt = apply_search(stmt, q, CRMContact.name, CRMContact.email, CRMContact.company)
        if account_id is not None:
            stmt = stmt.where(CRMContact.account_id == account_id)
        rows = session.scalars(stmt.order_by(CRMContact.name.asc()).limit(200)).all()
        return [ContactRead.model_validate(row) for row in rows]

    def create_contact(self, session: Session, actor: Actor, dto: ContactCreate) -> ContactRead:
        if dto.account_id is not None:
            self.require_account(session, dto.account_id, detail="account_not_found")
        payload = dto.model_dump(exclude={"metadata"})
        if payload.get("email"):
            payload["email"] = payload["email"].lower()
        contact = CRMContact(contact_metadata=dict(dto.metadata), **payload)
        session.add(contact)
        session.flush()
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="crm.contact",
            entity_id=str(contact.id),
            action="crm.contact.created",
            before=None,
            after={"name": contact.name, "email": contact.email},
            session=session,
        )
        session.commit()
        session.refresh(contact)
        return ContactRead.model_validate(contact)

    def link_or_create_contact(
        self,
        session: Session,
        *,
        email: str,
        name: str,
        phone: str | None,
        metadata: dict[str, Any],
    ) -> CRMContact:
        """Return the contact with ``email``, creating one if none exists. Does not commit."""
        normalized = email.lower()
        contact = session.scalar(select(CRMContact).where(CRMContact.email == normalized))
        if contact is not None:
            return contact
        contact = CRMContact(name=name, email=normalized, mobile_phone=phone, contact_metadata=dict(metadata))
        session.add(contact)
        session.flush()
        return contact

    def list_tasks(
        self,
        session: Session,
        *,
        status_filter: str | None,
        related_type: str | None,
        related_id: str | None,
    ) -> list[TaskRead]:
        stmt: Select[tuple[CRMTask]] = select(CRMTask)
        if status_filter:
            stmt = stmt.where(CRMTask.status == status_filter)
        if related_type:
            stmt = stmt.where(CRMTask.related_type == related_type)
        if related_id:
            stmt = stmt.where(CRMTask.related_id == related_id)
        rows = session.scalars(stmt.order_by(CRMTask.due_at.asc(), CRMTask.created_at.desc()).limit(500)).all()
        return [TaskRead.model_validate(row) for row in rows]

    def create_task(self, session: Session, actor: Actor | None, dto: TaskCreate, *, commit: bool = True) -> TaskRead:
        payload = dto.model_dump(exclude={"metadata"})
        if payload.get("owner_user_id") is None and actor is not None:
            payload["owner_user_id"] = uuid.UUID(actor.user_id)
        task = CRMTask(task_metadata=dict(dto.metadata), **payload)
        if task.status == "completed":
            task.completed_at = utcnow()
        session.add(task)
        session.flush()
        if commit:
            session.commit()
            session.refresh(task)
        return TaskRead.model_validate(task)

    def complete_task(self, session: Session, actor: Actor, task_id: uuid.UUID) -> TaskRead:
        task = session.get(CRMTask, task_id)
        if task is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        before = {"status": task.status}
        task.status = "completed"
        task.completed_at = utcnow()
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="crm.task",
            entity_id=str(task.id),
            action="crm.task.completed",
            before=before,
            after={"status": task.status},
            session=session,
        )
        session.commit()
        session.refresh(task)
        return TaskRead.model_validate(task)

    def cancel_related_tasks(self, session: Session, *, related_type: str, related_id: str) -> int:
        tasks = session.scalars(
            select(CRMTask).where(
                CRMTask.related_type == related_type,
                CRMTask.related_id == related_id,
                CRMTask.status != "cancelled",
            )
        ).all()
        for task in tasks:
            task.status = "cancelled"
        if tasks:
            logger.info(
                "crm.tasks_cancelled",
                extra={"entity_type": related_type, "entity_id": related_id, "status": str(len(tasks))},
            )
        return len(tasks)


crm_service = CRMService()
