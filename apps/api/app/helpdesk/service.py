from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session

from app import audit, events, files
from app.core.config import get_settings
from app.core.listing import apply_search, apply_sort
from app.core.rbac import Actor
from app.core.sequences import TICKET_NUMBER, next_value
from app.core.timeutils import ensure_utc, utcnow
from app.helpdesk.models import SLAContract, SupportTicket
from app.helpdesk.schemas import (
    SLAAccountSummary,
    SLAAlertRunRead,
    SLAContractCreate,
    SLAContractRead,
    SLAContractUpdate,
    TicketAttachmentRead,
    TicketCommentCreate,
    TicketCreate,
    TicketMetricsRead,
    TicketRead,
    TicketUpdate,
)
from app.metrics import observe_ticket_created
from app.notifications import send_email

logger = logging.getLogger("app.helpdesk")

DESCRIPTION_LIMIT = 2500
ACTIVE_TICKET_STATUSES = ("open", "pending")
TICKET_SORT_FIELDS = {"created_at", "updated_at", "ticket_number", "priority", "status", "sla_due_at"}
PORTAL_SLA_HOURS = {"critical": 4, "high": 8, "normal": 24, "low": 48}
EXPIRING_SOON_DAYS = 90
ATTACHMENT_FOLDER = "tickets"
SLA_ALERT_BATCH = 200


def _history_entry(event: str, description: str, by: str) -> dict[str, Any]:
    return {"at": utcnow().isoformat(), "event": event, "description": description, "by": by}


@dataclass(slots=True)
class HelpdeskService:
    def list_tickets(
        self,
        session: Session,
        *,
        q: str | None = None,
        status_filter: str | None = None,
        priority: str | None = None,
        account_id: uuid.UUID | None = None,
        contact_id: uuid.UUID | None = None,
        breached: bool = False,
        due_within: int | None = None,
        sort: str | None = None,
        direction: str | None = None,
    ) -> list[TicketRead]:
        now = utcnow()
        stmt: Select[tuple[SupportTicket]] = select(SupportTicket)
        stmt = apply_search(stmt, q, SupportTicket.short_description, SupportTicket.description)
        if status_filter:
            stmt = stmt.where(SupportTicket.status == status_filter)
        if priority:
            stmt = stmt.where(SupportTicket.priority == priority)
        if account_id is not None:
            stmt = stmt.where(SupportTicket.account_id == account_id)
        if contact_id is not None:
            stmt = stmt.where(SupportTicket.contact_id == contact_id)
        if breached:
            stmt = stmt.where(SupportTicket.sla_due_at.is_not(None), SupportTicket.sla_due_at < now)
        if due_within is not None and due_within > 0:
            stmt = stmt.where(
                SupportTicket.sla_due_at >= now,
                SupportTicket.sla_due_at <= now + timedelta(minutes=due_within),
            )
        stmt = apply_sort(stmt, SupportTicket, sort, direction, allowed=TICKET_SORT_FIELDS, default="created_at")
        rows = session.scalars(stmt.limit(200)).all()
        return [TicketRead.model_validate(row) for row in rows]

    def ticket_metrics(self, session: Session) -> TicketMetricsRead:
        now = utcnow()
        active = SupportTicket.status.in_(ACTIVE_TICKET_STATUSES)

        def count(*conditions: Any) -> int:
            return int(session.scalar(select(func.count()).select_from(SupportTicket).where(active, *conditions)) or 0)

        return TicketMetricsRead(
            open=count(),
            breached=count(SupportTicket.sla_due_at.is_not(None), SupportTicket.sla_due_at < now),
            due_next_60=count(SupportTicket.sla_due_at >= now, SupportTicket.sla_due_at <= now + timedelta(minutes=60)),
        )

    def get_ticket(self, session: Session, ticket_id: uuid.UUID) -> TicketRead:
        return TicketRead.model_validate(self._get(session, ticket_id))

    def create_ticket(self, session: Session, actor: Actor, dto: TicketCreate) -> TicketRead:
        short_description = (dto.short_description or "").strip() or (dto.title or "").strip()
        if not short_description:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_payload")

        sla_due_at = ensure_utc(dto.sla_due_at)
        if sla_due_at is None and dto.account_id is not None:
            target = self._support_resolution_target(session, dto.account_id)
            if target is not None:
                sla_due_at = utcnow() + timedelta(minutes=target)

        ticket = SupportTicket(
            ticket_number=next_value(session, TICKET_NUMBER),
            short_description=short_description,
            description=(dto.description or "")[:DESCRIPTION_LIMIT],
            status=dto.status,
            priority=dto.priority,
            type=dto.type,
            account_id=dto.account_id,
            contact_id=dto.contact_id,
            assignee=dto.assignee,
            sla_due_at=sla_due_at,
            requester_name=dto.requester_name,
            requester_email=dto.requester_email.lower() if dto.requester_email else None,
            requester_phone=dto.requester_phone,
            comments=[],
            history=[_history_entry("created", "Ticket created", actor.display_name)],
        )
        return self._finish_create(session, ticket, actor_id=actor.user_id, channel="staff")

    def create_portal_ticket(
        self,
        session: Session,
        *,
        customer_id: str,
        account_id: uuid.UUID | None,
        short_description: str,
        description: str,
        requester_name: str,
        requester_email: str,
        requester_phone: str,
        priority: str,
    ) -> TicketRead:
        hours = PORTAL_SLA_HOURS.get(priority, PORTAL_SLA_HOURS["normal"])
        ticket = SupportTicket(
            ticket_number=next_value(session, TICKET_NUMBER),
            short_description=short_description.strip()[:255],
            description=description[:DESCRIPTION_LIMIT],
            status="open",
            priority=priority if priority in PORTAL_SLA_HOURS else "normal",
            type="external",
            account_id=account_id,
            sla_due_at=utcnow() + timedelta(hours=hours),
            requester_name=requester_name,
            requester_email=requester_email.lower(),
            requester_phone=requester_phone,
            comments=[],
            history=[_history_entry("created", "Ticket submitted via customer portal", requester_name)],
        )
        return self._finish_create(session, ticket, actor_id=customer_id, channel="portal")

    def update_ticket(self, session: Session, actor: Actor, ticket_id: uuid.UUID, dto: TicketUpdate) -> TicketRead:
        ticket = self._get(session, ticket_id)
        changes = dto.model_dump(exclude_unset=True)
        title = changes.pop("title", None)
        if "short_description" not in changes and title:
            changes["short_description"] = title
        if "description" in changes:
            changes["description"] = (changes["description"] or "")[:DESCRIPTION_LIMIT]
        if "sla_due_at" in changes:
            changes["sla_due_at"] = ensure_utc(changes["sla_due_at"])

        changed: list[str] = []
        before: dict[str, Any] = {}
        for key, value in changes.items():
            if key in {"short_description", "status", "priority"} and value is None:
                continue
            if getattr(ticket, key) != value:
                before[key] = getattr(ticket, key)
                setattr(ticket, key, value)
                changed.append(key)

        if changed:
            ticket.history = [
                *ticket.history,
                _history_entry("updated", f"Changed: {', '.join(changed)}", actor.display_name),
            ]
            audit.record(
                actor_user_id=actor.user_id,
                entity_type="support.ticket",
                entity_id=str(ticket.id),
                action="support.ticket.updated",
                before=before,
                after={key: getattr(ticket, key) for key in changed},
                session=session,
            )
            session.commit()
            session.refresh(ticket)
        return TicketRead.model_validate(ticket)

    def add_comment(self, session: Session, actor: Actor, ticket_id: uuid.UUID, dto: TicketCommentCreate) -> TicketRead:
        ticket = self._get(session, ticket_id)
        author = (dto.author or "").strip() or actor.email or "system"
        return self._append_comment(session, ticket, author=author, body=dto.body)

    def list_customer_tickets(self, session: Session, *, account_id: uuid.UUID | None, email: str) -> list[TicketRead]:
        stmt = select(SupportTicket).where(self._customer_filter(account_id, email))
        rows = session.scalars(stmt.order_by(SupportTicket.created_at.desc()).limit(200)).all()
        return [TicketRead.model_validate(row) for row in rows]

    def add_customer_comment(
        self,
        session: Session,
        *,
        ticket_id: uuid.UUID,
        account_id: uuid.UUID | None,
        email: str,
        author: str,
        body: str,
    ) -> TicketRead:
        ticket = self._get_customer_ticket(session, ticket_id, account_id, email)
        return self._append_comment(session, ticket, author=author, body=body)

    def add_customer_attachments(
        self,
        session: Session,
        *,
        ticket_id: uuid.UUID,
        account_id: uuid.UUID | None,
        email: str,
        uploaded_by: str,
        uploads: list[tuple[str, str | None, bytes]],
    ) -> list[TicketAttachmentRead]:
        """Store ``(filename, content_type, content)`` uploads against a ticket the customer can see."""
        ticket = self._get_customer_ticket(session, ticket_id, account_id, email)
        added: list[dict[str, Any]] = []
        for filename, content_type, content in uploads:
            file_id, path = files.store_bytes(content, filename, folder=ATTACHMENT_FOLDER)
            added.append(
                {
                    "id": str(file_id),
                    "name": Path(filename or "file").name,
                    "size": len(content),
                    "content_type": content_type,
                    "path": path,
                    "uploaded_at": utcnow().isoformat(),
                    "uploaded_by_name": uploaded_by,
                }
            )
        ticket.attachments = [*ticket.attachments, *added]
        ticket.history = [
            *ticket.history,
            _history_entry("attachment_added", f"Attached {len(added)} file(s)", uploaded_by),
        ]
        session.commit()
        logger.info(
            "support.ticket_attachments_added",
            extra={"entity_type": "support.ticket", "entity_id": str(ticket.id), "status": str(len(added))},
        )
        return [TicketAttachmentRead.model_validate(item) for item in added]

    def customer_attachment_file(
        self,
        session: Session,
        *,
        ticket_id: uuid.UUID,
        attachment_id: str,
        account_id: uuid.UUID | None,
        email: str,
    ) -> tuple[Path, dict[str, Any]]:
        ticket = self._get_customer_ticket(session, ticket_id, account_id, email)
        attachment = self._find_attachment(ticket, attachment_id)
        path = Path(attachment.get("path") or "")
        if not attachment.get("path") or not path.is_file():
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="file_missing")
        return path, attachment

    def remove_customer_attachment(
        self,
        session: Session,
        *,
        ticket_id: uuid.UUID,
        attachment_id: str,
        account_id: uuid.UUID | None,
        email: str,
        removed_by: str,
    ) -> None:
        ticket = self._get_customer_ticket(session, ticket_id, account_id, email)
        attachment = self._find_attachment(ticket, attachment_id)
        ticket.attachments = [item for item in ticket.attachments if item.get("id") != attachment_id]
        ticket.history = [
            *ticket.history,
            _history_entry("attachment_removed", f"Removed {attachment.get('name')}", removed_by),
        ]
        session.commit()
        files.remove_file(attachment.get("path"))

    def run_sla_alerts(self, session: Session, now: datetime | None = None) -> SLAAlertRunRead:
        """Email breached and soon-due active tickets, at most once per cooldown window each."""
        settings = get_settings()
        now = ensure_utc(now) or utcnow()
        until = now + timedelta(minutes=settings.sla_alert_within_minutes)
        cooldown_since = now - timedelta(minutes=settings.sla_alert_cooldown_minutes)
        candidates = session.scalars(
            select(SupportTicket)
            .where(
                SupportTicket.status.in_(ACTIVE_TICKET_STATUSES),
                SupportTicket.sla_due_at.is_not(None),
                SupportTicket.sla_due_at <= until,
                or_(SupportTicket.last_sla_alert_at.is_(None), SupportTicket.last_sla_alert_at < cooldown_since),
            )
            .order_by(SupportTicket.sla_due_at.asc())
            .limit(SLA_ALERT_BATCH)
        ).all()

        recipient = settings.sla_alert_to or settings.smtp_username
        if not recipient:
            if candidates:
                logger.warning("support.sla_alerts_skipped", extra={"status": str(len(candidates))})
            return SLAAlertRunRead(sent=0, candidates=len(candidates))

        sent = 0
        for ticket in candidates:
            due = ensure_utc(ticket.sla_due_at)
            label = "SLA BREACHED" if due < now else "SLA Due Soon"
            body = (
                f"Ticket #{ticket.ticket_number}\n"
                f"Status: {ticket.status}\n"
                f"Priority: {ticket.priority}\n"
                f"Assignee: {ticket.assignee or '-'}\n"
                f"SLA Due: {due.isoformat()}\n\n"
                f"{ticket.description or ''}"
            )
            message = send_email(
                recipient,
                f"{label}: Ticket #{ticket.ticket_number} {ticket.short_description}",
                body,
                template="sla_alert",
            )
            if message["status"] == "failed":
                continue
            ticket.last_sla_alert_at = now
            sent += 1
        session.commit()
        logger.info("support.sla_alerts_sent", extra={"status": f"{sent}/{len(candidates)}"})
        return SLAAlertRunRead(sent=sent, candidates=len(candidates))

    def list_slas(
        self,
        session: Session,
        *,
        account_id: uuid.UUID | None,
        status_filter: str | None,
        type_filter: str | None,
    ) -> list[SLAContractRead]:
        stmt: Select[tuple[SLAContract]] = select(SLAContract)
        if account_id is not None:
            stmt = stmt.where(SLAContract.account_id == account_id)
        if status_filter:
            stmt = stmt.where(SLAContract.status == status_filter)
        if type_filter:
            stmt = stmt.where(SLAContract.type == type_filter)
        rows = session.scalars(stmt.order_by(SLAContract.end_date.asc()).limit(500)).all()
        return [SLAContractRead.model_validate(row) for row in rows]

    def get_sla(self, session: Session, sla_id: uuid.UUID) -> SLAContractRead:
        return SLAContractRead.model_validate(self._get_sla(session, sla_id))

    def create_sla(self, session: Session, actor: Actor, dto: SLAContractCreate) -> SLAContractRead:
        contract = SLAContract(**dto.model_dump())
        session.add(contract)
        session.flush()
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="crm.sla_contract",
            entity_id=str(contract.id),
            action="crm.sla_contract.created",
            before=None,
            after=dto.model_dump(),
            session=session,
        )
        session.commit()
        session.refresh(contract)
        return SLAContractRead.model_validate(contract)

    def update_sla(self, session: Session, actor: Actor, sla_id: uuid.UUID, dto: SLAContractUpdate) -> SLAContractRead:
        contract = self._get_sla(session, sla_id)
        changes = dto.model_dump(exclude_unset=True)
        for key in ("account_id", "name", "type", "status", "auto_renew"):
            if key in changes and changes[key] is None:
                changes.pop(key)
        before = {key: getattr(contract, key) for key in changes}
        for key, value in changes.items():
            setattr(contract, key, value)
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="crm.sla_contract",
            entity_id=str(contract.id),
            action="crm.sla_contract.updated",
            before=before,
            after=changes,
            session=session,
        )
        session.commit()
        session.refresh(contract)
        return SLAContractRead.model_validate(contract)

    def delete_sla(self, session: Session, actor: Actor, sla_id: uuid.UUID) -> None:
        contract = self._get_sla(session, sla_id)
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="crm.sla_contract",
            entity_id=str(contract.id),
            action="crm.sla_contract.deleted",
            before={"name": contract.name, "account_id": contract.account_id},
            after=None,
            session=session,
        )
        session.delete(contract)
        session.commit()

    def summarize_slas_by_account(self, session: Session, account_ids: list[uuid.UUID]) -> list[SLAAccountSummary]:
        if not account_ids:
            return []
        today = utcnow().date()
        soon = today + timedelta(days=EXPIRING_SOON_DAYS)
        rows = session.scalars(select(SLAContract).where(SLAContract.account_id.in_(account_ids))).all()

        grouped: dict[uuid.UUID, list[SLAContract]] = defaultdict(list)
        for row in rows:
            grouped[row.account_id].append(row)

        summaries: list[SLAAccountSummary] = []
        for account_id, contracts in grouped.items():
            responses = [item.response_target_minutes for item in contracts if item.response_target_minutes is not None]
            resolutions = [
                item.resolution_target_minutes for item in contracts if item.resolution_target_minutes is not None
            ]
            end_dates = [item.end_date for item in contracts if item.end_date is not None]
            summaries.append(
                SLAAccountSummary(
                    account_id=account_id,
                    active_count=sum(1 for item in contracts if item.status == "active"),
                    expiring_soon=sum(1 for end in end_dates if today <= end <= soon),
                    best_response=min(responses) if responses else None,
                    best_resolution=min(resolutions) if resolutions else None,
                    next_expiry=min(end_dates) if end_dates else None,
                )
            )
        return summaries

    def _support_resolution_target(self, session: Session, account_id: uuid.UUID) -> int | None:
        return session.scalar(
            select(func.min(SLAContract.resolution_target_minutes)).where(
                SLAContract.account_id == account_id,
                SLAContract.type == "support",
                SLAContract.status == "active",
                SLAContract.resolution_target_minutes.is_not(None),
            )
        )

    def _finish_create(self, session: Session, ticket: SupportTicket, *, actor_id: str, channel: str) -> TicketRead:
        session.add(ticket)
        session.flush()
        audit.record(
            actor_user_id=actor_id,
            entity_type="support.ticket",
            entity_id=str(ticket.id),
            action="support.ticket.created",
            before=None,
            after={"ticket_number": ticket.ticket_number, "priority": ticket.priority, "type": ticket.type},
            session=session,
        )
        session.commit()
        session.refresh(ticket)
        observe_ticket_created(channel)
        events.publish(
            {
                "event_type": "ticket.created",
                "ticket_id": str(ticket.id),
                "ticket_number": ticket.ticket_number,
                "priority": ticket.priority,
                "channel": channel,
            }
        )
        logger.info("support.ticket_created", extra={"entity_type": "support.ticket", "entity_id": str(ticket.id)})
        return TicketRead.model_validate(ticket)

    def _append_comment(self, session: Session, ticket: SupportTicket, *, author: str, body: str) -> TicketRead:
        ticket.comments = [*ticket.comments, {"author": author, "body": body, "at": utcnow().isoformat()}]
        ticket.updated_at = utcnow()
        session.commit()
        session.refresh(ticket)
        return TicketRead.model_validate(ticket)

    def _customer_filter(self, account_id: uuid.UUID | None, email: str) -> Any:
        conditions = [SupportTicket.requester_email == email.lower()]
        if account_id is not None:
            conditions.append(SupportTicket.account_id == account_id)
        return or_(*conditions)

    def _get_customer_ticket(
        self, session: Session, ticket_id: uuid.UUID, account_id: uuid.UUID | None, email: str
    ) -> SupportTicket:
        ticket = session.scalar(
            select(SupportTicket).where(SupportTicket.id == ticket_id, self._customer_filter(account_id, email))
        )
        if ticket is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ticket_not_found")
        return ticket

    def _find_attachment(self, ticket: SupportTicket, attachment_id: str) -> dict[str, Any]:
        for item in ticket.attachments:
            if item.get("id") == attachment_id:
                return item
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="attachment_not_found")

    def _get(self, session: Session, ticket_id: uuid.UUID) -> SupportTicket:
        ticket = session.get(SupportTicket, ticket_id)
        if ticket is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        return ticket

    def _get_sla(self, session: Session, sla_id: uuid.UUID) -> SLAContract:
        contract = session.get(SLAContract, sla_id)
        if contract is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        return contract


helpdesk_service = HelpdeskService()
