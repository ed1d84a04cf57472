from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app import audit
from app.core.rbac import Actor
from app.core.sequences import JOURNAL_ENTRY_NUMBER, next_value
from app.core.timeutils import utcnow
from app.metrics import observe_ledger_entry_posted, observe_ledger_post_failure
from app.platform.ledger.models import JournalEntry, JournalLine, LedgerAccount, LedgerPeriod
from app.platform.ledger.schemas import (
    JournalEntryPostRequest,
    JournalEntryRead,
    JournalEntryReverseRequest,
    JournalLineInput,
    JournalLineRead,
    LedgerAccountCreate,
    LedgerAccountRead,
    LedgerPeriodCreate,
    LedgerPeriodRead,
)

CENT = Decimal("0.01")


def _fail(reason: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> HTTPException:
    observe_ledger_post_failure(reason)
    return HTTPException(status_code=status_code, detail=reason)


@dataclass(slots=True)
class LedgerService:
    def create_account(self, session: Session, actor: Actor, dto: LedgerAccountCreate) -> LedgerAccountRead:
        account = LedgerAccount(**dto.model_dump(mode="python"))
        session.add(account)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="account_number_taken")
        session.refresh(account)
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="ledger.account",
            entity_id=str(account.id),
            action="ledger.account.created",
            before=None,
            after={"account_number": account.account_number, "type": account.type},
        )
        return LedgerAccountRead.model_validate(account)

    def list_accounts(self, session: Session) -> list[LedgerAccountRead]:
        rows = session.scalars(select(LedgerAccount).order_by(LedgerAccount.account_number.asc())).all()
        return [LedgerAccountRead.model_validate(item) for item in rows]

    def seed_chart_of_accounts(self, session: Session, chart: list[tuple[str, str, str]]) -> list[LedgerAccountRead]:
        existing = set(session.scalars(select(LedgerAccount.account_number)).all())
        created: list[LedgerAccount] = []
        for account_number, name, account_type in chart:
            if account_number in existing:
                continue
            account = LedgerAccount(account_number=account_number, name=name, type=account_type, is_active=True)
            session.add(account)
            created.append(account)
        session.commit()
        return [LedgerAccountRead.model_validate(item) for item in created]

    def create_period(self, session: Session, actor: Actor, dto: LedgerPeriodCreate) -> LedgerPeriodRead:
        if dto.end_date < dto.start_date:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_period_range")
        period = LedgerPeriod(name=dto.name, start_date=dto.start_date, end_date=dto.end_date, status="open")
        session.add(period)
        session.flush()
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="ledger.period",
            entity_id=str(period.id),
            action="ledger.period.created",
            before=None,
            after={"name": period.name, "start_date": period.start_date, "end_date": period.end_date},
            session=session,
        )
        session.commit()
        session.refresh(period)
        return LedgerPeriodRead.model_validate(period)

    def list_periods(self, session: Session) -> list[LedgerPeriodRead]:
        rows = session.scalars(select(LedgerPeriod).order_by(LedgerPeriod.start_date.desc())).all()
        return [LedgerPeriodRead.model_validate(item) for item in rows]

    def close_period(self, session: Session, actor: Actor, period_id: uuid.UUID) -> LedgerPeriodRead:
        period = session.get(LedgerPeriod, period_id)
        if period is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        if period.status == "closed":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="period_already_closed")
        period.status = "closed"
        period.closed_at = utcnow()
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="ledger.period",
            entity_id=str(period.id),
            action="ledger.period.closed",
            before={"status": "open"},
            after={"status": "closed"},
            session=session,
        )
        session.commit()
        session.refresh(period)
        return LedgerPeriodRead.model_validate(period)

    def find_open_period(self, session: Session, entry_date: date) -> LedgerPeriod | None:
        return session.scalar(
            select(LedgerPeriod)
            .where(
                LedgerPeriod.status == "open",
                LedgerPeriod.start_date <= entry_date,
                LedgerPeriod.end_date >= entry_date,
            )
            .order_by(LedgerPeriod.start_date.desc())
        )

    def accounts_by_number(self, session: Session, numbers: set[str]) -> dict[str, LedgerAccount]:
        if not numbers:
            return {}
        rows = session.scalars(
            select(LedgerAccount).where(LedgerAccount.account_number.in_(numbers), LedgerAccount.is_active.is_(True))
        ).all()
        return {row.account_number: row for row in rows}

    def post_entry(
        self,
        session: Session,
        created_by: str,
        request: JournalEntryPostRequest,
        *,
        commit: bool = True,
        reversal_of_id: uuid.UUID | None = None,
    ) -> JournalEntryRead:
        """Validate and persist a balanced entry.

        With ``commit=False`` the entry is only flushed so a caller can post it
        inside its own transaction (expense payment does this).
        """
        period = self.find_open_period(session, request.entry_date)
        if period is None:
            raise _fail("no_open_period")

        accounts = self._resolve_accounts(session, request.lines)

        debit_total = Decimal("0")
        credit_total = Decimal("0")
        line_rows: list[dict[str, Any]] = []
        for index, line in enumerate(request.lines):
            debit = Decimal(line.debit).quantize(CENT)
            credit = Decimal(line.credit).quantize(CENT)
            if (debit > 0 and credit > 0) or (debit == 0 and credit == 0):
                raise _fail("invalid_line_side")
            debit_total += debit
            credit_total += credit
            line_rows.append(
                {
                    "account_id": accounts[index].id,
                    "debit": debit,
                    "credit": credit,
                    "memo": line.memo,
                    "project_id": line.project_id,
                }
            )

        if debit_total != credit_total:
            raise _fail("unbalanced_entry")

        entry = JournalEntry(
            entry_number=next_value(session, JOURNAL_ENTRY_NUMBER),
            entry_date=request.entry_date,
            period_id=period.id,
            description=request.description,
            source_type=request.source_type,
            source_id=request.source_id,
            status="posted",
            reversal_of_id=reversal_of_id,
            created_by=created_by,
        )
        session.add(entry)
        session.flush()
        for row in line_rows:
            session.add(JournalLine(journal_entry_id=entry.id, **row))
        session.flush()

        audit.record(
            actor_user_id=created_by,
            entity_type="ledger.journal_entry",
            entity_id=str(entry.id),
            action="ledger.posted",
            before=None,
            after={
                "entry_number": entry.entry_number,
                "source_type": entry.source_type,
                "source_id": entry.source_id,
                "line_count": len(line_rows),
                "total": str(debit_total),
            },
            session=session,
        )
        if commit:
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise _fail("db_error", status.HTTP_409_CONFLICT)

        observe_ledger_entry_posted(entry.source_type)
        return self._to_entry_read(self._load(session, entry.id))

    def reverse_entry(
        self,
        session: Session,
        actor: Actor,
        entry_id: uuid.UUID,
        request: JournalEntryReverseRequest,
    ) -> JournalEntryRead:
        entry = self._load(session, entry_id)
        if entry.status == "reversed":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="entry_already_reversed")

        reverse_request = JournalEntryPostRequest(
            entry_date=utcnow().date(),
            description=f"Reversal of #{entry.entry_number}: {request.reason}",
            source_type="reversal",
            source_id=str(entry.id),
            lines=[
                JournalLineInput(
                    account_id=line.account_id,
                    debit=line.credit,
                    credit=line.debit,
                    memo=line.memo,
                    project_id=line.project_id,
                )
                for line in entry.lines
            ],
        )
        reversed_entry = self.post_entry(session, actor.user_id, reverse_request, commit=False, reversal_of_id=entry.id)

        entry.status = "reversed"
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="ledger.journal_entry",
            entity_id=str(entry.id),
            action="ledger.reversed",
            before={"status": "posted"},
            after={"status": "reversed", "reversal_entry_id": str(reversed_entry.id)},
            session=session,
        )
        session.commit()
        return reversed_entry

    def get_entry(self, session: Session, entry_id: uuid.UUID) -> JournalEntryRead:
        return self._to_entry_read(self._load(session, entry_id))

    def list_entries(
        self,
        session: Session,
        *,
        source_type: str | None = None,
        source_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[JournalEntryRead]:
        stmt: Select[tuple[JournalEntry]] = select(JournalEntry).options(
            selectinload(JournalEntry.lines).selectinload(JournalLine.account)
        )
        if source_type is not None:
            stmt = stmt.where(JournalEntry.source_type == source_type)
        if source_id is not None:
            stmt = stmt.where(JournalEntry.source_id == source_id)
        if start_date is not None:
            stmt = stmt.where(JournalEntry.entry_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(JournalEntry.entry_date <= end_date)
        rows = session.scalars(stmt.order_by(JournalEntry.entry_date.desc(), JournalEntry.entry_number.desc())).all()
        return [self._to_entry_read(row) for row in rows]

    def _resolve_accounts(self, session: Session, lines: list[JournalLineInput]) -> list[LedgerAccount]:
        ids = {line.account_id for line in lines if line.account_id is not None}
        numbers = {line.account_number for line in lines if line.account_id is None and line.account_number}
        by_id: dict[uuid.UUID, LedgerAccount] = {}
        if ids:
            by_id = {row.id: row for row in session.scalars(select(LedgerAccount).where(LedgerAccount.id.in_(ids))).all()}
        by_number = self.accounts_by_number(session, numbers)

        resolved: list[LedgerAccount] = []
        for line in lines:
            if line.account_id is not None:
                account = by_id.get(line.account_id)
            else:
                account = by_number.get(line.account_number or "")
            if account is None or not account.is_active:
                raise _fail("account_not_found")
            resolved.append(account)
        return resolved

    def _load(self, session: Session, entry_id: uuid.UUID) -> JournalEntry:
        entry = session.scalar(
            select(JournalEntry)
            .where(JournalEntry.id == entry_id)
            .options(selectinload(JournalEntry.lines).selectinload(JournalLine.account))
        )
        if entry is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        return entry

    def _to_entry_read(self, entry: JournalEntry) -> JournalEntryRead:
        return JournalEntryRead(
            id=entry.id,
            entry_number=entry.entry_number,
            entry_date=entry.entry_date,
            period_id=entry.period_id,
            description=entry.description,
            source_type=entry.source_type,
            source_id=entry.source_id,
            status=entry.status,
            reversal_of_id=entry.reversal_of_id,
            created_by=entry.created_by,
            created_at=entry.created_at,
            lines=[
                JournalLineRead(
                    id=line.id,
                    journal_entry_id=line.journal_entry_id,
                    account_id=line.account_id,
                    account_number=line.account.account_number if line.account is not None else None,
                    debit=line.debit,
                    credit=line.credit,
                    memo=line.memo,
                    project_id=line.project_id,
                )
                for line in entry.lines
            ],
        )


ledger_service = LedgerService()
