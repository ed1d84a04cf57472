from __future__ import annotations

import datetime as dt
import uuid

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from app import files
from app.api.envelope import CountedPage, Envelope, ItemsPage, items, ok
from app.business.expenses.schemas import (
    ApproversRead,
    AttachmentRead,
    ExpenseApproveRequest,
    ExpenseCategoriesRead,
    ExpenseCreate,
    ExpensePayRead,
    ExpenseRead,
    ExpenseRejectRequest,
    ExpenseSubmitRequest,
    ExpenseSummaryRead,
    ExpenseUpdate,
    ExpenseVoidRequest,
)
from app.business.expenses.service import expense_service
from app.core.config import get_settings
from app.core.database import get_db
from app.core.rbac import Actor, get_current_actor, require_permissions


router = APIRouter(prefix="/crm/expenses", tags=["expenses"])


@router.get("", response_model=Envelope[CountedPage[ExpenseRead]])
def list_expenses(
    q: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    vendor_id: uuid.UUID | None = Query(default=None),
    start_date: dt.date | None = Query(default=None),
    end_date: dt.date | None = Query(default=None),
    sort: str | None = Query(default=None),
    dir: str | None = Query(default=None),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=200),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    rows, total = expense_service.list_expenses(
        db,
        actor,
        q=q,
        status_filter=status_filter,
        vendor_id=vendor_id,
        start_date=start_date,
        end_date=end_date,
        sort=sort,
        direction=dir,
        skip=skip,
        limit=limit,
    )
    return ok({"items": rows, "total": total})


@router.get("/categories", response_model=Envelope[ExpenseCategoriesRead])
def list_categories(_: Actor = Depends(get_current_actor)) -> dict:
    return ok(expense_service.categories())


@router.get("/approvers", response_model=Envelope[ApproversRead])
def list_approvers(db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return ok(expense_service.list_approvers(db))


@router.get("/approval-queue", response_model=Envelope[ItemsPage[ExpenseRead]])
def approval_queue(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> dict:
    return items(expense_service.approval_queue(db, actor))


@router.get("/summary", response_model=Envelope[ExpenseSummaryRead])
def expense_summary(
    start_date: dt.date | None = Query(default=None),
    end_date: dt.date | None = Query(default=None),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return ok(expense_service.summary(db, start_date=start_date, end_date=end_date))


@router.get("/attachments/{stored_name}", response_class=FileResponse)
def download_attachment(stored_name: str, _: Actor = Depends(get_current_actor)) -> FileResponse:
    return FileResponse(expense_service.attachment_file(stored_name))


@router.post("", response_model=Envelope[ExpenseRead], status_code=status.HTTP_201_CREATED)
def create_expense(
    payload: ExpenseCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(expense_service.create_expense(db, actor, payload))


@router.get("/{expense_id}", response_model=Envelope[ExpenseRead])
def get_expense(expense_id: uuid.UUID, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)) -> dict:
    return ok(expense_service.get_expense(db, expense_id))


@router.patch("/{expense_id}", response_model=Envelope[ExpenseRead])
def update_expense(
    expense_id: uuid.UUID,
    payload: ExpenseUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(expense_service.update_expense(db, actor, expense_id, payload))


@router.post("/{expense_id}/submit", response_model=Envelope[ExpenseRead])
def submit_expense(
    expense_id: uuid.UUID,
    payload: ExpenseSubmitRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(expense_service.submit_expense(db, actor, expense_id, payload))


@router.post("/{expense_id}/approve", response_model=Envelope[ExpenseRead])
def approve_expense(
    expense_id: uuid.UUID,
    payload: ExpenseApproveRequest | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(expense_service.approve_expense(db, actor, expense_id, payload or ExpenseApproveRequest()))


@router.post("/{expense_id}/reject", response_model=Envelope[ExpenseRead])
def reject_expense(
    expense_id: uuid.UUID,
    payload: ExpenseRejectRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(expense_service.reject_expense(db, actor, expense_id, payload))


@router.post("/{expense_id}/pay", response_model=Envelope[ExpensePayRead])
def pay_expense(
    expense_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permissions("*")),
) -> dict:
    return ok(expense_service.pay_expense(db, actor, expense_id))


@router.post("/{expense_id}/void", response_model=Envelope[ExpenseRead])
def void_expense(
    expense_id: uuid.UUID,
    payload: ExpenseVoidRequest | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permissions("*")),
) -> dict:
    return ok(expense_service.void_expense(db, actor, expense_id, payload or ExpenseVoidRequest()))


@router.delete("/{expense_id}", response_model=Envelope[dict[str, bool]])
def delete_expense(
    expense_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    expense_service.delete_expense(db, actor, expense_id)
    return ok({"ok": True})


@router.get("/{expense_id}/attachments", response_model=Envelope[ItemsPage[AttachmentRead]])
def list_attachments(
    expense_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
) -> dict:
    return items(expense_service.list_attachments(db, expense_id))


@router.post(
    "/{expense_id}/attachments",
    response_model=Envelope[AttachmentRead],
    status_code=status.HTTP_201_CREATED,
)
async def upload_attachment(
    expense_id: uuid.UUID,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    content = await files.read_upload(file, get_settings().max_upload_bytes)
    return ok(
        expense_service.add_attachment(
            db,
            actor,
            expense_id,
            filename=file.filename or "attachment",
            content_type=file.content_type or "application/octet-stream",
            content=content,
        )
    )


@router.delete("/{expense_id}/attachments/{attachment_id}", response_model=Envelope[dict[str, bool]])
def remove_attachment(
    expense_id: uuid.UUID,
    attachment_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    expense_service.remove_attachment(db, actor, expense_id, attachment_id)
    return ok({"ok": True})
