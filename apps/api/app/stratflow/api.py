from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.envelope import Envelope, ItemsPage, items, ok
from app.core.database import get_db
from app.core.rbac import Actor, get_current_actor
from app.stratflow.schemas import (
    BoardDetail,
    BoardRead,
    IssueCreate,
    IssueCreated,
    IssueMove,
    IssueRead,
    ProjectCreate,
    ProjectCreated,
    ProjectRead,
)
from app.stratflow.service import stratflow_service


router = APIRouter(prefix="/stratflow", tags=["stratflow"])


@router.get("/projects", response_model=Envelope[ItemsPage[ProjectRead]])
def list_projects(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> dict:
    return items(stratflow_service.list_projects(db, actor))


@router.post("/projects", response_model=Envelope[ProjectCreated], status_code=status.HTTP_201_CREATED)
def create_project(payload: ProjectCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> dict:
    return ok(stratflow_service.create_project(db, actor, payload))


@router.get("/projects/{project_id}", response_model=Envelope[ProjectRead])
def get_project(project_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> dict:
    return ok(stratflow_service.get_project(db, actor, project_id))


@router.get("/projects/{project_id}/boards", response_model=Envelope[ItemsPage[BoardRead]])
def list_boards(project_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> dict:
    return items(stratflow_service.list_boards(db, actor, project_id))


@router.get("/boards/{board_id}", response_model=Envelope[BoardDetail])
def get_board(board_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> dict:
    return ok(stratflow_service.get_board(db, actor, board_id))


@router.get("/boards/{board_id}/issues", response_model=Envelope[ItemsPage[IssueRead]])
def list_issues(board_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> dict:
    return items(stratflow_service.list_issues(db, actor, board_id))


@router.post("/boards/{board_id}/issues", response_model=Envelope[IssueCreated], status_code=status.HTTP_201_CREATED)
def create_issue(
    board_id: uuid.UUID,
    payload: IssueCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(stratflow_service.create_issue(db, actor, board_id, payload))


@router.patch("/issues/{issue_id}/move", response_model=Envelope[dict[str, bool]])
def move_issue(
    issue_id: uuid.UUID,
    payload: IssueMove,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    stratflow_service.move_issue(db, actor, issue_id, payload)
    return ok({"ok": True})
