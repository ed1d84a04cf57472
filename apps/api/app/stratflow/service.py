from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app import audit
from app.core.rbac import Actor
from app.stratflow.models import SFBoard, SFColumn, SFIssue, SFProject
from app.stratflow.schemas import (
    BoardDetail,
    BoardRead,
    ColumnRead,
    IssueCreate,
    IssueCreated,
    IssueMove,
    IssueRead,
    ProjectCreate,
    ProjectCreated,
    ProjectRead,
)

ORDER_STEP = 1000
PROJECT_LIMIT = 200
ISSUE_LIMIT = 2000
MAX_TEAM = 50

# (board name, kind, column names) per project type
BOARD_TEMPLATES: dict[str, list[tuple[str, str, list[str]]]] = {
    "SCRUM": [
        ("Backlog", "BACKLOG", ["Backlog"]),
        ("Sprint Board", "KANBAN", ["To Do", "In Progress", "Done"]),
    ],
    "KANBAN": [("Board", "KANBAN", ["To Do", "In Progress", "Done"])],
    "TRADITIONAL": [("Milestones", "MILESTONES", ["Not Started", "In Progress", "Blocked", "Complete"])],
    "HYBRID": [
        ("Board", "KANBAN", ["To Do", "In Progress", "Done"]),
        ("Backlog", "BACKLOG", ["Backlog"]),
    ],
}


def keyify(value: str) -> str:
    key = re.sub(r"[^A-Z0-9]+", "-", value.upper().strip())
    return key.strip("-")[:12]


def order_at(orders: list[float], index: int) -> float | None:
    """Order value for a slot at ``index`` among ``orders`` (ascending).

    Returns None when the neighbours are too close and the column needs a reindex.
    """
    index = max(0, min(index, len(orders)))
    before = orders[index - 1] if index > 0 else None
    after = orders[index] if index < len(orders) else None
    if before is None and after is None:
        return float(ORDER_STEP)
    if before is None:
        return after - ORDER_STEP
    if after is None:
        return before + ORDER_STEP
    if after - before > 1:
        return (after + before) / 2
    return None


def can_access(actor: Actor, project: SFProject) -> bool:
    return project.owner_id == actor.user_id or actor.user_id in (project.team_ids or [])


@dataclass(slots=True)
class StratflowService:
    def list_projects(self, session: Session, actor: Actor) -> list[ProjectRead]:
        rows = session.scalars(select(SFProject).order_by(SFProject.updated_at.desc())).all()
        # team_ids is a JSON array; membership is checked here to stay portable across backends
        visible = [row for row in rows if can_access(actor, row)][:PROJECT_LIMIT]
        return [ProjectRead.model_validate(row) for row in visible]

    def create_project(self, session: Session, actor: Actor, dto: ProjectCreate) -> ProjectCreated:
        key = keyify(dto.key)
        if not key:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_key")
        taken = session.scalar(select(SFProject.id).where(SFProject.owner_id == actor.user_id, SFProject.key == key))
        if taken is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="key_taken")

        team_ids = list(dict.fromkeys(item.strip() for item in dto.team_ids if item.strip()))[:MAX_TEAM]
        project = SFProject(
            name=dto.name.strip(),
            key=key,
            description=(dto.description or "").strip() or None,
            type=dto.type,
            status=dto.status or "Active",
            owner_id=actor.user_id,
            team_ids=team_ids,
            client_id=(dto.client_id or "").strip() or None,
            start_date=dto.start_date,
            target_end_date=dto.target_end_date,
        )
        session.add(project)
        session.flush()
        default_board_id = self._create_boards(session, project)
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="stratflow.project",
            entity_id=str(project.id),
            action="stratflow.project.created",
            before=None,
            after={"key": project.key, "type": project.type},
            session=session,
        )
        session.commit()
        return ProjectCreated(id=project.id, default_board_id=default_board_id)

    def get_project(self, session: Session, actor: Actor, project_id: uuid.UUID) -> ProjectRead:
        return ProjectRead.model_validate(self._project_for(session, actor, project_id))

    def list_boards(self, session: Session, actor: Actor, project_id: uuid.UUID) -> list[BoardRead]:
        project = self._project_for(session, actor, project_id)
        rows = session.scalars(
            select(SFBoard).where(SFBoard.project_id == project.id).order_by(SFBoard.position.asc())
        ).all()
        return [BoardRead.model_validate(row) for row in rows]

    def get_board(self, session: Session, actor: Actor, board_id: uuid.UUID) -> BoardDetail:
        board = self._board_for(session, actor, board_id)
        columns = session.scalars(select(SFColumn).where(SFColumn.board_id == board.id).order_by(SFColumn.order.asc())).all()
        return BoardDetail(
            board=BoardRead.model_validate(board),
            columns=[ColumnRead.model_validate(column) for column in columns],
        )

    def list_issues(self, session: Session, actor: Actor, board_id: uuid.UUID) -> list[IssueRead]:
        board = self._board_for(session, actor, board_id)
        rows = session.scalars(
            select(SFIssue)
            .where(SFIssue.board_id == board.id)
            .order_by(SFIssue.column_id.asc(), SFIssue.order.asc())
            .limit(ISSUE_LIMIT)
        ).all()
        return [IssueRead.model_validate(row) for row in rows]

    def create_issue(self, session: Session, actor: Actor, board_id: uuid.UUID, dto: IssueCreate) -> IssueCreated:
        board = self._board_for(session, actor, board_id)
        column = session.scalar(select(SFColumn).where(SFColumn.id == dto.column_id, SFColumn.board_id == board.id))
        if column is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="column_not_found")

        last_order = session.scalar(
            select(SFIssue.order)
            .where(SFIssue.board_id == board.id, SFIssue.column_id == column.id)
            .order_by(SFIssue.order.desc())
            .limit(1)
        )
        issue = SFIssue(
            project_id=board.project_id,
            board_id=board.id,
            column_id=column.id,
            title=dto.title.strip(),
            description=(dto.description or "").strip() or None,
            type=dto.type,
            priority=dto.priority,
            order=(last_order or 0) + ORDER_STEP,
            reporter_id=actor.user_id,
            assignee_id=(dto.assignee_id or "").strip() or None,
        )
        session.add(issue)
        session.commit()
        return IssueCreated(id=issue.id)

    def move_issue(self, session: Session, actor: Actor, issue_id: uuid.UUID, dto: IssueMove) -> None:
        issue = session.get(SFIssue, issue_id)
        if issue is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        board = session.get(SFBoard, issue.board_id)
        if board is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="board_not_found")
        self._project_for(session, actor, board.project_id)
        column = session.scalar(select(SFColumn).where(SFColumn.id == dto.to_column_id, SFColumn.board_id == board.id))
        if column is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="column_not_found")

        siblings = self._column_issues(session, board.id, column.id, exclude=issue.id)
        new_order = order_at([item.order for item in siblings], dto.to_index)
        if new_order is None:
            for index, item in enumerate(siblings):
                item.order = float((index + 1) * ORDER_STEP)
            session.flush()
            new_order = order_at([item.order for item in siblings], dto.to_index)

        issue.column_id = column.id
        issue.order = new_order
        session.commit()

    def _column_issues(
        self,
        session: Session,
        board_id: uuid.UUID,
        column_id: uuid.UUID,
        *,
        exclude: uuid.UUID,
    ) -> list[SFIssue]:
        return list(
            session.scalars(
                select(SFIssue)
                .where(SFIssue.board_id == board_id, SFIssue.column_id == column_id, SFIssue.id != exclude)
                .order_by(SFIssue.order.asc())
            ).all()
        )

    def _create_boards(self, session: Session, project: SFProject) -> uuid.UUID | None:
        boards: list[SFBoard] = []
        for position, (name, kind, column_names) in enumerate(BOARD_TEMPLATES[project.type]):
            board = SFBoard(project_id=project.id, name=name, kind=kind, position=position)
            session.add(board)
            session.flush()
            for index, column_name in enumerate(column_names):
                session.add(SFColumn(board_id=board.id, name=column_name, order=float((index + 1) * ORDER_STEP)))
            boards.append(board)
        if not boards:
            return None
        default = next((board for board in boards if board.kind == "KANBAN"), boards[0])
        return default.id

    def _project_for(self, session: Session, actor: Actor, project_id: uuid.UUID) -> SFProject:
        project = session.get(SFProject, project_id)
        if project is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        if not can_access(actor, project):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
        return project

    def _board_for(self, session: Session, actor: Actor, board_id: uuid.UUID) -> SFBoard:
        board = session.get(SFBoard, board_id)
        if board is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        self._project_for(session, actor, board.project_id)
        return board


stratflow_service = StratflowService()
