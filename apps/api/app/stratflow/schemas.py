from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ProjectType = Literal["SCRUM", "KANBAN", "TRADITIONAL", "HYBRID"]
ProjectStatus = Literal["Active", "On Hold", "Completed", "Archived"]
BoardKind = Literal["KANBAN", "BACKLOG", "MILESTONES"]
IssueType = Literal["Epic", "Story", "Task", "Bug", "Spike"]
IssuePriority = Literal["Low", "Medium", "High", "Critical"]


class ProjectCreate(BaseModel):
    name: str = Field(min_length=2, max_length=140)
    key: str = Field(min_length=2, max_length=12)
    description: str | None = Field(default=None, max_length=4000)
    type: ProjectType
    status: ProjectStatus | None = None
    team_ids: list[str] = Field(default_factory=list, max_length=50)
    client_id: str | None = None
    start_date: date | None = None
    target_end_date: date | None = None


class ProjectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    key: str
    description: str | None
    type: ProjectType
    status: ProjectStatus
    owner_id: str
    team_ids: list[str]
    client_id: str | None
    start_date: date | None
    target_end_date: date | None
    created_at: datetime
    updated_at: datetime


class ProjectCreated(BaseModel):
    id: UUID
    default_board_id: UUID | None


class BoardRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    name: str
    kind: BoardKind
    created_at: datetime
    updated_at: datetime


class ColumnRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    board_id: UUID
    name: str
    order: float
    created_at: datetime
    updated_at: datetime


class BoardDetail(BaseModel):
    board: BoardRead
    columns: list[ColumnRead]


class IssueCreate(BaseModel):
    title: str = Field(min_length=1, max_length=280)
    column_id: UUID
    description: str | None = Field(default=None, max_length=4000)
    type: IssueType = "Task"
    priority: IssuePriority = "Medium"
    assignee_id: str | None = None


class IssueMove(BaseModel):
    to_column_id: UUID
    to_index: int = Field(ge=0, le=100000)


class IssueRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    board_id: UUID
    column_id: UUID
    title: str
    description: str | None
    type: IssueType
    priority: IssuePriority
    order: float
    reporter_id: str
    assignee_id: str | None
    created_at: datetime
    updated_at: datetime


class IssueCreated(BaseModel):
    id: UUID
