from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ArticleCreate(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    body: str | None = None
    tags: list[str] = Field(default_factory=list)
    category: str | None = Field(default=None, max_length=128)
    author: str | None = Field(default=None, max_length=255)


class ArticleUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    body: str | None = Field(default=None, min_length=1)
    tags: list[str] | None = None
    category: str | None = Field(default=None, max_length=128)


class ArticleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    body: str
    tags: list[str]
    category: str | None
    author: str
    created_at: datetime
    updated_at: datetime
