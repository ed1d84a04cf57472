from __future__ import annotations

from typing import Any

from sqlalchemy import Select, or_


def apply_sort(
    stmt: Select[Any],
    model: type,
    sort: str | None,
    direction: str | None,
    *,
    allowed: set[str],
    default: str,
) -> Select[Any]:
    field_name = sort if sort in allowed else default
    column = getattr(model, field_name)
    if (direction or "desc").lower() == "asc":
        return stmt.order_by(column.asc())
    return stmt.order_by(column.desc())


def apply_search(stmt: Select[Any], q: str | None, *columns: Any) -> Select[Any]:
    term = (q or "").strip()
    if not term:
        return stmt
    pattern = f"%{term}%"
    return stmt.where(or_(*[column.ilike(pattern) for column in columns]))
