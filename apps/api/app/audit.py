from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.models.audit import AuditLog

logger = logging.getLogger("app.audit")
audit_entries: list[dict[str, Any]] = []


def record(
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    correlation_id: str | None = None,
    session: Session | None = None,
) -> None:
    """Append an audit entry; with ``session`` the entry is also staged as an ``AuditLog`` row.

    The row joins the caller's transaction, so it is committed (or rolled back)
    together with the change it describes.
    """
    resolved_correlation_id = correlation_id or get_correlation_id()
    entry = {
        "id": str(uuid.uuid4()),
        "actor_user_id": actor_user_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "before": jsonable_encoder(before),
        "after": jsonable_encoder(after),
        "correlation_id": resolved_correlation_id,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    audit_entries.append(entry)
    logger.info(
        "audit.recorded",
        extra={"entity_type": entity_type, "entity_id": entity_id, "action": action, "actor_id": actor_user_id},
    )
    if session is not None:
        session.add(
            AuditLog(
                actor_id=actor_user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                event_metadata={"before": entry["before"], "after": entry["after"]},
                correlation_id=resolved_correlation_id,
            )
        )
