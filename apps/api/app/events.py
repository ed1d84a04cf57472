from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi.encoders import jsonable_encoder

from app.context import get_actor_id, get_correlation_id
from app.core.events import event_bus

published_events: list[dict[str, Any]] = []


def publish(envelope: dict[str, Any]) -> dict[str, Any]:
    """Stamp a domain event envelope, keep it in ``published_events`` and fan it out.

    The envelope must carry ``event_type``; ids, correlation id and actor are
    filled in when the caller did not set them.
    """
    event_type = envelope.get("event_type")
    if not isinstance(event_type, str) or not event_type:
        raise ValueError("event envelope requires an event_type")

    stamped = jsonable_encoder(envelope)
    stamped.setdefault("event_id", str(uuid.uuid4()))
    if stamped.get("correlation_id") is None:
        stamped["correlation_id"] = get_correlation_id()
    if stamped.get("actor_id") is None:
        stamped["actor_id"] = get_actor_id()
    stamped.setdefault("occurred_at", datetime.now(timezone.utc).isoformat())

    published_events.append(stamped)
    event_bus.publish(event_type, stamped)
    return stamped
