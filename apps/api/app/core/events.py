import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


logger = logging.getLogger("app.events")

WILDCARD = "*"


@dataclass(frozen=True)
class InternalEvent:
    name: str
    payload: dict[str, Any]
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    """Synchronous fan-out of domain events to in-process handlers.

    Handlers run in subscription order on the publishing thread. A failing
    handler is logged and skipped; the publisher never sees the error because
    the change that produced the event is already committed.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        if handler not in self._subscribers[event_name]:
            self._subscribers[event_name].append(handler)

    def subscribe_many(self, event_names: Iterable[str], handler: EventHandler) -> None:
        for event_name in event_names:
            self.subscribe(event_name, handler)

    def handlers_for(self, event_name: str) -> list[EventHandler]:
        return [*self._subscribers.get(event_name, []), *self._subscribers.get(WILDCARD, [])]

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        event = InternalEvent(name=event_name, payload=payload)
        for handler in self.handlers_for(event_name):
            try:
                handler(event)
            except Exception as exc:
                logger.exception("event.handler_failed", extra={"action": event_name, "error": str(exc)})


event_bus = InProcessEventBus()
