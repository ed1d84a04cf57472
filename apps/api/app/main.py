from contextlib import asynccontextmanager, contextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.exc import SQLAlchemyError

from app.api.envelope import register_exception_handlers
from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.context import RequestContextMiddleware
from app.core.database import SessionLocal, get_db
from app.core.events import InternalEvent, event_bus
from app.identity.service import identity_service
from app.logging import configure_logging
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.rate_limit import MutationRateLimitMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("app.lifecycle")
_subscriptions_registered = False

_audited_event_types = [
    "expense.submitted",
    "expense.paid",
    "ticket.created",
    "appointment.booked",
    "appointment.cancelled",
    "terms.review.responded",
    "invoice.payment_received",
]


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system.started", extra={"action": event.name})


def _on_domain_event(event: InternalEvent) -> None:
    entity_id = None
    if isinstance(event.payload, dict):
        entity_id = next((str(value) for key, value in event.payload.items() if key.endswith("_id") and value), None)
    logger.info("domain.event", extra={"action": event.name, "entity_id": entity_id})


@contextmanager
def _session_scope():
    override = app.dependency_overrides.get(get_db) if "app" in globals() else None
    if override is None:
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()
        return

    generator = override()
    session = next(generator)
    try:
        yield session
    finally:
        try:
            next(generator)
        except StopIteration:
            pass


def _seed_roles() -> None:
    try:
        with _session_scope() as session:
            identity_service.ensure_default_roles(session)
    except SQLAlchemyError as exc:
        logger.exception("identity.role_seed_failed", extra={"error": str(exc)[:500]})


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        event_bus.subscribe_many(_audited_event_types, _on_domain_event)
        _subscriptions_registered = True
    if get_settings().seed_default_roles:
        _seed_roles()
    event_bus.publish("system.started", {"service": "api"})
    yield


app = FastAPI(title="BOAZ-OS API", version=get_settings().app_version, lifespan=lifespan)
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)
app.include_router(api_router)

settings = get_settings()
if settings.otel_enabled:
    setup_otel("api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
