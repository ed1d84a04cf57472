from __future__ import annotations

import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from app.core.auth import create_access_token
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.identity.models import Role, User, UserRole
from app.identity.service import identity_service
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.otel import setup_inmemory_otel


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def headers(db_session: Session) -> dict[str, str]:
    identity_service.ensure_default_roles(db_session)
    user = User(email="otel@boaz.example.com", name="Otel")
    db_session.add(user)
    db_session.flush()
    role = db_session.scalar(select(Role).where(Role.name == "staff"))
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user.id), email=user.email, roles=['staff'])}"}


def test_request_span_contains_correlation_id(
    client: TestClient,
    headers: dict[str, str],
    span_exporter: InMemorySpanExporter,
) -> None:
    response = client.post(
        "/api/crm/accounts",
        json={"name": "OTel Account"},
        headers={**headers, "X-Correlation-Id": "otel-corr-1"},
    )
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_booking_span_contains_slug_and_correlation(
    client: TestClient,
    headers: dict[str, str],
    span_exporter: InMemorySpanExporter,
) -> None:
    availability = client.put(
        "/api/scheduler/availability/me",
        json={
            "time_zone": "UTC",
            "weekly": [{"day": day, "enabled": True, "start_min": 0, "end_min": 1440} for day in range(7)],
        },
        headers=headers,
    )
    assert availability.status_code == 200
    created = client.post(
        "/api/scheduler/appointment-types",
        json={"name": "Demo", "slug": "demo", "duration_minutes": 30},
        headers=headers,
    )
    assert created.status_code == 201

    starts_at = (datetime.now(timezone.utc) + timedelta(days=1)).replace(hour=11, minute=0, second=0, microsecond=0)
    booked = client.post(
        "/api/scheduler/public/book/demo",
        json={
            "attendee_name": "Guest",
            "attendee_email": "guest@example.com",
            "starts_at": starts_at.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
        },
        headers={"X-Correlation-Id": "otel-book-1"},
    )
    assert booked.status_code == 201

    booking_spans = [span for span in span_exporter.get_finished_spans() if span.name == "scheduler.book"]
    assert booking_spans
    assert any(
        span.attributes.get("slug") == "demo" and span.attributes.get("correlation_id") == "otel-book-1"
        for span in booking_spans
    )
