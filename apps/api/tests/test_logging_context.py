from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import create_access_token
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.identity.models import Role, User, UserRole
from app.identity.service import identity_service
from app.logging import JsonLogFormatter
from app.middleware.rate_limit import reset_rate_limiter
from app.main import app


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
    user = User(email="logs@boaz.example.com", name="Logs")
    db_session.add(user)
    db_session.flush()
    role = db_session.scalar(select(Role).where(Role.name == "staff"))
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user.id), email=user.email, roles=['staff'])}"}


def test_logs_include_correlation_id_for_http(
    client: TestClient,
    headers: dict[str, str],
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    path = f"/api/crm/accounts/{uuid.uuid4()}"
    response = client.get(path, headers={**headers, "X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "app.http" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/crm/accounts/{id}"
        and getattr(record, "status_code", None) == 404
        and record.levelno == logging.WARNING
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_domain_logs_carry_entity_and_correlation_id(
    client: TestClient,
    headers: dict[str, str],
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(
        "/api/crm/support/tickets",
        json={"title": "Printer on fire"},
        headers={**headers, "X-Correlation-Id": "abc-456"},
    )
    assert response.status_code == 201
    ticket_id = response.json()["data"]["id"]

    audit_records = [record for record in caplog.records if record.name == "app.audit"]
    assert any(
        getattr(record, "entity_type", None) == "support.ticket"
        and getattr(record, "entity_id", None) == ticket_id
        and getattr(record, "correlation_id", None) == "abc-456"
        for record in audit_records
    )


def test_json_formatter_emits_known_fields_only() -> None:
    record = logging.LogRecord("app.http", logging.INFO, __file__, 1, "http.request", None, None)
    record.method = "POST"
    record.path = "/api/crm/accounts"
    record.status_code = 201
    record.correlation_id = "fmt-1"
    record.password = "hunter2"

    payload = json.loads(JsonLogFormatter().format(record))
    assert payload["msg"] == "http.request"
    assert payload["logger"] == "app.http"
    assert payload["correlation_id"] == "fmt-1"
    assert payload["fields"] == {"method": "POST", "path": "/api/crm/accounts", "status_code": 201}
