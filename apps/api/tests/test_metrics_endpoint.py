from __future__ import annotations

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
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter


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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
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


def _headers(db_session: Session, email: str, role_name: str) -> dict[str, str]:
    identity_service.ensure_default_roles(db_session)
    user = User(email=email, name=email.split("@")[0].title())
    db_session.add(user)
    db_session.flush()
    role = db_session.scalar(select(Role).where(Role.name == role_name))
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user.id), email=user.email, roles=[role_name])}"}


def test_health_reports_service(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "service" in response.json()


def test_metrics_endpoint_exposes_http_and_domain_metrics(client: TestClient, db_session: Session) -> None:
    admin = _headers(db_session, "ops@boaz.example.com", "admin")
    assert client.get("/health").status_code == 200

    account = client.post("/api/crm/accounts", json={"name": "Metrics Account"}, headers=admin)
    assert account.status_code == 201
    assert client.get(f"/api/crm/accounts/{account.json()['data']['id']}", headers=admin).status_code == 200
    ticket = client.post("/api/crm/support/tickets", json={"title": "Metrics ticket"}, headers=admin)
    assert ticket.status_code == 201

    metrics = client.get("/metrics", headers=admin)
    assert metrics.status_code == 200
    assert metrics.headers["content-type"].startswith("text/plain")
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "tickets_created_total" in body
    assert 'path="/health"' in body
    assert 'path="/api/crm/accounts/{id}"' in body
    assert 'channel="staff"' in body


def test_metrics_requires_staff_permission(client: TestClient, db_session: Session) -> None:
    assert client.get("/metrics").status_code == 401

    staff = _headers(db_session, "desk@boaz.example.com", "staff")
    forbidden = client.get("/metrics", headers=staff)
    assert forbidden.status_code == 403
    assert forbidden.json()["error"] == "forbidden"


def test_metrics_disabled_returns_not_found(
    client: TestClient,
    db_session: Session,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    admin = _headers(db_session, "ops@boaz.example.com", "admin")
    response = client.get("/metrics", headers=admin)
    assert response.status_code == 404
    assert response.json() == {"data": None, "error": "not_found"}
