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
def configure_rate_limiter_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "3")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _headers(db_session: Session, email: str) -> dict[str, str]:
    identity_service.ensure_default_roles(db_session)
    user = User(email=email, name=email.split("@")[0].title())
    db_session.add(user)
    db_session.flush()
    role = db_session.scalar(select(Role).where(Role.name == "staff"))
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user.id), email=user.email, roles=['staff'])}"}


def test_mutating_endpoints_are_rate_limited(client: TestClient, db_session: Session) -> None:
    headers = _headers(db_session, "busy@boaz.example.com")
    responses = [
        client.post("/api/crm/accounts", json={"name": f"Rate Limit Account {index}"}, headers=headers)
        for index in range(5)
    ]

    assert [response.status_code for response in responses[:3]] == [201, 201, 201]
    limited = [response for response in responses if response.status_code == 429]
    assert limited

    first_limited = limited[0]
    assert first_limited.json() == {"data": None, "error": "rate_limited"}
    assert first_limited.headers.get("Retry-After") is not None
    assert first_limited.headers.get("x-correlation-id")


def test_buckets_are_per_actor_and_route_group(client: TestClient, db_session: Session) -> None:
    first = _headers(db_session, "first@boaz.example.com")
    second = _headers(db_session, "second@boaz.example.com")

    for index in range(3):
        assert client.post("/api/crm/accounts", json={"name": f"A{index}"}, headers=first).status_code == 201
    assert client.post("/api/crm/accounts", json={"name": "A4"}, headers=first).status_code == 429

    assert client.post("/api/crm/accounts", json={"name": "B1"}, headers=second).status_code == 201
    assert client.post("/api/crm/contacts", json={"name": "C1"}, headers=first).status_code == 201


def test_get_endpoints_are_not_rate_limited(client: TestClient, db_session: Session) -> None:
    headers = _headers(db_session, "reader@boaz.example.com")
    create = client.post("/api/crm/accounts", json={"name": "Readable Account"}, headers=headers)
    assert create.status_code == 201

    responses = [client.get("/api/crm/accounts", headers=headers) for _ in range(10)]
    assert all(response.status_code == 200 for response in responses)
