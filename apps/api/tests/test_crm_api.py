from __future__ import annotations

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
from app.crm.service import crm_service
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
    user = User(email="rep@boaz.example.com", name="Rep")
    db_session.add(user)
    db_session.flush()
    role = db_session.scalar(select(Role).where(Role.name == "staff"))
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user.id), email=user.email, roles=['staff'])}"}


def test_accounts_get_sequential_numbers(client: TestClient, headers: dict[str, str]) -> None:
    first = client.post(
        "/api/crm/accounts",
        json={"name": "Acme", "primary_contact_email": "Buyer@Acme.example.com"},
        headers=headers,
    )
    second = client.post("/api/crm/accounts", json={"name": "Globex"}, headers=headers)
    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json()["data"]["account_number"] == 998801
    assert second.json()["data"]["account_number"] == 998802
    assert first.json()["data"]["primary_contact_email"] == "buyer@acme.example.com"

    listed = client.get("/api/crm/accounts", params={"q": "glob"}, headers=headers)
    assert listed.status_code == 200
    assert [item["name"] for item in listed.json()["data"]["items"]] == ["Globex"]


def test_get_unknown_account_returns_not_found(client: TestClient, headers: dict[str, str]) -> None:
    response = client.get(f"/api/crm/accounts/{uuid.uuid4()}", headers=headers)
    assert response.status_code == 404
    assert response.json() == {"data": None, "error": "not_found"}


def test_contact_requires_existing_account(client: TestClient, headers: dict[str, str]) -> None:
    missing = client.post(
        "/api/crm/contacts",
        json={"name": "Orphan", "account_id": str(uuid.uuid4())},
        headers=headers,
    )
    assert missing.status_code == 404
    assert missing.json()["error"] == "account_not_found"

    account = client.post("/api/crm/accounts", json={"name": "Initech"}, headers=headers).json()["data"]
    created = client.post(
        "/api/crm/contacts",
        json={"name": "Peter", "email": "PETER@initech.example.com", "account_id": account["id"], "metadata": {"source": "ref"}},
        headers=headers,
    )
    assert created.status_code == 201
    contact = created.json()["data"]
    assert contact["email"] == "peter@initech.example.com"
    assert contact["metadata"] == {"source": "ref"}

    by_account = client.get("/api/crm/contacts", params={"account_id": account["id"]}, headers=headers)
    assert [item["id"] for item in by_account.json()["data"]["items"]] == [contact["id"]]


def test_task_lifecycle(client: TestClient, headers: dict[str, str]) -> None:
    created = client.post(
        "/api/crm/tasks",
        json={"subject": "Call back", "type": "call", "related_type": "account", "related_id": "acc-1"},
        headers=headers,
    )
    assert created.status_code == 201
    task = created.json()["data"]
    assert task["status"] == "open"
    assert task["owner_user_id"] is not None

    completed = client.post(f"/api/crm/tasks/{task['id']}/complete", headers=headers)
    assert completed.status_code == 200
    assert completed.json()["data"]["status"] == "completed"
    assert completed.json()["data"]["completed_at"] is not None

    filtered = client.get("/api/crm/tasks", params={"status": "completed", "related_id": "acc-1"}, headers=headers)
    assert len(filtered.json()["data"]["items"]) == 1


def test_cancel_related_tasks_skips_already_cancelled(client: TestClient, headers: dict[str, str], db_session: Session) -> None:
    for subject in ("Prep", "Meet"):
        response = client.post(
            "/api/crm/tasks",
            json={"subject": subject, "type": "meeting", "related_type": "appointment", "related_id": "appt-1"},
            headers=headers,
        )
        assert response.status_code == 201

    assert crm_service.cancel_related_tasks(db_session, related_type="appointment", related_id="appt-1") == 2
    db_session.commit()
    assert crm_service.cancel_related_tasks(db_session, related_type="appointment", related_id="appt-1") == 0


def test_link_or_create_contact_reuses_email(db_session: Session) -> None:
    first = crm_service.link_or_create_contact(
        db_session, email="Guest@Example.com", name="Guest", phone=None, metadata={"source": "scheduler"}
    )
    second = crm_service.link_or_create_contact(
        db_session, email="guest@example.com", name="Guest Two", phone="555", metadata={}
    )
    assert first.id == second.id
    assert second.name == "Guest"


def test_crm_requires_authentication(client: TestClient) -> None:
    response = client.get("/api/crm/accounts")
    assert response.status_code == 401
    assert response.json()["error"] == "unauthorized"
