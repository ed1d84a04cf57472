from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import notifications
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
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    notifications.clear_sent_messages()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    notifications.clear_sent_messages()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _staff(db_session: Session, email: str, *roles: str) -> tuple[User, dict[str, str]]:
    identity_service.ensure_default_roles(db_session)
    user = User(email=email, name=email.split("@")[0].title())
    db_session.add(user)
    db_session.flush()
    for name in roles or ("staff",):
        role = db_session.scalar(select(Role).where(Role.name == name))
        db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    token = create_access_token(str(user.id), email=user.email, roles=list(roles or ("staff",)))
    return user, {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def seller(db_session: Session) -> dict[str, str]:
    return _staff(db_session, "seller@boaz.example.com")[1]


@pytest.fixture()
def manager(db_session: Session) -> dict[str, str]:
    return _staff(db_session, "lead@boaz.example.com", "manager")[1]


def _account(client: TestClient, headers: dict[str, str]) -> dict:
    response = client.post("/api/crm/accounts", json={"name": "Acme"}, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


def _quote(client: TestClient, headers: dict[str, str], **extra) -> dict:
    account = _account(client, headers)
    payload = {"title": "Annual support", "account_id": account["id"], "total": 1200, **extra}
    response = client.post("/api/crm/quotes", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


def test_create_quote_resolves_account_by_number(client: TestClient, seller: dict[str, str]) -> None:
    account = _account(client, seller)
    created = client.post(
        "/api/crm/quotes",
        json={"title": "Onboarding", "account_number": account["account_number"], "subtotal": 100, "tax": 8.333, "total": 108.333},
        headers=seller,
    )
    assert created.status_code == 201
    quote = created.json()["data"]
    assert quote["quote_number"] == 500001
    assert quote["account_id"] == account["id"]
    assert quote["status"] == "Draft"
    assert quote["esign_status"] == "Not Sent"
    assert quote["version"] == 1
    assert quote["tax"] == 8.33


def test_create_quote_account_errors(client: TestClient, seller: dict[str, str]) -> None:
    missing = client.post("/api/crm/quotes", json={"title": "No account"}, headers=seller)
    assert missing.status_code == 400
    assert missing.json()["error"] == "missing_account"

    unknown = client.post("/api/crm/quotes", json={"title": "Ghost", "account_id": str(uuid.uuid4())}, headers=seller)
    assert unknown.status_code == 400
    assert unknown.json()["error"] == "account_not_found"

    untitled = client.post("/api/crm/quotes", json={"title": "  ", "account_number": 998801}, headers=seller)
    assert untitled.status_code == 400
    assert untitled.json()["error"] == "invalid_payload"


def test_items_change_bumps_version(client: TestClient, seller: dict[str, str]) -> None:
    quote = _quote(client, seller)

    updated = client.put(
        f"/api/crm/quotes/{quote['id']}",
        json={"items": [{"sku": "SUP-1", "qty": 2}], "subtotal": 1400, "tax": 0, "total": 1400, "status": "Sent"},
        headers=seller,
    )
    assert updated.status_code == 200
    data = updated.json()["data"]
    assert data["version"] == 2
    assert data["total"] == 1400
    assert data["status"] == "Sent"

    history = client.get(f"/api/crm/quotes/{quote['id']}/history", headers=seller).json()["data"]["items"]
    by_type = {item["event_type"]: item for item in history}
    assert set(by_type) == {"created", "status_changed", "version_bumped"}
    assert by_type["version_bumped"]["old_value"] == 1200
    assert by_type["version_bumped"]["new_value"] == 1400


def test_signed_esign_status_stamps_signed_at(client: TestClient, seller: dict[str, str]) -> None:
    quote = _quote(client, seller)
    signed = client.put(f"/api/crm/quotes/{quote['id']}", json={"esign_status": "Signed"}, headers=seller)
    assert signed.json()["data"]["esign_status"] == "Signed"
    assert signed.json()["data"]["signed_at"] is not None


def test_approval_request_and_review(client: TestClient, seller: dict[str, str], manager: dict[str, str]) -> None:
    quote = _quote(client, seller)

    requested = client.post(
        f"/api/crm/quotes/{quote['id']}/request-approval",
        json={"approver_email": "Lead@Boaz.example.com"},
        headers=seller,
    )
    assert requested.status_code == 201
    assert requested.json()["data"]["status"] == "pending"
    assert requested.json()["data"]["approver_email"] == "lead@boaz.example.com"
    assert notifications.sent_messages[-1]["to"] == "lead@boaz.example.com"
    assert client.get(f"/api/crm/quotes/{quote['id']}", headers=seller).json()["data"]["status"] == "Pending Approval"

    duplicate = client.post(
        f"/api/crm/quotes/{quote['id']}/request-approval",
        json={"approver_email": "lead@boaz.example.com"},
        headers=seller,
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "approval_request_already_exists"

    queue = client.get("/api/crm/quotes/approval-queue", headers=manager).json()["data"]["items"]
    assert len(queue) == 1
    assert queue[0]["quote"]["id"] == quote["id"]

    approved = client.post(
        f"/api/crm/quotes/{quote['id']}/approve",
        json={"review_notes": "Within discount policy"},
        headers=manager,
    )
    assert approved.status_code == 200
    assert approved.json()["data"]["status"] == "Approved"
    assert approved.json()["data"]["approved_at"] is not None
    assert notifications.sent_messages[-1]["to"] == "seller@boaz.example.com"
    assert "Within discount policy" in notifications.sent_messages[-1]["body"]

    assert client.get("/api/crm/quotes/approval-queue", headers=manager).json()["data"]["items"] == []
    everything = client.get("/api/crm/quotes/approval-queue", params={"status": "all"}, headers=manager)
    assert [item["status"] for item in everything.json()["data"]["items"]] == ["approved"]

    again = client.post(f"/api/crm/quotes/{quote['id']}/reject", headers=manager)
    assert again.status_code == 404
    assert again.json()["error"] == "approval_request_not_found"


def test_approval_requires_manager(client: TestClient, seller: dict[str, str], db_session: Session) -> None:
    _staff(db_session, "peer@boaz.example.com")
    quote = _quote(client, seller)

    not_manager = client.post(
        f"/api/crm/quotes/{quote['id']}/request-approval",
        json={"approver_email": "peer@boaz.example.com"},
        headers=seller,
    )
    assert not_manager.status_code == 403
    assert not_manager.json()["error"] == "approver_not_manager"

    unknown = client.post(
        f"/api/crm/quotes/{quote['id']}/request-approval",
        json={"approver_email": "nobody@boaz.example.com"},
        headers=seller,
    )
    assert unknown.status_code == 404
    assert unknown.json()["error"] == "approver_not_found"

    no_email = client.post(f"/api/crm/quotes/{quote['id']}/request-approval", headers=seller)
    assert no_email.status_code == 400
    assert no_email.json()["error"] == "approver_email_required"

    queue = client.get("/api/crm/quotes/approval-queue", headers=seller)
    assert queue.status_code == 403
    assert queue.json()["error"] == "manager_access_required"


def test_rejection_marks_quote_rejected(client: TestClient, seller: dict[str, str], manager: dict[str, str]) -> None:
    quote = _quote(client, seller, approver="lead@boaz.example.com")
    requested = client.post(f"/api/crm/quotes/{quote['id']}/request-approval", headers=seller)
    assert requested.status_code == 201

    rejected = client.post(f"/api/crm/quotes/{quote['id']}/reject", json={}, headers=manager)
    assert rejected.json()["data"]["status"] == "Rejected"
    assert rejected.json()["data"]["approved_at"] is None


def test_list_search_and_delete(client: TestClient, seller: dict[str, str]) -> None:
    quote = _quote(client, seller, signer_email="cfo@acme.example.com")
    found = client.get("/api/crm/quotes", params={"q": "cfo@"}, headers=seller).json()["data"]["items"]
    assert [item["id"] for item in found] == [quote["id"]]

    deleted = client.delete(f"/api/crm/quotes/{quote['id']}", headers=seller)
    assert deleted.json() == {"data": {"ok": True}, "error": None}
    assert client.get(f"/api/crm/quotes/{quote['id']}", headers=seller).status_code == 404
