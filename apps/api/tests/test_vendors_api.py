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
    user = User(email="buyer@boaz.example.com", name="Buyer")
    db_session.add(user)
    db_session.flush()
    role = db_session.scalar(select(Role).where(Role.name == "staff"))
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user.id), email=user.email, roles=['staff'])}"}


def test_create_vendor_validates_website_and_email(client: TestClient, headers: dict[str, str]) -> None:
    bad_site = client.post("/api/crm/vendors", json={"name": "Acme", "website": "not a url"}, headers=headers)
    assert bad_site.status_code == 400
    assert bad_site.json()["error"] == "invalid_payload"

    bad_email = client.post("/api/crm/vendors", json={"name": "Acme", "support_email": "nope"}, headers=headers)
    assert bad_email.status_code == 400

    blank_name = client.post("/api/crm/vendors", json={"name": "   "}, headers=headers)
    assert blank_name.status_code == 400

    created = client.post(
        "/api/crm/vendors",
        json={
            "name": " Acme Hosting ",
            "website": "https://acme.test",
            "support_email": "",
            "categories": ["hosting", " ", "cloud "],
        },
        headers=headers,
    )
    assert created.status_code == 201
    vendor = created.json()["data"]
    assert vendor["name"] == "Acme Hosting"
    assert vendor["status"] == "Active"
    assert vendor["support_email"] is None
    assert vendor["categories"] == ["hosting", "cloud"]


def test_list_filters_and_options(client: TestClient, headers: dict[str, str]) -> None:
    for name, status, categories in (
        ("Zeta Supplies", "Active", ["office"]),
        ("Alpha Cloud", "Active", ["hosting"]),
        ("Old Printers", "Inactive", ["office"]),
    ):
        response = client.post(
            "/api/crm/vendors",
            json={"name": name, "status": status, "categories": categories},
            headers=headers,
        )
        assert response.status_code == 201

    everything = client.get("/api/crm/vendors", headers=headers).json()["data"]["items"]
    assert [item["name"] for item in everything] == ["Alpha Cloud", "Old Printers", "Zeta Supplies"]

    inactive = client.get("/api/crm/vendors", params={"status": "Inactive"}, headers=headers).json()["data"]["items"]
    assert [item["name"] for item in inactive] == ["Old Printers"]

    office = client.get("/api/crm/vendors", params={"category": "office"}, headers=headers).json()["data"]["items"]
    assert [item["name"] for item in office] == ["Old Printers", "Zeta Supplies"]

    searched = client.get("/api/crm/vendors", params={"q": "cloud"}, headers=headers).json()["data"]["items"]
    assert [item["name"] for item in searched] == ["Alpha Cloud"]

    options = client.get("/api/crm/vendors/options", headers=headers).json()["data"]["items"]
    assert [item["name"] for item in options] == ["Alpha Cloud", "Zeta Supplies"]
    assert set(options[0]) == {"id", "name"}


def test_update_records_field_and_status_history(client: TestClient, headers: dict[str, str]) -> None:
    vendor = client.post("/api/crm/vendors", json={"name": "Beta Labs", "city": "Austin"}, headers=headers).json()["data"]

    updated = client.put(
        f"/api/crm/vendors/{vendor['id']}",
        json={"status": "Inactive", "city": "Dallas", "name": None},
        headers=headers,
    )
    assert updated.status_code == 200
    data = updated.json()["data"]
    assert data["status"] == "Inactive"
    assert data["city"] == "Dallas"
    assert data["name"] == "Beta Labs"

    history = client.get(f"/api/crm/vendors/{vendor['id']}/history", headers=headers).json()["data"]["items"]
    events = {item["event_type"]: item for item in history}
    assert set(events) == {"created", "status_changed", "field_changed"}
    assert events["status_changed"]["old_value"] == "Active"
    assert events["status_changed"]["new_value"] == "Inactive"
    assert events["field_changed"]["metadata"] == {"field": "city"}
    assert events["created"]["user_email"] == "buyer@boaz.example.com"

    unchanged = client.put(f"/api/crm/vendors/{vendor['id']}", json={"city": "Dallas"}, headers=headers)
    assert unchanged.status_code == 200
    history = client.get(f"/api/crm/vendors/{vendor['id']}/history", headers=headers).json()["data"]["items"]
    assert len(history) == 3


def test_delete_vendor_keeps_history(client: TestClient, headers: dict[str, str]) -> None:
    vendor = client.post("/api/crm/vendors", json={"name": "Gone Inc"}, headers=headers).json()["data"]

    deleted = client.delete(f"/api/crm/vendors/{vendor['id']}", headers=headers)
    assert deleted.json() == {"data": {"ok": True}, "error": None}
    assert client.get(f"/api/crm/vendors/{vendor['id']}", headers=headers).status_code == 404

    history = client.get(f"/api/crm/vendors/{vendor['id']}/history", headers=headers).json()["data"]["items"]
    assert {item["event_type"] for item in history} == {"created", "deleted"}


def test_unknown_vendor_is_not_found(client: TestClient, headers: dict[str, str]) -> None:
    response = client.put(f"/api/crm/vendors/{uuid.uuid4()}", json={"city": "Nowhere"}, headers=headers)
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
