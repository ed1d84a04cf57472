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
    user = User(email="writer@boaz.example.com", name="Writer")
    db_session.add(user)
    db_session.flush()
    role = db_session.scalar(select(Role).where(Role.name == "staff"))
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user.id), email=user.email, roles=['staff'])}"}


def test_article_requires_title_and_body(client: TestClient, headers: dict[str, str]) -> None:
    response = client.post("/api/crm/kb", json={"title": "  ", "body": "text"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_payload"

    response = client.post("/api/crm/kb", json={"title": "Reset MFA"}, headers=headers)
    assert response.status_code == 400


def test_article_defaults_author_to_actor_email(client: TestClient, headers: dict[str, str]) -> None:
    created = client.post(
        "/api/crm/kb",
        json={"title": "Reset MFA", "body": "Steps...", "tags": [" security ", ""], "category": "Accounts"},
        headers=headers,
    )
    assert created.status_code == 201
    article = created.json()["data"]
    assert article["author"] == "writer@boaz.example.com"
    assert article["tags"] == ["security"]


def test_list_filters_by_tag_category_and_search(client: TestClient, headers: dict[str, str]) -> None:
    for title, tags, category in (
        ("VPN setup", ["network"], "IT"),
        ("Expense policy", ["finance"], "Finance"),
        ("Wi-Fi troubleshooting", ["network", "wifi"], "IT"),
    ):
        response = client.post(
            "/api/crm/kb",
            json={"title": title, "body": f"{title} body", "tags": tags, "category": category},
            headers=headers,
        )
        assert response.status_code == 201

    by_tag = client.get("/api/crm/kb", params={"tag": "network", "sort": "title", "dir": "asc"}, headers=headers)
    assert [item["title"] for item in by_tag.json()["data"]["items"]] == ["VPN setup", "Wi-Fi troubleshooting"]

    by_category = client.get("/api/crm/kb", params={"category": "Finance"}, headers=headers)
    assert [item["title"] for item in by_category.json()["data"]["items"]] == ["Expense policy"]

    searched = client.get("/api/crm/kb", params={"q": "troubleshoot"}, headers=headers)
    assert len(searched.json()["data"]["items"]) == 1


def test_update_and_delete_article(client: TestClient, headers: dict[str, str]) -> None:
    article = client.post(
        "/api/crm/kb",
        json={"title": "Draft", "body": "v1", "category": "Misc"},
        headers=headers,
    ).json()["data"]

    updated = client.put(
        f"/api/crm/kb/{article['id']}",
        json={"body": "v2", "category": None, "tags": ["faq"]},
        headers=headers,
    )
    assert updated.status_code == 200
    data = updated.json()["data"]
    assert data["body"] == "v2"
    assert data["category"] is None
    assert data["tags"] == ["faq"]
    assert data["title"] == "Draft"

    deleted = client.delete(f"/api/crm/kb/{article['id']}", headers=headers)
    assert deleted.json() == {"data": {"ok": True}, "error": None}
    assert client.get(f"/api/crm/kb/{article['id']}", headers=headers).status_code == 404


def test_unknown_article_is_not_found(client: TestClient, headers: dict[str, str]) -> None:
    response = client.get(f"/api/crm/kb/{uuid.uuid4()}", headers=headers)
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
