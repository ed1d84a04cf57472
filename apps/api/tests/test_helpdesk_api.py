from __future__ import annotations

from collections.abc import Generator
from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events, notifications
from app.core.auth import create_access_token
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.helpdesk.service import helpdesk_service
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
    events.published_events.clear()
    notifications.clear_sent_messages()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    events.published_events.clear()
    notifications.clear_sent_messages()


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
    user = User(email="agent@boaz.example.com", name="Agent")
    db_session.add(user)
    db_session.flush()
    role = db_session.scalar(select(Role).where(Role.name == "staff"))
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user.id), email=user.email, roles=['staff'])}"}


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _account(client: TestClient, headers: dict[str, str], name: str = "Acme") -> dict:
    response = client.post("/api/crm/accounts", json={"name": name}, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


def test_ticket_requires_short_description_or_title(client: TestClient, headers: dict[str, str]) -> None:
    response = client.post("/api/crm/support/tickets", json={"description": "no title"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_payload"

    titled = client.post("/api/crm/support/tickets", json={"title": "Printer on fire"}, headers=headers)
    assert titled.status_code == 201
    ticket = titled.json()["data"]
    assert ticket["short_description"] == "Printer on fire"
    assert ticket["ticket_number"] == 200001
    assert ticket["history"][0]["event"] == "created"

    created_events = [item for item in events.published_events if item["event_type"] == "ticket.created"]
    assert created_events[-1]["ticket_id"] == ticket["id"]


def test_ticket_sla_uses_tightest_active_support_contract(client: TestClient, headers: dict[str, str]) -> None:
    account = _account(client, headers)
    for name, minutes, sla_status in (("Gold", 120, "active"), ("Platinum", 60, "active"), ("Old", 5, "expired")):
        response = client.post(
            "/api/crm/slas",
            json={
                "account_id": account["id"],
                "name": name,
                "type": "support",
                "status": sla_status,
                "resolution_target_minutes": minutes,
            },
            headers=headers,
        )
        assert response.status_code == 201

    before = datetime.now(timezone.utc)
    created = client.post(
        "/api/crm/support/tickets",
        json={"short_description": "Outage", "account_id": account["id"]},
        headers=headers,
    )
    assert created.status_code == 201
    due = datetime.fromisoformat(created.json()["data"]["sla_due_at"]).replace(tzinfo=timezone.utc)
    assert before + timedelta(minutes=59) <= due <= before + timedelta(minutes=61)


def test_breached_filter_and_metrics(client: TestClient, headers: dict[str, str]) -> None:
    now = datetime.now(timezone.utc)
    late = client.post(
        "/api/crm/support/tickets",
        json={"short_description": "Late", "sla_due_at": _iso(now - timedelta(hours=2))},
        headers=headers,
    ).json()["data"]
    client.post(
        "/api/crm/support/tickets",
        json={"short_description": "Soon", "sla_due_at": _iso(now + timedelta(minutes=30))},
        headers=headers,
    )
    client.post(
        "/api/crm/support/tickets",
        json={"short_description": "Later", "sla_due_at": _iso(now + timedelta(days=2))},
        headers=headers,
    )

    breached = client.get("/api/crm/support/tickets", params={"breached": "1"}, headers=headers)
    assert breached.status_code == 200
    assert [item["id"] for item in breached.json()["data"]["items"]] == [late["id"]]

    due_soon = client.get("/api/crm/support/tickets", params={"due_within": 60}, headers=headers)
    assert [item["short_description"] for item in due_soon.json()["data"]["items"]] == ["Soon"]

    metrics = client.get("/api/crm/support/tickets/metrics", headers=headers)
    assert metrics.json()["data"] == {"open": 3, "breached": 1, "due_next_60": 1}


def test_update_records_history_and_comment_appends(client: TestClient, headers: dict[str, str]) -> None:
    ticket = client.post("/api/crm/support/tickets", json={"short_description": "VPN"}, headers=headers).json()["data"]

    updated = client.put(
        f"/api/crm/support/tickets/{ticket['id']}",
        json={"status": "in_progress", "priority": "high"},
        headers=headers,
    )
    assert updated.status_code == 200
    data = updated.json()["data"]
    assert data["status"] == "in_progress"
    assert data["history"][-1]["event"] == "updated"
    assert "status" in data["history"][-1]["description"]

    unchanged = client.put(f"/api/crm/support/tickets/{ticket['id']}", json={"status": "in_progress"}, headers=headers)
    assert len(unchanged.json()["data"]["history"]) == len(data["history"])

    commented = client.post(
        f"/api/crm/support/tickets/{ticket['id']}/comments",
        json={"body": "Restarted the tunnel"},
        headers=headers,
    )
    assert commented.status_code == 200
    comments = commented.json()["data"]["comments"]
    assert comments[-1]["body"] == "Restarted the tunnel"
    assert comments[-1]["author"] == "agent@boaz.example.com"


def test_sla_summary_by_account(client: TestClient, headers: dict[str, str]) -> None:
    account = _account(client, headers)
    expiring = (date.today() + timedelta(days=30)).isoformat()
    distant = (date.today() + timedelta(days=400)).isoformat()
    for name, end_date, response_minutes in (("A", expiring, 30), ("B", distant, 15)):
        client.post(
            "/api/crm/slas",
            json={
                "account_id": account["id"],
                "name": name,
                "end_date": end_date,
                "response_target_minutes": response_minutes,
            },
            headers=headers,
        )

    summary = client.get("/api/crm/slas/by-account", params={"account_ids": f"{account['id']},junk"}, headers=headers)
    assert summary.status_code == 200
    items = summary.json()["data"]["items"]
    assert len(items) == 1
    assert items[0]["active_count"] == 2
    assert items[0]["expiring_soon"] == 1
    assert items[0]["best_response"] == 15
    assert items[0]["next_expiry"] == expiring


def test_sla_update_and_delete(client: TestClient, headers: dict[str, str]) -> None:
    account = _account(client, headers)
    sla = client.post(
        "/api/crm/slas",
        json={"account_id": account["id"], "name": "Silver"},
        headers=headers,
    ).json()["data"]

    updated = client.put(f"/api/crm/slas/{sla['id']}", json={"status": "cancelled"}, headers=headers)
    assert updated.json()["data"]["status"] == "cancelled"

    deleted = client.delete(f"/api/crm/slas/{sla['id']}", headers=headers)
    assert deleted.json() == {"data": {"ok": True}, "error": None}

    missing = client.get(f"/api/crm/slas/{sla['id']}", headers=headers)
    assert missing.status_code == 404


def test_sla_alerts_email_breached_and_due_soon_tickets_once_per_cooldown(
    client: TestClient,
    db_session: Session,
    headers: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("SLA_ALERT_TO", "oncall@boaz.example.com")
    get_settings.cache_clear()
    now = datetime.now(timezone.utc)
    for short_description, due, ticket_status in (
        ("Late", now - timedelta(hours=2), "open"),
        ("Soon", now + timedelta(minutes=30), "pending"),
        ("Later", now + timedelta(days=2), "open"),
        ("Done", now - timedelta(hours=5), "resolved"),
    ):
        client.post(
            "/api/crm/support/tickets",
            json={
                "short_description": short_description,
                "description": f"{short_description} body",
                "status": ticket_status,
                "assignee": "agent@boaz.example.com",
                "sla_due_at": _iso(due),
            },
            headers=headers,
        )

    first = client.post("/api/crm/support/alerts/run", headers=headers)
    assert first.status_code == 200
    assert first.json()["data"] == {"sent": 2, "candidates": 2}

    messages = notifications.sent_messages
    assert {message["to"] for message in messages} == {"oncall@boaz.example.com"}
    assert {message["template"] for message in messages} == {"sla_alert"}
    subjects = sorted(message["subject"] for message in messages)
    assert subjects[0].startswith("SLA BREACHED: Ticket #") and subjects[0].endswith(" Late")
    assert subjects[1].startswith("SLA Due Soon: Ticket #") and subjects[1].endswith(" Soon")
    late_body = next(message["body"] for message in messages if message["subject"].endswith(" Late"))
    assert "Status: open\nPriority: normal\nAssignee: agent@boaz.example.com\nSLA Due: " in late_body
    assert late_body.endswith("Late body")

    cooled = client.post("/api/crm/support/alerts/run", headers=headers)
    assert cooled.json()["data"] == {"sent": 0, "candidates": 0}
    assert len(notifications.sent_messages) == 2

    listed = client.get("/api/crm/support/tickets", params={"breached": "1"}, headers=headers).json()["data"]["items"]
    assert {item["short_description"] for item in listed} == {"Late", "Done"}
    assert next(item for item in listed if item["short_description"] == "Late")["last_sla_alert_at"] is not None

    later = helpdesk_service.run_sla_alerts(db_session, now=now + timedelta(hours=7))
    assert (later.sent, later.candidates) == (2, 2)


def test_sla_alerts_without_recipient_send_nothing(
    client: TestClient,
    headers: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("SLA_ALERT_TO", raising=False)
    monkeypatch.delenv("SMTP_USERNAME", raising=False)
    get_settings.cache_clear()
    client.post(
        "/api/crm/support/tickets",
        json={"short_description": "Late", "sla_due_at": _iso(datetime.now(timezone.utc) - timedelta(hours=1))},
        headers=headers,
    )

    result = client.post("/api/crm/support/alerts/run", headers=headers)
    assert result.json()["data"] == {"sent": 0, "candidates": 1}
    assert notifications.sent_messages == []

    anonymous = client.post("/api/crm/support/alerts/run")
    assert anonymous.status_code == 401


def test_sla_alerts_fall_back_to_smtp_username(
    client: TestClient,
    headers: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("SLA_ALERT_TO", raising=False)
    monkeypatch.setenv("SMTP_USERNAME", "mailer@boaz.example.com")
    get_settings.cache_clear()
    client.post(
        "/api/crm/support/tickets",
        json={"short_description": "Soon", "sla_due_at": _iso(datetime.now(timezone.utc) + timedelta(minutes=10))},
        headers=headers,
    )

    result = client.post("/api/crm/support/alerts/run", headers=headers)
    assert result.json()["data"] == {"sent": 1, "candidates": 1}
    assert notifications.sent_messages[-1]["to"] == "mailer@boaz.example.com"
