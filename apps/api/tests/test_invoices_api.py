from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.business.billing.service import add_months
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
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    events.published_events.clear()


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
    user = User(email="billing@boaz.example.com", name="Billing")
    db_session.add(user)
    db_session.flush()
    role = db_session.scalar(select(Role).where(Role.name == "staff"))
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user.id), email=user.email, roles=['staff'])}"}


def _invoice(client: TestClient, headers: dict[str, str], **extra) -> dict:
    account = client.post("/api/crm/accounts", json={"name": "Acme"}, headers=headers).json()["data"]
    payload = {"title": "March services", "account_id": account["id"], "subtotal": 900, "tax": 100, **extra}
    response = client.post("/api/crm/invoices", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


def test_create_derives_total_and_balance(client: TestClient, headers: dict[str, str]) -> None:
    invoice = _invoice(client, headers, currency="eur")

    assert invoice["invoice_number"] == 700001
    assert invoice["total"] == 1000
    assert invoice["balance"] == 1000
    assert invoice["currency"] == "EUR"
    assert invoice["status"] == "draft"
    assert invoice["dunning_state"] == "none"
    assert invoice["issued_at"] is not None


def test_invalid_status_is_rejected(client: TestClient, headers: dict[str, str]) -> None:
    invoice = _invoice(client, headers)
    response = client.put(f"/api/crm/invoices/{invoice['id']}", json={"status": "lost"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_payload"


def test_payments_settle_balance_and_refunds_reopen_it(client: TestClient, headers: dict[str, str]) -> None:
    invoice = _invoice(client, headers)
    url = f"/api/crm/invoices/{invoice['id']}"

    zero = client.post(f"{url}/payments", json={"amount": 0}, headers=headers)
    assert zero.status_code == 400
    assert zero.json()["error"] == "invalid_amount"

    partial = client.post(f"{url}/payments", json={"amount": 400, "method": "wire"}, headers=headers).json()["data"]
    assert partial["balance"] == 600
    assert partial["status"] == "draft"
    assert partial["payments"][0]["method"] == "wire"

    paid = client.post(f"{url}/payments", json={"amount": 700}, headers=headers).json()["data"]
    assert paid["balance"] == 0
    assert paid["status"] == "paid"
    assert paid["paid_at"] is not None
    assert events.published_events[-1]["event_type"] == "invoice.payment_received"

    refunded = client.post(f"{url}/refunds", json={"amount": 50, "reason": "SLA credit"}, headers=headers).json()["data"]
    assert refunded["balance"] == 50
    assert refunded["refunds"][0]["reason"] == "SLA credit"

    history = client.get(f"{url}/history", headers=headers).json()["data"]["items"]
    types = [item["event_type"] for item in history]
    assert types.count("payment_received") == 2
    assert "refund_issued" in types


def test_items_update_recomputes_balance(client: TestClient, headers: dict[str, str]) -> None:
    invoice = _invoice(client, headers)
    url = f"/api/crm/invoices/{invoice['id']}"
    client.post(f"{url}/payments", json={"amount": 200}, headers=headers)

    updated = client.put(
        url,
        json={"items": [{"sku": "HRS", "qty": 10}], "subtotal": 1100, "tax": 100},
        headers=headers,
    ).json()["data"]
    assert updated["total"] == 1200
    assert updated["balance"] == 1000

    history = client.get(f"{url}/history", headers=headers).json()["data"]["items"]
    changed = [item for item in history if item["event_type"] == "total_changed"]
    assert changed[0]["old_value"] == 1000
    assert changed[0]["new_value"] == 1200


def test_field_changes_are_tracked(client: TestClient, headers: dict[str, str]) -> None:
    invoice = _invoice(client, headers)
    url = f"/api/crm/invoices/{invoice['id']}"

    client.put(url, json={"status": "open", "title": "April services", "due_date": "2026-05-01"}, headers=headers)
    client.put(url, json={"issued_at": "2026-04-01T00:00:00Z"}, headers=headers)

    history = client.get(f"{url}/history", headers=headers).json()["data"]["items"]
    types = [item["event_type"] for item in history]
    assert types.count("field_changed") == 2
    assert "status_changed" in types
    assert "updated" in types


def test_subscription_lifecycle(client: TestClient, headers: dict[str, str]) -> None:
    invoice = _invoice(client, headers)
    url = f"/api/crm/invoices/{invoice['id']}"

    not_subscribed = client.post(f"{url}/cancel-subscription", headers=headers)
    assert not_subscribed.status_code == 400
    assert not_subscribed.json()["error"] == "no_subscription"

    subscribed = client.post(
        f"{url}/subscribe",
        json={"interval": "annual", "start_at": "2026-01-31T09:00:00Z"},
        headers=headers,
    ).json()["data"]
    assert subscribed["subscription"]["active"] is True
    assert subscribed["subscription"]["next_invoice_at"].startswith("2027-01-31")

    cancelled = client.post(f"{url}/cancel-subscription", headers=headers).json()["data"]
    assert cancelled["subscription"]["active"] is False
    assert cancelled["subscription"]["interval"] == "annual"


def test_dunning_state_changes(client: TestClient, headers: dict[str, str]) -> None:
    invoice = _invoice(client, headers)
    url = f"/api/crm/invoices/{invoice['id']}"

    bad = client.post(f"{url}/dunning", json={"state": "angry_letter"}, headers=headers)
    assert bad.status_code == 400

    noticed = client.post(f"{url}/dunning", json={"state": "first_notice"}, headers=headers).json()["data"]
    assert noticed["dunning_state"] == "first_notice"
    assert noticed["last_dunning_at"] is not None

    client.post(f"{url}/dunning", json={"state": "first_notice"}, headers=headers)
    history = client.get(f"{url}/history", headers=headers).json()["data"]["items"]
    assert [item["event_type"] for item in history].count("dunning_state_changed") == 1


def test_search_by_invoice_number(client: TestClient, headers: dict[str, str]) -> None:
    first = _invoice(client, headers)
    _invoice(client, headers, title="Other")

    found = client.get("/api/crm/invoices", params={"q": str(first["invoice_number"])}, headers=headers)
    assert [item["id"] for item in found.json()["data"]["items"]] == [first["id"]]


def test_add_months_clamps_to_month_end() -> None:
    start = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)
    assert add_months(start, 1) == datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)
    assert add_months(start, 13) == datetime(2027, 2, 28, 12, 0, tzinfo=timezone.utc)
    assert add_months(datetime(2027, 12, 15), 1) == datetime(2028, 1, 15)
