from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit
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
    audit.audit_entries.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    audit.audit_entries.clear()


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


@pytest.fixture()
def finance(db_session: Session) -> dict[str, str]:
    return _headers(db_session, "books@boaz.example.com", "finance_manager")


def _open_current_year(client: TestClient, headers: dict[str, str]) -> dict:
    year = date.today().year
    response = client.post(
        "/api/ledger/periods",
        json={"name": f"FY{year}", "start_date": f"{year}-01-01", "end_date": f"{year}-12-31"},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["data"]


def _post(client: TestClient, headers: dict[str, str], amount: str, **extra):
    payload = {
        "entry_date": date.today().isoformat(),
        "description": "Monthly hosting",
        "lines": [
            {"account_number": "5300", "debit": amount, "credit": "0"},
            {"account_number": "1010", "debit": "0", "credit": amount},
        ],
        **extra,
    }
    return client.post("/api/ledger/journal-entries", json=payload, headers=headers)


def test_ledger_requires_ledger_permissions(client: TestClient, db_session: Session) -> None:
    staff = _headers(db_session, "desk@boaz.example.com", "staff")
    denied = client.get("/api/ledger/accounts", headers=staff)
    assert denied.status_code == 403
    assert denied.json()["error"] == "forbidden"

    assert client.get("/api/ledger/accounts").status_code == 401


def test_seed_and_create_accounts(client: TestClient, finance: dict[str, str]) -> None:
    seeded = client.post("/api/ledger/seeds/chart-of-accounts", headers=finance)
    assert seeded.status_code == 200
    numbers = {item["account_number"] for item in seeded.json()["data"]["items"]}
    assert {"1010", "6600", "6800", "6900"} <= numbers

    again = client.post("/api/ledger/seeds/chart-of-accounts", headers=finance)
    assert again.json()["data"]["items"] == []

    created = client.post(
        "/api/ledger/accounts",
        json={"account_number": "6950", "name": "Training", "type": "expense"},
        headers=finance,
    )
    assert created.status_code == 201
    duplicate = client.post(
        "/api/ledger/accounts",
        json={"account_number": "6950", "name": "Training again", "type": "expense"},
        headers=finance,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "account_number_taken"

    bad_type = client.post(
        "/api/ledger/accounts",
        json={"account_number": "6960", "name": "Mystery", "type": "gadget"},
        headers=finance,
    )
    assert bad_type.status_code == 400
    assert bad_type.json()["error"] == "invalid_payload"


def test_post_list_and_reverse_entries(client: TestClient, finance: dict[str, str]) -> None:
    client.post("/api/ledger/seeds/chart-of-accounts", headers=finance)

    no_period = _post(client, finance, "99.00")
    assert no_period.status_code == 400
    assert no_period.json()["error"] == "no_open_period"

    _open_current_year(client, finance)
    posted = _post(client, finance, "99.00", source_type="manual", source_id="INV-42")
    assert posted.status_code == 201
    entry = posted.json()["data"]
    assert entry["entry_number"] == 10001
    amounts = {line["account_number"]: (Decimal(str(line["debit"])), Decimal(str(line["credit"]))) for line in entry["lines"]}
    assert amounts == {"5300": (Decimal("99.00"), Decimal("0")), "1010": (Decimal("0"), Decimal("99.00"))}

    unbalanced = client.post(
        "/api/ledger/journal-entries",
        json={
            "entry_date": date.today().isoformat(),
            "description": "Broken",
            "lines": [
                {"account_number": "5300", "debit": "10", "credit": "0"},
                {"account_number": "1010", "debit": "0", "credit": "9"},
            ],
        },
        headers=finance,
    )
    assert unbalanced.status_code == 400
    assert unbalanced.json()["error"] == "unbalanced_entry"

    listed = client.get("/api/ledger/journal-entries", params={"source_id": "INV-42"}, headers=finance)
    assert [item["id"] for item in listed.json()["data"]["items"]] == [entry["id"]]

    reversed_entry = client.post(
        f"/api/ledger/journal-entries/{entry['id']}/reverse",
        json={"reason": "Posted twice"},
        headers=finance,
    )
    assert reversed_entry.status_code == 200
    assert reversed_entry.json()["data"]["reversal_of_id"] == entry["id"]

    original = client.get(f"/api/ledger/journal-entries/{entry['id']}", headers=finance).json()["data"]
    assert original["status"] == "reversed"

    again = client.post(
        f"/api/ledger/journal-entries/{entry['id']}/reverse",
        json={"reason": "Posted twice"},
        headers=finance,
    )
    assert again.status_code == 409
    assert again.json()["error"] == "entry_already_reversed"

    assert any(item["action"] == "ledger.reversed" for item in audit.audit_entries)


def test_periods_close_once(client: TestClient, finance: dict[str, str]) -> None:
    backwards = client.post(
        "/api/ledger/periods",
        json={"name": "Backwards", "start_date": "2026-12-31", "end_date": "2026-01-01"},
        headers=finance,
    )
    assert backwards.status_code == 400
    assert backwards.json()["error"] == "invalid_period_range"

    period = _open_current_year(client, finance)
    closed = client.post(f"/api/ledger/periods/{period['id']}/close", headers=finance)
    assert closed.json()["data"]["status"] == "closed"

    again = client.post(f"/api/ledger/periods/{period['id']}/close", headers=finance)
    assert again.status_code == 409
    assert again.json()["error"] == "period_already_closed"

    missing = client.post(f"/api/ledger/periods/{uuid.uuid4()}/close", headers=finance)
    assert missing.status_code == 404

    listed = client.get("/api/ledger/periods", headers=finance).json()["data"]["items"]
    assert [item["status"] for item in listed] == ["closed"]
