from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.core.auth import create_access_token
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import CRMContact
from app.identity.models import Role, User, UserRole
from app.identity.service import identity_service
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.scheduler import service as scheduler_service_module


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


def _staff(db_session: Session, email: str) -> dict[str, str]:
    identity_service.ensure_default_roles(db_session)
    user = User(email=email, name=email.split("@")[0].title())
    db_session.add(user)
    db_session.flush()
    role = db_session.scalar(select(Role).where(Role.name == "staff"))
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user.id), email=user.email, roles=['staff'])}"}


@pytest.fixture()
def headers(db_session: Session) -> dict[str, str]:
    return _staff(db_session, "consultant@boaz.example.com")


def _all_day_availability(client: TestClient, headers: dict[str, str]) -> None:
    response = client.put(
        "/api/scheduler/availability/me",
        json={
            "time_zone": "UTC",
            "weekly": [{"day": day, "enabled": True, "start_min": 0, "end_min": 1440} for day in range(7)],
        },
        headers=headers,
    )
    assert response.status_code == 200


def _type(client: TestClient, headers: dict[str, str], slug: str = "intro-call", **extra) -> dict:
    payload = {"name": "Intro call", "slug": slug, "duration_minutes": 30, **extra}
    response = client.post("/api/scheduler/appointment-types", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]


def _tomorrow_at(hour: int) -> datetime:
    tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
    return tomorrow.replace(hour=hour, minute=0, second=0, microsecond=0)


def _iso(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def test_default_availability_is_weekdays_nine_to_five(client: TestClient, headers: dict[str, str]) -> None:
    response = client.get("/api/scheduler/availability/me", headers=headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["time_zone"] == "UTC"
    assert [day["enabled"] for day in data["weekly"]] == [False, True, True, True, True, True, False]
    assert {(day["start_min"], day["end_min"]) for day in data["weekly"]} == {(540, 1020)}


def test_availability_rejects_unknown_time_zone(client: TestClient, headers: dict[str, str]) -> None:
    response = client.put(
        "/api/scheduler/availability/me",
        json={
            "time_zone": "Mars/Olympus",
            "weekly": [{"day": day, "enabled": True, "start_min": 0, "end_min": 60} for day in range(7)],
        },
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_time_zone"


def test_availability_clamps_minutes(client: TestClient, headers: dict[str, str]) -> None:
    response = client.put(
        "/api/scheduler/availability/me",
        json={
            "time_zone": "Europe/Berlin",
            "weekly": [{"day": 6 - day, "enabled": True, "start_min": -30, "end_min": 2000} for day in range(7)],
        },
        headers=headers,
    )
    data = response.json()["data"]
    assert data["time_zone"] == "Europe/Berlin"
    assert [day["day"] for day in data["weekly"]] == list(range(7))
    assert data["weekly"][0]["start_min"] == 0
    assert data["weekly"][0]["end_min"] == 1440


def test_appointment_type_slug_rules(client: TestClient, headers: dict[str, str], db_session: Session) -> None:
    created = _type(client, headers)
    assert created["location_type"] == "video"

    bad = client.post(
        "/api/scheduler/appointment-types",
        json={"name": "Bad", "slug": "Not A Slug", "duration_minutes": 30},
        headers=headers,
    )
    assert bad.status_code == 400
    assert bad.json()["error"] == "invalid_payload"

    taken = client.post(
        "/api/scheduler/appointment-types",
        json={"name": "Again", "slug": "intro-call", "duration_minutes": 15},
        headers=headers,
    )
    assert taken.status_code == 409
    assert taken.json()["error"] == "slug_taken"

    other_headers = _staff(db_session, "other@boaz.example.com")
    assert _type(client, other_headers)["slug"] == "intro-call"

    updated = client.put(
        f"/api/scheduler/appointment-types/{created['id']}",
        json={"duration_minutes": 45, "location_details": "Zoom"},
        headers=headers,
    )
    assert updated.json()["data"]["duration_minutes"] == 45
    assert updated.json()["data"]["location_details"] == "Zoom"

    foreign = client.delete(f"/api/scheduler/appointment-types/{created['id']}", headers=other_headers)
    assert foreign.status_code == 404

    listed = client.get("/api/scheduler/appointment-types", headers=headers).json()["data"]["items"]
    assert [item["id"] for item in listed] == [created["id"]]


def test_public_booking_link_hides_owner(client: TestClient, headers: dict[str, str]) -> None:
    _type(client, headers)
    link = client.get("/api/scheduler/public/booking-links/intro-call", params={"window_days": 3})
    assert link.status_code == 200
    data = link.json()["data"]
    assert data["type"]["slug"] == "intro-call"
    assert "owner_user_id" not in data["type"]
    assert data["availability"]["time_zone"] == "UTC"
    window_from = datetime.fromisoformat(data["window"]["from"].replace("Z", "+00:00"))
    window_to = datetime.fromisoformat(data["window"]["to"].replace("Z", "+00:00"))
    assert window_to - window_from == timedelta(days=3)

    inactive = _type(client, headers, slug="closed", active=False)
    assert inactive["active"] is False
    assert client.get("/api/scheduler/public/booking-links/closed").status_code == 404


def test_booking_creates_contact_task_and_blocks_slot(
    client: TestClient, headers: dict[str, str], db_session: Session
) -> None:
    _all_day_availability(client, headers)
    _type(client, headers, buffer_after_minutes=15)
    starts_at = _tomorrow_at(10)

    booked = client.post(
        "/api/scheduler/public/book/intro-call",
        json={"attendee_name": "Pat Guest", "attendee_email": "Pat@Guest.example.com", "starts_at": _iso(starts_at)},
    )
    assert booked.status_code == 201
    appointment_id = booked.json()["data"]["id"]

    contact = db_session.scalar(select(CRMContact).where(CRMContact.email == "pat@guest.example.com"))
    assert contact is not None

    tasks = client.get("/api/crm/tasks", params={"related_id": appointment_id}, headers=headers).json()["data"]["items"]
    assert len(tasks) == 1
    assert tasks[0]["type"] == "meeting"
    assert tasks[0]["related_type"] == "appointment"
    assert tasks[0]["metadata"]["contact_id"] == str(contact.id)

    booked_event = events.published_events[-1]
    assert booked_event["event_type"] == "appointment.booked"
    assert booked_event["attendee_email"] == "pat@guest.example.com"

    overlapping = client.post(
        "/api/scheduler/public/book/intro-call",
        json={"attendee_name": "Late", "attendee_email": "late@guest.example.com", "starts_at": _iso(starts_at - timedelta(minutes=30))},
    )
    assert overlapping.status_code == 409
    assert overlapping.json()["error"] == "slot_taken"

    slots = client.get(
        "/api/scheduler/public/booking-links/intro-call/slots",
        params={"window_days": 3, "step_minutes": 60, "max_slots": 200},
    ).json()["data"]["items"]
    isos = {slot["iso"] for slot in slots}
    assert _iso(starts_at) not in isos
    assert _iso(starts_at + timedelta(hours=2)) in isos

    appointments = client.get("/api/scheduler/appointments", headers=headers).json()["data"]["items"]
    assert [item["id"] for item in appointments] == [appointment_id]
    assert appointments[0]["source"] == "public"


def test_cancel_appointment_cancels_meeting_task(client: TestClient, headers: dict[str, str]) -> None:
    _all_day_availability(client, headers)
    _type(client, headers)
    booked = client.post(
        "/api/scheduler/public/book/intro-call",
        json={"attendee_name": "Pat", "attendee_email": "pat@guest.example.com", "starts_at": _iso(_tomorrow_at(14))},
    )
    appointment_id = booked.json()["data"]["id"]

    cancelled = client.post(f"/api/scheduler/appointments/{appointment_id}/cancel", headers=headers)
    assert cancelled.json() == {"data": {"ok": True}, "error": None}
    assert events.published_events[-1]["event_type"] == "appointment.cancelled"

    tasks = client.get("/api/crm/tasks", params={"related_id": appointment_id}, headers=headers).json()["data"]["items"]
    assert [task["status"] for task in tasks] == ["cancelled"]

    rebooked = client.post(
        "/api/scheduler/public/book/intro-call",
        json={"attendee_name": "Sam", "attendee_email": "sam@guest.example.com", "starts_at": _iso(_tomorrow_at(14))},
    )
    assert rebooked.status_code == 201


def test_booking_validation_errors(client: TestClient, headers: dict[str, str]) -> None:
    _type(client, headers)
    url = "/api/scheduler/public/book/intro-call"
    guest = {"attendee_name": "Pat", "attendee_email": "pat@guest.example.com"}

    garbage = client.post(url, json={**guest, "starts_at": "not-a-date-at-all"})
    assert garbage.status_code == 400
    assert garbage.json()["error"] == "invalid_starts_at"

    past = client.post(url, json={**guest, "starts_at": _iso(datetime.now(timezone.utc) - timedelta(days=1))})
    assert past.json()["error"] == "starts_at_out_of_range"

    far = client.post(url, json={**guest, "starts_at": _iso(datetime.now(timezone.utc) + timedelta(days=90))})
    assert far.json()["error"] == "starts_at_out_of_range"

    night = client.post(url, json={**guest, "starts_at": _iso(_tomorrow_at(3))})
    assert night.status_code == 400
    assert night.json()["error"] == "outside_availability"

    unknown = client.post("/api/scheduler/public/book/no-such-type", json={**guest, "starts_at": _iso(_tomorrow_at(10))})
    assert unknown.status_code == 404


def test_booking_in_repeated_dst_hour_is_rejected(
    client: TestClient,
    headers: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(scheduler_service_module, "utcnow", lambda: datetime(2026, 10, 25, 12, 0, tzinfo=timezone.utc))
    response = client.put(
        "/api/scheduler/availability/me",
        json={
            "time_zone": "America/New_York",
            "weekly": [{"day": day, "enabled": True, "start_min": 0, "end_min": 1440} for day in range(7)],
        },
        headers=headers,
    )
    assert response.status_code == 200
    _type(client, headers)

    # 06:30 UTC on 2026-11-01 is the second 01:30 in New York, after clocks fall back
    repeated = client.post(
        "/api/scheduler/public/book/intro-call",
        json={"attendee_name": "Pat", "attendee_email": "pat@guest.example.com", "starts_at": "2026-11-01T06:30:00.000Z"},
    )
    assert repeated.status_code == 400
    assert repeated.json()["error"] == "timezone_mismatch"


def test_list_appointments_rejects_unparseable_range(client: TestClient, headers: dict[str, str]) -> None:
    bad_from = client.get("/api/scheduler/appointments", params={"from": "garbage"}, headers=headers)
    assert bad_from.status_code == 400
    assert bad_from.json()["error"] == "invalid_range"

    bad_to = client.get("/api/scheduler/appointments", params={"to": "soon"}, headers=headers)
    assert bad_to.status_code == 400
    assert bad_to.json()["error"] == "invalid_range"

    defaults = client.get("/api/scheduler/appointments", headers=headers)
    assert defaults.status_code == 200
    assert defaults.json()["data"]["items"] == []
