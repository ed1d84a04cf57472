from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from app.scheduler.slots import format_iso, generate_booking_slots, sunday_weekday, zoned_to_utc

MONDAY = datetime(2026, 10, 19, tzinfo=timezone.utc)


def _weekly(day: int, start_min: int, end_min: int) -> list[dict]:
    return [
        {"day": index, "enabled": index == day, "start_min": start_min, "end_min": end_min}
        for index in range(7)
    ]


def _generate(**overrides) -> list[dict[str, str]]:
    params = {
        "time_zone": "UTC",
        "weekly": _weekly(1, 9 * 60, 10 * 60),
        "duration_minutes": 30,
        "window_from": MONDAY,
        "window_to": MONDAY + timedelta(days=7),
        "now": MONDAY,
    }
    params.update(overrides)
    return generate_booking_slots(**params)


def test_sunday_based_weekday() -> None:
    assert sunday_weekday(date(2026, 10, 18)) == 0
    assert sunday_weekday(MONDAY) == 1
    assert sunday_weekday(date(2026, 10, 24)) == 6


def test_slots_fill_the_day_window() -> None:
    slots = _generate()
    assert [slot["iso"] for slot in slots] == [
        "2026-10-19T09:00:00.000Z",
        "2026-10-19T09:15:00.000Z",
        "2026-10-19T09:30:00.000Z",
    ]
    assert slots[0]["label"] == "Mon, Oct 19, 9:00 AM UTC"


def test_slots_respect_existing_bookings_and_buffers() -> None:
    busy = [(MONDAY.replace(hour=9, minute=30), MONDAY.replace(hour=10))]
    assert [slot["iso"] for slot in _generate(existing=busy)] == ["2026-10-19T09:00:00.000Z"]
    assert _generate(existing=busy, buffer_after_minutes=15) == []


def test_slots_skip_past_times_and_honour_limit() -> None:
    later = MONDAY.replace(hour=9, minute=10)
    assert [slot["iso"] for slot in _generate(now=later)] == [
        "2026-10-19T09:15:00.000Z",
        "2026-10-19T09:30:00.000Z",
    ]
    assert len(_generate(max_slots=2)) == 2
    assert [slot["iso"] for slot in _generate(step_minutes=30)] == [
        "2026-10-19T09:00:00.000Z",
        "2026-10-19T09:30:00.000Z",
    ]


def test_slots_use_owner_time_zone() -> None:
    slots = _generate(time_zone="America/New_York", weekly=_weekly(1, 9 * 60, 9 * 60 + 30))
    assert [slot["iso"] for slot in slots] == ["2026-10-19T13:00:00.000Z"]
    assert slots[0]["label"] == "Mon, Oct 19, 9:00 AM EDT"


def test_slots_stop_at_window_end() -> None:
    weekly = [{"day": index, "enabled": True, "start_min": 12 * 60, "end_min": 13 * 60} for index in range(7)]
    slots = _generate(weekly=weekly, window_to=MONDAY + timedelta(days=2), step_minutes=60)
    assert [slot["iso"] for slot in slots] == ["2026-10-19T12:00:00.000Z", "2026-10-20T12:00:00.000Z"]


def test_zoned_to_utc_and_format() -> None:
    converted = zoned_to_utc("Europe/Berlin", date(2026, 7, 1), 9 * 60)
    assert converted == datetime(2026, 7, 1, 7, 0, tzinfo=timezone.utc)
    assert format_iso(converted) == "2026-07-01T07:00:00.000Z"
