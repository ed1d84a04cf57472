"""Booking slot generation.

Pure functions over an owner's weekly availability. Weekdays are numbered
0 = Sunday through 6 = Saturday and day windows are minutes after local
midnight.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

SCAN_DAYS = 21
DEFAULT_MAX_SLOTS = 48
DEFAULT_STEP_MINUTES = 15


def sunday_weekday(value: datetime | date) -> int:
    return (value.weekday() + 1) % 7


def zoned_to_utc(time_zone: str, day: date, minute_of_day: int) -> datetime:
    local = datetime(day.year, day.month, day.day, minute_of_day // 60, minute_of_day % 60, tzinfo=ZoneInfo(time_zone))
    return local.astimezone(timezone.utc)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def day_config(weekly: Sequence[Mapping[str, Any]], weekday: int) -> Mapping[str, Any] | None:
    for entry in weekly:
        if int(entry.get("day", -1)) == weekday:
            return entry
    return None


def format_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def slot_label(value: datetime, time_zone: str) -> str:
    local = value.astimezone(ZoneInfo(time_zone))
    hour = local.hour % 12 or 12
    return f"{local:%a}, {local:%b} {local.day}, {hour}:{local:%M} {local:%p} {local.tzname()}"


def generate_booking_slots(
    *,
    time_zone: str,
    weekly: Sequence[Mapping[str, Any]],
    duration_minutes: int,
    buffer_before_minutes: int = 0,
    buffer_after_minutes: int = 0,
    existing: Iterable[tuple[datetime, datetime]] = (),
    window_from: datetime,
    window_to: datetime,
    max_slots: int = DEFAULT_MAX_SLOTS,
    step_minutes: int = DEFAULT_STEP_MINUTES,
    now: datetime | None = None,
) -> list[dict[str, str]]:
    tz_name = time_zone or "UTC"
    zone = ZoneInfo(tz_name)
    length = duration_minutes or 30
    duration = timedelta(minutes=length)
    before = timedelta(minutes=buffer_before_minutes or 0)
    after = timedelta(minutes=buffer_after_minutes or 0)
    step = step_minutes or DEFAULT_STEP_MINUTES
    limit = max_slots or DEFAULT_MAX_SLOTS
    current = now or datetime.now(timezone.utc)
    blocks = list(existing)

    slots: list[dict[str, str]] = []
    for offset in range(SCAN_DAYS):
        midday = window_from + timedelta(days=offset, hours=12)
        local_day = midday.astimezone(zone).date()
        config = day_config(weekly, sunday_weekday(local_day))
        if config is None or not config.get("enabled"):
            continue

        start_min = int(config.get("start_min", 0))
        end_min = int(config.get("end_min", 0))
        while start_min + length <= end_min:
            start = zoned_to_utc(tz_name, local_day, start_min)
            start_min += step
            end = start + duration
            if start < current or start < window_from or start > window_to:
                continue
            if any(overlaps(start - before, end + after, block_start, block_end) for block_start, block_end in blocks):
                continue
            slots.append({"iso": format_iso(start), "label": slot_label(start, tz_name)})
            if len(slots) >= limit:
                return slots
    return slots
