from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, NoReturn
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app import audit, events
from app.core.rbac import Actor
from app.core.timeutils import ensure_utc, parse_iso_datetime, utcnow
from app.crm.schemas import TaskCreate
from app.crm.service import crm_service
from app.metrics import observe_booking
from app.otel import traced
from app.scheduler.models import Appointment, AppointmentType, Availability
from app.scheduler.schemas import (
    AppointmentRead,
    AppointmentTypeCreate,
    AppointmentTypeRead,
    AppointmentTypeUpdate,
    AvailabilityRead,
    AvailabilityUpdate,
    BookingCreated,
    BookingLinkRead,
    BookingWindow,
    BookRequest,
    BusyBlock,
    PublicAppointmentTypeRead,
    SlotRead,
)
from app.scheduler.slots import generate_booking_slots, sunday_weekday, zoned_to_utc

logger = logging.getLogger("app.scheduler")

MINUTES_PER_DAY = 24 * 60
BOOKING_HORIZON = timedelta(days=60)
ROUND_TRIP_TOLERANCE = timedelta(minutes=2)
DEFAULT_WINDOW_DAYS = 14


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower().strip()).strip("-")[:64]


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def default_weekly() -> list[dict[str, Any]]:
    return [
        {"day": day, "enabled": 1 <= day <= 5, "start_min": 9 * 60, "end_min": 17 * 60}
        for day in range(7)
    ]


def valid_time_zone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


@dataclass(slots=True)
class SchedulerService:
    def list_types(self, session: Session, actor: Actor) -> list[AppointmentTypeRead]:
        rows = session.scalars(
            select(AppointmentType)
            .where(AppointmentType.owner_user_id == actor.user_id)
            .order_by(AppointmentType.updated_at.desc())
        ).all()
        return [AppointmentTypeRead.model_validate(row) for row in rows]

    def create_type(self, session: Session, actor: Actor, dto: AppointmentTypeCreate) -> AppointmentTypeRead:
        slug = slugify(dto.slug)
        if not slug:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_slug")
        self._ensure_slug_free(session, actor.user_id, slug)

        appointment_type = AppointmentType(
            owner_user_id=actor.user_id,
            name=dto.name.strip(),
            slug=slug,
            duration_minutes=dto.duration_minutes,
            location_type=dto.location_type,
            location_details=dto.location_details,
            buffer_before_minutes=dto.buffer_before_minutes,
            buffer_after_minutes=dto.buffer_after_minutes,
            active=dto.active,
        )
        session.add(appointment_type)
        session.commit()
        session.refresh(appointment_type)
        return AppointmentTypeRead.model_validate(appointment_type)

    def update_type(
        self,
        session: Session,
        actor: Actor,
        type_id: uuid.UUID,
        dto: AppointmentTypeUpdate,
    ) -> AppointmentTypeRead:
        appointment_type = self._owned_type(session, actor, type_id)
        changes = dto.model_dump(exclude_unset=True)
        if "slug" in changes and changes["slug"] is not None:
            changes["slug"] = slugify(changes["slug"])
            if not changes["slug"]:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_slug")
            self._ensure_slug_free(session, actor.user_id, changes["slug"], exclude=appointment_type.id)
        if changes.get("name"):
            changes["name"] = changes["name"].strip()
        for key, value in changes.items():
            if value is None and key != "location_details":
                continue
            setattr(appointment_type, key, value)
        session.commit()
        session.refresh(appointment_type)
        return AppointmentTypeRead.model_validate(appointment_type)

    def delete_type(self, session: Session, actor: Actor, type_id: uuid.UUID) -> None:
        appointment_type = self._owned_type(session, actor, type_id)
        session.delete(appointment_type)
        session.commit()

    def get_availability(self, session: Session, actor: Actor) -> AvailabilityRead:
        availability = self._ensure_availability(session, actor.user_id)
        session.commit()
        return AvailabilityRead.model_validate(availability)

    def update_availability(self, session: Session, actor: Actor, dto: AvailabilityUpdate) -> AvailabilityRead:
        time_zone = dto.time_zone.strip()
        if not valid_time_zone(time_zone):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_time_zone")
        weekly = sorted(
            (
                {
                    "day": entry.day,
                    "enabled": entry.enabled,
                    "start_min": clamp(entry.start_min, 0, MINUTES_PER_DAY),
                    "end_min": clamp(entry.end_min, 0, MINUTES_PER_DAY),
                }
                for entry in dto.weekly
            ),
            key=lambda entry: entry["day"],
        )
        availability = self._ensure_availability(session, actor.user_id)
        availability.time_zone = time_zone
        availability.weekly = weekly
        session.commit()
        session.refresh(availability)
        return AvailabilityRead.model_validate(availability)

    def list_appointments(
        self,
        session: Session,
        actor: Actor,
        *,
        from_raw: str | None,
        to_raw: str | None,
    ) -> list[AppointmentRead]:
        now = utcnow()
        start = parse_iso_datetime(from_raw) if from_raw else now - timedelta(days=7)
        end = parse_iso_datetime(to_raw) if to_raw else now + timedelta(days=30)
        if start is None or end is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_range")
        rows = session.scalars(
            select(Appointment)
            .where(
                Appointment.owner_user_id == actor.user_id,
                Appointment.starts_at >= start,
                Appointment.starts_at < end,
            )
            .order_by(Appointment.starts_at.asc())
        ).all()
        return [AppointmentRead.model_validate(row) for row in rows]

    def cancel_appointment(self, session: Session, actor: Actor, appointment_id: uuid.UUID) -> None:
        appointment = session.get(Appointment, appointment_id)
        if appointment is None or appointment.owner_user_id != actor.user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        previous = appointment.status
        appointment.status = "cancelled"
        crm_service.cancel_related_tasks(session, related_type="appointment", related_id=str(appointment.id))
        audit.record(
            actor_user_id=actor.user_id,
            entity_type="scheduler.appointment",
            entity_id=str(appointment.id),
            action="scheduler.appointment.cancelled",
            before={"status": previous},
            after={"status": "cancelled"},
            session=session,
        )
        session.commit()
        events.publish(
            {
                "event_type": "appointment.cancelled",
                "appointment_id": str(appointment.id),
                "owner_user_id": appointment.owner_user_id,
                "attendee_email": appointment.attendee_email,
                "attendee_name": appointment.attendee_name,
                "starts_at": ensure_utc(appointment.starts_at).isoformat(),
                "ends_at": ensure_utc(appointment.ends_at).isoformat(),
            }
        )

    def booking_link(self, session: Session, slug: str, *, window_days: int | None) -> BookingLinkRead:
        appointment_type = self._public_type(session, slug)
        availability = self._ensure_availability(session, appointment_type.owner_user_id)
        session.commit()
        window_from, window_to = self._window(window_days)
        existing = self._busy_blocks(session, appointment_type.owner_user_id, window_from, window_to)
        return BookingLinkRead(
            type=PublicAppointmentTypeRead.model_validate(appointment_type),
            availability=AvailabilityRead.model_validate(availability),
            existing=[BusyBlock(starts_at=start, ends_at=end) for start, end in existing],
            window=BookingWindow(from_=window_from, to=window_to),
        )

    def booking_slots(
        self,
        session: Session,
        slug: str,
        *,
        window_days: int | None,
        step_minutes: int | None,
        max_slots: int | None,
    ) -> list[SlotRead]:
        appointment_type = self._public_type(session, slug)
        availability = self._ensure_availability(session, appointment_type.owner_user_id)
        session.commit()
        window_from, window_to = self._window(window_days)
        slots = generate_booking_slots(
            time_zone=availability.time_zone,
            weekly=availability.weekly,
            duration_minutes=appointment_type.duration_minutes,
            buffer_before_minutes=appointment_type.buffer_before_minutes,
            buffer_after_minutes=appointment_type.buffer_after_minutes,
            existing=self._busy_blocks(session, appointment_type.owner_user_id, window_from, window_to),
            window_from=window_from,
            window_to=window_to,
            max_slots=clamp(max_slots or 48, 1, 200),
            step_minutes=clamp(step_minutes or 15, 5, 120),
            now=window_from,
        )
        return [SlotRead(**slot) for slot in slots]

    def book(self, session: Session, slug: str, dto: BookRequest) -> BookingCreated:
        appointment_type = self._public_type(session, slug)
        availability = self._ensure_availability(session, appointment_type.owner_user_id)
        time_zone = availability.time_zone or dto.time_zone or "UTC"

        with traced("scheduler.book", slug=appointment_type.slug):
            starts_at = parse_iso_datetime(dto.starts_at)
            if starts_at is None:
                self._reject_booking("invalid_starts_at")
            now = utcnow()
            if starts_at < now or starts_at > now + BOOKING_HORIZON:
                self._reject_booking("starts_at_out_of_range")

            duration = timedelta(minutes=appointment_type.duration_minutes)
            ends_at = starts_at + duration
            buffered_start = starts_at - timedelta(minutes=appointment_type.buffer_before_minutes)
            buffered_end = ends_at + timedelta(minutes=appointment_type.buffer_after_minutes)

            local = starts_at.astimezone(ZoneInfo(time_zone))
            day = next((entry for entry in availability.weekly if int(entry.get("day", -1)) == sunday_weekday(local)), None)
            if day is None or not day.get("enabled"):
                self._reject_booking("outside_availability")
            start_min = local.hour * 60 + local.minute
            if start_min < int(day["start_min"]) or start_min + appointment_type.duration_minutes > int(day["end_min"]):
                self._reject_booking("outside_availability")

            round_trip = zoned_to_utc(time_zone, local.date(), start_min)
            if abs(round_trip - starts_at) > ROUND_TRIP_TOLERANCE:
                self._reject_booking("timezone_mismatch")

            conflict = session.scalar(
                select(Appointment.id)
                .where(
                    Appointment.owner_user_id == appointment_type.owner_user_id,
                    Appointment.status == "booked",
                    Appointment.starts_at < buffered_end,
                    Appointment.ends_at > buffered_start,
                )
                .limit(1)
            )
            if conflict is not None:
                self._reject_booking("slot_taken", status.HTTP_409_CONFLICT)

            attendee_email = str(dto.attendee_email).strip().lower()
            attendee_name = dto.attendee_name.strip()
            contact = crm_service.link_or_create_contact(
                session,
                email=attendee_email,
                name=attendee_name,
                phone=(dto.attendee_phone or "").strip() or None,
                metadata={"source": "scheduler"},
            )
            appointment = Appointment(
                appointment_type_id=appointment_type.id,
                owner_user_id=appointment_type.owner_user_id,
                status="booked",
                attendee_name=attendee_name,
                attendee_email=attendee_email,
                attendee_phone=(dto.attendee_phone or "").strip() or None,
                notes=(dto.notes or "").strip() or None,
                starts_at=starts_at,
                ends_at=ends_at,
                time_zone=time_zone,
                source="public",
                contact_id=contact.id,
            )
            session.add(appointment)
            session.flush()
            crm_service.create_task(
                session,
                None,
                TaskCreate(
                    type="meeting",
                    subject=f"{appointment_type.name}: {attendee_name}"[:180],
                    description=appointment.notes,
                    due_at=starts_at,
                    owner_user_id=uuid.UUID(appointment_type.owner_user_id),
                    related_type="appointment",
                    related_id=str(appointment.id),
                    metadata={
                        "source": "scheduler",
                        "appointment_type_id": str(appointment_type.id),
                        "attendee_email": attendee_email,
                        "attendee_name": attendee_name,
                        "contact_id": str(contact.id),
                    },
                ),
                commit=False,
            )
            audit.record(
                actor_user_id=f"attendee:{attendee_email}",
                entity_type="scheduler.appointment",
                entity_id=str(appointment.id),
                action="scheduler.appointment.booked",
                before=None,
                after={"starts_at": starts_at.isoformat(), "appointment_type_id": str(appointment_type.id)},
                session=session,
            )
            session.commit()

        observe_booking("booked")
        logger.info(
            "scheduler.appointment_booked",
            extra={"entity_type": "scheduler.appointment", "entity_id": str(appointment.id)},
        )
        events.publish(
            {
                "event_type": "appointment.booked",
                "appointment_id": str(appointment.id),
                "appointment_type_id": str(appointment_type.id),
                "appointment_type_slug": appointment_type.slug,
                "appointment_type_name": appointment_type.name,
                "owner_user_id": appointment_type.owner_user_id,
                "attendee_email": attendee_email,
                "attendee_name": attendee_name,
                "attendee_phone": appointment.attendee_phone,
                "starts_at": starts_at.isoformat(),
                "ends_at": ends_at.isoformat(),
                "time_zone": time_zone,
                "source": "public",
            }
        )
        return BookingCreated(id=appointment.id)

    def _reject_booking(self, reason: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> NoReturn:
        observe_booking(reason)
        raise HTTPException(status_code=status_code, detail=reason)

    def _window(self, window_days: int | None) -> tuple[datetime, datetime]:
        now = utcnow()
        days = clamp(window_days if window_days is not None else DEFAULT_WINDOW_DAYS, 1, 60)
        return now, now + timedelta(days=days)

    def _busy_blocks(
        self,
        session: Session,
        owner_user_id: str,
        window_from: datetime,
        window_to: datetime,
    ) -> list[tuple[datetime, datetime]]:
        rows = session.execute(
            select(Appointment.starts_at, Appointment.ends_at).where(
                Appointment.owner_user_id == owner_user_id,
                Appointment.status == "booked",
                Appointment.starts_at >= window_from,
                Appointment.starts_at < window_to,
            )
        ).all()
        return [(ensure_utc(start), ensure_utc(end)) for start, end in rows]

    def _ensure_availability(self, session: Session, owner_user_id: str) -> Availability:
        availability = session.scalar(select(Availability).where(Availability.owner_user_id == owner_user_id))
        if availability is None:
            availability = Availability(owner_user_id=owner_user_id, time_zone="UTC", weekly=default_weekly())
            session.add(availability)
            session.flush()
        return availability

    def _ensure_slug_free(
        self,
        session: Session,
        owner_user_id: str,
        slug: str,
        *,
        exclude: uuid.UUID | None = None,
    ) -> None:
        stmt = select(AppointmentType.id).where(AppointmentType.owner_user_id == owner_user_id, AppointmentType.slug == slug)
        if exclude is not None:
            stmt = stmt.where(AppointmentType.id != exclude)
        if session.scalar(stmt) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="slug_taken")

    def _owned_type(self, session: Session, actor: Actor, type_id: uuid.UUID) -> AppointmentType:
        appointment_type = session.get(AppointmentType, type_id)
        if appointment_type is None or appointment_type.owner_user_id != actor.user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        return appointment_type

    def _public_type(self, session: Session, slug: str) -> AppointmentType:
        normalized = slugify(slug)
        if not normalized:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_slug")
        appointment_type = session.scalar(
            select(AppointmentType)
            .where(AppointmentType.slug == normalized, AppointmentType.active.is_(True))
            .order_by(AppointmentType.created_at.asc())
            .limit(1)
        )
        if appointment_type is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not_found")
        return appointment_type


scheduler_service = SchedulerService()
