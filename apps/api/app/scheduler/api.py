from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.envelope import Envelope, ItemsPage, items, ok
from app.core.database import get_db
from app.core.rbac import Actor, get_current_actor
from app.scheduler.schemas import (
    AppointmentRead,
    AppointmentTypeCreate,
    AppointmentTypeRead,
    AppointmentTypeUpdate,
    AvailabilityRead,
    AvailabilityUpdate,
    BookingCreated,
    BookingLinkRead,
    BookRequest,
    SlotRead,
)
from app.scheduler.service import scheduler_service


router = APIRouter(prefix="/scheduler", tags=["scheduler"])
public_router = APIRouter(prefix="/scheduler/public", tags=["scheduler-public"])


@router.get("/appointment-types", response_model=Envelope[ItemsPage[AppointmentTypeRead]])
def list_appointment_types(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> dict:
    return items(scheduler_service.list_types(db, actor))


@router.post("/appointment-types", response_model=Envelope[AppointmentTypeRead], status_code=status.HTTP_201_CREATED)
def create_appointment_type(
    payload: AppointmentTypeCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(scheduler_service.create_type(db, actor, payload))


@router.put("/appointment-types/{type_id}", response_model=Envelope[AppointmentTypeRead])
def update_appointment_type(
    type_id: uuid.UUID,
    payload: AppointmentTypeUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(scheduler_service.update_type(db, actor, type_id, payload))


@router.delete("/appointment-types/{type_id}", response_model=Envelope[dict[str, bool]])
def delete_appointment_type(
    type_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    scheduler_service.delete_type(db, actor, type_id)
    return ok({"ok": True})


@router.get("/availability/me", response_model=Envelope[AvailabilityRead])
def get_my_availability(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> dict:
    return ok(scheduler_service.get_availability(db, actor))


@router.put("/availability/me", response_model=Envelope[AvailabilityRead])
def update_my_availability(
    payload: AvailabilityUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return ok(scheduler_service.update_availability(db, actor, payload))


@router.get("/appointments", response_model=Envelope[ItemsPage[AppointmentRead]])
def list_appointments(
    from_: str | None = Query(default=None, alias="from"),
    to: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    return items(scheduler_service.list_appointments(db, actor, from_raw=from_, to_raw=to))


@router.post("/appointments/{appointment_id}/cancel", response_model=Envelope[dict[str, bool]])
def cancel_appointment(
    appointment_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    scheduler_service.cancel_appointment(db, actor, appointment_id)
    return ok({"ok": True})


@public_router.get("/booking-links/{slug}", response_model=Envelope[BookingLinkRead])
def get_booking_link(
    slug: str,
    window_days: int | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    return ok(scheduler_service.booking_link(db, slug, window_days=window_days))


@public_router.get("/booking-links/{slug}/slots", response_model=Envelope[ItemsPage[SlotRead]])
def get_booking_slots(
    slug: str,
    window_days: int | None = Query(default=None),
    step_minutes: int | None = Query(default=None),
    max_slots: int | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    return items(
        scheduler_service.booking_slots(
            db,
            slug,
            window_days=window_days,
            step_minutes=step_minutes,
            max_slots=max_slots,
        )
    )


@public_router.post("/book/{slug}", response_model=Envelope[BookingCreated], status_code=status.HTTP_201_CREATED)
def book_appointment(slug: str, payload: BookRequest, db: Session = Depends(get_db)) -> dict:
    return ok(scheduler_service.book(db, slug, payload))
