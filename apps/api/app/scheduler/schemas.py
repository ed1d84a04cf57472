from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

LocationType = Literal["video", "phone", "in_person", "custom"]
AppointmentStatus = Literal["booked", "cancelled"]

SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


class AppointmentTypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    slug: str = Field(min_length=1, max_length=64, pattern=SLUG_PATTERN)
    duration_minutes: int = Field(ge=5, le=480)
    location_type: LocationType = "video"
    location_details: str | None = Field(default=None, max_length=400)
    buffer_before_minutes: int = Field(default=0, ge=0, le=120)
    buffer_after_minutes: int = Field(default=0, ge=0, le=120)
    active: bool = True


class AppointmentTypeUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    slug: str | None = Field(default=None, min_length=1, max_length=64, pattern=SLUG_PATTERN)
    duration_minutes: int | None = Field(default=None, ge=5, le=480)
    location_type: LocationType | None = None
    location_details: str | None = Field(default=None, max_length=400)
    buffer_before_minutes: int | None = Field(default=None, ge=0, le=120)
    buffer_after_minutes: int | None = Field(default=None, ge=0, le=120)
    active: bool | None = None


class AppointmentTypeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_user_id: str
    name: str
    slug: str
    duration_minutes: int
    location_type: LocationType
    location_details: str | None
    buffer_before_minutes: int
    buffer_after_minutes: int
    active: bool
    created_at: datetime
    updated_at: datetime


class PublicAppointmentTypeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    duration_minutes: int
    location_type: LocationType
    location_details: str | None
    buffer_before_minutes: int
    buffer_after_minutes: int


class WeeklyDay(BaseModel):
    day: int = Field(ge=0, le=6)
    enabled: bool
    start_min: int
    end_min: int


class AvailabilityUpdate(BaseModel):
    time_zone: str = Field(min_length=1, max_length=64)
    weekly: list[WeeklyDay] = Field(min_length=7, max_length=7)


class AvailabilityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    time_zone: str
    weekly: list[WeeklyDay]
    updated_at: datetime | None = None


class AppointmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    appointment_type_id: UUID
    owner_user_id: str
    status: AppointmentStatus
    attendee_name: str
    attendee_email: str
    attendee_phone: str | None
    notes: str | None
    starts_at: datetime
    ends_at: datetime
    time_zone: str
    source: str
    contact_id: UUID | None
    created_at: datetime
    updated_at: datetime


class BusyBlock(BaseModel):
    starts_at: datetime
    ends_at: datetime


class BookingWindow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: datetime = Field(alias="from")
    to: datetime


class BookingLinkRead(BaseModel):
    type: PublicAppointmentTypeRead
    availability: AvailabilityRead
    existing: list[BusyBlock]
    window: BookingWindow


class SlotRead(BaseModel):
    iso: str
    label: str


class BookRequest(BaseModel):
    attendee_name: str = Field(min_length=1, max_length=120)
    attendee_email: EmailStr = Field(max_length=180)
    attendee_phone: str | None = Field(default=None, max_length=40)
    notes: str | None = Field(default=None, max_length=1500)
    starts_at: str = Field(min_length=10)
    time_zone: str | None = Field(default=None, min_length=1, max_length=64)


class BookingCreated(BaseModel):
    id: UUID
