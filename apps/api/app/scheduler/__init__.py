from app.scheduler.api import public_router, router
from app.scheduler.models import Appointment, AppointmentType, Availability
from app.scheduler.service import SchedulerService, scheduler_service
from app.scheduler.slots import generate_booking_slots

__all__ = [
    "router",
    "public_router",
    "Appointment",
    "AppointmentType",
    "Availability",
    "SchedulerService",
    "scheduler_service",
    "generate_booking_slots",
]
