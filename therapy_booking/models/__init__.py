"""Database models."""

from therapy_booking.models.appointments import appointments, slot_booking_guards
from therapy_booking.models.availability import schedule_overrides, therapist_availability
from therapy_booking.models.base import metadata
from therapy_booking.models.payment_events import processed_payment_events
from therapy_booking.models.therapist_profiles import therapist_profiles
from therapy_booking.models.time_slots import time_slots

__all__ = [
    "metadata",
    "time_slots",
    "therapist_profiles",
    "therapist_availability",
    "schedule_overrides",
    "appointments",
    "slot_booking_guards",
    "processed_payment_events",
]
