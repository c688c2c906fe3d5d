"""Booking conflict detection."""

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_booking.config import Settings, settings as default_settings
from therapy_booking.core.exceptions import AvailabilityLookupError
from therapy_booking.core.redis_client import CacheManager
from therapy_booking.core.timezones import slot_start_instant, utc_now
from therapy_booking.models.appointments import appointments
from therapy_booking.schemas.appointments import (
    Appointment,
    AppointmentStatus,
    BookingConflict,
    BookingRequest,
    ConflictType,
    SessionType,
)
from therapy_booking.services.availability_service import AvailabilityService
from therapy_booking.services.profile_service import ProfileService
from therapy_booking.services.timeslot_service import TimeSlotService

logger = structlog.get_logger(__name__)

UNVERIFIABLE_MESSAGE = "Unable to verify availability at this time"


class ConflictService:
    """Evaluates a booking request against scheduling rules.

    Business conditions are reported as ``BookingConflict`` values and never
    raised. The same check runs as an advisory pre-check and again inside the
    booking transaction on that transaction's session.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache_manager: CacheManager | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize service with database session, cache, settings and clock."""
        self.db = db
        self.settings = settings or default_settings
        self.clock = clock
        self.time_slots = TimeSlotService(db, cache_manager)
        self.profiles = ProfileService(db, cache_manager)
        self.availability = AvailabilityService(db, self.time_slots)

    def session_capacity(self, session_type: SessionType, record_capacity: int | None = None) -> int:
        """Maximum concurrent bookings of one session type in a slot."""
        if session_type != SessionType.GROUP:
            return 1
        if record_capacity and record_capacity > 1:
            return record_capacity
        return self.settings.group_session_capacity

    async def get_overlapping_appointments(
        self, request: BookingRequest, exclude_appointment_id: str | None = None
    ) -> list[Appointment]:
        """Non-cancelled appointments in the requested therapist, date and slot."""
        stmt = select(appointments).where(
            appointments.c.therapist_id == request.therapist_id,
            appointments.c.slot_date == request.date,
            appointments.c.time_slot_id == request.time_slot_id,
            appointments.c.status != AppointmentStatus.CANCELLED.value,
        )
        if exclude_appointment_id:
            stmt = stmt.where(appointments.c.id != exclude_appointment_id)

        result = await self.db.execute(stmt.order_by(appointments.c.created_at, appointments.c.id))
        return [Appointment.from_row(dict(row)) for row in result.mappings().all()]

    async def check_conflicts(
        self, request: BookingRequest, exclude_appointment_id: str | None = None
    ) -> list[BookingConflict]:
        """
        Check a booking request for conflicts.

        Args:
            request: Booking request; ``date`` is therapist-local
            exclude_appointment_id: Appointment ignored by the overlap check,
                used when rescheduling

        Returns:
            Every conflict found; empty when the booking may proceed
        """
        conflicts: list[BookingConflict] = []

        try:
            slot = await self.time_slots.get_slot(request.time_slot_id)
            timezone_name = await self.profiles.get_timezone(request.therapist_id)

            start_time = slot.start_time if slot else "00:00"
            starts_at = slot_start_instant(request.date, start_time, timezone_name)
            now = self.clock()

            max_days = self.settings.max_advance_booking_days
            if starts_at > now + timedelta(days=max_days):
                conflicts.append(
                    BookingConflict(
                        type=ConflictType.TOO_ADVANCE,
                        message=f"Bookings can only be made {max_days} days in advance",
                    )
                )

            min_hours = self.settings.min_advance_booking_hours
            if starts_at < now + timedelta(hours=min_hours):
                conflicts.append(
                    BookingConflict(
                        type=ConflictType.TOO_SOON,
                        message=f"Bookings must be made at least {min_hours} hours in advance",
                    )
                )

            if slot is None:
                conflicts.append(
                    BookingConflict(
                        type=ConflictType.UNAVAILABLE,
                        message="Invalid time slot selected",
                    )
                )
                return conflicts

            resolution = await self.availability.get_availability_for_date(
                request.therapist_id, request.date
            )
            if request.time_slot_id not in resolution.effective_slots:
                conflicts.append(
                    BookingConflict(
                        type=ConflictType.UNAVAILABLE,
                        message="The requested time slot is not available",
                    )
                )

            overlapping = await self.get_overlapping_appointments(request, exclude_appointment_id)
            overlap = await self._check_overlap(request, overlapping)
            if overlap:
                conflicts.append(overlap)

        except (AvailabilityLookupError, SQLAlchemyError) as e:
            logger.error(
                "conflict_check_failed",
                therapist_id=request.therapist_id,
                time_slot_id=request.time_slot_id,
                date=request.date.isoformat(),
                error=str(e),
            )
            conflicts.append(
                BookingConflict(type=ConflictType.UNAVAILABLE, message=UNVERIFIABLE_MESSAGE)
            )

        return conflicts

    async def _check_overlap(
        self, request: BookingRequest, overlapping: list[Appointment]
    ) -> BookingConflict | None:
        if not overlapping:
            return None

        if request.session_type == SessionType.INDIVIDUAL:
            return BookingConflict(
                type=ConflictType.OVERLAP,
                message="Individual sessions cannot overlap with other appointments",
                conflicting_appointment=overlapping[0],
            )

        if request.session_type != SessionType.GROUP:
            return BookingConflict(
                type=ConflictType.OVERLAP,
                message="This time slot is already booked",
                conflicting_appointment=overlapping[0],
            )

        other_types = [a for a in overlapping if a.session.type != SessionType.GROUP]
        if other_types:
            return BookingConflict(
                type=ConflictType.OVERLAP,
                message="Cannot book different session types at the same time",
                conflicting_appointment=other_types[0],
            )

        record_capacity = await self.availability.get_capacity_for_slot(
            request.therapist_id, request.date, request.time_slot_id
        )
        capacity = self.session_capacity(SessionType.GROUP, record_capacity)
        if len(overlapping) >= capacity:
            return BookingConflict(
                type=ConflictType.OVERLAP,
                message=(
                    f"Group session capacity exceeded. Maximum {capacity} clients allowed."
                ),
                conflicting_appointment=overlapping[0],
            )
        return None
