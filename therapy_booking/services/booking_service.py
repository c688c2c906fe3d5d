"""Appointment booking, rescheduling and lifecycle management."""

from collections.abc import Callable
from datetime import date, datetime
from uuid import uuid4

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_booking.config import Settings, settings as default_settings
from therapy_booking.core.exceptions import (
    BookingConflictException,
    InvalidStatusTransitionException,
    NotFoundException,
)
from therapy_booking.core.redis_client import CacheManager
from therapy_booking.core.timezones import slot_start_instant, utc_now
from therapy_booking.database import insert_ignore
from therapy_booking.models.appointments import appointments, slot_booking_guards
from therapy_booking.schemas.appointments import (
    Appointment,
    AppointmentStats,
    AppointmentStatus,
    BookingRequest,
    BookingResult,
    PaymentReference,
    PaymentStatus,
    RescheduleRequest,
)
from therapy_booking.services.conflict_service import ConflictService

logger = structlog.get_logger(__name__)

VALID_TRANSITIONS: dict[AppointmentStatus, set[AppointmentStatus]] = {
    AppointmentStatus.PENDING: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.IN_PROGRESS: {AppointmentStatus.COMPLETED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.NO_SHOW: set(),
}

RESCHEDULABLE_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)

STATUS_TIMESTAMPS = {
    AppointmentStatus.CONFIRMED: "confirmed_at",
    AppointmentStatus.COMPLETED: "completed_at",
    AppointmentStatus.CANCELLED: "cancelled_at",
}


def can_transition(current: AppointmentStatus, requested: AppointmentStatus) -> bool:
    """Whether the appointment state machine allows ``current -> requested``."""
    return requested in VALID_TRANSITIONS[current]


class BookingService:
    """Creates and maintains appointments without double booking.

    Every write for a (therapist, date, slot) first bumps the matching
    ``slot_booking_guards`` row, so concurrent writers on one slot run their
    final conflict check one after another.
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
        self.conflicts = ConflictService(db, cache_manager, self.settings, clock)
        self.time_slots = self.conflicts.time_slots
        self.profiles = self.conflicts.profiles

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def _end_read_transaction(self) -> None:
        # The pre-check autobegins a transaction; the guarded write needs its own.
        if self.db.in_transaction():
            await self.db.commit()

    async def _acquire_slot_guard(self, therapist_id: str, slot_date: date, time_slot_id: str):
        """Create the guard row on first use, then update it to take its lock."""
        key = {
            "therapist_id": therapist_id,
            "slot_date": slot_date,
            "time_slot_id": time_slot_id,
        }
        await insert_ignore(self.db, slot_booking_guards, {**key, "version": 0})
        await self.db.execute(
            update(slot_booking_guards)
            .where(*(slot_booking_guards.c[name] == value for name, value in key.items()))
            .values(version=slot_booking_guards.c.version + 1)
        )

    async def _final_check(
        self, request: BookingRequest, exclude_appointment_id: str | None = None
    ) -> None:
        await self._acquire_slot_guard(request.therapist_id, request.date, request.time_slot_id)
        conflicts = await self.conflicts.check_conflicts(request, exclude_appointment_id)
        if conflicts:
            raise BookingConflictException(conflicts)

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    async def create_appointment(
        self,
        request: BookingRequest,
        payment: PaymentReference | None = None,
    ) -> BookingResult:
        """
        Book a slot for a client.

        Args:
            request: Booking request; ``date`` is therapist-local
            payment: Verified payment from the payment subsystem, if any

        Returns:
            Booking result with the new appointment id, conflicts or an error
        """
        try:
            conflicts = await self.conflicts.check_conflicts(request)
            if conflicts:
                return BookingResult(success=False, conflicts=conflicts)

            profile = await self.profiles.get_profile(request.therapist_id)
            if not profile:
                return BookingResult(success=False, error="Therapist profile not found")

            slot = await self.time_slots.get_slot(request.time_slot_id)
            if not slot:
                return BookingResult(success=False, error="Time slot not found")

            if payment is not None and payment.status != PaymentStatus.PAID:
                return BookingResult(
                    success=False,
                    error=f"Payment not completed. Status: {payment.status.value}",
                )

            timezone_name = profile.availability.timezone or self.settings.default_timezone
            now = self.clock()
            appointment_id = str(uuid4())
            values = {
                "id": appointment_id,
                "therapist_id": request.therapist_id,
                "client_id": request.client_id,
                "scheduled_for": slot_start_instant(request.date, slot.start_time, timezone_name),
                "slot_date": request.date,
                "time_slot_id": request.time_slot_id,
                "duration": request.duration,
                "status": AppointmentStatus.PENDING.value,
                "session_type": request.session_type.value,
                "delivery_type": request.delivery_type.value,
                "channel_id": f"therapy_session_{appointment_id}",
                "client_notes": request.client_notes,
                "created_at": now,
                "updated_at": now,
            }
            if payment is not None:
                values.update(
                    payment_amount=payment.amount,
                    payment_currency=payment.currency,
                    payment_status=PaymentStatus.PAID.value,
                    payment_transaction_id=payment.transaction_id,
                    payment_method=payment.method,
                )
            else:
                values.update(
                    payment_amount=profile.practice.hourly_rate,
                    payment_currency=(
                        profile.practice.currency or self.settings.default_currency
                    ).lower(),
                    payment_status=PaymentStatus.PENDING.value,
                )

            await self._end_read_transaction()
            async with self.db.begin():
                await self._final_check(request)
                await self.db.execute(appointments.insert().values(**values))

        except BookingConflictException as e:
            logger.info(
                "booking_rejected_on_final_check",
                therapist_id=request.therapist_id,
                time_slot_id=request.time_slot_id,
                date=request.date.isoformat(),
            )
            return BookingResult(success=False, conflicts=e.conflicts, error=e.message)
        except SQLAlchemyError as e:
            logger.error(
                "booking_failed",
                therapist_id=request.therapist_id,
                time_slot_id=request.time_slot_id,
                error=str(e),
            )
            return BookingResult(success=False, error="Failed to create appointment")

        logger.info(
            "appointment_booked",
            appointment_id=appointment_id,
            therapist_id=request.therapist_id,
            client_id=request.client_id,
            paid=payment is not None,
        )
        return BookingResult(success=True, appointment_id=appointment_id)

    async def reschedule_appointment(
        self, appointment_id: str, data: RescheduleRequest
    ) -> BookingResult:
        """
        Move an appointment to another slot.

        The appointment is excluded from its own overlap check. It goes back
        to ``pending`` and keeps a record of the slot it came from.
        """
        try:
            appointment = await self.get_appointment(appointment_id)
            if not appointment:
                return BookingResult(success=False, error="Appointment not found")

            if appointment.status.value not in RESCHEDULABLE_STATUSES:
                return BookingResult(
                    success=False,
                    error=f"Cannot reschedule appointment with status '{appointment.status.value}'",
                )

            request = BookingRequest(
                therapist_id=appointment.therapist_id,
                client_id=appointment.client_id,
                time_slot_id=data.time_slot_id,
                date=data.date,
                duration=data.duration or appointment.duration,
                session_type=appointment.session.type,
                delivery_type=appointment.session.delivery_type,
                client_notes=appointment.client_notes,
            )

            conflicts = await self.conflicts.check_conflicts(
                request, exclude_appointment_id=appointment_id
            )
            if conflicts:
                return BookingResult(success=False, conflicts=conflicts)

            slot = await self.time_slots.get_slot(request.time_slot_id)
            if not slot:
                return BookingResult(success=False, error="Time slot not found")
            timezone_name = await self.profiles.get_timezone(request.therapist_id)

            values = {
                "scheduled_for": slot_start_instant(request.date, slot.start_time, timezone_name),
                "slot_date": request.date,
                "time_slot_id": request.time_slot_id,
                "duration": request.duration,
                "status": AppointmentStatus.PENDING.value,
                "rescheduled_from": appointment_id,
                "previous_scheduled_for": appointment.scheduled_for,
                "previous_time_slot_id": appointment.time_slot_id,
                "updated_at": self.clock(),
            }

            await self._end_read_transaction()
            async with self.db.begin():
                await self._final_check(request, exclude_appointment_id=appointment_id)
                result = await self.db.execute(
                    update(appointments)
                    .where(
                        appointments.c.id == appointment_id,
                        appointments.c.status.in_(RESCHEDULABLE_STATUSES),
                    )
                    .values(**values)
                )
                if result.rowcount == 0:
                    raise InvalidStatusTransitionException(
                        appointment.status.value, AppointmentStatus.PENDING.value
                    )

        except BookingConflictException as e:
            return BookingResult(success=False, conflicts=e.conflicts, error=e.message)
        except InvalidStatusTransitionException:
            return BookingResult(
                success=False, error="Appointment can no longer be rescheduled"
            )
        except SQLAlchemyError as e:
            logger.error("reschedule_failed", appointment_id=appointment_id, error=str(e))
            return BookingResult(success=False, error="Failed to reschedule appointment")

        logger.info(
            "appointment_rescheduled",
            appointment_id=appointment_id,
            time_slot_id=data.time_slot_id,
            date=data.date.isoformat(),
        )
        return BookingResult(success=True, appointment_id=appointment_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def update_appointment_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        reason: str | None = None,
        internal_note: str | None = None,
    ) -> Appointment:
        """
        Move an appointment through its lifecycle.

        Raises:
            NotFoundException: If the appointment does not exist
            InvalidStatusTransitionException: If the change is not allowed
        """
        appointment = await self.get_appointment(appointment_id)
        if not appointment:
            raise NotFoundException("Appointment not found")

        if not can_transition(appointment.status, status):
            raise InvalidStatusTransitionException(appointment.status.value, status.value)

        now = self.clock()
        values: dict = {"status": status.value, "updated_at": now}
        if status in STATUS_TIMESTAMPS:
            values[STATUS_TIMESTAMPS[status]] = now
        if status == AppointmentStatus.CANCELLED:
            values["cancellation_reason"] = reason
        if internal_note:
            existing = appointment.internal_notes
            values["internal_notes"] = f"{existing}\n{internal_note}" if existing else internal_note

        # Conditional on the status we validated against
        result = await self.db.execute(
            update(appointments)
            .where(
                appointments.c.id == appointment_id,
                appointments.c.status == appointment.status.value,
            )
            .values(**values)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            current = await self.get_appointment(appointment_id)
            raise InvalidStatusTransitionException(
                current.status.value if current else appointment.status.value, status.value
            )
        await self.db.commit()

        logger.info(
            "appointment_status_updated",
            appointment_id=appointment_id,
            from_status=appointment.status.value,
            to_status=status.value,
        )
        return await self.get_appointment(appointment_id)

    async def cancel_appointment(
        self, appointment_id: str, reason: str, cancelled_by: str = "client"
    ) -> Appointment:
        """Cancel a pending or confirmed appointment."""
        appointment = await self.update_appointment_status(
            appointment_id,
            AppointmentStatus.CANCELLED,
            reason=reason,
            internal_note=f"Cancelled by {cancelled_by}: {reason}",
        )

        if appointment.payment.status == PaymentStatus.PAID:
            logger.warning(
                "cancelled_appointment_needs_refund",
                appointment_id=appointment_id,
                transaction_id=appointment.payment.transaction_id,
                amount=appointment.payment.amount,
            )
        return appointment

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        """Get appointment by ID."""
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.mappings().first()
        return Appointment.from_row(dict(row)) if row else None

    async def get_appointments_for_dates(
        self, therapist_id: str, start_date: date, end_date: date
    ) -> list[Appointment]:
        """Non-cancelled therapist appointments on therapist-local dates."""
        stmt = select(appointments).where(
            appointments.c.therapist_id == therapist_id,
            appointments.c.slot_date >= start_date,
            appointments.c.slot_date <= end_date,
            appointments.c.status != AppointmentStatus.CANCELLED.value,
        )
        result = await self.db.execute(stmt)
        return [Appointment.from_row(dict(row)) for row in result.mappings().all()]

    async def _list_for(
        self, column, user_id: str, status: AppointmentStatus | None = None
    ) -> list[Appointment]:
        stmt = select(appointments).where(column == user_id)
        if status:
            stmt = stmt.where(appointments.c.status == status.value)
        result = await self.db.execute(stmt.order_by(appointments.c.scheduled_for.desc()))
        return [Appointment.from_row(dict(row)) for row in result.mappings().all()]

    async def list_therapist_appointments(
        self, therapist_id: str, status: AppointmentStatus | None = None
    ) -> list[Appointment]:
        """Get a therapist's appointments, newest first."""
        return await self._list_for(appointments.c.therapist_id, therapist_id, status)

    async def list_client_appointments(
        self, client_id: str, status: AppointmentStatus | None = None
    ) -> list[Appointment]:
        """Get a client's appointments, newest first."""
        return await self._list_for(appointments.c.client_id, client_id, status)

    async def get_upcoming_appointments(
        self, user_id: str, role: str = "client", limit: int = 10
    ) -> list[Appointment]:
        """Pending or confirmed appointments that have not started yet."""
        column = appointments.c.therapist_id if role == "therapist" else appointments.c.client_id
        stmt = (
            select(appointments)
            .where(
                column == user_id,
                appointments.c.scheduled_for >= self.clock(),
                appointments.c.status.in_(RESCHEDULABLE_STATUSES),
            )
            .order_by(appointments.c.scheduled_for)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [Appointment.from_row(dict(row)) for row in result.mappings().all()]

    async def get_appointment_stats(self, user_id: str, role: str = "client") -> AppointmentStats:
        """Count a participant's appointments by status."""
        column = appointments.c.therapist_id if role == "therapist" else appointments.c.client_id
        stmt = (
            select(appointments.c.status, func.count().label("count"))
            .where(column == user_id)
            .group_by(appointments.c.status)
        )
        result = await self.db.execute(stmt)

        counts = {row.status: row.count for row in result}
        return AppointmentStats(total=sum(counts.values()), **counts)
