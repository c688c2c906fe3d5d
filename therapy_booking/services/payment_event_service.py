"""Payment status events from the payment subsystem."""

from collections.abc import Callable
from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_booking.core.timezones import utc_now
from therapy_booking.database import insert_ignore
from therapy_booking.models.appointments import appointments
from therapy_booking.models.payment_events import processed_payment_events
from therapy_booking.schemas.appointments import AppointmentStatus, PaymentStatus
from therapy_booking.schemas.payments import PaymentEventResult

logger = structlog.get_logger(__name__)

CANCELLABLE_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)


class PaymentEventService:
    """Applies payment status changes to appointments exactly once per event."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now):
        """Initialize service with database session and clock."""
        self.db = db
        self.clock = clock

    async def apply_payment_status(
        self,
        transaction_id: str,
        status: PaymentStatus,
        event_id: str | None = None,
        reason: str | None = None,
    ) -> PaymentEventResult:
        """
        Record a payment status change on the appointment paid by a transaction.

        The event id is stored in the same transaction as the appointment
        update, so a replayed event is ignored even after a restart. A failed
        payment cancels a pending or confirmed appointment.

        Args:
            transaction_id: Payment transaction ID
            status: New payment status
            event_id: Idempotency key of the event, if the sender supplies one
            reason: Failure reason, recorded on cancellation

        Returns:
            Whether the event was applied or was a duplicate
        """
        if self.db.in_transaction():
            await self.db.commit()

        async with self.db.begin():
            result = await self.db.execute(
                select(appointments.c.id, appointments.c.status).where(
                    appointments.c.payment_transaction_id == transaction_id
                )
            )
            appointment = result.first()
            if appointment is None:
                logger.warning(
                    "payment_event_unknown_transaction",
                    transaction_id=transaction_id,
                    event_id=event_id,
                )
                return PaymentEventResult(applied=False)

            now = self.clock()
            if event_id:
                recorded = await insert_ignore(
                    self.db,
                    processed_payment_events,
                    {
                        "event_id": event_id,
                        "transaction_id": transaction_id,
                        "status": status.value,
                        "processed_at": now,
                    },
                )
                if not recorded:
                    logger.info(
                        "payment_event_duplicate",
                        event_id=event_id,
                        transaction_id=transaction_id,
                    )
                    return PaymentEventResult(
                        applied=False, duplicate=True, appointment_id=appointment.id
                    )

            values: dict = {"payment_status": status.value, "updated_at": now}
            if status == PaymentStatus.FAILED and appointment.status in CANCELLABLE_STATUSES:
                values.update(
                    status=AppointmentStatus.CANCELLED.value,
                    cancelled_at=now,
                    cancellation_reason=reason or "Payment failed",
                )

            await self.db.execute(
                update(appointments).where(appointments.c.id == appointment.id).values(**values)
            )

        logger.info(
            "payment_event_applied",
            event_id=event_id,
            transaction_id=transaction_id,
            appointment_id=appointment.id,
            payment_status=status.value,
            cancelled=values.get("status") == AppointmentStatus.CANCELLED.value,
        )
        return PaymentEventResult(applied=True, appointment_id=appointment.id)
