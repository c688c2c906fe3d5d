"""Payment event intake endpoint."""

from fastapi import APIRouter, status

from therapy_booking.dependencies import Clock, CurrentUser, DatabaseSession, ensure_admin
from therapy_booking.schemas.payments import PaymentEvent, PaymentEventResult
from therapy_booking.services.payment_event_service import PaymentEventService

router = APIRouter()


@router.post(
    "/events",
    response_model=PaymentEventResult,
    status_code=status.HTTP_200_OK,
    summary="Apply a payment status event",
)
async def apply_payment_event(
    event: PaymentEvent,
    current_user: CurrentUser,
    db: DatabaseSession,
    clock: Clock,
) -> PaymentEventResult:
    """
    Apply a payment status change forwarded by the payment subsystem.

    Replayed events with a known ``event_id`` are acknowledged without
    being applied again. Signature checks happen before the event reaches
    this service, which only accepts calls from admin service accounts.
    """
    ensure_admin(current_user)
    service = PaymentEventService(db, clock=clock)
    return await service.apply_payment_status(
        event.transaction_id,
        event.status,
        event_id=event.event_id,
        reason=event.reason,
    )
