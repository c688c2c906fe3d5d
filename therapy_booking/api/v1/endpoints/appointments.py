"""Appointment booking endpoints."""

from fastapi import APIRouter, Query, Response, status

from therapy_booking.core.exceptions import ForbiddenException, NotFoundException
from therapy_booking.core.firebase import CallerIdentity
from therapy_booking.dependencies import Cache, Clock, CurrentUser, DatabaseSession
from therapy_booking.schemas.appointments import (
    Appointment,
    AppointmentCancel,
    AppointmentStats,
    AppointmentStatus,
    AppointmentStatusUpdate,
    BookingConflict,
    BookingCreate,
    BookingRequest,
    BookingResult,
    RescheduleRequest,
)
from therapy_booking.services.booking_service import BookingService

router = APIRouter()


def _booking_request(data: BookingCreate, current_user: CallerIdentity) -> BookingRequest:
    client_id = current_user.uid
    if data.client_id and data.client_id != current_user.uid:
        if not current_user.is_admin:
            raise ForbiddenException("You can only book appointments for yourself")
        client_id = data.client_id

    return BookingRequest(
        therapist_id=data.therapist_id,
        client_id=client_id,
        time_slot_id=data.time_slot_id,
        date=data.date,
        duration=data.duration,
        session_type=data.session_type,
        delivery_type=data.delivery_type,
        client_notes=data.client_notes,
    )


def _result_status(result: BookingResult) -> int:
    if result.success:
        return status.HTTP_201_CREATED
    if result.conflicts:
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


async def _get_for_participant(
    service: BookingService, appointment_id: str, current_user: CallerIdentity
) -> Appointment:
    appointment = await service.get_appointment(appointment_id)
    if not appointment:
        raise NotFoundException("Appointment not found")
    if current_user.is_admin or current_user.uid in (
        appointment.client_id,
        appointment.therapist_id,
    ):
        return appointment
    raise ForbiddenException("You don't have access to this appointment")


@router.post(
    "/conflicts",
    response_model=list[BookingConflict],
    status_code=status.HTTP_200_OK,
    summary="Check a booking for conflicts",
)
async def check_conflicts(
    data: BookingCreate,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
) -> list[BookingConflict]:
    """Advisory conflict check; an empty list means the booking may proceed."""
    service = BookingService(db, cache, clock=clock)
    return await service.conflicts.check_conflicts(_booking_request(data, current_user))


@router.post(
    "",
    response_model=BookingResult,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
    responses={
        status.HTTP_409_CONFLICT: {"model": BookingResult},
        status.HTTP_400_BAD_REQUEST: {"model": BookingResult},
    },
)
async def create_appointment(
    data: BookingCreate,
    response: Response,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
) -> BookingResult:
    """
    Book a slot with a therapist for the authenticated client.

    Args:
        data: Booking details and optional verified payment
        response: Response, for the result-dependent status code
        current_user: Authenticated client (admins may book for others)
        db: Database session
        cache: Cache manager
        clock: Current time source

    Returns:
        201 with the appointment id, 409 with conflicts, or 400 with an error
    """
    service = BookingService(db, cache, clock=clock)
    result = await service.create_appointment(
        _booking_request(data, current_user), payment=data.payment
    )
    response.status_code = _result_status(result)
    return result


@router.get(
    "",
    response_model=list[Appointment],
    status_code=status.HTTP_200_OK,
    summary="List my appointments",
)
async def list_appointments(
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
) -> list[Appointment]:
    """List the caller's appointments; therapists see the ones booked with them."""
    service = BookingService(db, cache, clock=clock)
    if current_user.role == "therapist":
        return await service.list_therapist_appointments(current_user.uid, status_filter)
    return await service.list_client_appointments(current_user.uid, status_filter)


@router.get(
    "/upcoming",
    response_model=list[Appointment],
    status_code=status.HTTP_200_OK,
    summary="List my upcoming appointments",
)
async def list_upcoming_appointments(
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
    limit: int = Query(10, ge=1, le=100),
) -> list[Appointment]:
    """Pending or confirmed appointments that have not started yet."""
    service = BookingService(db, cache, clock=clock)
    return await service.get_upcoming_appointments(current_user.uid, current_user.role, limit)


@router.get(
    "/stats",
    response_model=AppointmentStats,
    status_code=status.HTTP_200_OK,
    summary="Appointment counts by status",
)
async def get_appointment_stats(
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
) -> AppointmentStats:
    """Count the caller's appointments by status."""
    service = BookingService(db, cache, clock=clock)
    return await service.get_appointment_stats(current_user.uid, current_user.role)


@router.get(
    "/{appointment_id}",
    response_model=Appointment,
    status_code=status.HTTP_200_OK,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: str,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
) -> Appointment:
    """Get an appointment the caller takes part in."""
    service = BookingService(db, cache, clock=clock)
    return await _get_for_participant(service, appointment_id, current_user)


@router.post(
    "/{appointment_id}/reschedule",
    response_model=BookingResult,
    status_code=status.HTTP_200_OK,
    summary="Reschedule appointment",
    responses={
        status.HTTP_409_CONFLICT: {"model": BookingResult},
        status.HTTP_400_BAD_REQUEST: {"model": BookingResult},
    },
)
async def reschedule_appointment(
    appointment_id: str,
    data: RescheduleRequest,
    response: Response,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
) -> BookingResult:
    """Move an appointment to another slot."""
    service = BookingService(db, cache, clock=clock)
    await _get_for_participant(service, appointment_id, current_user)

    result = await service.reschedule_appointment(appointment_id, data)
    response.status_code = status.HTTP_200_OK if result.success else _result_status(result)
    return result


@router.post(
    "/{appointment_id}/cancel",
    response_model=Appointment,
    status_code=status.HTTP_200_OK,
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: str,
    data: AppointmentCancel,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
) -> Appointment:
    """Cancel a pending or confirmed appointment."""
    service = BookingService(db, cache, clock=clock)
    appointment = await _get_for_participant(service, appointment_id, current_user)

    if current_user.is_admin:
        cancelled_by = "admin"
    elif current_user.uid == appointment.therapist_id:
        cancelled_by = "therapist"
    else:
        cancelled_by = "client"

    return await service.cancel_appointment(appointment_id, data.reason, cancelled_by)


@router.patch(
    "/{appointment_id}/status",
    response_model=Appointment,
    status_code=status.HTTP_200_OK,
    summary="Update appointment status",
)
async def update_appointment_status(
    appointment_id: str,
    data: AppointmentStatusUpdate,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
) -> Appointment:
    """
    Move an appointment through its lifecycle.

    Only the therapist or an admin may change status; clients cancel
    through the cancel endpoint.
    """
    service = BookingService(db, cache, clock=clock)
    appointment = await _get_for_participant(service, appointment_id, current_user)
    if current_user.uid != appointment.therapist_id and not current_user.is_admin:
        raise ForbiddenException("Only the therapist can update appointment status")

    return await service.update_appointment_status(appointment_id, data.status, data.reason)
