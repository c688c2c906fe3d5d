"""Slot projection endpoints for calendars, slot pickers and search."""

from datetime import date

from fastapi import APIRouter, Query, status

from therapy_booking.core.exceptions import ValidationException
from therapy_booking.dependencies import Cache, Clock, CurrentUser, DatabaseSession
from therapy_booking.schemas.slots import (
    DateSlotCount,
    EnhancedSlot,
    SlotAvailabilityCheck,
    SlotCalculationOptions,
    SlotSearchCriteria,
    SlotSearchResult,
    TherapistSlotsRequest,
    TherapistSlotsResult,
)
from therapy_booking.services.slot_projection_service import SlotProjectionService

router = APIRouter()


def _range_options(
    start_date: date,
    end_date: date,
    client_timezone: str | None,
    duration: int | None = None,
) -> SlotCalculationOptions:
    if end_date < start_date:
        raise ValidationException("end_date must not be before start_date")
    return SlotCalculationOptions(
        start_date=start_date,
        end_date=end_date,
        client_timezone=client_timezone,
        duration=duration,
    )


@router.get(
    "/therapists/{therapist_id}/slots",
    response_model=TherapistSlotsResult,
    status_code=status.HTTP_200_OK,
    summary="Project available slots over a date range",
)
async def get_therapist_slots(
    therapist_id: str,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
    start_date: date = Query(...),
    end_date: date = Query(...),
    client_timezone: str | None = Query(None),
    duration: int | None = Query(None, gt=0),
) -> TherapistSlotsResult:
    """
    Project a therapist's bookable slots.

    Args:
        therapist_id: Therapist ID
        current_user: Authenticated user
        db: Database session
        cache: Cache manager
        clock: Current time source
        start_date: First therapist-local date
        end_date: Last therapist-local date (inclusive)
        client_timezone: Timezone to display slots in
        duration: Only slots of exactly this many minutes

    Returns:
        Slots with booking state and client-local times; dates that could
        not be computed are listed in ``incomplete_dates``
    """
    options = _range_options(start_date, end_date, client_timezone, duration)
    service = SlotProjectionService(db, cache, clock=clock)
    return await service.calculate_available_slots(therapist_id, options)


@router.get(
    "/therapists/{therapist_id}/slots/calendar",
    response_model=list[DateSlotCount],
    status_code=status.HTTP_200_OK,
    summary="Open slot counts per date",
)
async def get_slot_calendar(
    therapist_id: str,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
    start_date: date = Query(...),
    end_date: date = Query(...),
    client_timezone: str | None = Query(None),
) -> list[DateSlotCount]:
    """Number of open slots per client-local date."""
    options = _range_options(start_date, end_date, client_timezone)
    service = SlotProjectionService(db, cache, clock=clock)
    return await service.get_available_date_counts(therapist_id, options)


@router.get(
    "/therapists/{therapist_id}/slots/next",
    response_model=EnhancedSlot | None,
    status_code=status.HTTP_200_OK,
    summary="Next available slot",
)
async def get_next_slot(
    therapist_id: str,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
    from_date: date | None = Query(None),
    client_timezone: str | None = Query(None),
) -> EnhancedSlot | None:
    """Earliest open slot of a therapist, or null when none is left."""
    service = SlotProjectionService(db, cache, clock=clock)
    return await service.get_next_available_slot(therapist_id, from_date, client_timezone)


@router.get(
    "/therapists/{therapist_id}/slots/check",
    response_model=SlotAvailabilityCheck,
    status_code=status.HTTP_200_OK,
    summary="Check a single slot",
)
async def check_slot(
    therapist_id: str,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
    time_slot_id: str = Query(..., min_length=1),
    slot_date: date = Query(..., alias="date"),
) -> SlotAvailabilityCheck:
    """Whether a slot on a therapist-local date is offered and still free."""
    service = SlotProjectionService(db, cache, clock=clock)
    return await service.check_slot_availability(therapist_id, time_slot_id, slot_date)


@router.get(
    "/therapists/{therapist_id}/slots/{target_date}",
    response_model=list[EnhancedSlot],
    status_code=status.HTTP_200_OK,
    summary="Slots on a client-local date",
)
async def get_slots_for_date(
    therapist_id: str,
    target_date: date,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
    client_timezone: str | None = Query(None),
) -> list[EnhancedSlot]:
    """Slots starting on a client-local date, booked ones included."""
    service = SlotProjectionService(db, cache, clock=clock)
    return await service.list_slots_for_date(therapist_id, target_date, client_timezone)


@router.post(
    "/slots/therapists",
    response_model=list[TherapistSlotsResult],
    status_code=status.HTTP_200_OK,
    summary="Project slots for several therapists",
)
async def get_slots_for_therapists(
    data: TherapistSlotsRequest,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
) -> list[TherapistSlotsResult]:
    """
    Project slots for each requested therapist over one date range.

    Therapists whose projection fails are left out of the response.
    """
    service = SlotProjectionService(db, cache, clock=clock)
    return await service.get_available_slots_for_therapists(data.therapist_ids, data)


@router.post(
    "/slots/search",
    response_model=SlotSearchResult,
    status_code=status.HTTP_200_OK,
    summary="Search open slots across therapists",
)
async def search_slots(
    criteria: SlotSearchCriteria,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    clock: Clock,
) -> SlotSearchResult:
    """Find open slots matching day and time-of-day preferences."""
    service = SlotProjectionService(db, cache, clock=clock)
    return await service.find_matching_slots(criteria)
