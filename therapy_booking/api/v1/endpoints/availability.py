"""Therapist availability and schedule override endpoints."""

from datetime import date

import structlog
from fastapi import APIRouter, Query, status

from therapy_booking.core.exceptions import (
    AvailabilityLookupError,
    NotFoundException,
    ServiceUnavailableException,
    ValidationException,
)
from therapy_booking.dependencies import (
    Cache,
    CurrentUser,
    DatabaseSession,
    ensure_therapist_access,
)
from therapy_booking.schemas.availability import (
    AvailabilityBase,
    AvailabilityCreate,
    AvailabilityResolution,
    AvailabilityStats,
    AvailabilityUpdate,
    ScheduleOverride,
    ScheduleOverrideCreate,
    ScheduleOverrideRequest,
    ScheduleOverrideUpdate,
    TherapistAvailability,
    WeeklyScheduleUpdate,
)
from therapy_booking.services.availability_service import AvailabilityService
from therapy_booking.services.profile_service import ProfileService
from therapy_booking.services.timeslot_service import TimeSlotService

logger = structlog.get_logger(__name__)

router = APIRouter()


def _service(db: DatabaseSession, cache: Cache) -> AvailabilityService:
    return AvailabilityService(db, TimeSlotService(db, cache))


# ============================================================================
# Weekly availability
# ============================================================================


@router.get(
    "/therapists/{therapist_id}/availability",
    response_model=list[TherapistAvailability],
    status_code=status.HTTP_200_OK,
    summary="Get weekly availability",
)
async def get_weekly_availability(
    therapist_id: str,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> list[TherapistAvailability]:
    """Get all weekly availability records of a therapist."""
    return await _service(db, cache).get_therapist_availability(therapist_id)


@router.put(
    "/therapists/{therapist_id}/availability",
    response_model=list[TherapistAvailability],
    status_code=status.HTTP_200_OK,
    summary="Replace weekly schedule",
)
async def set_weekly_schedule(
    therapist_id: str,
    data: WeeklyScheduleUpdate,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> list[TherapistAvailability]:
    """
    Replace a therapist's weekly schedule in one step.

    Args:
        therapist_id: Therapist ID
        data: Day of week (0 = Sunday) -> slot ids
        current_user: Authenticated therapist or admin
        db: Database session
        cache: Cache manager

    Returns:
        The new availability records
    """
    ensure_therapist_access(current_user, therapist_id)
    return await _service(db, cache).set_weekly_schedule(therapist_id, data)


@router.post(
    "/therapists/{therapist_id}/availability",
    response_model=TherapistAvailability,
    status_code=status.HTTP_201_CREATED,
    summary="Add availability record",
)
async def create_availability(
    therapist_id: str,
    data: AvailabilityBase,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> TherapistAvailability:
    """Add a single weekly availability record."""
    ensure_therapist_access(current_user, therapist_id)
    create = AvailabilityCreate(therapist_id=therapist_id, **data.model_dump())
    return await _service(db, cache).create_availability(create)


@router.patch(
    "/availability/{availability_id}",
    response_model=TherapistAvailability,
    status_code=status.HTTP_200_OK,
    summary="Update availability record",
)
async def update_availability(
    availability_id: str,
    data: AvailabilityUpdate,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> TherapistAvailability:
    """Update a weekly availability record."""
    service = _service(db, cache)
    record = await service.get_availability_record(availability_id)
    if not record:
        raise NotFoundException("Availability record not found")
    ensure_therapist_access(current_user, record.therapist_id)
    return await service.update_availability(availability_id, data)


@router.delete(
    "/availability/{availability_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete availability record",
)
async def delete_availability(
    availability_id: str,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> None:
    """Delete a weekly availability record."""
    service = _service(db, cache)
    record = await service.get_availability_record(availability_id)
    if not record:
        raise NotFoundException("Availability record not found")
    ensure_therapist_access(current_user, record.therapist_id)
    await service.delete_availability(availability_id)


# ============================================================================
# Effective availability
# ============================================================================


@router.get(
    "/therapists/{therapist_id}/availability/{target_date}",
    response_model=AvailabilityResolution,
    status_code=status.HTTP_200_OK,
    summary="Get effective availability for a date",
)
async def get_availability_for_date(
    therapist_id: str,
    target_date: date,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    client_timezone: str | None = Query(None),
) -> AvailabilityResolution:
    """
    Resolve the slots a therapist offers on one of their local dates.

    When ``client_timezone`` differs from the therapist's timezone the
    effective slots are also projected onto the client's wall clock.
    """
    therapist_timezone = await ProfileService(db, cache).get_timezone(therapist_id)
    try:
        return await _service(db, cache).get_availability_for_date(
            therapist_id,
            target_date,
            therapist_timezone=therapist_timezone,
            client_timezone=client_timezone,
        )
    except AvailabilityLookupError as e:
        raise ServiceUnavailableException("Unable to verify availability at this time") from e


@router.get(
    "/therapists/{therapist_id}/availability-stats",
    response_model=AvailabilityStats,
    status_code=status.HTTP_200_OK,
    summary="Get availability statistics",
)
async def get_availability_stats(
    therapist_id: str,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    from_date: date = Query(...),
    to_date: date = Query(...),
) -> AvailabilityStats:
    """Availability counts across an inclusive date range."""
    if to_date < from_date:
        raise ValidationException("to_date must not be before from_date")
    return await _service(db, cache).get_availability_stats(therapist_id, from_date, to_date)


# ============================================================================
# Schedule overrides
# ============================================================================


@router.get(
    "/therapists/{therapist_id}/overrides",
    response_model=list[ScheduleOverride],
    status_code=status.HTTP_200_OK,
    summary="List schedule overrides",
)
async def list_overrides(
    therapist_id: str,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
) -> list[ScheduleOverride]:
    """List a therapist's schedule overrides."""
    return await _service(db, cache).list_schedule_overrides(therapist_id, from_date, to_date)


@router.post(
    "/therapists/{therapist_id}/overrides",
    response_model=ScheduleOverride,
    status_code=status.HTTP_201_CREATED,
    summary="Create schedule override",
)
async def create_override(
    therapist_id: str,
    data: ScheduleOverrideRequest,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> ScheduleOverride:
    """Block a day, block some slots, or set custom hours for a date."""
    ensure_therapist_access(current_user, therapist_id)
    create = ScheduleOverrideCreate(therapist_id=therapist_id, **data.model_dump())
    return await _service(db, cache).create_schedule_override(create)


@router.patch(
    "/overrides/{override_id}",
    response_model=ScheduleOverride,
    status_code=status.HTTP_200_OK,
    summary="Update schedule override",
)
async def update_override(
    override_id: str,
    data: ScheduleOverrideUpdate,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> ScheduleOverride:
    """Update a schedule override."""
    service = _service(db, cache)
    override = await service.get_schedule_override(override_id)
    if not override:
        raise NotFoundException("Schedule override not found")
    ensure_therapist_access(current_user, override.therapist_id)
    return await service.update_schedule_override(override_id, data)


@router.delete(
    "/overrides/{override_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete schedule override",
)
async def delete_override(
    override_id: str,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> None:
    """Delete a schedule override."""
    service = _service(db, cache)
    override = await service.get_schedule_override(override_id)
    if not override:
        raise NotFoundException("Schedule override not found")
    ensure_therapist_access(current_user, override.therapist_id)
    await service.delete_schedule_override(override_id)
    logger.info("schedule_override_deleted", override_id=override_id, by=current_user.uid)
