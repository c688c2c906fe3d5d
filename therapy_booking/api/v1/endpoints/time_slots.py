"""Time slot catalog endpoints."""

from fastapi import APIRouter, Query, status

from therapy_booking.core.exceptions import ConflictException
from therapy_booking.dependencies import Cache, CurrentUser, DatabaseSession, ensure_admin
from therapy_booking.schemas.time_slots import GenerateTimeSlotsRequest, TimeSlot, TimeSlotCreate
from therapy_booking.services.timeslot_service import TimeSlotService

router = APIRouter()


@router.get(
    "",
    response_model=list[TimeSlot],
    status_code=status.HTTP_200_OK,
    summary="List time slots",
)
async def list_time_slots(
    db: DatabaseSession,
    cache: Cache,
    duration: int | None = Query(None, gt=0),
    standard_only: bool = Query(False),
) -> list[TimeSlot]:
    """
    List the platform time slot catalog.

    Args:
        db: Database session
        cache: Cache manager
        duration: Only slots of exactly this many minutes
        standard_only: Only standard slots

    Returns:
        Time slots ordered by sort order
    """
    service = TimeSlotService(db, cache)
    if duration:
        return await service.list_slots_for_duration(duration)
    if standard_only:
        return await service.list_standard_slots()
    return await service.list_slots()


@router.post(
    "",
    response_model=TimeSlot,
    status_code=status.HTTP_201_CREATED,
    summary="Create time slot",
)
async def create_time_slot(
    data: TimeSlotCreate,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> TimeSlot:
    """Add a slot to the catalog (admin only)."""
    ensure_admin(current_user)
    service = TimeSlotService(db, cache)
    if await service.check_time_slot_conflict(data.start_time, data.end_time):
        raise ConflictException("Time slot overlaps an existing slot")
    return await service.create_time_slot(data)


@router.post(
    "/generate",
    response_model=list[TimeSlot],
    status_code=status.HTTP_201_CREATED,
    summary="Generate standard time slots",
)
async def generate_time_slots(
    data: GenerateTimeSlotsRequest,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> list[TimeSlot]:
    """Lay out standard slots between two times (admin only)."""
    ensure_admin(current_user)
    service = TimeSlotService(db, cache)
    return await service.generate_standard_time_slots(
        data.start_time,
        data.end_time,
        interval_minutes=data.interval_minutes,
        duration=data.duration,
    )


@router.delete(
    "/{slot_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete time slot",
)
async def delete_time_slot(
    slot_id: str,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> None:
    """Delete an unused time slot (admin only)."""
    ensure_admin(current_user)
    await TimeSlotService(db, cache).delete_time_slot(slot_id)
