"""Time slot catalog service."""

from datetime import UTC, datetime
from uuid import uuid4

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_booking.config import settings
from therapy_booking.core.exceptions import (
    BadRequestException,
    ConflictException,
    NotFoundException,
)
from therapy_booking.core.redis_client import CacheManager
from therapy_booking.core.timezones import format_hhmm, minutes_since_midnight
from therapy_booking.models.appointments import appointments
from therapy_booking.models.availability import therapist_availability
from therapy_booking.models.time_slots import time_slots
from therapy_booking.schemas.time_slots import TimeSlot, TimeSlotCreate

logger = structlog.get_logger(__name__)


def format_display_name(start_time: str, end_time: str) -> str:
    """Format a slot label such as ``9 AM - 10:30 AM``."""

    def to_12_hour(value: str) -> str:
        minutes = minutes_since_midnight(value)
        hours, mins = divmod(minutes, 60)
        period = "PM" if hours >= 12 else "AM"
        display_hours = hours % 12 or 12
        return f"{display_hours}{f':{mins:02d}' if mins else ''} {period}"

    return f"{to_12_hour(start_time)} - {to_12_hour(end_time)}"


def calculate_time_slots(
    start_time: str,
    end_time: str,
    interval_minutes: int,
    duration: int,
) -> list[dict]:
    """Lay out slots of ``duration`` every ``interval_minutes`` between two times.

    A slot that would extend past ``end_time`` is not created.
    """
    start = minutes_since_midnight(start_time)
    end = minutes_since_midnight(end_time)
    slots = []

    current = start
    while current < end:
        slot_end = current + duration
        if slot_end > end:
            break
        slots.append(
            {
                "start_time": format_hhmm(current),
                "end_time": format_hhmm(slot_end),
                "duration": duration,
                "display_name": format_display_name(format_hhmm(current), format_hhmm(slot_end)),
            }
        )
        current += interval_minutes

    return slots


class TimeSlotService:
    """Read-mostly catalog of platform time slots."""

    CATALOG_CACHE_KEY = "time_slots:catalog"

    def __init__(self, db: AsyncSession, cache_manager: CacheManager | None = None):
        """Initialize service with database session and optional cache."""
        self.db = db
        self.cache = cache_manager

    def _invalidate(self) -> None:
        if self.cache:
            self.cache.delete(self.CATALOG_CACHE_KEY)

    async def list_slots(self) -> list[TimeSlot]:
        """Get all time slots ordered by sort order."""
        if self.cache:
            cached = self.cache.get_json(self.CATALOG_CACHE_KEY)
            if cached:
                return [TimeSlot.model_validate(item) for item in cached]

        stmt = select(time_slots).order_by(time_slots.c.sort_order, time_slots.c.start_time)
        result = await self.db.execute(stmt)
        slots = [TimeSlot.model_validate(dict(row)) for row in result.mappings().all()]

        if self.cache and slots:
            self.cache.set_json(
                self.CATALOG_CACHE_KEY,
                [slot.model_dump() for slot in slots],
                ttl=settings.time_slot_cache_ttl,
            )

        return slots

    async def list_standard_slots(self) -> list[TimeSlot]:
        """Get standard time slots only."""
        return [slot for slot in await self.list_slots() if slot.is_standard]

    async def list_slots_for_duration(self, duration: int) -> list[TimeSlot]:
        """Get time slots of exactly ``duration`` minutes."""
        return [slot for slot in await self.list_slots() if slot.duration == duration]

    async def get_slot_map(self) -> dict[str, TimeSlot]:
        """Catalog keyed by slot id."""
        return {slot.id: slot for slot in await self.list_slots()}

    async def get_slot(self, slot_id: str) -> TimeSlot | None:
        """Get a time slot by ID."""
        result = await self.db.execute(select(time_slots).where(time_slots.c.id == slot_id))
        row = result.mappings().first()
        return TimeSlot.model_validate(dict(row)) if row else None

    async def check_time_slot_conflict(
        self,
        start_time: str,
        end_time: str,
        exclude_id: str | None = None,
    ) -> bool:
        """Check whether an interval overlaps an existing catalog slot."""
        start = minutes_since_midnight(start_time)
        end = minutes_since_midnight(end_time)

        for slot in await self.list_slots():
            if exclude_id and slot.id == exclude_id:
                continue
            slot_start = minutes_since_midnight(slot.start_time)
            slot_end = minutes_since_midnight(slot.end_time)
            if start < slot_end and end > slot_start:
                return True
        return False

    async def create_time_slot(self, data: TimeSlotCreate, commit: bool = True) -> TimeSlot:
        """
        Create a new time slot.

        Args:
            data: Validated slot definition
            commit: Commit immediately; bulk callers commit once at the end

        Returns:
            Created time slot
        """
        now = datetime.now(UTC)
        values = {
            "id": str(uuid4()),
            "start_time": data.start_time,
            "end_time": data.end_time,
            "duration": data.duration,
            "display_name": data.display_name
            or format_display_name(data.start_time, data.end_time),
            "is_standard": data.is_standard,
            "sort_order": data.sort_order,
            "created_at": now,
            "updated_at": now,
        }
        await self.db.execute(time_slots.insert().values(**values))
        if commit:
            await self.db.commit()
            self._invalidate()

        logger.info("time_slot_created", time_slot_id=values["id"], start_time=data.start_time)
        return TimeSlot.model_validate(values)

    async def generate_standard_time_slots(
        self,
        start_time: str,
        end_time: str,
        interval_minutes: int = 60,
        duration: int | None = None,
    ) -> list[TimeSlot]:
        """
        Generate standard time slots automatically.

        Args:
            start_time: Start time in 24h format (e.g., "09:00")
            end_time: End time in 24h format (e.g., "17:00")
            interval_minutes: Interval between slot starts
            duration: Duration of each slot; defaults to the configured length

        Returns:
            Created time slots
        """
        duration = duration or settings.default_appointment_duration
        layout = calculate_time_slots(start_time, end_time, interval_minutes, duration)
        if not layout:
            raise BadRequestException("No time slots fit between the given times")

        created = []
        for index, slot in enumerate(layout):
            created.append(
                await self.create_time_slot(
                    TimeSlotCreate(
                        start_time=slot["start_time"],
                        end_time=slot["end_time"],
                        duration=slot["duration"],
                        display_name=slot["display_name"],
                        is_standard=True,
                        # Leave gaps for manual insertions
                        sort_order=index * 10,
                    ),
                    commit=False,
                )
            )

        await self.db.commit()
        self._invalidate()
        return created

    async def delete_time_slot(self, slot_id: str) -> None:
        """Delete a time slot that nothing references yet.

        Raises:
            NotFoundException: If the slot does not exist
            ConflictException: If availability or appointments reference it
        """
        if not await self.get_slot(slot_id):
            raise NotFoundException("Time slot not found")

        for table in (appointments, therapist_availability):
            in_use = await self.db.execute(
                select(table.c.id).where(table.c.time_slot_id == slot_id).limit(1)
            )
            if in_use.first():
                raise ConflictException("Time slot is in use and cannot be deleted")

        await self.db.execute(delete(time_slots).where(time_slots.c.id == slot_id))
        await self.db.commit()
        self._invalidate()
