"""Availability resolution and schedule administration."""

from datetime import UTC, date, datetime
from typing import Any
from uuid import uuid4

import structlog
from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_booking.core.exceptions import (
    AvailabilityLookupError,
    BadRequestException,
    ConflictException,
    NotFoundException,
)
from therapy_booking.core.timezones import (
    day_of_week,
    format_display_range,
    is_same_timezone,
    iter_dates,
    slot_bounds,
    to_zone,
)
from therapy_booking.models.availability import schedule_overrides, therapist_availability
from therapy_booking.schemas.availability import (
    AvailabilityCreate,
    AvailabilityResolution,
    AvailabilityStats,
    AvailabilityStatus,
    AvailabilityUpdate,
    OverrideType,
    ProjectedSlotTime,
    ScheduleOverride,
    ScheduleOverrideCreate,
    ScheduleOverrideUpdate,
    TherapistAvailability,
    WeeklyScheduleUpdate,
)
from therapy_booking.schemas.time_slots import TimeSlot
from therapy_booking.services.timeslot_service import TimeSlotService

logger = structlog.get_logger(__name__)

# Update fields that may be cleared with an explicit null
CLEARABLE_AVAILABILITY_FIELDS = frozenset({"recurring_end_date", "notes"})
CLEARABLE_OVERRIDE_FIELDS = frozenset({"recurring_until", "notes"})


def regular_slots_for_date(records: list[TherapistAvailability], target: date) -> list[str]:
    """Slot ids of the available weekly records that apply on ``target``."""
    weekday = day_of_week(target)
    return [
        record.time_slot_id
        for record in records
        if record.day_of_week == weekday
        and record.status == AvailabilityStatus.AVAILABLE
        and (record.recurring_end_date is None or record.recurring_end_date >= target)
    ]


def overrides_for_date(overrides: list[ScheduleOverride], target: date) -> list[ScheduleOverride]:
    """Overrides that apply on ``target``.

    A recurring override repeats weekly from its anchor date until
    ``recurring_until`` (inclusive, open-ended when unset).
    """
    applicable = []
    for override in overrides:
        if override.date == target:
            applicable.append(override)
        elif (
            override.is_recurring
            and override.date < target
            and override.date.weekday() == target.weekday()
            and (override.recurring_until is None or override.recurring_until >= target)
        ):
            applicable.append(override)
    return sorted(applicable, key=lambda item: (item.date, item.id))


def apply_overrides(regular_slots: list[str], overrides: list[ScheduleOverride]) -> list[str]:
    """Combine regular availability with the overrides of one day.

    Precedence is fixed: day_off > custom_hours > time_off. Any day off empties
    the day; custom hours replace the regular set with the union of their slots;
    time off then removes its slots.
    """
    if any(o.type == OverrideType.DAY_OFF for o in overrides):
        return []

    custom = [o for o in overrides if o.type == OverrideType.CUSTOM_HOURS]
    if custom:
        effective = list(dict.fromkeys(slot for o in custom for slot in o.affected_slots))
    else:
        effective = list(dict.fromkeys(regular_slots))

    removed = {
        slot for o in overrides if o.type == OverrideType.TIME_OFF for slot in o.affected_slots
    }
    return [slot for slot in effective if slot not in removed]


def sort_by_catalog(slot_ids: list[str], slot_map: dict[str, TimeSlot]) -> list[str]:
    """Order slot ids by catalog sort order; unknown ids go last."""

    def key(slot_id: str) -> tuple[int, int, str]:
        slot = slot_map.get(slot_id)
        if slot is None:
            return (1, 0, slot_id)
        return (0, slot.sort_order, slot.start_time)

    return sorted(slot_ids, key=key)


def project_slots(
    slot_ids: list[str],
    slot_map: dict[str, TimeSlot],
    target: date,
    therapist_timezone: str,
    client_timezone: str,
) -> list[ProjectedSlotTime]:
    """Reproject therapist-local slots onto the client's wall clock."""
    projected = []
    for slot_id in slot_ids:
        slot = slot_map.get(slot_id)
        if slot is None:
            continue
        start, end = slot_bounds(target, slot.start_time, slot.duration, therapist_timezone)
        local_start = to_zone(start, client_timezone)
        local_end = to_zone(end, client_timezone)
        projected.append(
            ProjectedSlotTime(
                time_slot_id=slot_id,
                local_date=local_start.date(),
                local_start_time=local_start.strftime("%H:%M"),
                local_end_time=local_end.strftime("%H:%M"),
                display_time=format_display_range(local_start, local_end),
            )
        )
    return projected


def explicit_changes(
    data: AvailabilityUpdate | ScheduleOverrideUpdate, clearable: frozenset[str]
) -> dict[str, Any]:
    """Fields set on an update body; null is only accepted for clearable fields."""
    changes = data.model_dump(exclude_unset=True)
    rejected = sorted(
        field for field, value in changes.items() if value is None and field not in clearable
    )
    if rejected:
        raise BadRequestException(f"Fields cannot be null: {', '.join(rejected)}")
    return changes


class AvailabilityService:
    """Resolves effective availability and manages therapist schedules."""

    def __init__(self, db: AsyncSession, time_slot_service: TimeSlotService | None = None):
        """Initialize service with database session and slot catalog."""
        self.db = db
        self.time_slots = time_slot_service or TimeSlotService(db)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def get_availability_for_date(
        self,
        therapist_id: str,
        target: date,
        therapist_timezone: str | None = None,
        client_timezone: str | None = None,
    ) -> AvailabilityResolution:
        """
        Calculate effective availability for a therapist-local date.

        Args:
            therapist_id: Therapist ID
            target: Calendar date in the therapist's timezone
            therapist_timezone: Therapist timezone, for client projection
            client_timezone: Client timezone, for client projection

        Returns:
            Regular slots, applicable overrides and effective slot ids

        Raises:
            AvailabilityLookupError: If availability could not be read
        """
        try:
            regular = await self.get_availability_for_day(therapist_id, day_of_week(target))
            overrides = await self._fetch_overrides_for_date(therapist_id, target)
            slot_map = await self.time_slots.get_slot_map()
        except SQLAlchemyError as e:
            logger.error(
                "availability_lookup_failed",
                therapist_id=therapist_id,
                date=target.isoformat(),
                error=str(e),
            )
            raise AvailabilityLookupError("Failed to calculate availability for date") from e

        regular_slots = sort_by_catalog(regular_slots_for_date(regular, target), slot_map)
        applicable = overrides_for_date(overrides, target)
        effective = sort_by_catalog(apply_overrides(regular_slots, applicable), slot_map)

        projected: list[ProjectedSlotTime] = []
        if (
            therapist_timezone
            and client_timezone
            and not is_same_timezone(therapist_timezone, client_timezone)
        ):
            projected = project_slots(
                effective, slot_map, target, therapist_timezone, client_timezone
            )

        return AvailabilityResolution(
            therapist_id=therapist_id,
            date=target,
            regular_slots=regular_slots,
            overrides=applicable,
            effective_slots=effective,
            projected_slots=projected,
        )

    async def _fetch_overrides_for_date(
        self, therapist_id: str, target: date
    ) -> list[ScheduleOverride]:
        stmt = select(schedule_overrides).where(
            schedule_overrides.c.therapist_id == therapist_id,
            or_(
                schedule_overrides.c.date == target,
                and_(
                    schedule_overrides.c.is_recurring.is_(True),
                    schedule_overrides.c.date < target,
                    or_(
                        schedule_overrides.c.recurring_until.is_(None),
                        schedule_overrides.c.recurring_until >= target,
                    ),
                ),
            ),
        )
        result = await self.db.execute(stmt)
        return [ScheduleOverride.model_validate(dict(row)) for row in result.mappings().all()]

    async def get_capacity_for_slot(
        self, therapist_id: str, target: date, time_slot_id: str
    ) -> int | None:
        """Per-record client capacity of a weekly slot, if the therapist set one."""
        result = await self.db.execute(
            select(therapist_availability.c.max_concurrent_clients).where(
                therapist_availability.c.therapist_id == therapist_id,
                therapist_availability.c.day_of_week == day_of_week(target),
                therapist_availability.c.time_slot_id == time_slot_id,
            )
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Weekly availability
    # ------------------------------------------------------------------

    async def get_therapist_availability(self, therapist_id: str) -> list[TherapistAvailability]:
        """Get all availability records for a therapist."""
        stmt = (
            select(therapist_availability)
            .where(therapist_availability.c.therapist_id == therapist_id)
            .order_by(therapist_availability.c.day_of_week, therapist_availability.c.id)
        )
        result = await self.db.execute(stmt)
        return [TherapistAvailability.model_validate(dict(row)) for row in result.mappings().all()]

    async def get_availability_for_day(
        self, therapist_id: str, weekday: int
    ) -> list[TherapistAvailability]:
        """Get available records for one day of the week (Sunday = 0)."""
        stmt = select(therapist_availability).where(
            therapist_availability.c.therapist_id == therapist_id,
            therapist_availability.c.day_of_week == weekday,
            therapist_availability.c.status == AvailabilityStatus.AVAILABLE.value,
        )
        result = await self.db.execute(stmt)
        return [TherapistAvailability.model_validate(dict(row)) for row in result.mappings().all()]

    async def get_availability_record(self, availability_id: str) -> TherapistAvailability | None:
        """Get a single availability record."""
        result = await self.db.execute(
            select(therapist_availability).where(therapist_availability.c.id == availability_id)
        )
        row = result.mappings().first()
        return TherapistAvailability.model_validate(dict(row)) if row else None

    async def check_availability_conflict(
        self,
        therapist_id: str,
        weekday: int,
        time_slot_id: str,
        exclude_id: str | None = None,
    ) -> bool:
        """Check whether a record already exists for (therapist, day, slot)."""
        stmt = select(therapist_availability.c.id).where(
            therapist_availability.c.therapist_id == therapist_id,
            therapist_availability.c.day_of_week == weekday,
            therapist_availability.c.time_slot_id == time_slot_id,
        )
        if exclude_id:
            stmt = stmt.where(therapist_availability.c.id != exclude_id)
        result = await self.db.execute(stmt.limit(1))
        return result.first() is not None

    async def _validate_availability(
        self,
        therapist_id: str,
        weekday: int,
        time_slot_id: str,
        exclude_id: str | None = None,
    ) -> None:
        if weekday < 0 or weekday > 6:
            raise BadRequestException("Day of week must be between 0 (Sunday) and 6 (Saturday)")

        if not await self.time_slots.get_slot(time_slot_id):
            raise BadRequestException("Time slot not found")

        if await self.check_availability_conflict(therapist_id, weekday, time_slot_id, exclude_id):
            raise ConflictException("Availability conflict detected for this time slot")

    async def create_availability(self, data: AvailabilityCreate) -> TherapistAvailability:
        """
        Create an availability record.

        Raises:
            BadRequestException: If the day or time slot is invalid
            ConflictException: If the therapist already has this day/slot
        """
        await self._validate_availability(data.therapist_id, data.day_of_week, data.time_slot_id)

        now = datetime.now(UTC)
        values = {
            "id": str(uuid4()),
            **data.model_dump(mode="python"),
            "created_at": now,
            "updated_at": now,
        }
        values["status"] = data.status.value
        values["recurring_pattern"] = data.recurring_pattern.value

        await self.db.execute(therapist_availability.insert().values(**values))
        await self.db.commit()

        logger.info(
            "availability_created",
            therapist_id=data.therapist_id,
            day_of_week=data.day_of_week,
            time_slot_id=data.time_slot_id,
        )
        return TherapistAvailability.model_validate(values)

    async def update_availability(
        self, availability_id: str, data: AvailabilityUpdate
    ) -> TherapistAvailability:
        """Update an availability record, revalidating when key fields change."""
        existing = await self.get_availability_record(availability_id)
        if not existing:
            raise NotFoundException("Availability record not found")

        updates: dict[str, Any] = {
            field: value.value if isinstance(value, AvailabilityStatus) else value
            for field, value in explicit_changes(data, CLEARABLE_AVAILABILITY_FIELDS).items()
        }
        if not updates:
            return existing

        if "day_of_week" in updates or "time_slot_id" in updates:
            await self._validate_availability(
                existing.therapist_id,
                updates.get("day_of_week", existing.day_of_week),
                updates.get("time_slot_id", existing.time_slot_id),
                exclude_id=availability_id,
            )

        updates["updated_at"] = datetime.now(UTC)
        await self.db.execute(
            update(therapist_availability)
            .where(therapist_availability.c.id == availability_id)
            .values(**updates)
        )
        await self.db.commit()

        return TherapistAvailability.model_validate({**existing.model_dump(), **updates})

    async def delete_availability(self, availability_id: str) -> None:
        """Delete an availability record."""
        result = await self.db.execute(
            delete(therapist_availability).where(therapist_availability.c.id == availability_id)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFoundException("Availability record not found")
        await self.db.commit()

    async def set_weekly_schedule(
        self, therapist_id: str, data: WeeklyScheduleUpdate
    ) -> list[TherapistAvailability]:
        """
        Replace a therapist's weekly schedule.

        The existing records are deleted and the new set created in a single
        transaction, so readers never observe a partial schedule.

        Args:
            therapist_id: Therapist ID
            data: Day of week -> slot ids, plus recurrence and capacity

        Returns:
            The created availability records
        """
        slot_map = await self.time_slots.get_slot_map()
        unknown = sorted(
            {slot_id for ids in data.schedule.values() for slot_id in ids if slot_id not in slot_map}
        )
        if unknown:
            raise BadRequestException(f"Time slots not found: {', '.join(unknown)}")

        now = datetime.now(UTC)
        rows = [
            {
                "id": str(uuid4()),
                "therapist_id": therapist_id,
                "day_of_week": weekday,
                "time_slot_id": slot_id,
                "status": AvailabilityStatus.AVAILABLE.value,
                "max_concurrent_clients": data.max_concurrent_clients,
                "recurring_pattern": data.recurring_pattern.value,
                "recurring_end_date": None,
                "notes": f"Recurring {data.recurring_pattern.value} schedule",
                "created_at": now,
                "updated_at": now,
            }
            for weekday, slot_ids in sorted(data.schedule.items())
            for slot_id in slot_ids
        ]

        try:
            await self.db.execute(
                delete(therapist_availability).where(
                    therapist_availability.c.therapist_id == therapist_id
                )
            )
            if rows:
                await self.db.execute(therapist_availability.insert(), rows)
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            logger.error("weekly_schedule_replace_failed", therapist_id=therapist_id)
            raise

        logger.info("weekly_schedule_replaced", therapist_id=therapist_id, records=len(rows))
        return [TherapistAvailability.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Schedule overrides
    # ------------------------------------------------------------------

    async def list_schedule_overrides(
        self,
        therapist_id: str,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> list[ScheduleOverride]:
        """Get schedule overrides for a therapist, optionally within a range."""
        stmt = select(schedule_overrides).where(schedule_overrides.c.therapist_id == therapist_id)
        if from_date:
            stmt = stmt.where(schedule_overrides.c.date >= from_date)
        if to_date:
            stmt = stmt.where(schedule_overrides.c.date <= to_date)

        result = await self.db.execute(
            stmt.order_by(schedule_overrides.c.date, schedule_overrides.c.id)
        )
        return [ScheduleOverride.model_validate(dict(row)) for row in result.mappings().all()]

    async def get_schedule_override(self, override_id: str) -> ScheduleOverride | None:
        """Get a single schedule override."""
        result = await self.db.execute(
            select(schedule_overrides).where(schedule_overrides.c.id == override_id)
        )
        row = result.mappings().first()
        return ScheduleOverride.model_validate(dict(row)) if row else None

    async def _validate_override_slots(self, slot_ids: list[str]) -> None:
        if not slot_ids:
            return
        slot_map = await self.time_slots.get_slot_map()
        unknown = [slot_id for slot_id in slot_ids if slot_id not in slot_map]
        if unknown:
            raise BadRequestException(f"Time slots not found: {', '.join(unknown)}")

    async def create_schedule_override(self, data: ScheduleOverrideCreate) -> ScheduleOverride:
        """Create a schedule override."""
        await self._validate_override_slots(data.affected_slots)

        now = datetime.now(UTC)
        values = {
            "id": str(uuid4()),
            "therapist_id": data.therapist_id,
            "date": data.date,
            "type": data.type.value,
            "affected_slots": data.affected_slots,
            "reason": data.reason,
            "is_recurring": data.is_recurring,
            "recurring_until": data.recurring_until,
            "notes": data.notes,
            "created_at": now,
            "updated_at": now,
        }
        await self.db.execute(schedule_overrides.insert().values(**values))
        await self.db.commit()

        logger.info(
            "schedule_override_created",
            therapist_id=data.therapist_id,
            date=data.date.isoformat(),
            override_type=data.type.value,
        )
        return ScheduleOverride.model_validate(values)

    async def update_schedule_override(
        self, override_id: str, data: ScheduleOverrideUpdate
    ) -> ScheduleOverride:
        """Update a schedule override."""
        existing = await self.get_schedule_override(override_id)
        if not existing:
            raise NotFoundException("Schedule override not found")

        changes = explicit_changes(data, CLEARABLE_OVERRIDE_FIELDS)
        merged = ScheduleOverride.model_validate({**existing.model_dump(), **changes})
        if merged.type == OverrideType.DAY_OFF:
            changes["affected_slots"] = []
        elif not merged.affected_slots:
            raise BadRequestException(
                f"{merged.type.value} overrides require at least one affected slot"
            )
        if merged.recurring_until and merged.recurring_until < merged.date:
            raise BadRequestException("recurring_until must not be before the override date")
        await self._validate_override_slots(changes.get("affected_slots") or [])

        updates = {
            field: value.value if isinstance(value, OverrideType) else value
            for field, value in changes.items()
        }
        updates["updated_at"] = datetime.now(UTC)
        await self.db.execute(
            update(schedule_overrides)
            .where(schedule_overrides.c.id == override_id)
            .values(**updates)
        )
        await self.db.commit()

        return ScheduleOverride.model_validate({**existing.model_dump(), **changes, **updates})

    async def delete_schedule_override(self, override_id: str) -> None:
        """Delete a schedule override."""
        result = await self.db.execute(
            delete(schedule_overrides).where(schedule_overrides.c.id == override_id)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFoundException("Schedule override not found")
        await self.db.commit()

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_availability_stats(
        self, therapist_id: str, from_date: date, to_date: date
    ) -> AvailabilityStats:
        """
        Availability counts across an inclusive date range.

        ``overridden_slots`` counts regular slots removed by overrides.
        """
        records = await self.get_therapist_availability(therapist_id)
        overrides = await self._fetch_overrides_in_range(therapist_id, from_date, to_date)

        total = available = overridden = day_off = 0
        for current in iter_dates(from_date, to_date):
            regular = regular_slots_for_date(records, current)
            applicable = overrides_for_date(overrides, current)
            effective = apply_overrides(regular, applicable)

            total += len(regular)
            available += len(effective)
            overridden += len(set(regular) - set(effective))
            if any(o.type == OverrideType.DAY_OFF for o in applicable):
                day_off += 1

        return AvailabilityStats(
            total_slots=total,
            available_slots=available,
            overridden_slots=overridden,
            day_off_count=day_off,
        )

    async def _fetch_overrides_in_range(
        self, therapist_id: str, from_date: date, to_date: date
    ) -> list[ScheduleOverride]:
        stmt = select(schedule_overrides).where(
            schedule_overrides.c.therapist_id == therapist_id,
            schedule_overrides.c.date <= to_date,
            or_(
                schedule_overrides.c.date >= from_date,
                and_(
                    schedule_overrides.c.is_recurring.is_(True),
                    or_(
                        schedule_overrides.c.recurring_until.is_(None),
                        schedule_overrides.c.recurring_until >= from_date,
                    ),
                ),
            ),
        )
        result = await self.db.execute(stmt)
        return [ScheduleOverride.model_validate(dict(row)) for row in result.mappings().all()]
