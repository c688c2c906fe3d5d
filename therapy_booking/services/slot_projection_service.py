"""Display-ready slot projections for calendars, slot pickers and search."""

from collections import defaultdict
from collections.abc import Callable
from datetime import date, datetime, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_booking.config import Settings, settings as default_settings
from therapy_booking.core.exceptions import AvailabilityLookupError, BadRequestException
from therapy_booking.core.redis_client import CacheManager
from therapy_booking.core.timezones import (
    day_of_week,
    format_display_range,
    iter_dates,
    slot_bounds,
    to_zone,
    utc_now,
)
from therapy_booking.models.appointments import appointments
from therapy_booking.schemas.appointments import AppointmentStatus
from therapy_booking.schemas.availability import OverrideType
from therapy_booking.schemas.slots import (
    TIME_PREFERENCE_HOURS,
    DateSlotCount,
    EnhancedSlot,
    SlotAvailabilityCheck,
    SlotCalculationOptions,
    SlotSearchCriteria,
    SlotSearchResult,
    TherapistSlotsResult,
)
from therapy_booking.services.availability_service import AvailabilityService
from therapy_booking.services.profile_service import ProfileService
from therapy_booking.services.timeslot_service import TimeSlotService

logger = structlog.get_logger(__name__)


def matches_preferences(
    slot: EnhancedSlot, time_preferences: list[str], day_preferences: list[int]
) -> bool:
    """Whether a slot falls on a preferred client-local day and time of day."""
    if day_preferences and day_of_week(slot.local_date) not in day_preferences:
        return False
    if time_preferences:
        hour = int(slot.local_start_time.split(":")[0])
        return any(
            TIME_PREFERENCE_HOURS[name][0] <= hour < TIME_PREFERENCE_HOURS[name][1]
            for name in time_preferences
        )
    return True


class SlotProjectionService:
    """Turns effective availability into bookable, timezone-aware slots."""

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

    async def _booked_appointments(
        self, therapist_id: str, start_date: date, end_date: date
    ) -> dict[tuple[date, str], list[str]]:
        """Non-cancelled appointment ids keyed by (therapist-local date, slot)."""
        stmt = select(
            appointments.c.id, appointments.c.slot_date, appointments.c.time_slot_id
        ).where(
            appointments.c.therapist_id == therapist_id,
            appointments.c.slot_date >= start_date,
            appointments.c.slot_date <= end_date,
            appointments.c.status != AppointmentStatus.CANCELLED.value,
        )
        result = await self.db.execute(stmt.order_by(appointments.c.created_at))

        booked: dict[tuple[date, str], list[str]] = defaultdict(list)
        for row in result:
            booked[(row.slot_date, row.time_slot_id)].append(row.id)
        return booked

    async def calculate_available_slots(
        self, therapist_id: str, options: SlotCalculationOptions
    ) -> TherapistSlotsResult:
        """
        Project a therapist's slots across an inclusive range of therapist-local dates.

        Slots outside the booking window are dropped. A date whose
        availability cannot be read is skipped and reported in
        ``incomplete_dates``.

        Raises:
            BadRequestException: If the range is longer than allowed
        """
        days = (options.end_date - options.start_date).days + 1
        if days > self.settings.max_projection_days:
            raise BadRequestException(
                f"Date range cannot exceed {self.settings.max_projection_days} days"
            )

        profile = await self.profiles.get_profile(therapist_id)
        if profile:
            therapist_timezone = profile.availability.timezone
            price = profile.practice.hourly_rate
            currency = profile.practice.currency
            buffer_time = profile.availability.buffer_minutes
        else:
            therapist_timezone = self.settings.default_timezone
            price = 0.0
            currency = self.settings.default_currency
            buffer_time = None
        client_timezone = options.client_timezone or therapist_timezone

        slot_map = await self.time_slots.get_slot_map()
        booked = await self._booked_appointments(therapist_id, options.start_date, options.end_date)

        now = self.clock()
        earliest = now + timedelta(hours=self.settings.min_advance_booking_hours)
        latest = now + timedelta(days=self.settings.max_advance_booking_days)

        slots: list[EnhancedSlot] = []
        incomplete: list[date] = []

        for current in iter_dates(options.start_date, options.end_date):
            try:
                resolution = await self.availability.get_availability_for_date(
                    therapist_id, current
                )
            except AvailabilityLookupError as e:
                logger.warning(
                    "slot_projection_date_skipped",
                    therapist_id=therapist_id,
                    date=current.isoformat(),
                    error=str(e),
                )
                incomplete.append(current)
                continue

            custom_slots = {
                slot_id
                for override in resolution.overrides
                if override.type == OverrideType.CUSTOM_HOURS
                for slot_id in override.affected_slots
            }

            for slot_id in resolution.effective_slots:
                slot = slot_map.get(slot_id)
                if slot is None:
                    continue
                if options.duration and slot.duration != options.duration:
                    continue

                starts_at, ends_at = slot_bounds(
                    current, slot.start_time, slot.duration, therapist_timezone
                )
                if starts_at < earliest or starts_at > latest:
                    continue

                booked_ids = booked.get((current, slot_id), [])
                local_start = to_zone(starts_at, client_timezone)
                local_end = to_zone(ends_at, client_timezone)

                slots.append(
                    EnhancedSlot(
                        therapist_id=therapist_id,
                        time_slot_id=slot_id,
                        date=current,
                        starts_at=starts_at,
                        ends_at=ends_at,
                        start_time=slot.start_time,
                        end_time=slot.end_time,
                        duration=slot.duration,
                        price=price,
                        currency=currency,
                        is_booked=bool(booked_ids),
                        booked_count=len(booked_ids),
                        therapist_timezone=therapist_timezone,
                        client_timezone=client_timezone,
                        local_date=local_start.date(),
                        local_start_time=local_start.strftime("%H:%M"),
                        local_end_time=local_end.strftime("%H:%M"),
                        display_time=format_display_range(local_start, local_end),
                        buffer_time=buffer_time,
                        is_override=slot_id in custom_slots,
                    )
                )

        if incomplete:
            logger.warning(
                "slot_projection_incomplete",
                therapist_id=therapist_id,
                incomplete_dates=[d.isoformat() for d in incomplete],
            )

        return TherapistSlotsResult(
            therapist_id=therapist_id,
            timezone=therapist_timezone,
            slots=slots,
            total_slots=len(slots),
            booked_slots=sum(1 for slot in slots if slot.is_booked),
            incomplete_dates=incomplete,
        )

    async def get_available_date_counts(
        self, therapist_id: str, options: SlotCalculationOptions
    ) -> list[DateSlotCount]:
        """Open slot count per client-local date, for calendar rendering."""
        result = await self.calculate_available_slots(therapist_id, options)

        counts: dict[date, int] = defaultdict(int)
        for slot in result.slots:
            if not slot.is_booked:
                counts[slot.local_date] += 1

        return [DateSlotCount(date=day, available_slots=count) for day, count in sorted(counts.items())]

    async def list_slots_for_date(
        self, therapist_id: str, target: date, client_timezone: str | None = None
    ) -> list[EnhancedSlot]:
        """Slots whose client-local start falls on ``target``, booked ones included."""
        # A client-local day can span two therapist-local dates.
        options = SlotCalculationOptions(
            start_date=target - timedelta(days=1),
            end_date=target + timedelta(days=1),
            client_timezone=client_timezone,
        )
        result = await self.calculate_available_slots(therapist_id, options)
        return sorted(
            (slot for slot in result.slots if slot.local_date == target),
            key=lambda slot: slot.starts_at,
        )

    async def get_next_available_slot(
        self,
        therapist_id: str,
        from_date: date | None = None,
        client_timezone: str | None = None,
    ) -> EnhancedSlot | None:
        """Earliest unbooked slot within the booking window."""
        start = from_date or self.clock().date()
        horizon = min(self.settings.max_advance_booking_days, self.settings.max_projection_days - 1)
        options = SlotCalculationOptions(
            start_date=start,
            end_date=start + timedelta(days=horizon),
            client_timezone=client_timezone,
        )
        result = await self.calculate_available_slots(therapist_id, options)
        open_slots = [slot for slot in result.slots if not slot.is_booked]
        return min(open_slots, key=lambda slot: slot.starts_at) if open_slots else None

    async def check_slot_availability(
        self, therapist_id: str, time_slot_id: str, target: date
    ) -> SlotAvailabilityCheck:
        """Quick verdict on whether one slot can be booked."""
        try:
            resolution = await self.availability.get_availability_for_date(therapist_id, target)
            if time_slot_id not in resolution.effective_slots:
                return SlotAvailabilityCheck(
                    available=False, reason="Time slot is not available on this date"
                )

            booked = await self._booked_appointments(therapist_id, target, target)
        except (AvailabilityLookupError, SQLAlchemyError) as e:
            logger.error(
                "slot_availability_check_failed",
                therapist_id=therapist_id,
                time_slot_id=time_slot_id,
                error=str(e),
            )
            return SlotAvailabilityCheck(
                available=False, reason="Unable to verify availability at this time"
            )

        booked_ids = booked.get((target, time_slot_id))
        if booked_ids:
            return SlotAvailabilityCheck(
                available=False,
                reason="Time slot is already booked",
                conflicting_appointment_id=booked_ids[0],
            )
        return SlotAvailabilityCheck(available=True)

    async def get_available_slots_for_therapists(
        self, therapist_ids: list[str], options: SlotCalculationOptions
    ) -> list[TherapistSlotsResult]:
        """Slot projections for several therapists; failing therapists are skipped."""
        results = []
        for therapist_id in therapist_ids:
            try:
                results.append(await self.calculate_available_slots(therapist_id, options))
            except (AvailabilityLookupError, SQLAlchemyError) as e:
                logger.error(
                    "therapist_slot_projection_failed", therapist_id=therapist_id, error=str(e)
                )
        return results

    async def find_matching_slots(self, criteria: SlotSearchCriteria) -> SlotSearchResult:
        """Open slots across therapists that match day and time-of-day preferences."""
        options = SlotCalculationOptions(
            start_date=criteria.start_date,
            end_date=criteria.end_date,
            client_timezone=criteria.client_timezone,
            duration=criteria.duration,
        )

        matches: list[EnhancedSlot] = []
        incomplete: list[str] = []
        for therapist_id in criteria.therapist_ids:
            try:
                result = await self.calculate_available_slots(therapist_id, options)
            except (AvailabilityLookupError, SQLAlchemyError) as e:
                logger.error("slot_search_failed", therapist_id=therapist_id, error=str(e))
                incomplete.append(therapist_id)
                continue

            if result.incomplete_dates:
                incomplete.append(therapist_id)
            matches.extend(
                slot
                for slot in result.slots
                if not slot.is_booked
                and matches_preferences(slot, criteria.time_preferences, criteria.day_preferences)
            )

        matches.sort(key=lambda slot: (slot.starts_at, slot.therapist_id))
        total_found = len(matches)
        if criteria.max_results:
            matches = matches[: criteria.max_results]

        return SlotSearchResult(
            slots=matches, total_found=total_found, incomplete_therapists=incomplete
        )
