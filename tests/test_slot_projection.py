"""Tests for slot projection, calendar counts and slot search."""

from datetime import UTC, date, datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from conftest import MONDAY, SUNDAY, THERAPIST_ID, TUESDAY, fixed_clock, make_request
from therapy_booking.core.exceptions import AvailabilityLookupError, BadRequestException
from therapy_booking.schemas.availability import OverrideType, ScheduleOverrideCreate
from therapy_booking.schemas.slots import SlotCalculationOptions, SlotSearchCriteria
from therapy_booking.services.availability_service import AvailabilityService
from therapy_booking.services.booking_service import BookingService
from therapy_booking.services.slot_projection_service import SlotProjectionService


@pytest.fixture
def projection(db_session):
    return SlotProjectionService(db_session, clock=fixed_clock)


def monday_to_tuesday(**kwargs) -> SlotCalculationOptions:
    return SlotCalculationOptions(start_date=MONDAY, end_date=TUESDAY, **kwargs)


async def book(db_session, slot_id, slot_date=MONDAY):
    result = await BookingService(db_session, clock=fixed_clock).create_appointment(
        make_request(slot_id, slot_date)
    )
    assert result.success
    return result.appointment_id


@pytest.mark.asyncio
async def test_calculate_available_slots(projection, db_session, time_slots, weekly_schedule):
    await book(db_session, time_slots[1].id)

    result = await projection.calculate_available_slots(THERAPIST_ID, monday_to_tuesday())

    assert result.total_slots == 6
    assert result.booked_slots == 1
    assert result.is_complete

    first = result.slots[0]
    assert first.date == MONDAY
    assert first.starts_at == datetime(2026, 3, 9, 9, 0, tzinfo=UTC)
    assert first.ends_at == datetime(2026, 3, 9, 10, 0, tzinfo=UTC)
    assert first.price == 120
    assert first.currency == "usd"
    assert first.buffer_time == 15
    assert first.display_time == "9:00 AM - 10:00 AM"
    assert first.is_override is False

    booked = [slot for slot in result.slots if slot.is_booked]
    assert [(slot.date, slot.time_slot_id, slot.booked_count) for slot in booked] == [
        (MONDAY, time_slots[1].id, 1)
    ]


@pytest.mark.asyncio
async def test_slots_inside_minimum_notice_are_dropped(db_session, time_slots, weekly_schedule):
    service = SlotProjectionService(
        db_session, clock=lambda: datetime(2026, 3, 9, 8, 0, tzinfo=UTC)
    )

    result = await service.calculate_available_slots(THERAPIST_ID, monday_to_tuesday())

    assert {slot.date for slot in result.slots} == {TUESDAY}
    assert result.total_slots == 3


@pytest.mark.asyncio
async def test_client_timezone_display(projection, time_slots, weekly_schedule):
    result = await projection.calculate_available_slots(
        THERAPIST_ID, monday_to_tuesday(client_timezone="Asia/Tokyo")
    )

    first = result.slots[0]
    assert first.client_timezone == "Asia/Tokyo"
    assert first.therapist_timezone == "UTC"
    assert first.local_start_time == "18:00"
    assert first.display_time == "6:00 PM - 7:00 PM"


@pytest.mark.asyncio
async def test_duration_filter(projection, time_slots, weekly_schedule):
    result = await projection.calculate_available_slots(THERAPIST_ID, monday_to_tuesday(duration=30))

    assert result.slots == []


@pytest.mark.asyncio
async def test_custom_hours_are_flagged(projection, db_session, time_slots, weekly_schedule):
    await AvailabilityService(db_session).create_schedule_override(
        ScheduleOverrideCreate(
            therapist_id=THERAPIST_ID,
            date=MONDAY,
            type=OverrideType.CUSTOM_HOURS,
            affected_slots=[time_slots[6].id],
        )
    )

    result = await projection.calculate_available_slots(
        THERAPIST_ID, SlotCalculationOptions(start_date=MONDAY, end_date=MONDAY)
    )

    assert [(slot.time_slot_id, slot.is_override) for slot in result.slots] == [
        (time_slots[6].id, True)
    ]


@pytest.mark.asyncio
async def test_failed_date_is_reported_incomplete(
    projection, time_slots, weekly_schedule, monkeypatch
):
    real_lookup = projection.availability.get_availability_for_date

    async def flaky(therapist_id, target, *args, **kwargs):
        if target == MONDAY:
            raise AvailabilityLookupError("Failed to calculate availability for date")
        return await real_lookup(therapist_id, target, *args, **kwargs)

    monkeypatch.setattr(projection.availability, "get_availability_for_date", flaky)

    result = await projection.calculate_available_slots(THERAPIST_ID, monday_to_tuesday())

    assert result.incomplete_dates == [MONDAY]
    assert not result.is_complete
    assert {slot.date for slot in result.slots} == {TUESDAY}


@pytest.mark.asyncio
async def test_slots_for_several_therapists_skip_failures(
    projection, time_slots, weekly_schedule, monkeypatch
):
    real_profile = projection.profiles.get_profile

    async def get_profile(therapist_id):
        if therapist_id == "therapist-broken":
            raise OperationalError("SELECT", {}, Exception("connection reset"))
        return await real_profile(therapist_id)

    monkeypatch.setattr(projection.profiles, "get_profile", get_profile)

    results = await projection.get_available_slots_for_therapists(
        [THERAPIST_ID, "therapist-broken", "therapist-idle"], monday_to_tuesday()
    )

    assert [r.therapist_id for r in results] == [THERAPIST_ID, "therapist-idle"]
    assert results[0].total_slots == 6
    assert results[1].slots == []


@pytest.mark.asyncio
async def test_range_limit(projection, weekly_schedule):
    options = SlotCalculationOptions(start_date=MONDAY, end_date=MONDAY + timedelta(days=92))

    with pytest.raises(BadRequestException):
        await projection.calculate_available_slots(THERAPIST_ID, options)


@pytest.mark.asyncio
async def test_available_date_counts(projection, db_session, time_slots, weekly_schedule):
    await book(db_session, time_slots[0].id)

    counts = await projection.get_available_date_counts(
        THERAPIST_ID, SlotCalculationOptions(start_date=SUNDAY, end_date=TUESDAY)
    )

    assert [(c.date, c.available_slots) for c in counts] == [(MONDAY, 2), (TUESDAY, 3)]


@pytest.mark.asyncio
async def test_list_slots_for_client_date_across_midnight(projection, time_slots, weekly_schedule):
    """In Auckland the 11:00 UTC slot starts at midnight the next day."""
    monday = await projection.list_slots_for_date(THERAPIST_ID, MONDAY, "Pacific/Auckland")
    tuesday = await projection.list_slots_for_date(THERAPIST_ID, TUESDAY, "Pacific/Auckland")

    assert [slot.local_start_time for slot in monday] == ["22:00", "23:00"]
    assert [slot.local_start_time for slot in tuesday] == ["00:00", "22:00", "23:00"]
    assert tuesday[0].date == MONDAY


@pytest.mark.asyncio
async def test_next_available_slot(projection, db_session, time_slots, weekly_schedule):
    await book(db_session, time_slots[0].id)

    slot = await projection.get_next_available_slot(THERAPIST_ID)

    assert slot.date == MONDAY
    assert slot.time_slot_id == time_slots[1].id


@pytest.mark.asyncio
async def test_next_available_slot_without_schedule(projection, time_slots):
    assert await projection.get_next_available_slot("therapist-2") is None


@pytest.mark.asyncio
async def test_check_slot_availability(projection, db_session, time_slots, weekly_schedule):
    appointment_id = await book(db_session, time_slots[0].id)

    taken = await projection.check_slot_availability(THERAPIST_ID, time_slots[0].id, MONDAY)
    assert taken.available is False
    assert taken.reason == "Time slot is already booked"
    assert taken.conflicting_appointment_id == appointment_id

    off_schedule = await projection.check_slot_availability(THERAPIST_ID, time_slots[0].id, SUNDAY)
    assert off_schedule.reason == "Time slot is not available on this date"

    free = await projection.check_slot_availability(THERAPIST_ID, time_slots[1].id, MONDAY)
    assert free.available is True


@pytest.mark.asyncio
async def test_find_matching_slots(projection, db_session, time_slots, weekly_schedule):
    """New York mornings (06:00 to noon) on a Tuesday."""
    criteria = SlotSearchCriteria(
        therapist_ids=[THERAPIST_ID, "therapist-2"],
        start_date=MONDAY,
        end_date=TUESDAY,
        time_preferences=["morning"],
        day_preferences=[2],
        client_timezone="America/New_York",
    )

    result = await projection.find_matching_slots(criteria)

    assert result.total_found == 2
    assert [slot.local_start_time for slot in result.slots] == ["06:00", "07:00"]
    assert all(slot.local_date == TUESDAY for slot in result.slots)
    assert result.incomplete_therapists == []

    capped = await projection.find_matching_slots(criteria.model_copy(update={"max_results": 1}))
    assert capped.total_found == 2
    assert len(capped.slots) == 1


@pytest.mark.asyncio
async def test_find_matching_slots_skips_booked(projection, db_session, time_slots, weekly_schedule):
    await book(db_session, time_slots[0].id, TUESDAY)

    result = await projection.find_matching_slots(
        SlotSearchCriteria(therapist_ids=[THERAPIST_ID], start_date=TUESDAY, end_date=TUESDAY)
    )

    assert [slot.time_slot_id for slot in result.slots] == [t.id for t in time_slots[1:3]]


def test_search_criteria_validation():
    with pytest.raises(ValueError):
        SlotSearchCriteria(
            therapist_ids=[THERAPIST_ID],
            start_date=MONDAY,
            end_date=MONDAY,
            time_preferences=["midnight"],
        )

    with pytest.raises(ValueError):
        SlotCalculationOptions(start_date=TUESDAY, end_date=date(2026, 3, 1))
