"""Tests for payment status events."""

import pytest

from conftest import fixed_clock, make_request
from therapy_booking.schemas.appointments import AppointmentStatus, PaymentReference, PaymentStatus
from therapy_booking.services.booking_service import BookingService
from therapy_booking.services.payment_event_service import PaymentEventService


@pytest.fixture
def payment_events(db_session):
    return PaymentEventService(db_session, clock=fixed_clock)


@pytest.fixture
def booking_service(db_session):
    return BookingService(db_session, clock=fixed_clock)


async def paid_booking(booking_service, slot_id, transaction_id="pi_100") -> str:
    payment = PaymentReference(
        transaction_id=transaction_id, amount=120, currency="usd", status=PaymentStatus.PAID
    )
    result = await booking_service.create_appointment(make_request(slot_id), payment)
    assert result.success
    return result.appointment_id


@pytest.mark.asyncio
async def test_failed_payment_cancels_appointment(
    payment_events, booking_service, time_slots, weekly_schedule
):
    appointment_id = await paid_booking(booking_service, time_slots[0].id)

    result = await payment_events.apply_payment_status(
        "pi_100", PaymentStatus.FAILED, event_id="evt_1", reason="Card declined"
    )

    assert result.applied is True
    assert result.appointment_id == appointment_id

    appointment = await booking_service.get_appointment(appointment_id)
    assert appointment.status == AppointmentStatus.CANCELLED
    assert appointment.payment.status == PaymentStatus.FAILED
    assert appointment.cancellation_reason == "Card declined"
    assert appointment.cancelled_at == fixed_clock()


@pytest.mark.asyncio
async def test_replayed_event_is_ignored(payment_events, booking_service, time_slots, weekly_schedule):
    appointment_id = await paid_booking(booking_service, time_slots[0].id)

    first = await payment_events.apply_payment_status("pi_100", PaymentStatus.REFUNDED, event_id="evt_2")
    replay = await payment_events.apply_payment_status("pi_100", PaymentStatus.FAILED, event_id="evt_2")

    assert first.applied is True
    assert replay.applied is False
    assert replay.duplicate is True
    assert replay.appointment_id == appointment_id

    appointment = await booking_service.get_appointment(appointment_id)
    assert appointment.payment.status == PaymentStatus.REFUNDED
    assert appointment.status == AppointmentStatus.PENDING


@pytest.mark.asyncio
async def test_unknown_transaction(payment_events, weekly_schedule):
    result = await payment_events.apply_payment_status("pi_missing", PaymentStatus.PAID, event_id="evt_3")

    assert result.applied is False
    assert result.duplicate is False
    assert result.appointment_id is None


@pytest.mark.asyncio
async def test_events_without_id_always_apply(
    payment_events, booking_service, time_slots, weekly_schedule
):
    appointment_id = await paid_booking(booking_service, time_slots[0].id)

    assert (await payment_events.apply_payment_status("pi_100", PaymentStatus.REFUNDED)).applied
    assert (await payment_events.apply_payment_status("pi_100", PaymentStatus.PAID)).applied

    appointment = await booking_service.get_appointment(appointment_id)
    assert appointment.payment.status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_failed_payment_after_completion_keeps_status(
    payment_events, booking_service, time_slots, weekly_schedule
):
    """Only pending or confirmed appointments are cancelled by a failed payment."""
    appointment_id = await paid_booking(booking_service, time_slots[0].id)
    for status in (
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
    ):
        await booking_service.update_appointment_status(appointment_id, status)

    await payment_events.apply_payment_status("pi_100", PaymentStatus.FAILED, event_id="evt_4")

    appointment = await booking_service.get_appointment(appointment_id)
    assert appointment.status == AppointmentStatus.COMPLETED
    assert appointment.payment.status == PaymentStatus.FAILED
