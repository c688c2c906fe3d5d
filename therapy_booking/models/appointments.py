"""Appointment and booking guard tables using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    func,
)

from therapy_booking.models.base import metadata

appointments = Table(
    "appointments",
    metadata,
    Column("id", String(36), primary_key=True),
    # Participants
    Column("therapist_id", String(128), nullable=False),
    Column("client_id", String(128), nullable=False, index=True),
    # Schedule
    Column("scheduled_for", DateTime(timezone=True), nullable=False),
    # Therapist-local calendar date the slot belongs to
    Column("slot_date", Date, nullable=False),
    Column("time_slot_id", String(36), nullable=False),
    Column("duration", Integer, nullable=False),
    # Status management
    Column("status", String(20), nullable=False, server_default="pending"),
    # Session
    Column("session_type", String(20), nullable=False, server_default="individual"),
    Column("delivery_type", String(20), nullable=False, server_default="video"),
    Column("channel_id", String(100), nullable=True),
    # Payment
    Column("payment_amount", Numeric(10, 2, asdecimal=False), nullable=False, server_default="0"),
    Column("payment_currency", String(3), nullable=False, server_default="usd"),
    Column("payment_status", String(20), nullable=False, server_default="pending"),
    Column("payment_transaction_id", String(255), nullable=True, index=True),
    Column("payment_method", String(50), nullable=True),
    # Communication
    Column("client_notes", Text, nullable=True),
    Column("internal_notes", Text, nullable=True),
    Column("cancellation_reason", Text, nullable=True),
    # Reschedule history
    Column("rescheduled_from", String(36), nullable=True),
    Column("previous_scheduled_for", DateTime(timezone=True), nullable=True),
    Column("previous_time_slot_id", String(36), nullable=True),
    # Audit fields
    Column("confirmed_at", DateTime(timezone=True), nullable=True),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "session_type IN ('individual', 'group', 'consultation', 'follow_up')",
        name="appointments_session_type_check",
    ),
    CheckConstraint(
        "payment_status IN ('pending', 'paid', 'refunded', 'failed')",
        name="appointments_payment_status_check",
    ),
    Index("idx_appointments_therapist_slot", "therapist_id", "slot_date", "time_slot_id"),
    Index("idx_appointments_therapist_scheduled", "therapist_id", "scheduled_for"),
)

# Row updated by every booking transaction for a (therapist, date, slot);
# the update lock serializes concurrent writers on that slot.
slot_booking_guards = Table(
    "slot_booking_guards",
    metadata,
    Column("therapist_id", String(128), primary_key=True),
    Column("slot_date", Date, primary_key=True),
    Column("time_slot_id", String(36), primary_key=True),
    Column("version", Integer, nullable=False, server_default="0"),
)
