"""Therapist availability and schedule override tables."""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)

from therapy_booking.models.base import metadata

# One row per (therapist, day of week, time slot)
therapist_availability = Table(
    "therapist_availability",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("therapist_id", String(128), nullable=False, index=True),
    Column("day_of_week", Integer, nullable=False),
    Column("time_slot_id", String(36), ForeignKey("time_slots.id"), nullable=False),
    Column("status", String(20), nullable=False, server_default="available"),
    Column("max_concurrent_clients", Integer, nullable=False, server_default="1"),
    Column("recurring_pattern", String(20), nullable=False, server_default="weekly"),
    Column("recurring_end_date", Date, nullable=True),
    Column("notes", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    UniqueConstraint(
        "therapist_id",
        "day_of_week",
        "time_slot_id",
        name="uq_therapist_availability_day_slot",
    ),
    CheckConstraint("day_of_week BETWEEN 0 AND 6", name="therapist_availability_day_check"),
    CheckConstraint(
        "status IN ('available', 'unavailable')",
        name="therapist_availability_status_check",
    ),
    CheckConstraint(
        "recurring_pattern IN ('weekly', 'biweekly', 'monthly')",
        name="therapist_availability_pattern_check",
    ),
    CheckConstraint(
        "max_concurrent_clients >= 1",
        name="therapist_availability_capacity_check",
    ),
)

# Date-specific exceptions layered over the weekly pattern
schedule_overrides = Table(
    "schedule_overrides",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("therapist_id", String(128), nullable=False),
    Column("date", Date, nullable=False),
    Column("type", String(20), nullable=False),
    Column("affected_slots", JSON, nullable=False, default=list),
    Column("reason", Text, nullable=False, server_default=""),
    Column("is_recurring", Boolean, nullable=False, server_default="0"),
    Column("recurring_until", Date, nullable=True),
    Column("notes", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint(
        "type IN ('day_off', 'time_off', 'custom_hours')",
        name="schedule_overrides_type_check",
    ),
    Index("idx_schedule_overrides_therapist_date", "therapist_id", "date"),
)
