"""Therapist practice and scheduling profile table."""

from sqlalchemy import Column, DateTime, Integer, Numeric, String, Table, func

from therapy_booking.models.base import metadata

therapist_profiles = Table(
    "therapist_profiles",
    metadata,
    Column("therapist_id", String(128), primary_key=True),
    # Practice
    Column("hourly_rate", Numeric(10, 2, asdecimal=False), nullable=False, server_default="0"),
    Column("currency", String(3), nullable=False, server_default="usd"),
    # Availability settings
    Column("timezone", String(64), nullable=False, server_default="UTC"),
    Column("buffer_minutes", Integer, nullable=False, server_default="15"),
    Column("max_daily_hours", Integer, nullable=False, server_default="10"),
    Column("advance_booking_days", Integer, nullable=False, server_default="90"),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
