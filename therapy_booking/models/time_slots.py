"""Time slot catalog table using SQLAlchemy Core."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    String,
    Table,
    func,
)

from therapy_booking.models.base import metadata

time_slots = Table(
    "time_slots",
    metadata,
    Column("id", String(36), primary_key=True),
    # Local wall-clock bounds, HH:MM
    Column("start_time", String(5), nullable=False),
    Column("end_time", String(5), nullable=False),
    Column("duration", Integer, nullable=False),
    Column("display_name", String(50), nullable=False),
    Column("is_standard", Boolean, nullable=False, server_default="1"),
    Column("sort_order", Integer, nullable=False, server_default="0", index=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint("duration > 0", name="time_slots_duration_check"),
)
