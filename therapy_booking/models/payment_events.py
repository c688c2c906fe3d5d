"""Processed payment webhook events (durable idempotency keys)."""

from sqlalchemy import Column, DateTime, String, Table, func

from therapy_booking.models.base import metadata

processed_payment_events = Table(
    "processed_payment_events",
    metadata,
    Column("event_id", String(255), primary_key=True),
    Column("transaction_id", String(255), nullable=False),
    Column("status", String(20), nullable=False),
    Column("processed_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
