"""Payment event schemas."""

from pydantic import BaseModel, Field

from therapy_booking.schemas.appointments import PaymentStatus


class PaymentEvent(BaseModel):
    """Payment status change forwarded by the payment subsystem."""

    event_id: str | None = Field(None, max_length=255)
    transaction_id: str = Field(..., min_length=1, max_length=255)
    status: PaymentStatus
    reason: str | None = Field(None, max_length=500)


class PaymentEventResult(BaseModel):
    """Outcome of applying a payment event."""

    applied: bool
    duplicate: bool = False
    appointment_id: str | None = None
