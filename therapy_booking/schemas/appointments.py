"""Appointment and booking schemas for request/response validation."""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from therapy_booking.core.timezones import ensure_utc


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class SessionType(str, Enum):
    """Session type enumeration."""

    INDIVIDUAL = "individual"
    GROUP = "group"
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow_up"


class DeliveryType(str, Enum):
    """Session delivery enumeration."""

    VIDEO = "video"
    PHONE = "phone"
    IN_PERSON = "in_person"


class PaymentStatus(str, Enum):
    """Payment status enumeration."""

    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class ConflictType(str, Enum):
    """Reason a booking cannot proceed."""

    OVERLAP = "overlap"
    UNAVAILABLE = "unavailable"
    TOO_ADVANCE = "too_advance"
    TOO_SOON = "too_soon"


# ============================================================================
# Appointment
# ============================================================================


class SessionDetails(BaseModel):
    """Session part of an appointment."""

    type: SessionType
    delivery_type: DeliveryType = DeliveryType.VIDEO
    channel_id: str | None = None


class PaymentDetails(BaseModel):
    """Payment part of an appointment."""

    amount: float
    currency: str
    status: PaymentStatus
    transaction_id: str | None = None
    method: str | None = None


class Appointment(BaseModel):
    """Appointment response schema."""

    id: str
    therapist_id: str
    client_id: str
    scheduled_for: datetime
    slot_date: date
    time_slot_id: str
    duration: int
    status: AppointmentStatus
    session: SessionDetails
    payment: PaymentDetails
    client_notes: str | None = None
    internal_notes: str | None = None
    cancellation_reason: str | None = None
    rescheduled_from: str | None = None
    previous_scheduled_for: datetime | None = None
    previous_time_slot_id: str | None = None
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict) -> "Appointment":
        """Build an appointment from an ``appointments`` row mapping."""

        def aware(value: datetime | None) -> datetime | None:
            return ensure_utc(value) if value else None

        return cls(
            id=row["id"],
            therapist_id=row["therapist_id"],
            client_id=row["client_id"],
            scheduled_for=ensure_utc(row["scheduled_for"]),
            slot_date=row["slot_date"],
            time_slot_id=row["time_slot_id"],
            duration=row["duration"],
            status=row["status"],
            session=SessionDetails(
                type=row["session_type"],
                delivery_type=row["delivery_type"],
                channel_id=row["channel_id"],
            ),
            payment=PaymentDetails(
                amount=row["payment_amount"],
                currency=row["payment_currency"],
                status=row["payment_status"],
                transaction_id=row["payment_transaction_id"],
                method=row["payment_method"],
            ),
            client_notes=row["client_notes"],
            internal_notes=row["internal_notes"],
            cancellation_reason=row["cancellation_reason"],
            rescheduled_from=row["rescheduled_from"],
            previous_scheduled_for=aware(row["previous_scheduled_for"]),
            previous_time_slot_id=row["previous_time_slot_id"],
            confirmed_at=aware(row["confirmed_at"]),
            completed_at=aware(row["completed_at"]),
            cancelled_at=aware(row["cancelled_at"]),
            created_at=aware(row["created_at"]),
            updated_at=aware(row["updated_at"]),
        )


# ============================================================================
# Booking
# ============================================================================


class BookingRequest(BaseModel):
    """A client's request to book a slot with a therapist.

    ``date`` is the calendar date in the therapist's timezone.
    """

    therapist_id: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    time_slot_id: str = Field(..., min_length=1)
    date: date
    duration: int = Field(..., gt=0, le=24 * 60)
    session_type: SessionType = SessionType.INDIVIDUAL
    delivery_type: DeliveryType = DeliveryType.VIDEO
    client_notes: str | None = Field(None, max_length=2000)


class PaymentReference(BaseModel):
    """Verified payment supplied by the payment subsystem."""

    transaction_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3)
    status: PaymentStatus
    method: str = "card"

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        """Store currency codes in lower case."""
        return v.lower()


class BookingCreate(BaseModel):
    """Booking request body sent by the client application."""

    therapist_id: str = Field(..., min_length=1)
    time_slot_id: str = Field(..., min_length=1)
    date: date
    duration: int = Field(..., gt=0, le=24 * 60)
    session_type: SessionType = SessionType.INDIVIDUAL
    delivery_type: DeliveryType = DeliveryType.VIDEO
    client_notes: str | None = Field(None, max_length=2000)
    client_id: str | None = Field(None, description="Admins may book on behalf of a client")
    payment: PaymentReference | None = None


class BookingConflict(BaseModel):
    """A structured reason a booking cannot proceed."""

    type: ConflictType
    message: str
    conflicting_appointment: Appointment | None = None


class BookingResult(BaseModel):
    """Outcome of a create or reschedule operation."""

    success: bool
    appointment_id: str | None = None
    conflicts: list[BookingConflict] = Field(default_factory=list)
    error: str | None = None


class RescheduleRequest(BaseModel):
    """Schema for moving an appointment to a new slot."""

    time_slot_id: str = Field(..., min_length=1)
    date: date
    duration: int | None = Field(None, gt=0, le=24 * 60)


class AppointmentCancel(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str = Field(..., min_length=1, max_length=1000)


class AppointmentStatusUpdate(BaseModel):
    """Schema for updating appointment status."""

    status: AppointmentStatus
    reason: str | None = Field(None, max_length=1000)


class AppointmentStats(BaseModel):
    """Appointment counts per status for one participant."""

    total: int = 0
    pending: int = 0
    confirmed: int = 0
    in_progress: int = 0
    completed: int = 0
    cancelled: int = 0
    no_show: int = 0
