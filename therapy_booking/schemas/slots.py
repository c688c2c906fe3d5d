"""Slot projection schemas for calendar and slot picker queries."""

from datetime import date, datetime

from pydantic import BaseModel, Field, model_validator

TIME_PREFERENCE_HOURS = {
    "morning": (6, 12),
    "afternoon": (12, 17),
    "evening": (17, 22),
}


class SlotCalculationOptions(BaseModel):
    """Range and display options for a slot projection."""

    start_date: date
    end_date: date
    client_timezone: str | None = None
    duration: int | None = Field(None, gt=0, description="Keep only slots of exactly this length")

    @model_validator(mode="after")
    def validate_range(self) -> "SlotCalculationOptions":
        """Validate that the range is not inverted."""
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TherapistSlotsRequest(SlotCalculationOptions):
    """Slot projection over the same range for several therapists."""

    therapist_ids: list[str] = Field(..., min_length=1, max_length=50)


class EnhancedSlot(BaseModel):
    """A bookable slot in display-ready form."""

    therapist_id: str
    time_slot_id: str
    date: date
    starts_at: datetime
    ends_at: datetime
    start_time: str
    end_time: str
    duration: int
    price: float
    currency: str
    is_booked: bool
    booked_count: int = 0
    therapist_timezone: str
    client_timezone: str
    local_date: date
    local_start_time: str
    local_end_time: str
    display_time: str
    buffer_time: int | None = None
    is_override: bool = False


class TherapistSlotsResult(BaseModel):
    """Projection of one therapist's slots across a date range."""

    therapist_id: str
    timezone: str
    slots: list[EnhancedSlot]
    total_slots: int
    booked_slots: int
    incomplete_dates: list[date] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.incomplete_dates


class SlotSearchCriteria(BaseModel):
    """Criteria for finding open slots across therapists."""

    therapist_ids: list[str] = Field(..., min_length=1)
    start_date: date
    end_date: date
    duration: int | None = Field(None, gt=0)
    time_preferences: list[str] = Field(default_factory=list)
    day_preferences: list[int] = Field(default_factory=list)
    client_timezone: str | None = None
    max_results: int | None = Field(None, ge=1, le=500)

    @model_validator(mode="after")
    def validate_preferences(self) -> "SlotSearchCriteria":
        """Validate range and preference values."""
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        unknown = [p for p in self.time_preferences if p not in TIME_PREFERENCE_HOURS]
        if unknown:
            raise ValueError(f"Unknown time preferences: {', '.join(unknown)}")
        if any(day < 0 or day > 6 for day in self.day_preferences):
            raise ValueError("Day preferences must be between 0 (Sunday) and 6 (Saturday)")
        return self


class SlotSearchResult(BaseModel):
    """Open slots matching search criteria."""

    slots: list[EnhancedSlot]
    total_found: int
    incomplete_therapists: list[str] = Field(default_factory=list)


class SlotAvailabilityCheck(BaseModel):
    """Quick availability verdict for a single slot."""

    available: bool
    reason: str | None = None
    conflicting_appointment_id: str | None = None


class DateSlotCount(BaseModel):
    """Number of open slots on a client-local date."""

    date: date
    available_slots: int
