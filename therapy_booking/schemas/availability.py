"""Availability and schedule override schemas."""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


class AvailabilityStatus(str, Enum):
    """Availability record status."""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class RecurringPatternType(str, Enum):
    """Recurrence of a weekly availability record."""

    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class OverrideType(str, Enum):
    """Kind of date-specific schedule override."""

    DAY_OFF = "day_off"
    TIME_OFF = "time_off"
    CUSTOM_HOURS = "custom_hours"


# ============================================================================
# Weekly availability
# ============================================================================


class AvailabilityBase(BaseModel):
    """Base schema for a weekly availability record."""

    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday, 6 = Saturday")
    time_slot_id: str = Field(..., min_length=1)
    status: AvailabilityStatus = AvailabilityStatus.AVAILABLE
    max_concurrent_clients: int = Field(default=1, ge=1)
    recurring_pattern: RecurringPatternType = RecurringPatternType.WEEKLY
    recurring_end_date: date | None = None
    notes: str | None = Field(None, max_length=500)


class AvailabilityCreate(AvailabilityBase):
    """Schema for creating an availability record."""

    therapist_id: str = Field(..., min_length=1)


class AvailabilityUpdate(BaseModel):
    """Schema for updating an availability record."""

    day_of_week: int | None = Field(None, ge=0, le=6)
    time_slot_id: str | None = None
    status: AvailabilityStatus | None = None
    max_concurrent_clients: int | None = Field(None, ge=1)
    recurring_end_date: date | None = None
    notes: str | None = Field(None, max_length=500)


class TherapistAvailability(AvailabilityBase):
    """Availability record response."""

    id: str
    therapist_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class WeeklyScheduleUpdate(BaseModel):
    """Replacement weekly schedule: day of week -> slot ids."""

    schedule: dict[int, list[str]]
    recurring_pattern: RecurringPatternType = RecurringPatternType.WEEKLY
    max_concurrent_clients: int = Field(default=1, ge=1)

    @field_validator("schedule")
    @classmethod
    def validate_days(cls, v: dict[int, list[str]]) -> dict[int, list[str]]:
        """Validate day keys and drop duplicate slot ids per day."""
        cleaned: dict[int, list[str]] = {}
        for day, slot_ids in v.items():
            if day < 0 or day > 6:
                raise ValueError("Day of week must be between 0 (Sunday) and 6 (Saturday)")
            cleaned[day] = list(dict.fromkeys(slot_ids))
        return cleaned


# ============================================================================
# Schedule overrides
# ============================================================================


class ScheduleOverrideBase(BaseModel):
    """Base schema for a schedule override."""

    type: OverrideType
    affected_slots: list[str] = Field(default_factory=list)
    reason: str = Field(default="", max_length=500)
    is_recurring: bool = False
    recurring_until: date | None = None
    notes: str | None = Field(None, max_length=500)


class ScheduleOverrideRequest(ScheduleOverrideBase):
    """Schedule override as submitted for a therapist."""

    date: date

    @model_validator(mode="after")
    def validate_slots_for_type(self) -> "ScheduleOverrideRequest":
        """Partial-day overrides need slots; a day off carries none."""
        if self.type == OverrideType.DAY_OFF:
            self.affected_slots = []
        elif not self.affected_slots:
            raise ValueError(f"{self.type.value} overrides require at least one affected slot")
        self.affected_slots = list(dict.fromkeys(self.affected_slots))
        if self.recurring_until and self.recurring_until < self.date:
            raise ValueError("recurring_until must not be before the override date")
        return self


class ScheduleOverrideCreate(ScheduleOverrideRequest):
    """Schema for creating a schedule override."""

    therapist_id: str = Field(..., min_length=1)


class ScheduleOverrideUpdate(BaseModel):
    """Schema for updating a schedule override."""

    type: OverrideType | None = None
    affected_slots: list[str] | None = None
    reason: str | None = Field(None, max_length=500)
    is_recurring: bool | None = None
    recurring_until: date | None = None
    notes: str | None = Field(None, max_length=500)


class ScheduleOverride(ScheduleOverrideBase):
    """Schedule override response."""

    id: str
    therapist_id: str
    date: date
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


# ============================================================================
# Resolution results
# ============================================================================


class ProjectedSlotTime(BaseModel):
    """An effective slot reprojected onto the client's wall clock."""

    time_slot_id: str
    local_date: date
    local_start_time: str
    local_end_time: str
    display_time: str


class AvailabilityResolution(BaseModel):
    """Effective availability of a therapist on one therapist-local date."""

    therapist_id: str
    date: date
    regular_slots: list[str]
    overrides: list[ScheduleOverride]
    effective_slots: list[str]
    projected_slots: list[ProjectedSlotTime] = Field(default_factory=list)


class AvailabilityStats(BaseModel):
    """Availability counts across a date range."""

    total_slots: int
    available_slots: int
    overridden_slots: int
    day_off_count: int
