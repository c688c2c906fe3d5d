"""Time slot catalog schemas."""

from pydantic import BaseModel, Field, model_validator

from therapy_booking.core.timezones import HHMM_PATTERN, minutes_since_midnight


class TimeSlot(BaseModel):
    """A named, fixed-duration time-of-day interval."""

    id: str
    start_time: str
    end_time: str
    duration: int
    display_name: str
    is_standard: bool = True
    sort_order: int = 0

    model_config = {"from_attributes": True}


class TimeSlotCreate(BaseModel):
    """Schema for creating a catalog time slot."""

    start_time: str = Field(..., pattern=HHMM_PATTERN.pattern)
    end_time: str = Field(..., pattern=HHMM_PATTERN.pattern)
    duration: int = Field(..., gt=0, le=24 * 60)
    display_name: str | None = Field(None, max_length=50)
    is_standard: bool = True
    sort_order: int = 0

    @model_validator(mode="after")
    def validate_bounds(self) -> "TimeSlotCreate":
        """Validate that start precedes end and the duration matches."""
        start = minutes_since_midnight(self.start_time)
        end = minutes_since_midnight(self.end_time)
        if start >= end:
            raise ValueError("Start time must be before end time")
        if abs((end - start) - self.duration) > 1:
            raise ValueError("Duration doesn't match start and end times")
        return self


class GenerateTimeSlotsRequest(BaseModel):
    """Schema for generating evenly spaced standard slots."""

    start_time: str = Field(..., pattern=HHMM_PATTERN.pattern)
    end_time: str = Field(..., pattern=HHMM_PATTERN.pattern)
    interval_minutes: int = Field(default=60, gt=0)
    duration: int = Field(default=60, gt=0)
