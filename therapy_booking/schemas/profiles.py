"""Therapist profile schemas consumed by the scheduling core."""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator


class PracticeSettings(BaseModel):
    """Pricing for a therapist's practice."""

    hourly_rate: float = Field(default=0, ge=0)
    currency: str = Field(default="usd", min_length=3, max_length=3)


class AvailabilitySettings(BaseModel):
    """Timezone and scheduling preferences."""

    timezone: str = "UTC"
    buffer_minutes: int = Field(default=15, ge=0)
    max_daily_hours: int = Field(default=10, ge=1, le=24)
    advance_booking_days: int = Field(default=90, ge=1)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate an IANA timezone name."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v


class TherapistProfile(BaseModel):
    """Therapist profile as seen by the scheduling core."""

    therapist_id: str
    practice: PracticeSettings = Field(default_factory=PracticeSettings)
    availability: AvailabilitySettings = Field(default_factory=AvailabilitySettings)

    @classmethod
    def from_row(cls, row: dict) -> "TherapistProfile":
        """Build a profile from a ``therapist_profiles`` row mapping."""
        return cls(
            therapist_id=row["therapist_id"],
            practice=PracticeSettings(
                hourly_rate=row["hourly_rate"],
                currency=row["currency"],
            ),
            availability=AvailabilitySettings(
                timezone=row["timezone"],
                buffer_minutes=row["buffer_minutes"],
                max_daily_hours=row["max_daily_hours"],
                advance_booking_days=row["advance_booking_days"],
            ),
        )
