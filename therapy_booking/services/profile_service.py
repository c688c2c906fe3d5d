"""Therapist profile provider for pricing and timezone context."""

from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_booking.config import settings
from therapy_booking.core.redis_client import CacheManager
from therapy_booking.models.therapist_profiles import therapist_profiles
from therapy_booking.schemas.profiles import TherapistProfile


class ProfileService:
    """Service for therapist profile lookups."""

    def __init__(self, db: AsyncSession, cache_manager: CacheManager | None = None):
        """Initialize service with database session and optional cache."""
        self.db = db
        self.cache = cache_manager

    @staticmethod
    def _get_profile_cache_key(therapist_id: str) -> str:
        """Generate cache key for a therapist profile."""
        return f"therapist_profile:{therapist_id}"

    async def get_profile(self, therapist_id: str) -> TherapistProfile | None:
        """Get a therapist profile with caching."""
        if self.cache:
            cached = self.cache.get_json(self._get_profile_cache_key(therapist_id))
            if cached:
                return TherapistProfile.model_validate(cached)

        result = await self.db.execute(
            select(therapist_profiles).where(therapist_profiles.c.therapist_id == therapist_id)
        )
        row = result.mappings().first()
        if not row:
            return None

        profile = TherapistProfile.from_row(dict(row))

        if self.cache:
            self.cache.set_json(
                self._get_profile_cache_key(therapist_id),
                profile.model_dump(),
                ttl=settings.profile_cache_ttl,
            )

        return profile

    async def get_timezone(self, therapist_id: str) -> str:
        """Therapist timezone, or the platform default when no profile exists."""
        profile = await self.get_profile(therapist_id)
        if profile is None:
            return settings.default_timezone
        return profile.availability.timezone

    async def upsert_profile(self, profile: TherapistProfile) -> TherapistProfile:
        """Create or replace the scheduling fields of a therapist profile."""
        now = datetime.now(UTC)
        values = {
            "hourly_rate": profile.practice.hourly_rate,
            "currency": profile.practice.currency.lower(),
            "timezone": profile.availability.timezone,
            "buffer_minutes": profile.availability.buffer_minutes,
            "max_daily_hours": profile.availability.max_daily_hours,
            "advance_booking_days": profile.availability.advance_booking_days,
            "updated_at": now,
        }

        result = await self.db.execute(
            update(therapist_profiles)
            .where(therapist_profiles.c.therapist_id == profile.therapist_id)
            .values(**values)
        )
        if result.rowcount == 0:
            await self.db.execute(
                therapist_profiles.insert().values(
                    therapist_id=profile.therapist_id, created_at=now, **values
                )
            )
        await self.db.commit()

        if self.cache:
            self.cache.delete(self._get_profile_cache_key(profile.therapist_id))

        return profile
