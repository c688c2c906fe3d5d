"""Therapist scheduling profile endpoints."""

from fastapi import APIRouter, status

from therapy_booking.core.exceptions import NotFoundException
from therapy_booking.dependencies import Cache, CurrentUser, DatabaseSession, ensure_therapist_access
from therapy_booking.schemas.profiles import AvailabilitySettings, PracticeSettings, TherapistProfile
from therapy_booking.services.profile_service import ProfileService

router = APIRouter()


@router.get(
    "/therapists/{therapist_id}/profile",
    response_model=TherapistProfile,
    status_code=status.HTTP_200_OK,
    summary="Get therapist scheduling profile",
)
async def get_profile(
    therapist_id: str,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> TherapistProfile:
    """Get pricing and timezone settings of a therapist."""
    profile = await ProfileService(db, cache).get_profile(therapist_id)
    if not profile:
        raise NotFoundException("Therapist profile not found")
    return profile


@router.put(
    "/therapists/{therapist_id}/profile",
    response_model=TherapistProfile,
    status_code=status.HTTP_200_OK,
    summary="Set therapist scheduling profile",
)
async def put_profile(
    therapist_id: str,
    practice: PracticeSettings,
    availability: AvailabilitySettings,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> TherapistProfile:
    """Create or replace pricing and timezone settings of a therapist."""
    ensure_therapist_access(current_user, therapist_id)
    profile = TherapistProfile(
        therapist_id=therapist_id, practice=practice, availability=availability
    )
    return await ProfileService(db, cache).upsert_profile(profile)
