"""FastAPI dependencies."""

from collections.abc import Callable
from datetime import datetime
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_booking.core.exceptions import ForbiddenException
from therapy_booking.core.firebase import CallerIdentity, verify_firebase_token
from therapy_booking.core.redis_client import CacheManager, get_cache_manager
from therapy_booking.core.timezones import utc_now
from therapy_booking.database import get_db

# Security
security = HTTPBearer()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> CallerIdentity:
    """
    Resolve the caller from a Firebase ID token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Caller identity with uid and role

    Raises:
        HTTPException: If the token is invalid or expired
    """
    try:
        return await verify_firebase_token(credentials.credentials)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_clock() -> Callable[[], datetime]:
    """Clock used for booking windows and audit timestamps."""
    return utc_now


def ensure_therapist_access(current_user: CallerIdentity, therapist_id: str) -> None:
    """Only the therapist themself or an admin may change a therapist's schedule."""
    if current_user.uid != therapist_id and not current_user.is_admin:
        raise ForbiddenException("You can only manage your own schedule")


def ensure_admin(current_user: CallerIdentity) -> None:
    """Restrict an operation to administrators."""
    if not current_user.is_admin:
        raise ForbiddenException("Admin access required")


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[CallerIdentity, Depends(get_current_user)]
Cache = Annotated[CacheManager | None, Depends(get_cache_manager)]
Clock = Annotated[Callable[[], datetime], Depends(get_clock)]
