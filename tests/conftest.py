import os
from collections.abc import AsyncGenerator
from datetime import UTC, date, datetime

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load environment variables from .env file, then pin the test configuration
load_dotenv()
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["REDIS_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "console"

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from therapy_booking.core.firebase import CallerIdentity  # noqa: E402
from therapy_booking.database import get_db  # noqa: E402
from therapy_booking.dependencies import get_clock, get_current_user  # noqa: E402
from therapy_booking.main import app  # noqa: E402
from therapy_booking.models import metadata  # noqa: E402
from therapy_booking.schemas.appointments import BookingRequest, SessionType  # noqa: E402
from therapy_booking.schemas.availability import WeeklyScheduleUpdate  # noqa: E402
from therapy_booking.schemas.profiles import (  # noqa: E402
    AvailabilitySettings,
    PracticeSettings,
    TherapistProfile,
)
from therapy_booking.services.availability_service import AvailabilityService  # noqa: E402
from therapy_booking.services.profile_service import ProfileService  # noqa: E402
from therapy_booking.services.timeslot_service import TimeSlotService  # noqa: E402

# Friday morning; the scheduled Monday below is three days out
NOW = datetime(2026, 3, 6, 8, 0, tzinfo=UTC)
MONDAY = date(2026, 3, 9)
TUESDAY = date(2026, 3, 10)
SUNDAY = date(2026, 3, 8)

THERAPIST_ID = "therapist-1"
CLIENT_ID = "client-1"


def fixed_clock() -> datetime:
    return NOW


def make_request(
    time_slot_id: str,
    slot_date: date = MONDAY,
    client_id: str = CLIENT_ID,
    session_type: SessionType = SessionType.INDIVIDUAL,
    therapist_id: str = THERAPIST_ID,
    duration: int = 60,
) -> BookingRequest:
    """Build a booking request for the test therapist."""
    return BookingRequest(
        therapist_id=therapist_id,
        client_id=client_id,
        time_slot_id=time_slot_id,
        date=slot_date,
        duration=duration,
        session_type=session_type,
    )


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a file-backed SQLite database per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'therapy_booking_test.db'}",
        echo=False,  # Set to True for SQL debugging
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def time_slots(db_session):
    """Hourly catalog from 09:00 to 17:00."""
    return await TimeSlotService(db_session).generate_standard_time_slots("09:00", "17:00")


@pytest_asyncio.fixture
async def therapist_profile(db_session) -> TherapistProfile:
    """Therapist in UTC charging 120 usd per session."""
    profile = TherapistProfile(
        therapist_id=THERAPIST_ID,
        practice=PracticeSettings(hourly_rate=120, currency="usd"),
        availability=AvailabilitySettings(timezone="UTC", buffer_minutes=15),
    )
    return await ProfileService(db_session).upsert_profile(profile)


@pytest_asyncio.fixture
async def weekly_schedule(db_session, time_slots, therapist_profile):
    """Monday and Tuesday mornings: 09:00, 10:00 and 11:00."""
    morning = [slot.id for slot in time_slots[:3]]
    service = AvailabilityService(db_session)
    return await service.set_weekly_schedule(
        THERAPIST_ID, WeeklyScheduleUpdate(schedule={1: morning, 2: morning})
    )


@pytest.fixture
def caller() -> dict:
    """Mutable identity used by the API client."""
    return {"identity": CallerIdentity(uid=CLIENT_ID, email="client@example.com")}


@pytest_asyncio.fixture
async def client(session_factory, caller) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client with database, auth and clock overridden."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: caller["identity"]
    app.dependency_overrides[get_clock] = lambda: fixed_clock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    """Bearer header; token verification itself is overridden."""
    return {"Authorization": "Bearer test-token"}
