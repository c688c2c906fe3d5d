"""Tests for Redis caching implementation."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import redis

from conftest import THERAPIST_ID
from therapy_booking.core.redis_client import CacheManager
from therapy_booking.schemas.profiles import AvailabilitySettings, TherapistProfile
from therapy_booking.schemas.time_slots import TimeSlotCreate
from therapy_booking.services.profile_service import ProfileService
from therapy_booking.services.timeslot_service import TimeSlotService


@pytest.fixture
def fake_redis() -> MagicMock:
    """MagicMock Redis client backed by a dict."""
    store: dict[str, str] = {}
    mock_redis = MagicMock()
    mock_redis.get.side_effect = store.get
    mock_redis.set.side_effect = lambda key, value: store.__setitem__(key, value)
    mock_redis.setex.side_effect = lambda key, ttl, value: store.__setitem__(key, value)
    mock_redis.delete.side_effect = lambda key: store.pop(key, None)
    mock_redis.store = store
    return mock_redis


@pytest.fixture
def unusable_db() -> MagicMock:
    """Session stand-in that fails any query."""
    db = MagicMock()
    db.execute = AsyncMock(side_effect=AssertionError("database should not be queried"))
    return db


def test_cache_manager_get_json():
    """Test CacheManager get_json method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    # Test cache miss
    mock_redis.get.return_value = None
    result = cache_manager.get_json("test_key")
    assert result is None
    mock_redis.get.assert_called_once_with("test_key")

    # Test cache hit
    mock_redis.reset_mock()
    mock_redis.get.return_value = '{"start_time": "09:00", "duration": 60}'
    result = cache_manager.get_json("test_key")
    assert result == {"start_time": "09:00", "duration": 60}
    mock_redis.get.assert_called_once_with("test_key")


def test_cache_manager_set_json():
    """Test CacheManager set_json method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    test_data = {"therapist_id": THERAPIST_ID, "timezone": "UTC"}

    # Test without TTL
    result = cache_manager.set_json("test_key", test_data)
    assert result is True
    mock_redis.set.assert_called_once()

    # Test with TTL
    mock_redis.reset_mock()
    result = cache_manager.set_json("test_key", test_data, ttl=300)
    assert result is True
    mock_redis.setex.assert_called_once()
    assert mock_redis.setex.call_args.args[1] == 300


def test_cache_manager_delete():
    """Test CacheManager delete method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    result = cache_manager.delete("test_key")
    assert result is True
    mock_redis.delete.assert_called_once_with("test_key")


def test_cache_manager_key_prefix():
    """Keys are namespaced by the configured prefix."""
    mock_redis = MagicMock()
    mock_redis.get.return_value = None
    cache_manager = CacheManager(redis_client=mock_redis, prefix="therapy_booking:")

    cache_manager.get_json("time_slots:catalog")
    cache_manager.delete("time_slots:catalog")

    mock_redis.get.assert_called_once_with("therapy_booking:time_slots:catalog")
    mock_redis.delete.assert_called_once_with("therapy_booking:time_slots:catalog")


def test_cache_manager_fails_open():
    """Redis errors read as misses and failed writes."""
    mock_redis = MagicMock()
    mock_redis.get.side_effect = redis.ConnectionError("connection refused")
    mock_redis.setex.side_effect = redis.ConnectionError("connection refused")
    mock_redis.delete.side_effect = redis.ConnectionError("connection refused")
    cache_manager = CacheManager(redis_client=mock_redis)

    assert cache_manager.get_json("test_key") is None
    assert cache_manager.set_json("test_key", {"a": 1}, ttl=60) is False
    assert cache_manager.delete("test_key") is False


@pytest.mark.asyncio
async def test_time_slot_catalog_caching(db_session, time_slots, fake_redis, unusable_db):
    """Test the slot catalog is served from cache once loaded."""
    cache = CacheManager(fake_redis)

    # First request - should cache the catalog
    first = await TimeSlotService(db_session, cache).list_slots()
    assert TimeSlotService.CATALOG_CACHE_KEY in fake_redis.store

    # Second request - should not touch the database
    second = await TimeSlotService(unusable_db, cache).list_slots()
    assert [slot.id for slot in second] == [slot.id for slot in first]
    assert second == first


@pytest.mark.asyncio
async def test_time_slot_cache_invalidation(db_session, time_slots, fake_redis):
    """Test catalog cache is invalidated when a slot is added."""
    cache = CacheManager(fake_redis)
    service = TimeSlotService(db_session, cache)
    await service.list_slots()

    await service.create_time_slot(
        TimeSlotCreate(start_time="18:00", end_time="18:30", duration=30, is_standard=False)
    )
    assert TimeSlotService.CATALOG_CACHE_KEY not in fake_redis.store

    refreshed = await service.list_slots()
    assert len(refreshed) == len(time_slots) + 1


@pytest.mark.asyncio
async def test_profile_caching(db_session, therapist_profile, fake_redis, unusable_db):
    """Test therapist profile caching and invalidation on update."""
    cache = CacheManager(fake_redis)

    cached = await ProfileService(db_session, cache).get_profile(THERAPIST_ID)
    from_cache = await ProfileService(unusable_db, cache).get_profile(THERAPIST_ID)
    assert from_cache == cached
    assert await ProfileService(unusable_db, cache).get_timezone(THERAPIST_ID) == "UTC"

    # Update profile (should invalidate cache)
    updated = TherapistProfile(
        therapist_id=THERAPIST_ID,
        practice=cached.practice,
        availability=AvailabilitySettings(timezone="Europe/Berlin"),
    )
    await ProfileService(db_session, cache).upsert_profile(updated)
    assert "therapist_profile:therapist-1" not in fake_redis.store

    assert await ProfileService(db_session, cache).get_timezone(THERAPIST_ID) == "Europe/Berlin"
