"""Redis client and the fail-open JSON cache used for catalog and profile reads."""

import json
from typing import Any, cast

import redis
import structlog

from therapy_booking.config import settings

logger = structlog.get_logger(__name__)

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """Get or create the shared Redis client."""
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """Ping Redis; always False while caching is disabled."""
    if not settings.redis_enabled:
        return False
    try:
        return bool(get_redis_client().ping())
    except redis.RedisError as e:
        logger.warning("redis_ping_failed", error=str(e))
        return False


def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


class CacheManager:
    """JSON cache over Redis.

    Every operation is fail-open: a Redis or decoding error reads as a cache
    miss and writes report False, so callers always fall back to the database.
    Keys are stored under ``prefix`` when one is given.
    """

    def __init__(self, redis_client: redis.Redis, prefix: str = ""):
        """Initialize cache manager with Redis client and key prefix."""
        self.redis = redis_client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get_json(self, key: str) -> Any | None:
        """
        Get JSON value from cache and deserialize.

        Args:
            key: Cache key

        Returns:
            Deserialized object, or None on a miss or any cache failure
        """
        try:
            value = cast(str | None, self.redis.get(self._key(key)))
            return json.loads(value) if value else None
        except (redis.RedisError, ValueError, TypeError) as e:
            logger.warning("cache_read_failed", key=key, error=str(e))
            return None

    def set_json(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """
        Serialize and store a value.

        Args:
            key: Cache key
            value: JSON-serializable value; dates are stored as strings
            ttl: Time to live in seconds

        Returns:
            True if the value was stored
        """
        try:
            payload = json.dumps(value, default=str)
            if ttl:
                self.redis.setex(self._key(key), ttl, payload)
            else:
                self.redis.set(self._key(key), payload)
            return True
        except (redis.RedisError, ValueError, TypeError) as e:
            logger.warning("cache_write_failed", key=key, error=str(e))
            return False

    def delete(self, key: str) -> bool:
        """Drop a key, used when the cached record changes."""
        try:
            self.redis.delete(self._key(key))
            return True
        except redis.RedisError as e:
            logger.warning("cache_invalidation_failed", key=key, error=str(e))
            return False


def get_cache_manager() -> CacheManager | None:
    """Return a cache manager, or None when Redis caching is disabled."""
    if not settings.redis_enabled:
        return None
    return CacheManager(get_redis_client(), prefix=settings.cache_key_prefix)
