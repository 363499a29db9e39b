"""Redis cache service. Backs the per-role permission cache."""

import json
import logging
from typing import Any, Optional

import redis

from usermgmt.core.config import settings

logger = logging.getLogger("user_management.cache")


class CacheService:
    """Redis-backed caching service. Every failure degrades to a cache miss."""

    def __init__(self, url: str = settings.REDIS_URL):
        self.url = url
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                max_connections=100,
                socket_connect_timeout=1,
            )
        return self._client

    def get(self, key: str) -> Optional[str]:
        """Get a cached value by key."""
        try:
            return self.client.get(key)
        except redis.RedisError as exc:
            logger.debug("Cache read failed for %s: %s", key, exc)
            return None

    def set(self, key: str, value: str, ttl_seconds: int = 600) -> None:
        """Set a cached value with TTL."""
        try:
            self.client.setex(key, ttl_seconds, value)
        except redis.RedisError as exc:
            logger.debug("Cache write failed for %s: %s", key, exc)

    def get_json(self, key: str) -> Optional[Any]:
        """Get and parse a JSON cached value."""
        raw = self.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            self.delete(key)
            return None

    def set_json(self, key: str, value: Any, ttl_seconds: int = 600) -> None:
        """Serialize and cache a JSON value."""
        self.set(key, json.dumps(value, default=str), ttl_seconds)

    def delete(self, key: str) -> None:
        """Delete a cached key."""
        try:
            self.client.delete(key)
        except redis.RedisError:
            pass

    def invalidate_pattern(self, pattern: str) -> None:
        """Delete all keys matching a pattern."""
        try:
            keys = list(self.client.scan_iter(match=pattern))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as exc:
            logger.warning("Cache invalidation failed for %s: %s", pattern, exc)

    def health_check(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


_default_cache = CacheService()


def get_cache() -> CacheService:
    """FastAPI dependency returning the shared cache client."""
    return _default_cache
