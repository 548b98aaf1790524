"""
Redis cache for derived availability data.

Keys carry the cleaner's schedule_version, so a reader that has loaded the
current version from the database can never be served intervals computed
before the last write. Writers also delete the cleaner's keys explicitly and
every entry has a bounded TTL. Without REDIS_URL the cache is disabled and
every read goes to the database.
"""

import json
from typing import Any, Optional

import redis

from config.config import Config
from app.utils.logger import get_logger

logger = get_logger(__name__)


class Cache:
    """Redis cache wrapper with JSON serialization"""

    def __init__(self, client=None, url: Optional[str] = None):
        self.redis_client = client
        self.url = url if url is not None else Config.REDIS_URL
        self._unavailable = False

    def _get_client(self):
        """Lazy load Redis client"""
        if self.redis_client is not None:
            return self.redis_client
        if not self.url or self._unavailable:
            return None
        try:
            self.redis_client = redis.from_url(self.url, decode_responses=True)
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Redis cache unavailable: {e}")
            self._unavailable = True
            return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        client = self._get_client()
        if not client:
            return None
        try:
            value = client.get(key)
        except redis.RedisError as e:
            logger.error(f"Cache get error for {key}: {e}")
            return None
        if value is None:
            logger.debug(f"Cache MISS: {key}")
            return None
        logger.debug(f"Cache HIT: {key}")
        return json.loads(value)

    def set(self, key: str, value: Any, ttl: int) -> bool:
        client = self._get_client()
        if not client:
            return False
        try:
            client.setex(key, ttl, json.dumps(value))
            return True
        except redis.RedisError as e:
            logger.error(f"Cache set error for {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern (e.g. 'availability:12:*')"""
        client = self._get_client()
        if not client:
            return 0
        try:
            keys = list(client.scan_iter(match=pattern))
            if not keys:
                return 0
            deleted = client.delete(*keys)
            logger.debug(f"Cache DELETE pattern: {pattern} ({deleted} keys)")
            return deleted
        except redis.RedisError as e:
            logger.error(f"Cache delete pattern error for {pattern}: {e}")
            return 0


class AvailabilityCache:
    """Versioned per-(cleaner, date) cache of unavailable intervals"""

    PREFIX = 'availability'

    def __init__(self, cache: Cache = None, ttl: int = None):
        self.cache = cache or Cache()
        self.ttl = ttl or Config.AVAILABILITY_CACHE_TTL_SECONDS

    def key(self, cleaner_id: int, version: int, day) -> str:
        return f"{self.PREFIX}:{cleaner_id}:{version}:{day.isoformat()}"

    def get(self, cleaner_id: int, version: int, day):
        return self.cache.get(self.key(cleaner_id, version, day))

    def set(self, cleaner_id: int, version: int, day, intervals: list) -> bool:
        return self.cache.set(self.key(cleaner_id, version, day), intervals, self.ttl)

    def invalidate(self, cleaner_id: int) -> int:
        return self.cache.delete_pattern(f"{self.PREFIX}:{cleaner_id}:*")


# Global cache instance
availability_cache = AvailabilityCache()
