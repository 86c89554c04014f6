"""
Redis backed cache for sessions, refresh tokens and counters.

Redis is treated as an accelerator: when it is unreachable reads behave like
misses and writes report failure, so the database stays the source of truth.
"""
import json
import logging
from typing import Any, Optional

from redis import Redis, RedisError

from .config import settings

logger = logging.getLogger(__name__)


class RedisCache:
    """Prefix-namespaced wrapper around a synchronous Redis client."""

    def __init__(self, client: Redis, prefix: str = ""):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(self._key(key))
        except RedisError as e:
            logger.warning(f"Redis GET failed for {key}: {e}")
            return None

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        try:
            if ttl:
                self.client.set(self._key(key), value, ex=ttl)
            else:
                self.client.set(self._key(key), value)
            return True
        except RedisError as e:
            logger.warning(f"Redis SET failed for {key}: {e}")
            return False

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding undecodable cache entry {key}")
            self.delete(key)
            return None

    def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return self.set(key, json.dumps(value, default=str), ttl)

    def delete(self, *keys: str) -> bool:
        if not keys:
            return True
        try:
            self.client.delete(*(self._key(k) for k in keys))
            return True
        except RedisError as e:
            logger.warning(f"Redis DELETE failed for {keys}: {e}")
            return False

    def exists(self, key: str) -> bool:
        try:
            return bool(self.client.exists(self._key(key)))
        except RedisError as e:
            logger.warning(f"Redis EXISTS failed for {key}: {e}")
            return False

    def incr(self, key: str, window: int) -> Optional[int]:
        """Increment a counter, starting its expiry window on first use.

        Returns None when Redis is unavailable.
        """
        full_key = self._key(key)
        try:
            pipe = self.client.pipeline()
            pipe.incr(full_key)
            pipe.ttl(full_key)
            count, ttl = pipe.execute()
            if count == 1 or ttl == -1:
                self.client.expire(full_key, window)
            return int(count)
        except RedisError as e:
            logger.warning(f"Redis INCR failed for {key}: {e}")
            return None

    def ttl(self, key: str) -> int:
        try:
            return int(self.client.ttl(self._key(key)))
        except RedisError as e:
            logger.warning(f"Redis TTL failed for {key}: {e}")
            return -2

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False


_cache: Optional[RedisCache] = None


def get_cache() -> RedisCache:
    """FastAPI dependency returning the process-wide cache."""
    global _cache
    if _cache is None:
        client = Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            health_check_interval=30,
        )
        _cache = RedisCache(client, settings.redis_prefix)
        logger.info("Redis client configured")
    return _cache


def close_cache() -> None:
    global _cache
    if _cache is not None:
        try:
            _cache.client.close()
            logger.info("Redis connection closed")
        except RedisError as e:
            logger.error(f"Error closing Redis: {e}")
        _cache = None
