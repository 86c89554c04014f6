import json
import logging
from typing import Any, Optional

from redis import Redis, RedisError

from .config import settings

logger = logging.getLogger(__name__)


class RedisCache:
    """JSON cache over Redis that degrades to misses when Redis is down."""

    def __init__(self, client: Redis, prefix: str = ""):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get_json(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(self._key(key))
        except RedisError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding undecodable cache entry {key}")
            self.delete(key)
            return None

    def set_json(self, key: str, value: Any, ttl: int) -> bool:
        try:
            self.client.set(self._key(key), json.dumps(value, default=str), ex=ttl)
            return True
        except RedisError as e:
            logger.warning(f"Cache write failed for {key}: {e}")
            return False

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            self.client.delete(*(self._key(k) for k in keys))
        except RedisError as e:
            logger.warning(f"Cache delete failed for {keys}: {e}")

    def incr(self, key: str, window: int) -> Optional[int]:
        full_key = self._key(key)
        try:
            count = self.client.incr(full_key)
            if count == 1:
                self.client.expire(full_key, window)
            return int(count)
        except RedisError as e:
            logger.warning(f"Counter increment failed for {key}: {e}")
            return None

    def ttl(self, key: str) -> int:
        try:
            return int(self.client.ttl(self._key(key)))
        except RedisError:
            return -2

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False


_cache: Optional[RedisCache] = None


def get_cache() -> RedisCache:
    global _cache
    if _cache is None:
        client = Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            health_check_interval=30,
        )
        _cache = RedisCache(client, settings.redis_prefix)
    return _cache


def close_cache() -> None:
    global _cache
    if _cache is not None:
        try:
            _cache.client.close()
        except RedisError as e:
            logger.error(f"Error closing Redis: {e}")
        _cache = None
