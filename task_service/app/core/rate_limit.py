import logging

from fastapi import Depends, Request, status

from .cache import RedisCache, get_cache
from .config import settings
from .errors import ErrorCodes, ServiceError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window request limiter per client address."""

    def __init__(self, scope: str, limit: int, window: int):
        self.scope = scope
        self.limit = limit
        self.window = window

    def __call__(self, request: Request, cache: RedisCache = Depends(get_cache)) -> None:
        ip = request.client.host if request.client else "unknown"
        key = f"ratelimit:{self.scope}:{ip}"

        count = cache.incr(key, self.window)
        if count is None or count <= self.limit:
            return

        retry_after = cache.ttl(key)
        if retry_after < 0:
            retry_after = self.window
        logger.warning(f"Rate limit exceeded for {self.scope} from {ip}")
        raise ServiceError(
            ErrorCodes.RATE_LIMIT_EXCEEDED,
            status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(retry_after)},
        )


general_rate_limit = RateLimiter("general", settings.rate_limit_requests, settings.rate_limit_window)
category_create_rate_limit = RateLimiter(
    "category_create", settings.rate_limit_category_create, settings.rate_limit_window
)
