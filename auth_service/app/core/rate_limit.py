import logging

from fastapi import Depends, Request, status

from .cache import RedisCache, get_cache
from .config import settings
from .errors import ErrorCodes, ServiceError

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    # behind a trusted proxy, uvicorn --proxy-headers sets client.host
    return request.client.host if request.client else "unknown"


class RateLimiter:
    """Fixed-window limiter keyed by scope and client address.

    When Redis cannot count the request is let through.
    """

    def __init__(self, scope: str, limit: int, window: int):
        self.scope = scope
        self.limit = limit
        self.window = window

    def __call__(self, request: Request, cache: RedisCache = Depends(get_cache)) -> None:
        ip = client_ip(request)
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
            details={"limit": self.limit, "window": self.window, "retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


auth_rate_limit = RateLimiter("auth", settings.rate_limit_auth_requests, settings.rate_limit_window)
login_rate_limit = RateLimiter("login", settings.rate_limit_login_requests, settings.rate_limit_window)
