"""
Authentication module for Task Service.
Handles bearer tokens through Auth Service verification.
"""
import hashlib
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, status
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..clients.auth_service import AuthServiceClient, get_auth_client
from .cache import RedisCache, get_cache
from .config import get_settings
from .errors import ErrorCodes, ServiceError

# Configure logging
logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(
    scheme_name="Bearer Token",
    description="Access token issued by Auth Service",
    auto_error=False,
)

# Get settings
settings = get_settings()


class CurrentUser:
    """Represents the current authenticated user."""

    def __init__(self, user_id: str, email: str, username: str, is_active: bool = True, **kwargs):
        self.user_id = user_id
        self.email = email
        self.username = username
        self.is_active = is_active
        self.extra_data = kwargs

    def __str__(self):
        return f"User(id={self.user_id}, email={self.email})"

    def __repr__(self):
        return self.__str__()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CurrentUser":
        """Create CurrentUser from dictionary."""
        return cls(
            user_id=data.get("id"),
            email=data.get("email"),
            username=data.get("username"),
            is_active=data.get("is_active", True),
            **{k: v for k, v in data.items() if k not in ["id", "email", "username", "is_active"]}
        )


def _cache_key(token: str) -> str:
    return f"user_session:{hashlib.sha256(token.encode('utf-8')).hexdigest()}"


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    client: AuthServiceClient = Depends(get_auth_client),
    cache: RedisCache = Depends(get_cache),
) -> CurrentUser:
    """
    Dependency to get current authenticated user.

    Raises:
        ServiceError: 401 when the token is missing or rejected, 403 when
        the account is inactive
    """
    if credentials is None or not credentials.credentials:
        raise ServiceError(
            ErrorCodes.TOKEN_REQUIRED,
            status.HTTP_401_UNAUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = credentials.credentials
    key = _cache_key(token)

    # redis-py is blocking; keep it off the event loop
    cached = await run_in_threadpool(cache.get_json, key)
    if cached:
        logger.debug(f"Auth cache hit for user {cached.get('id')}")
        return CurrentUser.from_dict(cached)

    result = await client.verify_token(token)
    if not result.valid or result.user is None:
        logger.warning(f"Token rejected: {result.error}")
        raise ServiceError(
            ErrorCodes.INVALID_TOKEN,
            status.HTTP_401_UNAUTHORIZED,
            message=result.error or None,
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not result.user.is_active:
        raise ServiceError(ErrorCodes.USER_INACTIVE, status.HTTP_403_FORBIDDEN)

    user_data = result.user.model_dump()
    await run_in_threadpool(cache.set_json, key, user_data, ttl=settings.auth_cache_ttl)
    current_user = CurrentUser.from_dict(user_data)
    logger.debug(f"Authenticated user: {current_user}")
    return current_user
