"""
Request-level authentication dependencies for Auth Service routes.
"""
import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, Header, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ..schemas.token import TokenPayload
from ..services.auth_service import AuthService
from .cache import RedisCache, get_cache
from .config import settings
from .database import get_db
from .errors import ErrorCodes, ServiceError
from .rate_limit import client_ip

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(
    scheme_name="Bearer Token",
    description="Access token issued by /auth/login",
    auto_error=False,
)


def get_auth_service(
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
) -> AuthService:
    return AuthService(db, cache)


def get_session_info(request: Request) -> Dict[str, Any]:
    return {
        "ip_address": client_ip(request),
        "user_agent": request.headers.get("user-agent"),
    }


def get_current_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenPayload:
    """Validate the bearer token and its session."""
    if credentials is None or not credentials.credentials:
        raise ServiceError(
            ErrorCodes.TOKEN_REQUIRED,
            status.HTTP_401_UNAUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth_service.validate_access_token(credentials.credentials)


def require_service_key(x_service_api_key: Optional[str] = Header(None)) -> None:
    """Reject callers without a known service API key when keys are configured."""
    if not settings.service_api_keys:
        return
    if not x_service_api_key or not any(
        hmac.compare_digest(x_service_api_key, key) for key in settings.service_api_keys
    ):
        logger.warning("Rejected verify-token call with invalid service key")
        raise ServiceError(ErrorCodes.INVALID_SERVICE_KEY, status.HTTP_401_UNAUTHORIZED)
