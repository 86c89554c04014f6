"""
HTTP client for the Auth Service.

Task Service never validates JWTs itself; every token is checked by calling
``POST /api/v1/auth/verify-token`` with the service API key. A failed call is
a rejected token: there are no retries.
"""
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ValidationError

from ..core.config import get_settings

logger = logging.getLogger(__name__)

VERIFY_TOKEN_PATH = "/api/v1/auth/verify-token"
USER_AGENT = "TaskService/1.0"
DEFAULT_ERROR_MESSAGE = "Auth service communication error"


class AuthUser(BaseModel):
    id: str
    email: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool = True
    role: str = "user"


class TokenValidationResponse(BaseModel):
    valid: bool
    user: Optional[AuthUser] = None
    error: Optional[str] = None


def map_error_status(status_code: int, message: Optional[str]) -> str:
    """Translate an Auth Service error status into a readable message."""
    msg = message or DEFAULT_ERROR_MESSAGE
    if status_code == 400:
        return f"Auth service bad request: {msg}"
    if status_code == 401:
        return f"Auth service unauthorized: {msg}"
    if status_code == 403:
        return f"Auth service forbidden: {msg}"
    if status_code == 404:
        return f"Auth service endpoint not found: {msg}"
    if status_code == 409:
        return f"Auth service conflict: {msg}"
    if status_code == 422:
        return f"Auth service unprocessable entity: {msg}"
    if status_code == 500:
        return "Auth service internal error"
    if status_code == 503:
        return "Auth service unavailable"
    return f"Auth service error: {msg}"


class AuthServiceClient:
    """Service client for Auth Service integration."""

    def __init__(
        self,
        service_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.service_url = service_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        if self.api_key:
            headers["X-Service-API-Key"] = self.api_key
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.service_url,
            timeout=self.timeout,
            transport=self.transport,
        )

    @staticmethod
    def _message_from(response: httpx.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            return body.get("message") or body.get("detail")
        return None

    async def verify_token(self, token: str) -> TokenValidationResponse:
        """
        Verify an access token with Auth Service.

        Args:
            token: Bearer token presented to Task Service

        Returns:
            TokenValidationResponse: never raises; failures come back as
            ``valid=False`` with an error message
        """
        try:
            async with self._client() as client:
                response = await client.post(
                    VERIFY_TOKEN_PATH,
                    json={"token": token, "service": "task-service"},
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            logger.error(f"Auth service unreachable: {e}")
            return TokenValidationResponse(valid=False, error="Auth service unreachable")

        if response.status_code >= 400:
            error = map_error_status(response.status_code, self._message_from(response))
            logger.warning(f"Token verification failed with status {response.status_code}: {error}")
            return TokenValidationResponse(valid=False, error=error)

        try:
            body: Any = response.json()
            if not isinstance(body, dict):
                raise ValueError(f"expected a JSON object, got {type(body).__name__}")
            if isinstance(body.get("data"), dict) and "valid" not in body:
                body = body["data"]
            result = TokenValidationResponse.model_validate(body)
        except (ValueError, ValidationError) as e:
            logger.error(f"Unexpected verify-token response: {e}")
            return TokenValidationResponse(valid=False, error=DEFAULT_ERROR_MESSAGE)

        if result.valid and result.user is None:
            return TokenValidationResponse(valid=False, error=DEFAULT_ERROR_MESSAGE)
        return result

    async def health_check(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get("/health")
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Auth Service health check failed: {e}")
            return False

    def update_config(
        self,
        service_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        if service_url is not None:
            self.service_url = service_url.rstrip("/")
        if api_key is not None:
            self.api_key = api_key
        if timeout is not None:
            self.timeout = timeout
        logger.info(f"Auth service client now targets {self.service_url}")


_settings = get_settings()

# Global auth client instance
auth_client = AuthServiceClient(
    service_url=_settings.auth_service_url,
    api_key=_settings.auth_service_api_key,
    timeout=_settings.auth_service_timeout,
)


def get_auth_client() -> AuthServiceClient:
    return auth_client
