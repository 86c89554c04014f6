"""
Error types and exception handlers for Auth Service.

Every failure leaves the service in the same JSON envelope so that clients
(and the Task Service) can switch on ``error.code``.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings

logger = logging.getLogger(__name__)


class ErrorCodes:
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_REQUIRED = "TOKEN_REQUIRED"
    REFRESH_TOKEN_INVALID = "REFRESH_TOKEN_INVALID"
    REFRESH_TOKEN_EXPIRED = "REFRESH_TOKEN_EXPIRED"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    USER_ALREADY_EXISTS = "USER_ALREADY_EXISTS"
    USER_INACTIVE = "USER_INACTIVE"
    PASSWORD_TOO_WEAK = "PASSWORD_TOO_WEAK"
    SESSION_INVALID = "SESSION_INVALID"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    TOO_MANY_LOGIN_ATTEMPTS = "TOO_MANY_LOGIN_ATTEMPTS"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_SERVICE_KEY = "INVALID_SERVICE_KEY"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_MESSAGES: Dict[str, str] = {
    ErrorCodes.INVALID_CREDENTIALS: "Invalid email or password",
    ErrorCodes.TOKEN_EXPIRED: "Token has expired",
    ErrorCodes.TOKEN_INVALID: "Invalid token",
    ErrorCodes.TOKEN_REQUIRED: "Authentication token is required",
    ErrorCodes.REFRESH_TOKEN_INVALID: "Invalid refresh token",
    ErrorCodes.REFRESH_TOKEN_EXPIRED: "Refresh token has expired",
    ErrorCodes.USER_NOT_FOUND: "User not found",
    ErrorCodes.USER_ALREADY_EXISTS: "User already exists with this email or username",
    ErrorCodes.USER_INACTIVE: "User account is inactive",
    ErrorCodes.PASSWORD_TOO_WEAK: "Password does not meet security requirements",
    ErrorCodes.SESSION_INVALID: "Session is invalid or has expired",
    ErrorCodes.SESSION_NOT_FOUND: "Session not found",
    ErrorCodes.TOO_MANY_LOGIN_ATTEMPTS: "Too many login attempts. Please try again later",
    ErrorCodes.RATE_LIMIT_EXCEEDED: "Too many requests. Please try again later",
    ErrorCodes.INVALID_SERVICE_KEY: "Invalid or missing service API key",
    ErrorCodes.VALIDATION_ERROR: "Validation failed",
    ErrorCodes.NOT_FOUND: "Resource not found",
    ErrorCodes.INTERNAL_ERROR: "Internal server error",
}


class ServiceError(Exception):
    """Domain error carrying an HTTP status and a machine readable code."""

    def __init__(
        self,
        code: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        message: Optional[str] = None,
        details: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.status_code = status_code
        self.message = message or ERROR_MESSAGES.get(code, code)
        self.details = details
        self.headers = headers
        super().__init__(self.message)

    def __repr__(self):
        return f"ServiceError(code={self.code}, status={self.status_code})"


def error_body(request: Request, message: str, code: str, details: Any = None) -> dict:
    return {
        "success": False,
        "message": message,
        "error": {"code": code, "details": details},
        "meta": {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": request.url.path,
        },
    }


_HTTP_STATUS_CODES = {
    401: ErrorCodes.TOKEN_REQUIRED,
    403: ErrorCodes.TOKEN_REQUIRED,
    404: ErrorCodes.NOT_FOUND,
    429: ErrorCodes.RATE_LIMIT_EXCEEDED,
}


async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.message, exc.code, exc.details),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = _HTTP_STATUS_CODES.get(exc.status_code, f"HTTP_{exc.status_code}")
    # HTTPBearer rejects a missing header with 403; report it as 401
    status_code = status.HTTP_401_UNAUTHORIZED if code == ErrorCodes.TOKEN_REQUIRED else exc.status_code
    message = ERROR_MESSAGES[code] if code == ErrorCodes.TOKEN_REQUIRED else str(exc.detail)
    return JSONResponse(
        status_code=status_code,
        content=error_body(request, message, code),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body(
            request,
            ERROR_MESSAGES[ErrorCodes.VALIDATION_ERROR],
            ErrorCodes.VALIDATION_ERROR,
            details,
        ),
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    message = str(exc) if settings.debug else ERROR_MESSAGES[ErrorCodes.INTERNAL_ERROR]
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(request, message, ErrorCodes.INTERNAL_ERROR),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
