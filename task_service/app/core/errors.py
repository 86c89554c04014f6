"""
Error types and exception handlers for Task Service.
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
    TOKEN_REQUIRED = "TOKEN_REQUIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    USER_INACTIVE = "USER_INACTIVE"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    CATEGORY_NOT_FOUND = "CATEGORY_NOT_FOUND"
    CATEGORY_ALREADY_EXISTS = "CATEGORY_ALREADY_EXISTS"
    CATEGORY_HAS_TASKS = "CATEGORY_HAS_TASKS"
    CATEGORY_LIMIT_EXCEEDED = "CATEGORY_LIMIT_EXCEEDED"
    INVALID_DUE_DATE = "INVALID_DUE_DATE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_MESSAGES: Dict[str, str] = {
    ErrorCodes.TOKEN_REQUIRED: "Authentication token is required",
    ErrorCodes.INVALID_TOKEN: "Invalid or expired token",
    ErrorCodes.USER_INACTIVE: "User account is inactive",
    ErrorCodes.TASK_NOT_FOUND: "Task not found",
    ErrorCodes.CATEGORY_NOT_FOUND: "Category not found",
    ErrorCodes.CATEGORY_ALREADY_EXISTS: "A category with this name already exists",
    ErrorCodes.CATEGORY_HAS_TASKS: "Cannot delete a category that still has active tasks",
    ErrorCodes.CATEGORY_LIMIT_EXCEEDED: "Maximum number of categories reached",
    ErrorCodes.INVALID_DUE_DATE: "Due date must be at least 5 minutes in the future",
    ErrorCodes.RATE_LIMIT_EXCEEDED: "Too many requests. Please try again later",
    ErrorCodes.VALIDATION_ERROR: "Validation failed",
    ErrorCodes.NOT_FOUND: "Resource not found",
    ErrorCodes.INTERNAL_ERROR: "Internal server error",
}


class ServiceError(Exception):
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


def _envelope(request: Request, message: str, code: str, details: Any = None) -> dict:
    return {
        "success": False,
        "message": message,
        "error": {"code": code, "details": details},
        "meta": {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": request.url.path,
        },
    }


async def service_error_handler(request: Request, exc: ServiceError):
    log = logger.error if exc.status_code >= 500 else logger.info
    log(f"{exc.code} on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(request, exc.message, exc.code, exc.details),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = ErrorCodes.NOT_FOUND if exc.status_code == 404 else f"HTTP_{exc.status_code}"
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(request, str(exc.detail), code),
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
        content=_envelope(request, ERROR_MESSAGES[ErrorCodes.VALIDATION_ERROR], ErrorCodes.VALIDATION_ERROR, details),
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    message = str(exc) if settings.debug else ERROR_MESSAGES[ErrorCodes.INTERNAL_ERROR]
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope(request, message, ErrorCodes.INTERNAL_ERROR),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
