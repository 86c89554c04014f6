import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response, status

from ..core.auth import (
    get_auth_service,
    get_current_payload,
    get_session_info,
    require_service_key,
)
from ..core.config import settings
from ..core.errors import ErrorCodes, ServiceError
from ..core.jwt_handler import get_token_expiration_time
from ..core.rate_limit import auth_rate_limit, login_rate_limit
from ..schemas.token import TokenPayload
from ..schemas.user import (
    ApiResponse,
    ChangePasswordRequest,
    CountData,
    LoginData,
    LoginRequest,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    SessionOut,
    SessionsData,
    TokensData,
    UserData,
    UserOut,
    VerifyTokenRequest,
    VerifyTokenResponse,
)
from ..services.auth_service import AuthService

logger = logging.getLogger(__name__)

router = APIRouter()


def _cookie_path() -> str:
    return f"{settings.api_prefix}/auth"


def set_refresh_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=token,
        max_age=get_token_expiration_time(settings.refresh_token_expires_in),
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
        path=_cookie_path(),
    )


def clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(key=settings.refresh_cookie_name, path=_cookie_path())


@router.post(
    "/register",
    response_model=ApiResponse[UserData],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_rate_limit)],
)
def register(user_in: RegisterRequest, auth_service: AuthService = Depends(get_auth_service)):
    user = auth_service.register(user_in)
    return ApiResponse(message="User registered successfully", data=UserData(user=UserOut.model_validate(user)))


@router.post("/login", response_model=ApiResponse[LoginData], dependencies=[Depends(login_rate_limit)])
def login(
    credentials: LoginRequest,
    response: Response,
    session_info: Dict[str, Any] = Depends(get_session_info),
    auth_service: AuthService = Depends(get_auth_service),
):
    result = auth_service.login(credentials, session_info)
    set_refresh_cookie(response, result.tokens.refresh_token)
    return ApiResponse(
        message="Login successful",
        data=LoginData(
            user=UserOut.model_validate(result.user),
            tokens=result.tokens,
            session_id=result.session_id,
        ),
    )


@router.post("/refresh", response_model=ApiResponse[TokensData], dependencies=[Depends(auth_rate_limit)])
def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    session_info: Dict[str, Any] = Depends(get_session_info),
    auth_service: AuthService = Depends(get_auth_service),
):
    token = (body.refresh_token if body else None) or request.cookies.get(settings.refresh_cookie_name)
    if not token:
        raise ServiceError(ErrorCodes.TOKEN_REQUIRED, status.HTTP_401_UNAUTHORIZED, message="Refresh token is required")

    tokens = auth_service.refresh_token(token, session_info)
    set_refresh_cookie(response, tokens.refresh_token)
    return ApiResponse(message="Token refreshed successfully", data=TokensData(tokens=tokens))


@router.post("/logout", response_model=ApiResponse[None])
def logout(
    response: Response,
    payload: TokenPayload = Depends(get_current_payload),
    auth_service: AuthService = Depends(get_auth_service),
):
    auth_service.logout(payload.sub, payload.sid)
    clear_refresh_cookie(response)
    return ApiResponse(message="Logout successful")


@router.post("/logout-all", response_model=ApiResponse[CountData])
def logout_all(
    response: Response,
    payload: TokenPayload = Depends(get_current_payload),
    auth_service: AuthService = Depends(get_auth_service),
):
    count = auth_service.logout_all(payload.sub)
    clear_refresh_cookie(response)
    return ApiResponse(message="Logged out from all sessions", data=CountData(count=count))


@router.post("/verify-token", response_model=VerifyTokenResponse, dependencies=[Depends(require_service_key)])
def verify_token(body: VerifyTokenRequest, auth_service: AuthService = Depends(get_auth_service)):
    """Token check used by other services; always answers 200 with ``valid``."""
    return auth_service.verify_token_for_service(body.token, body.service)


@router.get("/me", response_model=ApiResponse[UserData])
def read_profile(
    payload: TokenPayload = Depends(get_current_payload),
    auth_service: AuthService = Depends(get_auth_service),
):
    user = auth_service.get_user(payload.sub)
    return ApiResponse(message="Profile retrieved successfully", data=UserData(user=UserOut.model_validate(user)))


@router.put("/me", response_model=ApiResponse[UserData])
def update_profile(
    changes: ProfileUpdate,
    payload: TokenPayload = Depends(get_current_payload),
    auth_service: AuthService = Depends(get_auth_service),
):
    user = auth_service.update_profile(payload.sub, changes)
    return ApiResponse(message="Profile updated successfully", data=UserData(user=UserOut.model_validate(user)))


@router.delete("/me", response_model=ApiResponse[None])
def delete_account(
    response: Response,
    payload: TokenPayload = Depends(get_current_payload),
    auth_service: AuthService = Depends(get_auth_service),
):
    auth_service.delete_account(payload.sub)
    clear_refresh_cookie(response)
    return ApiResponse(message="Account deleted successfully")


@router.post("/change-password", response_model=ApiResponse[None])
def change_password(
    body: ChangePasswordRequest,
    response: Response,
    payload: TokenPayload = Depends(get_current_payload),
    auth_service: AuthService = Depends(get_auth_service),
):
    auth_service.change_password(payload.sub, body)
    clear_refresh_cookie(response)
    return ApiResponse(message="Password changed successfully")


@router.get("/sessions", response_model=ApiResponse[SessionsData])
def list_sessions(
    payload: TokenPayload = Depends(get_current_payload),
    auth_service: AuthService = Depends(get_auth_service),
):
    sessions = []
    for record in auth_service.list_sessions(payload.sub):
        item = SessionOut.model_validate(record)
        item.current = record.session_id == payload.sid
        sessions.append(item)
    return ApiResponse(message="Sessions retrieved successfully", data=SessionsData(sessions=sessions))


@router.delete("/sessions/{session_id}", response_model=ApiResponse[None])
def terminate_session(
    session_id: str,
    payload: TokenPayload = Depends(get_current_payload),
    auth_service: AuthService = Depends(get_auth_service),
):
    auth_service.terminate_user_session(payload.sub, session_id)
    return ApiResponse(message="Session terminated successfully")
