"""
Authentication workflows: registration, login, token refresh, logout and
session tracking.

Sessions live in the database and are mirrored in Redis under
``session:{session_id}`` so that token verification usually avoids a query.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import status
from sqlalchemy.orm import Session

from ..core.cache import RedisCache
from ..core.config import settings
from ..core.errors import ERROR_MESSAGES, ErrorCodes, ServiceError
from ..core.events import publish_user_deleted, publish_user_registered
from ..core.jwt_handler import TokenService, get_token_expiration_time
from ..models.user import User, UserSession
from ..repositories.user_repository import UserRepository
from ..schemas.token import AuthTokens, TokenPayload
from ..schemas.user import (
    ChangePasswordRequest,
    LoginRequest,
    ProfileUpdate,
    RegisterRequest,
    ServiceUser,
    VerifyTokenResponse,
)
from ..utils.security import (
    as_utc,
    generate_session_id,
    get_password_hash,
    utcnow,
    validate_password_strength,
    verify_password,
)

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    user: User
    tokens: AuthTokens
    session_id: str


def detect_device(user_agent: Optional[str]) -> str:
    ua = (user_agent or "").lower()
    if "ipad" in ua or "tablet" in ua:
        return "tablet"
    if "mobile" in ua or "android" in ua or "iphone" in ua:
        return "mobile"
    if not ua:
        return "unknown"
    return "desktop"


class AuthService:
    def __init__(self, db: Session, cache: RedisCache):
        self.db = db
        self.cache = cache
        self.users = UserRepository(db)
        self.tokens = TokenService(db, cache)

    # Registration and login

    def register(self, data: RegisterRequest) -> User:
        email = data.email.lower()
        if self.users.exists(email, data.username):
            raise ServiceError(ErrorCodes.USER_ALREADY_EXISTS, status.HTTP_409_CONFLICT)

        is_valid, errors, _ = validate_password_strength(data.password)
        if not is_valid:
            raise ServiceError(ErrorCodes.PASSWORD_TOO_WEAK, status.HTTP_400_BAD_REQUEST, details=errors)

        user = self.users.create(
            {
                "email": email,
                "username": data.username,
                "password": get_password_hash(data.password),
                "first_name": data.first_name,
                "last_name": data.last_name,
            }
        )
        logger.info(f"User registered: {user.id} ({user.username})")
        publish_user_registered(user.id, user.email, user.username)
        return user

    def _attempts_key(self, email: str, ip_address: Optional[str]) -> str:
        return f"login_attempts:{email.lower()}:{ip_address or 'unknown'}"

    def _failed_login(self, email: str, session_info: Dict[str, Any], reason: str, user_id: Optional[str] = None):
        self.cache.incr(self._attempts_key(email, session_info.get("ip_address")), settings.login_attempt_window)
        self.users.record_login_attempt(
            email,
            success=False,
            user_id=user_id,
            ip_address=session_info.get("ip_address"),
            user_agent=session_info.get("user_agent"),
            reason=reason,
        )
        logger.warning(f"Login failed for {email}: {reason}")

    def login(self, credentials: LoginRequest, session_info: Dict[str, Any]) -> AuthResult:
        email = credentials.email.lower()
        attempts_key = self._attempts_key(email, session_info.get("ip_address"))

        attempts = self.cache.get(attempts_key)
        if attempts is not None and int(attempts) >= settings.max_login_attempts:
            self.users.record_login_attempt(
                email,
                success=False,
                ip_address=session_info.get("ip_address"),
                user_agent=session_info.get("user_agent"),
                reason="too_many_attempts",
            )
            retry_after = self.cache.ttl(attempts_key)
            raise ServiceError(
                ErrorCodes.TOO_MANY_LOGIN_ATTEMPTS,
                status.HTTP_429_TOO_MANY_REQUESTS,
                headers={"Retry-After": str(retry_after if retry_after > 0 else settings.login_attempt_window)},
            )

        user = self.users.find_by_email(email)
        if user is None:
            self._failed_login(email, session_info, "user_not_found")
            raise ServiceError(ErrorCodes.INVALID_CREDENTIALS, status.HTTP_401_UNAUTHORIZED)

        if not user.is_active:
            self._failed_login(email, session_info, "user_inactive", user.id)
            raise ServiceError(ErrorCodes.USER_INACTIVE, status.HTTP_403_FORBIDDEN)

        if not verify_password(credentials.password, user.password):
            self._failed_login(email, session_info, "invalid_password", user.id)
            raise ServiceError(ErrorCodes.INVALID_CREDENTIALS, status.HTTP_401_UNAUTHORIZED)

        session_id = self.create_session(user.id, session_info)
        tokens = self._issue_tokens(user, session_id, session_info)
        self.users.update_last_login(user)
        self.cache.delete(attempts_key)
        self.users.record_login_attempt(
            email,
            success=True,
            user_id=user.id,
            ip_address=session_info.get("ip_address"),
            user_agent=session_info.get("user_agent"),
        )
        logger.info(f"Login successful for user {user.id}, session {session_id[:8]}")
        return AuthResult(user=user, tokens=tokens, session_id=session_id)

    def _issue_tokens(self, user: User, session_id: str, session_info: Dict[str, Any]) -> AuthTokens:
        access_token = self.tokens.generate_access_token(user.id, user.email, user.username, session_id)
        refresh = self.tokens.generate_refresh_token(user.id, session_id, session_info)
        return AuthTokens(
            access_token=access_token,
            refresh_token=refresh.token,
            expires_in=get_token_expiration_time(settings.jwt_expires_in),
        )

    # Tokens

    def refresh_token(self, token: str, session_info: Dict[str, Any]) -> AuthTokens:
        payload = self.tokens.validate_refresh_token(token)

        user = self.users.find_by_id(payload.sub)
        if user is None:
            raise ServiceError(ErrorCodes.REFRESH_TOKEN_INVALID, status.HTTP_401_UNAUTHORIZED)
        if not user.is_active:
            raise ServiceError(ErrorCodes.USER_INACTIVE, status.HTTP_403_FORBIDDEN)
        if payload.session_id and not self.validate_session(payload.session_id, user.id):
            raise ServiceError(ErrorCodes.SESSION_INVALID, status.HTTP_401_UNAUTHORIZED)

        # rotation: the presented token can never be used again
        if not self.tokens.revoke_refresh_token(payload.token_id):
            logger.warning(f"Refresh token {payload.token_id} was already used")
            raise ServiceError(ErrorCodes.REFRESH_TOKEN_INVALID, status.HTTP_401_UNAUTHORIZED)
        session_id = payload.session_id or self.create_session(user.id, session_info)
        self._touch_session(session_id)
        logger.info(f"Refresh token rotated for user {user.id}")
        return self._issue_tokens(user, session_id, session_info)

    def validate_access_token(self, token: str) -> TokenPayload:
        payload = self.tokens.validate_access_token(token)
        if not self.validate_session(payload.sid, payload.sub):
            raise ServiceError(ErrorCodes.SESSION_INVALID, status.HTTP_401_UNAUTHORIZED)
        return payload

    def verify_token_for_service(self, token: str, service: Optional[str] = None) -> VerifyTokenResponse:
        try:
            payload = self.validate_access_token(token)
        except ServiceError as e:
            logger.info(f"Token verification for {service or 'unknown'} failed: {e.code}")
            return VerifyTokenResponse(valid=False, error=e.message)

        user = self.users.find_by_id(payload.sub)
        if user is None:
            return VerifyTokenResponse(valid=False, error=ERROR_MESSAGES[ErrorCodes.USER_NOT_FOUND])

        logger.info(f"Token verified for user {user.id} by {service or 'unknown'}")
        return VerifyTokenResponse(
            valid=True,
            user=ServiceUser.model_validate(user),
            payload=payload,
        )

    def revoke_refresh_token(self, token_id: str) -> bool:
        return self.tokens.revoke_refresh_token(token_id)

    def revoke_all_tokens(self, user_id: str) -> int:
        return self.tokens.revoke_all_user_tokens(user_id)

    # Sessions

    def _session_key(self, session_id: str) -> str:
        return f"session:{session_id}"

    def _cache_session(self, record: UserSession) -> None:
        expires_at = as_utc(record.expires_at)
        ttl = int((expires_at - utcnow()).total_seconds())
        if ttl <= 0:
            return
        self.cache.set_json(
            self._session_key(record.session_id),
            {"user_id": record.user_id, "expires_at": expires_at.isoformat()},
            ttl=ttl,
        )

    def create_session(self, user_id: str, session_info: Dict[str, Any]) -> str:
        now = utcnow()
        record = UserSession(
            user_id=user_id,
            session_id=generate_session_id(),
            ip_address=session_info.get("ip_address"),
            user_agent=session_info.get("user_agent"),
            device=session_info.get("device") or detect_device(session_info.get("user_agent")),
            location=session_info.get("location"),
            is_active=True,
            last_seen=now,
            expires_at=now + timedelta(seconds=settings.session_ttl_seconds),
            created_at=now,
        )
        self.db.add(record)
        self.db.commit()
        self._cache_session(record)
        self._enforce_session_limit(user_id)
        return record.session_id

    def _enforce_session_limit(self, user_id: str) -> None:
        active = (
            self.db.query(UserSession)
            .filter(UserSession.user_id == user_id, UserSession.is_active.is_(True))
            .order_by(UserSession.created_at.desc(), UserSession.id)
            .all()
        )
        for stale in active[settings.max_sessions_per_user:]:
            logger.info(f"Session limit reached for user {user_id}, closing {stale.session_id[:8]}")
            self.terminate_session(stale.session_id)

    def validate_session(self, session_id: str, user_id: Optional[str] = None) -> bool:
        cached = self.cache.get_json(self._session_key(session_id))
        if cached is not None:
            return user_id is None or cached.get("user_id") == user_id

        record = self.db.query(UserSession).filter(UserSession.session_id == session_id).first()
        if record is None or not record.is_active:
            return False
        if as_utc(record.expires_at) <= utcnow():
            record.is_active = False
            self.db.commit()
            return False
        if user_id is not None and record.user_id != user_id:
            return False

        self._cache_session(record)
        return True

    def _touch_session(self, session_id: str) -> None:
        self.db.query(UserSession).filter(UserSession.session_id == session_id).update(
            {UserSession.last_seen: utcnow()}, synchronize_session=False
        )
        self.db.commit()

    def terminate_session(self, session_id: str) -> bool:
        updated = (
            self.db.query(UserSession)
            .filter(UserSession.session_id == session_id, UserSession.is_active.is_(True))
            .update({UserSession.is_active: False}, synchronize_session=False)
        )
        self.db.commit()
        self.cache.delete(self._session_key(session_id))
        self.tokens.revoke_session_tokens(session_id)
        return bool(updated)

    def terminate_all_sessions(self, user_id: str) -> int:
        session_ids = [
            row.session_id
            for row in self.db.query(UserSession.session_id)
            .filter(UserSession.user_id == user_id, UserSession.is_active.is_(True))
            .all()
        ]
        if session_ids:
            self.db.query(UserSession).filter(UserSession.session_id.in_(session_ids)).update(
                {UserSession.is_active: False}, synchronize_session=False
            )
            self.db.commit()
            self.cache.delete(*(self._session_key(sid) for sid in session_ids))
        return len(session_ids)

    def list_sessions(self, user_id: str) -> List[UserSession]:
        now = utcnow()
        sessions = (
            self.db.query(UserSession)
            .filter(UserSession.user_id == user_id, UserSession.is_active.is_(True))
            .order_by(UserSession.created_at.desc())
            .all()
        )
        return [s for s in sessions if as_utc(s.expires_at) > now]

    def terminate_user_session(self, user_id: str, session_id: str) -> None:
        record = (
            self.db.query(UserSession)
            .filter(UserSession.session_id == session_id, UserSession.user_id == user_id)
            .first()
        )
        if record is None or not record.is_active:
            raise ServiceError(ErrorCodes.SESSION_NOT_FOUND, status.HTTP_404_NOT_FOUND)
        self.terminate_session(session_id)

    # Logout

    def logout(self, user_id: str, session_id: str) -> None:
        self.terminate_session(session_id)
        logger.info(f"User {user_id} logged out of session {session_id[:8]}")

    def logout_all(self, user_id: str) -> int:
        count = self.terminate_all_sessions(user_id)
        self.revoke_all_tokens(user_id)
        logger.info(f"User {user_id} logged out of {count} sessions")
        return count

    # Account

    def get_user(self, user_id: str) -> User:
        user = self.users.find_by_id(user_id)
        if user is None:
            raise ServiceError(ErrorCodes.USER_NOT_FOUND, status.HTTP_404_NOT_FOUND)
        return user

    def update_profile(self, user_id: str, data: ProfileUpdate) -> User:
        user = self.get_user(user_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("avatar") is not None:
            changes["avatar"] = str(changes["avatar"])
        return self.users.update_profile(user, changes)

    def change_password(self, user_id: str, data: ChangePasswordRequest) -> None:
        user = self.get_user(user_id)
        if not verify_password(data.current_password, user.password):
            raise ServiceError(
                ErrorCodes.INVALID_CREDENTIALS,
                status.HTTP_400_BAD_REQUEST,
                message="Current password is incorrect",
            )

        is_valid, errors, _ = validate_password_strength(data.new_password)
        if not is_valid:
            raise ServiceError(ErrorCodes.PASSWORD_TOO_WEAK, status.HTTP_400_BAD_REQUEST, details=errors)

        self.users.update_password(user, get_password_hash(data.new_password))
        self.revoke_all_tokens(user.id)
        self.terminate_all_sessions(user.id)
        logger.info(f"Password changed for user {user.id}")

    def delete_account(self, user_id: str) -> None:
        user = self.get_user(user_id)
        self.logout_all(user.id)
        self.users.delete(user)
        publish_user_deleted(user_id)
