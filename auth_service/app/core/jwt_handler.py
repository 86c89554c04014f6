"""
Token issuance and validation for Auth Service.

Access tokens are short lived HS256 JWTs, optionally wrapped in a JWE
envelope (``dir`` + ``A256GCM``). Refresh tokens are signed with their own
secret and tracked in the database by SHA-256 digest so they can be rotated
and revoked.
"""
import hashlib
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import status
from jose import jwe, jwt
from jose.exceptions import ExpiredSignatureError, JOSEError, JWTError
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models.user import RefreshToken, new_id
from ..schemas.token import RefreshTokenPayload, TokenPayload
from ..utils.security import as_utc, sha256_hex, utcnow
from .cache import RedisCache
from .config import settings
from .errors import ErrorCodes, ServiceError

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^(\d+)([smhdw]?)$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


def get_token_expiration_time(expires_in: str) -> int:
    """Convert a duration such as ``15m`` or ``7d`` into seconds."""
    match = _DURATION_RE.match(str(expires_in).strip())
    if not match:
        raise ValueError(f"Invalid duration format: {expires_in}")
    value, unit = match.groups()
    return int(value) * _UNIT_SECONDS[unit]


def extract_token_from_header(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def is_jwe(token: str) -> bool:
    return token.count(".") == 4


def is_token_expired(token: str) -> bool:
    """Check the ``exp`` claim without verifying the signature."""
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return True
    exp = claims.get("exp")
    if exp is None:
        return False
    return utcnow().timestamp() >= float(exp)


def _jwe_key() -> bytes:
    return hashlib.sha256(settings.jwe_secret.encode("utf-8")).digest()


def encrypt_token(token: str) -> str:
    """Wrap a signed token in a JWE envelope with its own expiry."""
    envelope = {
        "token": token,
        "exp": int((utcnow() + timedelta(seconds=get_token_expiration_time(settings.jwe_expires_in))).timestamp()),
    }
    encrypted = jwe.encrypt(
        json.dumps(envelope),
        _jwe_key(),
        encryption=settings.jwe_encryption,
        algorithm=settings.jwe_algorithm,
        cty="JWT",
    )
    return encrypted.decode("utf-8") if isinstance(encrypted, bytes) else encrypted


def decrypt_token(token: str) -> str:
    try:
        plaintext = jwe.decrypt(token, _jwe_key())
        envelope = json.loads(plaintext)
    except (JOSEError, ValueError) as e:
        logger.debug(f"JWE decryption failed: {e}")
        raise ServiceError(ErrorCodes.TOKEN_INVALID, status.HTTP_401_UNAUTHORIZED)

    if not isinstance(envelope, dict) or "token" not in envelope:
        raise ServiceError(ErrorCodes.TOKEN_INVALID, status.HTTP_401_UNAUTHORIZED)
    if envelope.get("exp") is not None and utcnow().timestamp() >= float(envelope["exp"]):
        raise ServiceError(ErrorCodes.TOKEN_EXPIRED, status.HTTP_401_UNAUTHORIZED)
    return envelope["token"]


@dataclass
class IssuedRefreshToken:
    token: str
    token_id: str
    expires_at: datetime


class TokenService:
    """Creates, validates and revokes access and refresh tokens."""

    def __init__(self, db: Session, cache: RedisCache):
        self.db = db
        self.cache = cache

    # Access tokens

    def generate_access_token(
        self,
        sub: str,
        email: str,
        username: str,
        session_id: str,
        expires_in: Optional[str] = None,
        audience: Optional[str] = None,
    ) -> str:
        now = utcnow()
        lifetime = get_token_expiration_time(expires_in or settings.jwt_expires_in)
        claims: Dict[str, Any] = {
            "sub": sub,
            "email": email,
            "username": username,
            "sid": session_id,
            "type": "access",
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=lifetime)).timestamp()),
            "iss": settings.jwt_issuer,
        }
        if audience:
            claims["aud"] = audience

        token = jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)
        if settings.jwe_enabled:
            return encrypt_token(token)
        return token

    def validate_access_token(self, token: str) -> TokenPayload:
        if not token:
            raise ServiceError(ErrorCodes.TOKEN_REQUIRED, status.HTTP_401_UNAUTHORIZED)
        if is_jwe(token):
            token = decrypt_token(token)

        try:
            claims = jwt.decode(
                token,
                settings.jwt_secret,
                algorithms=[settings.jwt_algorithm],
                issuer=settings.jwt_issuer,
                options={"verify_aud": False},
            )
        except ExpiredSignatureError:
            raise ServiceError(ErrorCodes.TOKEN_EXPIRED, status.HTTP_401_UNAUTHORIZED)
        except JWTError as e:
            logger.debug(f"Access token rejected: {e}")
            raise ServiceError(ErrorCodes.TOKEN_INVALID, status.HTTP_401_UNAUTHORIZED)

        if claims.get("type") != "access" or not claims.get("sub") or not claims.get("sid"):
            raise ServiceError(ErrorCodes.TOKEN_INVALID, status.HTTP_401_UNAUTHORIZED)
        return TokenPayload(**claims)

    # Refresh tokens

    def generate_refresh_token(
        self, user_id: str, session_id: str, session_info: Optional[Dict[str, Any]] = None
    ) -> IssuedRefreshToken:
        session_info = session_info or {}
        now = utcnow()
        lifetime = get_token_expiration_time(settings.refresh_token_expires_in)
        expires_at = now + timedelta(seconds=lifetime)

        record = RefreshToken(
            id=new_id(),
            user_id=user_id,
            session_id=session_id,
            expires_at=expires_at,
            user_agent=session_info.get("user_agent"),
            ip_address=session_info.get("ip_address"),
        )

        token = jwt.encode(
            {
                "sub": user_id,
                "jti": record.id,
                "sid": session_id,
                "type": "refresh",
                "iat": int(now.timestamp()),
                "exp": int(expires_at.timestamp()),
                "iss": settings.jwt_issuer,
            },
            settings.refresh_token_secret,
            algorithm=settings.jwt_algorithm,
        )
        record.token = sha256_hex(token)
        self.db.add(record)
        self.db.commit()

        self.cache.set_json(
            f"refresh:{record.id}",
            {"user_id": user_id, "session_id": session_id},
            ttl=lifetime,
        )
        return IssuedRefreshToken(token=token, token_id=record.id, expires_at=expires_at)

    def validate_refresh_token(self, token: str) -> RefreshTokenPayload:
        try:
            claims = jwt.decode(
                token,
                settings.refresh_token_secret,
                algorithms=[settings.jwt_algorithm],
                issuer=settings.jwt_issuer,
                options={"verify_aud": False},
            )
        except ExpiredSignatureError:
            raise ServiceError(ErrorCodes.REFRESH_TOKEN_EXPIRED, status.HTTP_401_UNAUTHORIZED)
        except JWTError:
            raise ServiceError(ErrorCodes.REFRESH_TOKEN_INVALID, status.HTTP_401_UNAUTHORIZED)

        if claims.get("type") != "refresh" or not claims.get("jti"):
            raise ServiceError(ErrorCodes.REFRESH_TOKEN_INVALID, status.HTTP_401_UNAUTHORIZED)

        record = self.db.query(RefreshToken).filter(RefreshToken.id == claims["jti"]).first()
        if record is None or record.token != sha256_hex(token) or record.is_revoked:
            logger.warning(f"Refresh token {claims['jti']} is unknown or revoked")
            raise ServiceError(ErrorCodes.REFRESH_TOKEN_INVALID, status.HTTP_401_UNAUTHORIZED)
        if as_utc(record.expires_at) <= utcnow():
            raise ServiceError(ErrorCodes.REFRESH_TOKEN_EXPIRED, status.HTTP_401_UNAUTHORIZED)

        return RefreshTokenPayload(
            sub=claims["sub"],
            token_id=record.id,
            session_id=claims.get("sid") or record.session_id,
            exp=claims["exp"],
        )

    def revoke_refresh_token(self, token_id: str) -> bool:
        updated = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.id == token_id, RefreshToken.is_revoked.is_(False))
            .update({RefreshToken.is_revoked: True}, synchronize_session=False)
        )
        self.db.commit()
        self.cache.delete(f"refresh:{token_id}")
        return bool(updated)

    def _revoke_where(self, *criteria) -> int:
        ids = [
            row.id
            for row in self.db.query(RefreshToken.id)
            .filter(RefreshToken.is_revoked.is_(False), *criteria)
            .all()
        ]
        if not ids:
            return 0
        self.db.query(RefreshToken).filter(RefreshToken.id.in_(ids)).update(
            {RefreshToken.is_revoked: True}, synchronize_session=False
        )
        self.db.commit()
        self.cache.delete(*(f"refresh:{token_id}" for token_id in ids))
        return len(ids)

    def revoke_session_tokens(self, session_id: str) -> int:
        return self._revoke_where(RefreshToken.session_id == session_id)

    def revoke_all_user_tokens(self, user_id: str) -> int:
        count = self._revoke_where(RefreshToken.user_id == user_id)
        logger.info(f"Revoked {count} refresh tokens for user {user_id}")
        return count

    def cleanup_expired_tokens(self) -> int:
        deleted = (
            self.db.query(RefreshToken)
            .filter(or_(RefreshToken.expires_at < utcnow(), RefreshToken.is_revoked.is_(True)))
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if deleted:
            logger.info(f"Removed {deleted} expired or revoked refresh tokens")
        return deleted
