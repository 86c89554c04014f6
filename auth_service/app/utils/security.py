import hashlib
import re
import secrets
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from passlib.context import CryptContext

from ..core.config import settings

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.bcrypt_rounds,
)

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
PASSWORD_SPECIAL_CHARS = "@$!%*?&"
FORBIDDEN_SEQUENCES = ("password", "123456", "qwerty")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def validate_password_strength(password: str) -> Tuple[bool, List[str], int]:
    """Check a candidate password against the password policy.

    Returns ``(is_valid, errors, score)`` where score counts satisfied rules
    out of 5.
    """
    errors: List[str] = []
    score = 0

    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    elif len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"Password must be at most {PASSWORD_MAX_LENGTH} characters long")
    else:
        score += 1

    if re.search(r"[a-z]", password):
        score += 1
    else:
        errors.append("Password must contain at least one lowercase letter")

    if re.search(r"[A-Z]", password):
        score += 1
    else:
        errors.append("Password must contain at least one uppercase letter")

    if re.search(r"\d", password):
        score += 1
    else:
        errors.append("Password must contain at least one number")

    if any(ch in PASSWORD_SPECIAL_CHARS for ch in password):
        score += 1
    else:
        errors.append(f"Password must contain at least one special character ({PASSWORD_SPECIAL_CHARS})")

    lowered = password.lower()
    if any(seq in lowered for seq in FORBIDDEN_SEQUENCES) or re.search(r"(.)\1\1", password):
        errors.append("Password contains a common or repeated sequence")
        score = max(score - 1, 0)

    return not errors, errors, score


def generate_secure_token(nbytes: int = 32) -> str:
    return secrets.token_urlsafe(nbytes)


def generate_session_id() -> str:
    return secrets.token_hex(32)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize datetimes read back from the database (SQLite drops tzinfo)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
