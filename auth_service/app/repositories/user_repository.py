import logging
from typing import Any, Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..models.user import LoginAttempt, RefreshToken, User, UserSession
from ..utils.security import utcnow

logger = logging.getLogger(__name__)


class UserRepository:
    """Persistence operations for user accounts."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def find_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(func.lower(User.email) == email.lower()).first()

    def find_by_username(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.username == username).first()

    def exists(self, email: str, username: str) -> bool:
        query = self.db.query(User.id).filter(
            or_(func.lower(User.email) == email.lower(), User.username == username)
        )
        return query.first() is not None

    def create(self, data: Dict[str, Any]) -> User:
        user = User(**data)
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def update_last_login(self, user: User) -> User:
        user.last_login_at = utcnow()
        self.db.commit()
        self.db.refresh(user)
        return user

    def update_password(self, user: User, hashed_password: str) -> User:
        user.password = hashed_password
        self.db.commit()
        self.db.refresh(user)
        return user

    def update_profile(self, user: User, changes: Dict[str, Any]) -> User:
        for field, value in changes.items():
            setattr(user, field, value)
        self.db.commit()
        self.db.refresh(user)
        return user

    def delete(self, user: User) -> None:
        """Delete a user and dependent rows in foreign key order."""
        user_id = user.id
        self.db.query(UserSession).filter(UserSession.user_id == user.id).delete(synchronize_session=False)
        self.db.query(RefreshToken).filter(RefreshToken.user_id == user.id).delete(synchronize_session=False)
        self.db.query(LoginAttempt).filter(LoginAttempt.user_id == user.id).update(
            {LoginAttempt.user_id: None}, synchronize_session=False
        )
        self.db.delete(user)
        self.db.commit()
        logger.info(f"Deleted user {user_id}")

    def record_login_attempt(
        self,
        email: str,
        success: bool,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> LoginAttempt:
        attempt = LoginAttempt(
            email=email.lower(),
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            success=success,
            reason=reason,
        )
        self.db.add(attempt)
        self.db.commit()
        return attempt
