"""
Request and response schemas for the authentication API.
"""
import re
from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, field_validator, model_validator

from .token import AuthTokens, TokenPayload

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]+$")

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    message: str
    data: Optional[T] = None


class RegisterRequest(BaseModel):
    email: EmailStr = Field(..., max_length=255)
    username: str = Field(..., min_length=3, max_length=30)
    password: str = Field(..., min_length=1, max_length=128)
    first_name: Optional[str] = Field(None, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)

    @field_validator("username")
    @classmethod
    def username_charset(cls, value: str) -> str:
        if not USERNAME_RE.match(value):
            raise ValueError("Username can only contain letters, numbers and underscores")
        return value

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_names(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    remember_me: bool = False


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: EmailStr
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    is_active: bool
    is_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class UserData(BaseModel):
    user: UserOut


class LoginData(BaseModel):
    user: UserOut
    tokens: AuthTokens
    session_id: str


class TokensData(BaseModel):
    tokens: AuthTokens


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    avatar: Optional[HttpUrl] = None

    @model_validator(mode="after")
    def at_least_one_field(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1, max_length=128)

    @model_validator(mode="after")
    def passwords_differ(self):
        if self.current_password == self.new_password:
            raise ValueError("New password must be different from current password")
        return self


class VerifyTokenRequest(BaseModel):
    token: str = Field(..., min_length=1)
    service: Optional[str] = None


class ServiceUser(BaseModel):
    """User view handed to other services."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool
    role: str = "user"


class VerifyTokenResponse(BaseModel):
    valid: bool
    user: Optional[ServiceUser] = None
    payload: Optional[TokenPayload] = None
    error: Optional[str] = None


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device: Optional[str] = None
    location: Optional[str] = None
    is_active: bool
    last_seen: Optional[datetime] = None
    expires_at: datetime
    created_at: Optional[datetime] = None
    current: bool = False


class SessionsData(BaseModel):
    sessions: List[SessionOut]


class CountData(BaseModel):
    count: int
