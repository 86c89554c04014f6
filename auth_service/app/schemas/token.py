from typing import Optional
from pydantic import BaseModel, ConfigDict


class TokenPayload(BaseModel):
    """Claims carried by an access token."""
    model_config = ConfigDict(extra="ignore")

    sub: str
    email: str
    username: str
    sid: str
    type: str = "access"
    iat: int
    exp: int
    iss: Optional[str] = None
    aud: Optional[str] = None


class RefreshTokenPayload(BaseModel):
    sub: str
    token_id: str
    session_id: Optional[str] = None
    exp: int


class AuthTokens(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
