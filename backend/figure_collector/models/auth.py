"""Auth models and schemas.

Refresh tokens are tracked server-side (hash only) so they can be revoked
individually, per user, or listed as active sessions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, EmailStr, Field as PydanticField
from sqlmodel import Field, SQLModel

from figure_collector.models.user import USERNAME_PATTERN, UserRead


class RefreshToken(SQLModel, table=True):
    """Tracks issued refresh tokens for rotation and revocation."""

    __tablename__ = "refresh_tokens"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)  # JWT jti
    user_id: str = Field(foreign_key="users.id", index=True)
    token_hash: str = Field(index=True)  # SHA-256 hex of the raw token
    device_info: str = Field(default="Unknown device")
    ip_address: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime
    revoked: bool = Field(default=False)


# --- Pydantic request/response schemas ---


class RegisterRequest(BaseModel):
    username: str = PydanticField(min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: EmailStr
    password: str = PydanticField(min_length=8, max_length=128)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class TokenResponse(BaseModel):
    """Token pair returned on register/login; refresh_token is omitted on
    refresh unless rotation is enabled."""

    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"
    expires_in: int  # access token TTL in seconds
    user: UserRead | None = None


class SessionRead(BaseModel):
    id: str
    device_info: str
    ip_address: str | None
    created_at: datetime
    expires_at: datetime

    model_config = {"from_attributes": True}
