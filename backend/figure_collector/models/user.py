from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, EmailStr, Field as PydanticField
from sqlmodel import Field, SQLModel

USERNAME_PATTERN = r"^[a-zA-Z0-9_-]+$"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    username: str = Field(unique=True, index=True)
    email: str = Field(unique=True, index=True)
    password_hash: str  # argon2id PHC string, never the raw password
    is_admin: bool = Field(default=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class UserRead(BaseModel):
    id: str
    username: str
    email: str
    is_admin: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class UserUpdate(BaseModel):
    username: str | None = PydanticField(
        default=None, min_length=3, max_length=30, pattern=USERNAME_PATTERN
    )
    email: EmailStr | None = None
    password: str | None = PydanticField(default=None, min_length=8, max_length=128)
