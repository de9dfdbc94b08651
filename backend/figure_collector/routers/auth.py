"""Auth endpoints: register, login, refresh, logout, sessions.

Password-based authentication using Argon2id hashes and JWT access tokens.
Refresh tokens are JWTs too; only their SHA-256 hash is persisted so they can
be revoked individually or per user.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlmodel import Session, or_, select

from figure_collector.config import get_settings
from figure_collector.db import get_session
from figure_collector.models.auth import (
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RefreshToken,
    RegisterRequest,
    SessionRead,
    TokenResponse,
)
from figure_collector.models.user import User, UserRead
from figure_collector.utils.crypto import hash_password, sha256_hash, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

JWT_ALGORITHM = "HS256"

_optional_bearer = HTTPBearer(auto_error=False)


# --- JWT helpers ---


def create_access_token(user_id: str) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_access_token_expire_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def _create_refresh_token(user_id: str, token_id: str) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "type": "refresh",
        "jti": token_id,
        "iat": now,
        "exp": now + timedelta(days=settings.jwt_refresh_token_expire_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str, expected_type: str) -> dict:
    """Decode and validate a JWT. Raises HTTPException 401 on failure."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    if payload.get("type") != expected_type:
        raise HTTPException(status_code=401, detail="Invalid token type")
    return payload


def _store_refresh_token(user_id: str, request: Request, db: Session) -> str:
    """Create a refresh token and persist its hash with the client's device info."""
    settings = get_settings()
    token_id = str(uuid4())
    refresh = _create_refresh_token(user_id, token_id)
    now = datetime.now(timezone.utc)
    db.add(
        RefreshToken(
            id=token_id,
            user_id=user_id,
            token_hash=sha256_hash(refresh.encode("utf-8")),
            device_info=request.headers.get("user-agent") or "Unknown device",
            ip_address=request.client.host if request.client else None,
            created_at=now,
            expires_at=now + timedelta(days=settings.jwt_refresh_token_expire_days),
        )
    )
    db.commit()
    return refresh


def _issue_tokens(user: User, request: Request, db: Session) -> TokenResponse:
    settings = get_settings()
    return TokenResponse(
        access_token=create_access_token(user.id),
        refresh_token=_store_refresh_token(user.id, request, db),
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=UserRead.model_validate(user),
    )


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _revoke_all(user_id: str, db: Session) -> int:
    tokens = db.exec(
        select(RefreshToken).where(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked == False,  # noqa: E712
        )
    ).all()
    for token in tokens:
        token.revoked = True
        db.add(token)
    db.commit()
    return len(tokens)


# --- Local auth dependency for endpoints in this module ---

_bearer_scheme = HTTPBearer(auto_error=True)


def _get_user_from_bearer(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """Extract user_id from Bearer token. Used by logout-all/sessions."""
    payload = decode_token(credentials.credentials, "access")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return user_id


# --- Endpoints ---


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    body: RegisterRequest, request: Request, db: Session = Depends(get_session)
) -> TokenResponse:
    email = body.email.lower()
    existing = db.exec(
        select(User).where(or_(User.email == email, User.username == body.username))
    ).first()
    if existing is not None:
        raise HTTPException(status_code=409, detail="User already exists")

    user = User(
        username=body.username,
        email=email,
        password_hash=hash_password(body.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)

    return _issue_tokens(user, request, db)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest, request: Request, db: Session = Depends(get_session)
) -> TokenResponse:
    user = db.exec(select(User).where(User.email == body.email.lower())).first()
    if user is None or not verify_password(user.password_hash, body.password):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return _issue_tokens(user, request, db)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    body: RefreshRequest, request: Request, db: Session = Depends(get_session)
) -> TokenResponse:
    """Exchange a valid refresh token for a new access token.

    With ROTATE_REFRESH_TOKENS enabled the presented refresh token is revoked
    and a new one is returned alongside the access token.
    """
    payload = decode_token(body.refresh_token, "refresh")
    user_id = payload.get("sub")
    token_id = payload.get("jti")
    if not user_id or not token_id:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    provided_hash = sha256_hash(body.refresh_token.encode("utf-8"))
    db_token = db.exec(
        select(RefreshToken).where(
            RefreshToken.id == token_id,
            RefreshToken.token_hash == provided_hash,
        )
    ).first()

    if db_token is None:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    if db_token.revoked:
        raise HTTPException(status_code=401, detail="Refresh token revoked")
    if _as_utc(db_token.expires_at) < datetime.now(timezone.utc):
        raise HTTPException(status_code=401, detail="Refresh token expired")

    user = db.get(User, user_id)
    if user is None:
        db_token.revoked = True
        db.add(db_token)
        db.commit()
        raise HTTPException(status_code=401, detail="User not found")

    settings = get_settings()
    new_refresh: str | None = None
    if settings.rotate_refresh_tokens:
        db_token.revoked = True
        db.add(db_token)
        db.commit()
        new_refresh = _store_refresh_token(user.id, request, db)

    return TokenResponse(
        access_token=create_access_token(user.id),
        refresh_token=new_refresh,
        expires_in=settings.jwt_access_token_expire_minutes * 60,
    )


@router.post("/logout", status_code=200)
async def logout(
    body: LogoutRequest | None = None,
    credentials: HTTPAuthorizationCredentials | None = Depends(_optional_bearer),
    db: Session = Depends(get_session),
) -> dict:
    """Revoke the given refresh token, or every token of the bearer's user when none is given."""
    if body is not None and body.refresh_token:
        token_hash = sha256_hash(body.refresh_token.encode("utf-8"))
        db_token = db.exec(
            select(RefreshToken).where(RefreshToken.token_hash == token_hash)
        ).first()
        if db_token is not None and not db_token.revoked:
            db_token.revoked = True
            db.add(db_token)
            db.commit()
    elif credentials is not None:
        payload = decode_token(credentials.credentials, "access")
        if payload.get("sub"):
            _revoke_all(payload["sub"], db)

    return {"success": True, "message": "Logged out successfully"}


@router.post("/logout-all", status_code=200)
async def logout_all(
    user_id: str = Depends(_get_user_from_bearer),
    db: Session = Depends(get_session),
) -> dict:
    revoked = _revoke_all(user_id, db)
    logger.info("Revoked %d refresh token(s) for user %s", revoked, user_id)
    return {"success": True, "message": "Logged out from all devices successfully"}


@router.get("/sessions", response_model=list[SessionRead])
async def list_sessions(
    user_id: str = Depends(_get_user_from_bearer),
    db: Session = Depends(get_session),
) -> list[SessionRead]:
    now = datetime.now(timezone.utc)
    tokens = db.exec(
        select(RefreshToken)
        .where(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked == False,  # noqa: E712
        )
        .order_by(RefreshToken.created_at)  # type: ignore[arg-type]
    ).all()
    return [
        SessionRead.model_validate(t) for t in tokens if _as_utc(t.expires_at) > now
    ]
