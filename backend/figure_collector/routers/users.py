"""User profile endpoints."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from figure_collector.db import get_session
from figure_collector.dependencies import get_current_user_id
from figure_collector.models.user import User, UserRead, UserUpdate
from figure_collector.utils.crypto import hash_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


def _load_user(user_id: str, db: Session) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/profile", response_model=UserRead)
async def get_profile(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_session),
) -> User:
    return _load_user(user_id, db)


@router.put("/profile", response_model=UserRead)
async def update_profile(
    body: UserUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_session),
) -> User:
    """Change username, email and/or password. Username and email stay unique."""
    user = _load_user(user_id, db)

    if body.username is not None and body.username != user.username:
        taken = db.exec(
            select(User).where(User.username == body.username, User.id != user.id)
        ).first()
        if taken is not None:
            raise HTTPException(status_code=409, detail="Username already taken")
        user.username = body.username

    if body.email is not None:
        email = body.email.lower()
        if email != user.email:
            taken = db.exec(
                select(User).where(User.email == email, User.id != user.id)
            ).first()
            if taken is not None:
                raise HTTPException(status_code=409, detail="Email already in use")
            user.email = email

    if body.password is not None:
        user.password_hash = hash_password(body.password)

    user.updated_at = datetime.now(timezone.utc)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Updated profile for user %s", user.id)
    return user
