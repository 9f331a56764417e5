"""
User service — credential store, profile and password management.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantry.core.errors import (
    AccountInactive,
    BadRequest,
    Conflict,
    InvalidCredentials,
    NotFound,
)
from tenantry.core.security import hash_password, verify_password
from tenantry.models.base import utcnow
from tenantry.models.user import User
from tenantry_shared.schemas.common import UserStatus

log = structlog.get_logger()

MIN_PASSWORD_LENGTH = 8


async def get_user(user_id: uuid.UUID, session: AsyncSession) -> Optional[User]:
    result = await session.execute(
        select(User).where(User.id == user_id, User.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


async def get_user_by_email(email: str, session: AsyncSession) -> Optional[User]:
    result = await session.execute(
        select(User).where(User.email == email.strip().lower(), User.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


async def is_user_active(user_id: uuid.UUID, session: AsyncSession) -> bool:
    user = await get_user(user_id, session)
    return user is not None and user.status == UserStatus.ACTIVE.value


async def create_user(
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    session: AsyncSession,
) -> User:
    """Register a new user. Emails are unique regardless of case."""
    email = email.strip().lower()
    # Soft-deleted accounts still own their email address.
    existing = await session.execute(select(User.id).where(User.email == email))
    if existing.scalar_one_or_none():
        raise Conflict("User with this email already exists")

    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        status=UserStatus.ACTIVE.value,
    )
    session.add(user)
    await session.flush()

    log.info("user.registered", user_id=str(user.id))
    return user


async def authenticate_user(email: str, password: str, session: AsyncSession) -> User:
    """Check credentials. Unknown email and wrong password are indistinguishable."""
    user = await get_user_by_email(email, session)
    if user is None or not verify_password(password, user.password_hash):
        log.info("user.login_failed")
        raise InvalidCredentials()

    if user.status != UserStatus.ACTIVE.value:
        raise AccountInactive("Account is not active. Please contact support.")

    user.last_login_at = utcnow()
    session.add(user)
    await session.flush()

    log.info("user.logged_in", user_id=str(user.id))
    return user


async def update_profile(
    user_id: uuid.UUID,
    session: AsyncSession,
    *,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    avatar: Optional[str] = None,
) -> User:
    user = await get_user(user_id, session)
    if user is None:
        raise NotFound.resource("User")

    if first_name is not None:
        user.first_name = first_name.strip()
    if last_name is not None:
        user.last_name = last_name.strip()
    if avatar is not None:
        user.avatar = avatar

    session.add(user)
    await session.flush()
    log.info("user.profile_updated", user_id=str(user_id))
    return user


async def change_password(
    user_id: uuid.UUID,
    current_password: str,
    new_password: str,
    session: AsyncSession,
) -> None:
    user = await get_user(user_id, session)
    if user is None:
        raise NotFound.resource("User")

    if not verify_password(current_password, user.password_hash):
        raise BadRequest("Current password is incorrect")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise BadRequest(f"New password must be at least {MIN_PASSWORD_LENGTH} characters")

    user.password_hash = hash_password(new_password)
    session.add(user)
    await session.flush()
    log.info("user.password_changed", user_id=str(user_id))


async def soft_delete_user(user_id: uuid.UUID, session: AsyncSession) -> bool:
    """Mark a user deleted. Returns False when already deleted or unknown."""
    result = await session.execute(
        update(User)
        .where(User.id == user_id, User.deleted_at.is_(None))
        .values(deleted_at=utcnow(), status=UserStatus.INACTIVE.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        log.info("user.deleted", user_id=str(user_id))
    return result.rowcount > 0
