"""Refresh token session record. Only the SHA-256 of the token is stored."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class RefreshToken(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "refresh_tokens"

    token_hash: str = Field(unique=True, index=True, nullable=False)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    org_id: Optional[uuid.UUID] = Field(default=None, foreign_key="organizations.id")
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    expires_at: datetime = Field(nullable=False, index=True, sa_type=sa.DateTime(timezone=True))
