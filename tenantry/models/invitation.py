"""Invitation to join an organization with a given role."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import SoftDeleteMixin, TimestampMixin, UUIDMixin


class Invitation(UUIDMixin, TimestampMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "invitations"

    email: str = Field(nullable=False, index=True)  # stored lowercased
    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    role: str = Field(nullable=False, default="technician")
    token: str = Field(nullable=False, index=True)
    invited_by: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    expires_at: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
    accepted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    status: str = Field(nullable=False, default="pending", index=True)  # pending | accepted | expired | cancelled
