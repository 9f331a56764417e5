"""User-Organization membership carrying the member's role."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import SoftDeleteMixin, TimestampMixin, UUIDMixin, utcnow


class Membership(UUIDMixin, TimestampMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "memberships"
    __table_args__ = (sa.UniqueConstraint("user_id", "org_id", name="uq_membership_user_org"),)

    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    role: str = Field(nullable=False, default="technician")  # org_admin | manager | technician
    status: str = Field(nullable=False, default="active", index=True)  # active | inactive | pending
    invited_by: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    joined_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active" and self.deleted_at is None
