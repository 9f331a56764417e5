"""Organization model (tenant boundary)."""

from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import SoftDeleteMixin, TimestampMixin, UUIDMixin


class Organization(UUIDMixin, TimestampMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "organizations"

    name: str = Field(nullable=False, index=True)
    slug: str = Field(unique=True, nullable=False, index=True)
    logo: Optional[str] = None
    status: str = Field(default="active", nullable=False, index=True)  # active | inactive | suspended
    settings: dict = Field(default_factory=dict, sa_type=sa.JSON, nullable=False)
    created_by: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
