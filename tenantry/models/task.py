"""Task model (demo org-scoped CRUD)."""

from typing import Optional
import uuid

from sqlmodel import Field, SQLModel

from .base import SoftDeleteMixin, TimestampMixin, UUIDMixin


class Task(UUIDMixin, TimestampMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "tasks"

    org_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    title: str = Field(nullable=False, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: str = Field(nullable=False, default="draft", index=True)  # draft | active | completed | archived
    created_by: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
