from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class Role(str, Enum):
    ORG_ADMIN = "org_admin"
    MANAGER = "manager"
    TECHNICIAN = "technician"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class OrgStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class TaskStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class MessageResponse(BaseModel):
    message: str
    data: Optional[Any] = None
