"""
Organization, membership and invitation schemas.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, UUID4, field_validator

from .common import InvitationStatus, MembershipStatus, OrgStatus, Role

SLUG_PATTERN = r"^[a-z0-9-]+$"


# ---------------------------------------------------------------------------
# Org settings
# ---------------------------------------------------------------------------

class OrgSettings(BaseModel):
    allow_member_invites: bool = Field(
        default=True,
        description="Managers may send invitations (admins always can)",
    )
    default_role: Role = Field(
        default=Role.TECHNICIAN,
        description="Role preselected for new invitations",
    )


class OrgSettingsUpdate(BaseModel):
    allow_member_invites: Optional[bool] = None
    default_role: Optional[Role] = None


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class OrgCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Organization display name")
    slug: Optional[str] = Field(
        None,
        min_length=3,
        max_length=50,
        pattern=SLUG_PATTERN,
        description="URL-safe org identifier; derived from the name when omitted",
    )
    logo: Optional[str] = Field(None, max_length=500)


class OrgUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    logo: Optional[str] = Field(None, max_length=500)
    status: Optional[OrgStatus] = None
    settings: Optional[OrgSettingsUpdate] = None


class InviteMemberRequest(BaseModel):
    email: EmailStr
    role: Role = Role.TECHNICIAN

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class UpdateMemberRoleRequest(BaseModel):
    role: Role


class AcceptInvitationRequest(BaseModel):
    token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class OrgResponse(BaseModel):
    id: UUID4
    name: str
    slug: str
    logo: Optional[str] = None
    status: OrgStatus
    settings: OrgSettings
    created_by: UUID4
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MembershipResponse(BaseModel):
    id: UUID4
    user_id: UUID4
    org_id: UUID4
    role: Role
    status: MembershipStatus
    invited_by: Optional[UUID4] = None
    joined_at: datetime

    model_config = {"from_attributes": True}


class OrgCreateResponse(BaseModel):
    org: OrgResponse
    membership: MembershipResponse


class OrgListItem(BaseModel):
    org: OrgResponse
    role: Role  # the requesting user's role in this org


class OrgListResponse(BaseModel):
    data: list[OrgListItem]


class MemberUser(BaseModel):
    id: UUID4
    email: str
    first_name: str
    last_name: str
    status: str


class MemberResponse(BaseModel):
    membership: MembershipResponse
    user: MemberUser


class MemberListResponse(BaseModel):
    data: list[MemberResponse]


class InvitationResponse(BaseModel):
    id: UUID4
    email: str
    org_id: UUID4
    role: Role
    status: InvitationStatus
    invited_by: UUID4
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class InvitationCreatedResponse(InvitationResponse):
    """Returned once to the inviter; carries the token for the invite link."""
    token: str


class InvitationListResponse(BaseModel):
    data: list[InvitationResponse]


class InvitationPreview(BaseModel):
    """Public view of an invitation, looked up by its token."""
    email: str
    role: Role
    status: InvitationStatus
    expires_at: datetime
    org_name: str
    org_slug: str


class AcceptInvitationResponse(BaseModel):
    org: OrgResponse
    membership: MembershipResponse
