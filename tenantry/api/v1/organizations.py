"""
Organization API endpoints.

POST   /api/v1/orgs                                   — Create an org (caller becomes org_admin)
GET    /api/v1/orgs                                   — List the caller's orgs
POST   /api/v1/orgs/accept-invitation                 — Join an org with an invitation token
GET    /api/v1/orgs/invitations/{token}               — Public invitation preview
GET    /api/v1/orgs/{orgSlug}                         — Org details (any member)
PUT    /api/v1/orgs/{orgSlug}                         — Update org (org_admin)
GET    /api/v1/orgs/{orgSlug}/members                 — List members (any member)
PUT    /api/v1/orgs/{orgSlug}/members/{memberId}/role — Change a member's role (manager+)
DELETE /api/v1/orgs/{orgSlug}/members/{memberId}      — Remove a member (manager+)
POST   /api/v1/orgs/{orgSlug}/invitations             — Invite by email (manager+)
GET    /api/v1/orgs/{orgSlug}/invitations             — Pending invitations (manager+)
DELETE /api/v1/orgs/{orgSlug}/invitations/{invitationId} — Cancel an invitation (manager+)
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tenantry.core.auth import (
    OrgContext,
    get_current_user,
    require_manager,
    require_member,
    require_member_authority,
    require_org_admin,
)
from tenantry.core.database import get_session
from tenantry.models.membership import Membership
from tenantry.models.user import User
from tenantry.services import organizations as org_service
from tenantry_shared.schemas.common import MessageResponse
from tenantry_shared.schemas.organizations import (
    AcceptInvitationRequest,
    AcceptInvitationResponse,
    InvitationCreatedResponse,
    InvitationListResponse,
    InvitationPreview,
    InvitationResponse,
    InviteMemberRequest,
    MemberListResponse,
    MemberResponse,
    MemberUser,
    MembershipResponse,
    OrgCreateRequest,
    OrgCreateResponse,
    OrgListItem,
    OrgListResponse,
    OrgResponse,
    OrgUpdateRequest,
    UpdateMemberRoleRequest,
)

log = structlog.get_logger()
router = APIRouter()


# ---------------------------------------------------------------------------
# Non-org-scoped routes
# ---------------------------------------------------------------------------

@router.post("", response_model=OrgCreateResponse, status_code=201)
async def create_org(
    body: OrgCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Create a new organization. The creator becomes its org_admin."""
    org, membership = await org_service.create_org(
        body.name, user.id, session, slug=body.slug, logo=body.logo
    )
    return OrgCreateResponse(
        org=OrgResponse.model_validate(org),
        membership=MembershipResponse.model_validate(membership),
    )


@router.get("", response_model=OrgListResponse)
async def list_orgs(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    rows = await org_service.list_user_orgs(user.id, session)
    return OrgListResponse(
        data=[
            OrgListItem(org=OrgResponse.model_validate(org), role=membership.role)
            for org, membership in rows
        ]
    )


@router.post("/accept-invitation", response_model=AcceptInvitationResponse)
async def accept_invitation(
    body: AcceptInvitationRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    org, membership = await org_service.accept_invitation(body.token, user, session)
    return AcceptInvitationResponse(
        org=OrgResponse.model_validate(org),
        membership=MembershipResponse.model_validate(membership),
    )


@router.get("/invitations/{token}", response_model=InvitationPreview)
async def preview_invitation(
    token: str,
    session: AsyncSession = Depends(get_session),
):
    """Invitation details for the accept page. No authentication required."""
    invitation, org = await org_service.get_invitation_by_token(token, session)
    return InvitationPreview(
        email=invitation.email,
        role=invitation.role,
        status=invitation.status,
        expires_at=invitation.expires_at,
        org_name=org.name,
        org_slug=org.slug,
    )


# ---------------------------------------------------------------------------
# Org-scoped routes
# ---------------------------------------------------------------------------

@router.get("/{orgSlug}", response_model=OrgListItem)
async def get_org(ctx: OrgContext = Depends(require_member)):
    return OrgListItem(org=OrgResponse.model_validate(ctx.org), role=ctx.role)


@router.put("/{orgSlug}", response_model=OrgResponse)
async def update_org(
    body: OrgUpdateRequest,
    ctx: OrgContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
):
    org = await org_service.update_org(
        ctx.org,
        session,
        name=body.name,
        logo=body.logo,
        status=body.status,
        settings=body.settings.model_dump(exclude_none=True, mode="json") if body.settings else None,
    )
    return OrgResponse.model_validate(org)


@router.get("/{orgSlug}/members", response_model=MemberListResponse)
async def list_members(
    ctx: OrgContext = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    rows = await org_service.list_members(ctx.org_id, session)
    return MemberListResponse(
        data=[
            MemberResponse(
                membership=MembershipResponse.model_validate(membership),
                user=MemberUser(
                    id=user.id,
                    email=user.email,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    status=user.status,
                ),
            )
            for membership, user in rows
        ]
    )


@router.put("/{orgSlug}/members/{memberId}/role", response_model=MembershipResponse)
async def update_member_role(
    body: UpdateMemberRoleRequest,
    ctx: OrgContext = Depends(require_manager),
    target: Membership = Depends(require_member_authority),
    session: AsyncSession = Depends(get_session),
):
    membership = await org_service.update_member_role(
        ctx.org, target, body.role, session, actor_role=ctx.role
    )
    return MembershipResponse.model_validate(membership)


@router.delete("/{orgSlug}/members/{memberId}", response_model=MessageResponse)
async def remove_member(
    ctx: OrgContext = Depends(require_manager),
    target: Membership = Depends(require_member_authority),
    session: AsyncSession = Depends(get_session),
):
    await org_service.remove_member(ctx.org, target, session)
    return MessageResponse(message="Member removed successfully")


@router.post(
    "/{orgSlug}/invitations",
    response_model=InvitationCreatedResponse,
    status_code=201,
)
async def invite_member(
    body: InviteMemberRequest,
    ctx: OrgContext = Depends(require_manager),
    session: AsyncSession = Depends(get_session),
):
    invitation = await org_service.invite_member(
        ctx.org, body.email, body.role, ctx.membership, session
    )
    return InvitationCreatedResponse.model_validate(invitation)


@router.get("/{orgSlug}/invitations", response_model=InvitationListResponse)
async def list_invitations(
    ctx: OrgContext = Depends(require_manager),
    session: AsyncSession = Depends(get_session),
):
    invitations = await org_service.list_invitations(ctx.org_id, session)
    return InvitationListResponse(
        data=[InvitationResponse.model_validate(inv) for inv in invitations]
    )


@router.delete("/{orgSlug}/invitations/{invitationId}", response_model=MessageResponse)
async def cancel_invitation(
    invitationId: uuid.UUID,
    ctx: OrgContext = Depends(require_manager),
    session: AsyncSession = Depends(get_session),
):
    await org_service.cancel_invitation(ctx.org_id, invitationId, session)
    return MessageResponse(message="Invitation cancelled successfully")
