"""
Account and organization settings endpoints.

GET  /api/v1/settings/profile          — Current user's profile
PUT  /api/v1/settings/profile          — Update name / avatar
POST /api/v1/settings/change-password  — Change password (requires current password)
GET  /api/v1/settings/organizations    — Orgs the user belongs to, with role
GET  /api/v1/settings/org/{orgSlug}    — Org settings (any member)
PUT  /api/v1/settings/org/{orgSlug}    — Update org settings (org_admin)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tenantry.core.auth import OrgContext, get_current_user, load_org_context, require_org_admin
from tenantry.core.database import get_session
from tenantry.models.user import User
from tenantry.services import organizations as org_service
from tenantry.services import users as user_service
from tenantry_shared.schemas.common import MessageResponse
from tenantry_shared.schemas.organizations import (
    OrgListItem,
    OrgListResponse,
    OrgResponse,
    OrgSettings,
    OrgSettingsUpdate,
)
from tenantry_shared.schemas.users import (
    ChangePasswordRequest,
    ProfileUpdateRequest,
    UserResponse,
)

router = APIRouter()


@router.get("/profile", response_model=UserResponse)
async def get_profile(user: User = Depends(get_current_user)):
    return UserResponse.model_validate(user)


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    body: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    updated = await user_service.update_profile(
        user.id,
        session,
        first_name=body.first_name,
        last_name=body.last_name,
        avatar=body.avatar,
    )
    return UserResponse.model_validate(updated)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    await user_service.change_password(
        user.id, body.current_password, body.new_password, session
    )
    return MessageResponse(message="Password changed successfully")


@router.get("/organizations", response_model=OrgListResponse)
async def list_organizations(
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


@router.get("/org/{orgSlug}", response_model=OrgResponse)
async def get_org_settings(ctx: OrgContext = Depends(load_org_context)):
    return OrgResponse.model_validate(ctx.org)


@router.put("/org/{orgSlug}", response_model=OrgSettings)
async def update_org_settings(
    body: OrgSettingsUpdate,
    ctx: OrgContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
):
    org = await org_service.update_org(
        ctx.org, session, settings=body.model_dump(exclude_none=True, mode="json")
    )
    return org_service.org_settings(org)
