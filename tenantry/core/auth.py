"""
Authentication and authorization dependencies.

Every protected route runs the same pipeline, stopping at the first failure:

1. `get_current_user_id`   Bearer access token -> user id
2. `get_current_user`      user id -> active User
3. `load_org_context`      {orgSlug} -> org + the caller's active membership
4. `require_role(...)`     minimum role check
5. `load_target_member`    {memberId} -> membership the caller may manage

Route handlers only ever see a fully resolved `OrgContext`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Mapping, Optional

import structlog
from fastapi import Depends, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from tenantry.core.config import get_settings
from tenantry.core.database import get_session
from tenantry.core.errors import (
    InsufficientRole,
    NotAMember,
    NotFound,
    OrgInactive,
    OrgNotFound,
    Unauthenticated,
)
from tenantry.core.rbac import can_manage_member, has_required_role
from tenantry.core.tokens import AccessClaims, TokenConfig, TokenService
from tenantry.models.membership import Membership
from tenantry.models.organization import Organization
from tenantry.models.user import User
from tenantry.services import organizations as org_service
from tenantry.services import users as user_service
from tenantry.services.refresh_tokens import RefreshTokenStore
from tenantry_shared.schemas.common import OrgStatus, Role, UserStatus

log = structlog.get_logger()

authorization_header = APIKeyHeader(name="Authorization", auto_error=False)

BEARER_PREFIX = "Bearer "


# ---------------------------------------------------------------------------
# Token service wiring
# ---------------------------------------------------------------------------

async def get_token_service(session: AsyncSession = Depends(get_session)) -> TokenService:
    return TokenService(TokenConfig.from_settings(get_settings()), RefreshTokenStore(session))


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise Unauthenticated("No access token provided")
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise Unauthenticated("No access token provided")
    return token


def authenticate(headers: Mapping[str, str], token_service: TokenService) -> AccessClaims:
    """Resolve request headers to access-token claims. Stateless."""
    authorization = headers.get("authorization") or headers.get("Authorization")
    return token_service.verify_access_token(extract_bearer_token(authorization))


async def get_current_user_id(
    request: Request,
    authorization: Optional[str] = Depends(authorization_header),
    token_service: TokenService = Depends(get_token_service),
) -> uuid.UUID:
    claims = token_service.verify_access_token(extract_bearer_token(authorization))
    request.state.user_id = claims.user_id
    structlog.contextvars.bind_contextvars(user_id=str(claims.user_id))
    return claims.user_id


async def get_current_user(
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> User:
    user = await user_service.get_user(user_id, session)
    if user is None or user.status != UserStatus.ACTIVE.value:
        raise Unauthenticated("User not found or inactive")
    return user


# ---------------------------------------------------------------------------
# Org context
# ---------------------------------------------------------------------------

@dataclass
class OrgContext:
    """Authenticated user plus their org and membership for this request."""

    user: User
    org: Organization
    membership: Membership

    @property
    def user_id(self) -> uuid.UUID:
        return self.user.id

    @property
    def org_id(self) -> uuid.UUID:
        return self.org.id

    @property
    def role(self) -> Role:
        return Role(self.membership.role)


async def resolve_org_context(
    slug: str, user_id: uuid.UUID, session: AsyncSession
) -> tuple[Organization, Membership]:
    """
    Org by slug plus the caller's membership.

    Raises OrgNotFound, OrgInactive or NotAMember, in that order.
    """
    org = await org_service.get_org_by_slug(slug, session)
    if org is None:
        raise OrgNotFound()
    if org.status != OrgStatus.ACTIVE.value:
        raise OrgInactive()

    membership = await org_service.get_membership(user_id, org.id, session)
    if membership is None or not membership.is_active:
        raise NotAMember()
    return org, membership


async def load_org_context(
    request: Request,
    orgSlug: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> OrgContext:
    org, membership = await resolve_org_context(orgSlug, user.id, session)
    request.state.org_id = org.id
    request.state.role = membership.role
    structlog.contextvars.bind_contextvars(org_id=str(org.id), role=membership.role)
    return OrgContext(user=user, org=org, membership=membership)


# ---------------------------------------------------------------------------
# Authorization dependencies (role checks)
# ---------------------------------------------------------------------------

def require_role(min_role: Role):
    """Dependency factory: the caller's role must be `min_role` or higher."""

    async def dependency(ctx: OrgContext = Depends(load_org_context)) -> OrgContext:
        if not has_required_role(ctx.role, min_role):
            log.info(
                "auth.insufficient_role",
                user_id=str(ctx.user_id),
                org_id=str(ctx.org_id),
                role=ctx.role.value,
                required=min_role.value,
            )
            raise InsufficientRole(f"This action requires {min_role.value} role or higher")
        return ctx

    return dependency


require_org_admin = require_role(Role.ORG_ADMIN)
require_manager = require_role(Role.MANAGER)
require_member = require_role(Role.TECHNICIAN)


async def load_target_member(
    memberId: uuid.UUID,
    ctx: OrgContext = Depends(load_org_context),
    session: AsyncSession = Depends(get_session),
) -> Membership:
    """Target membership of a member-management route, same org only."""
    target = await org_service.get_member(memberId, ctx.org_id, session)
    if target is None:
        raise NotFound.resource("Member")
    return target


async def require_member_authority(
    ctx: OrgContext = Depends(require_manager),
    target: Membership = Depends(load_target_member),
) -> Membership:
    """Caller must be allowed to manage the target's current role."""
    if not can_manage_member(ctx.role, target.role):
        raise InsufficientRole("You do not have permission to manage this member")
    return target
