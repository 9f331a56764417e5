"""
Organization service — org lifecycle, membership management and invitations.

All multi-row writes here flush into the caller's session; the request
transaction (see `tenantry.core.database.get_session`) commits them together.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

import structlog
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantry.core.config import get_settings
from tenantry.core.errors import (
    BadRequest,
    Conflict,
    InsufficientRole,
    InvitationEmailMismatch,
    LastAdminProtected,
    NotFound,
)
from tenantry.core.rbac import has_required_role
from tenantry.core.security import generate_invitation_token
from tenantry.models.base import ensure_utc, utcnow
from tenantry.models.invitation import Invitation
from tenantry.models.membership import Membership
from tenantry.models.organization import Organization
from tenantry.models.user import User
from tenantry_shared.schemas.common import (
    InvitationStatus,
    MembershipStatus,
    OrgStatus,
    Role,
)
from tenantry_shared.schemas.organizations import OrgSettings

log = structlog.get_logger()

SLUG_MAX_BASE_LENGTH = 40
SLUG_MIN_LENGTH = 3
# Path segments under /orgs that are not org slugs.
RESERVED_SLUGS = frozenset({"invitations", "accept-invitation"})


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------

def slugify(name: str) -> str:
    """Base slug for a display name: lowercase, hyphen-separated, at least 3 chars."""
    base = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:SLUG_MAX_BASE_LENGTH]
    if len(base) < SLUG_MIN_LENGTH:
        base = f"org-{base}"
    return base


async def _slug_taken(slug: str, session: AsyncSession) -> bool:
    if slug in RESERVED_SLUGS:
        return True
    # Soft-deleted orgs keep their slug.
    result = await session.execute(select(Organization.id).where(Organization.slug == slug))
    return result.first() is not None


async def generate_unique_slug(name: str, session: AsyncSession) -> str:
    base = slugify(name)
    slug = base
    counter = 1
    while await _slug_taken(slug, session):
        slug = f"{base}-{counter}"
        counter += 1
    return slug


async def create_org(
    name: str,
    creator_id: uuid.UUID,
    session: AsyncSession,
    *,
    slug: Optional[str] = None,
    logo: Optional[str] = None,
) -> tuple[Organization, Membership]:
    """Create an org and make the creator its org_admin."""
    if slug is not None:
        if await _slug_taken(slug, session):
            raise Conflict("Organization slug is already taken")
    else:
        slug = await generate_unique_slug(name, session)

    org = Organization(
        name=name.strip(),
        slug=slug,
        logo=logo,
        status=OrgStatus.ACTIVE.value,
        settings=OrgSettings().model_dump(mode="json"),
        created_by=creator_id,
    )
    session.add(org)
    await session.flush()

    membership = Membership(
        user_id=creator_id,
        org_id=org.id,
        role=Role.ORG_ADMIN.value,
        status=MembershipStatus.ACTIVE.value,
        joined_at=utcnow(),
    )
    session.add(membership)
    await session.flush()

    log.info("org.created", org_id=str(org.id), slug=slug, creator=str(creator_id))
    return org, membership


async def get_org_by_slug(slug: str, session: AsyncSession) -> Optional[Organization]:
    result = await session.execute(
        select(Organization).where(Organization.slug == slug, Organization.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


async def list_user_orgs(
    user_id: uuid.UUID, session: AsyncSession
) -> list[tuple[Organization, Membership]]:
    """Orgs the user actively belongs to, with their membership."""
    result = await session.execute(
        select(Organization, Membership)
        .join(Membership, Membership.org_id == Organization.id)
        .where(
            Membership.user_id == user_id,
            Membership.status == MembershipStatus.ACTIVE.value,
            Membership.deleted_at.is_(None),
            Organization.deleted_at.is_(None),
        )
        .order_by(Membership.joined_at)
    )
    return [(org, membership) for org, membership in result.all()]


async def update_org(
    org: Organization,
    session: AsyncSession,
    *,
    name: Optional[str] = None,
    logo: Optional[str] = None,
    status: Optional[OrgStatus] = None,
    settings: Optional[dict[str, Any]] = None,
) -> Organization:
    """Update org fields. Settings are merged key by key into the stored ones."""
    if name is not None:
        org.name = name.strip()
    if logo is not None:
        org.logo = logo
    if status is not None:
        org.status = OrgStatus(status).value

    if settings:
        merged = {**(org.settings or {}), **settings}
        # Reassign so the JSON column is flagged dirty.
        org.settings = OrgSettings.model_validate(merged).model_dump(mode="json")

    session.add(org)
    await session.flush()

    log.info("org.updated", org_id=str(org.id), slug=org.slug)
    return org


def org_settings(org: Organization) -> OrgSettings:
    return OrgSettings.model_validate(org.settings or {})


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------

async def get_membership(
    user_id: uuid.UUID, org_id: uuid.UUID, session: AsyncSession
) -> Optional[Membership]:
    result = await session.execute(
        select(Membership).where(
            Membership.user_id == user_id,
            Membership.org_id == org_id,
            Membership.deleted_at.is_(None),
        )
    )
    return result.scalar_one_or_none()


async def get_member(
    member_id: uuid.UUID, org_id: uuid.UUID, session: AsyncSession
) -> Optional[Membership]:
    """Membership by its own id, scoped to the org."""
    result = await session.execute(
        select(Membership).where(
            Membership.id == member_id,
            Membership.org_id == org_id,
            Membership.deleted_at.is_(None),
        )
    )
    return result.scalar_one_or_none()


async def list_members(
    org_id: uuid.UUID, session: AsyncSession
) -> list[tuple[Membership, User]]:
    result = await session.execute(
        select(Membership, User)
        .join(User, User.id == Membership.user_id)
        .where(
            Membership.org_id == org_id,
            Membership.status == MembershipStatus.ACTIVE.value,
            Membership.deleted_at.is_(None),
            User.deleted_at.is_(None),
        )
        .order_by(Membership.created_at)
    )
    return [(membership, user) for membership, user in result.all()]


async def count_active_admins(
    org_id: uuid.UUID, session: AsyncSession, *, lock: bool = False
) -> int:
    """
    Number of active org_admin memberships.

    With `lock=True` the admin rows are locked (SELECT ... FOR UPDATE) until
    the transaction ends, so two concurrent demotions cannot both observe
    two admins.
    """
    stmt = select(Membership.id).where(
        Membership.org_id == org_id,
        Membership.role == Role.ORG_ADMIN.value,
        Membership.status == MembershipStatus.ACTIVE.value,
        Membership.deleted_at.is_(None),
    )
    if lock:
        result = await session.execute(stmt.with_for_update())
        return len(result.all())

    result = await session.execute(select(func.count()).select_from(stmt.subquery()))
    return result.scalar_one()


def _is_active_admin(membership: Membership) -> bool:
    """Only active admins count towards the org's admin total."""
    return membership.role == Role.ORG_ADMIN.value and membership.is_active


async def _ensure_not_last_admin(org_id: uuid.UUID, session: AsyncSession, message: str) -> None:
    if await count_active_admins(org_id, session, lock=True) <= 1:
        raise LastAdminProtected(message)


async def update_member_role(
    org: Organization,
    target: Membership,
    new_role: Role,
    session: AsyncSession,
    *,
    actor_role: Optional[Role] = None,
) -> Membership:
    new_role = Role(new_role)
    if actor_role is not None and not has_required_role(actor_role, new_role):
        raise InsufficientRole("You cannot assign a role higher than your own")

    if _is_active_admin(target) and new_role != Role.ORG_ADMIN:
        await _ensure_not_last_admin(
            org.id, session, "Cannot demote the last organization admin"
        )

    result = await session.execute(
        update(Membership)
        .where(
            Membership.id == target.id,
            Membership.org_id == org.id,
            Membership.deleted_at.is_(None),
        )
        .values(role=new_role.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound.resource("Member")
    await session.refresh(target)

    log.info(
        "org.member_role_updated",
        org_id=str(org.id),
        membership_id=str(target.id),
        role=new_role.value,
    )
    return target


async def remove_member(
    org: Organization, target: Membership, session: AsyncSession
) -> None:
    """Soft-delete a membership."""
    if _is_active_admin(target):
        await _ensure_not_last_admin(
            org.id, session, "Cannot remove the last organization admin"
        )

    now = utcnow()
    result = await session.execute(
        update(Membership)
        .where(
            Membership.id == target.id,
            Membership.org_id == org.id,
            Membership.deleted_at.is_(None),
        )
        .values(deleted_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound.resource("Member")

    log.info("org.member_removed", org_id=str(org.id), membership_id=str(target.id))


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------

def _is_expired(invitation: Invitation, now: Optional[datetime] = None) -> bool:
    return ensure_utc(invitation.expires_at) <= (now or utcnow())


async def _unique_invitation_token(session: AsyncSession) -> str:
    while True:
        token = generate_invitation_token()
        result = await session.execute(select(Invitation.id).where(Invitation.token == token))
        if result.first() is None:
            return token


async def invite_member(
    org: Organization,
    email: str,
    role: Role,
    inviter: Membership,
    session: AsyncSession,
) -> Invitation:
    """
    Create a pending invitation.

    - Org admins can always invite, with any role
    - Managers can invite when the org allows member invites, never as org_admin
    """
    role = Role(role)
    email = email.strip().lower()
    inviter_is_admin = inviter.role == Role.ORG_ADMIN.value

    if not inviter_is_admin and not org_settings(org).allow_member_invites:
        raise InsufficientRole("Only organization admins can send invitations")
    if role == Role.ORG_ADMIN and not inviter_is_admin:
        raise InsufficientRole("Only organization admins can invite admins")

    existing_member = await session.execute(
        select(Membership.id)
        .join(User, User.id == Membership.user_id)
        .where(
            User.email == email,
            User.deleted_at.is_(None),
            Membership.org_id == org.id,
            Membership.deleted_at.is_(None),
        )
    )
    if existing_member.first() is not None:
        raise Conflict("User is already a member of this organization")

    result = await session.execute(
        select(Invitation).where(
            Invitation.email == email,
            Invitation.org_id == org.id,
            Invitation.status == InvitationStatus.PENDING.value,
            Invitation.deleted_at.is_(None),
        )
    )
    for pending in result.scalars().all():
        if not _is_expired(pending):
            raise Conflict("An invitation is already pending for this email")
        pending.status = InvitationStatus.EXPIRED.value
        session.add(pending)

    invitation = Invitation(
        email=email,
        org_id=org.id,
        role=role.value,
        token=await _unique_invitation_token(session),
        invited_by=inviter.user_id,
        expires_at=utcnow() + timedelta(days=get_settings().invitation_expire_days),
        status=InvitationStatus.PENDING.value,
    )
    session.add(invitation)
    await session.flush()

    log.info(
        "org.member_invited",
        org_id=str(org.id),
        invitation_id=str(invitation.id),
        role=role.value,
    )
    return invitation


async def list_invitations(org_id: uuid.UUID, session: AsyncSession) -> list[Invitation]:
    """Pending, unexpired invitations, newest first."""
    result = await session.execute(
        select(Invitation)
        .where(
            Invitation.org_id == org_id,
            Invitation.status == InvitationStatus.PENDING.value,
            Invitation.expires_at > utcnow(),
            Invitation.deleted_at.is_(None),
        )
        .order_by(Invitation.created_at.desc())
    )
    return list(result.scalars().all())


async def get_invitation_by_token(
    token: str, session: AsyncSession
) -> tuple[Invitation, Organization]:
    """Invitation and its org, for the public preview page."""
    result = await session.execute(
        select(Invitation, Organization)
        .join(Organization, Organization.id == Invitation.org_id)
        .where(
            Invitation.token == token,
            Invitation.deleted_at.is_(None),
            Organization.deleted_at.is_(None),
        )
    )
    row = result.first()
    if row is None:
        raise NotFound.resource("Invitation")
    return row[0], row[1]


async def accept_invitation(
    token: str, user: User, session: AsyncSession
) -> tuple[Organization, Membership]:
    result = await session.execute(
        select(Invitation)
        .where(Invitation.token == token, Invitation.deleted_at.is_(None))
        .with_for_update()
    )
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise NotFound.resource("Invitation")

    if invitation.status != InvitationStatus.PENDING.value:
        raise BadRequest("Invitation is no longer valid")

    if _is_expired(invitation):
        invitation.status = InvitationStatus.EXPIRED.value
        session.add(invitation)
        # Keep the expiry even though this request fails.
        await session.commit()
        raise BadRequest("Invitation has expired")

    if user.email.lower() != invitation.email.lower():
        raise InvitationEmailMismatch()

    result = await session.execute(
        select(Organization).where(
            Organization.id == invitation.org_id, Organization.deleted_at.is_(None)
        )
    )
    org = result.scalar_one_or_none()
    if org is None:
        raise NotFound.resource("Organization")

    # Includes soft-deleted rows: (user_id, org_id) is unique.
    result = await session.execute(
        select(Membership).where(
            Membership.user_id == user.id, Membership.org_id == invitation.org_id
        )
    )
    membership = result.scalar_one_or_none()
    now = utcnow()
    if membership is not None and membership.deleted_at is None:
        raise Conflict("You are already a member of this organization")

    if membership is None:
        membership = Membership(user_id=user.id, org_id=invitation.org_id)
    membership.role = invitation.role
    membership.status = MembershipStatus.ACTIVE.value
    membership.invited_by = invitation.invited_by
    membership.joined_at = now
    membership.deleted_at = None
    session.add(membership)

    invitation.status = InvitationStatus.ACCEPTED.value
    invitation.accepted_at = now
    session.add(invitation)
    await session.flush()

    log.info(
        "org.invitation_accepted",
        org_id=str(org.id),
        invitation_id=str(invitation.id),
        user_id=str(user.id),
    )
    return org, membership


async def cancel_invitation(
    org_id: uuid.UUID, invitation_id: uuid.UUID, session: AsyncSession
) -> None:
    result = await session.execute(
        update(Invitation)
        .where(
            Invitation.id == invitation_id,
            Invitation.org_id == org_id,
            Invitation.status == InvitationStatus.PENDING.value,
            Invitation.deleted_at.is_(None),
        )
        .values(status=InvitationStatus.CANCELLED.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound.resource("Invitation")
    log.info("org.invitation_cancelled", org_id=str(org_id), invitation_id=str(invitation_id))


async def expire_stale_invitations(now: datetime, session: AsyncSession) -> int:
    """Mark pending invitations past their expiry as expired. Returns the count."""
    result = await session.execute(
        update(Invitation)
        .where(
            Invitation.status == InvitationStatus.PENDING.value,
            Invitation.expires_at <= now,
        )
        .values(status=InvitationStatus.EXPIRED.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
