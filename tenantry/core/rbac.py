"""
Role hierarchy and member-management authority.

Roles form a fixed total order: org_admin (3) > manager (2) > technician (1).
Minimum-role checks compare ordinals; anything finer grained goes through a
Policy evaluated after the role check.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional, Protocol, Union

from tenantry_shared.schemas.common import Role

ROLE_HIERARCHY: dict[Role, int] = {
    Role.ORG_ADMIN: 3,
    Role.MANAGER: 2,
    Role.TECHNICIAN: 1,
}

RoleLike = Union[Role, str]


def role_level(role: RoleLike) -> int:
    """Ordinal of a role; unknown roles rank below every real role."""
    try:
        return ROLE_HIERARCHY[Role(role)]
    except ValueError:
        return 0


def has_required_role(user_role: RoleLike, required_role: RoleLike) -> bool:
    """Check if user has required role or higher."""
    return role_level(user_role) >= role_level(required_role)


def can_manage_member(actor_role: RoleLike, target_role: RoleLike) -> bool:
    """
    Whether `actor_role` may change or remove a membership holding `target_role`.

    - Org admins can manage anyone
    - Managers can manage technicians
    - Technicians cannot manage anyone
    """
    actor = Role(actor_role)
    if actor == Role.ORG_ADMIN:
        return True
    if actor == Role.MANAGER:
        return Role(target_role) == Role.TECHNICIAN
    return False


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PolicyContext:
    role: Role
    action: str
    caller_id: uuid.UUID
    resource_owner_id: Optional[uuid.UUID] = None


class Policy(Protocol):
    def evaluate(self, ctx: PolicyContext) -> bool: ...


@dataclass(frozen=True)
class CreatorOrRolePolicy:
    """Allow callers holding `min_role` or better, or the resource's creator."""

    min_role: Role

    def evaluate(self, ctx: PolicyContext) -> bool:
        if has_required_role(ctx.role, self.min_role):
            return True
        return ctx.resource_owner_id is not None and ctx.resource_owner_id == ctx.caller_id
