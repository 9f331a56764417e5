"""
Task service — org-scoped CRUD used as the reference tenant resource.

Every query is bound to one org and excludes soft-deleted rows.
"""

from __future__ import annotations

import math
import uuid
from typing import Optional

import structlog
from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantry.core.errors import InsufficientRole, NotFound
from tenantry.core.rbac import CreatorOrRolePolicy, Policy, PolicyContext
from tenantry.models.base import utcnow
from tenantry.models.task import Task
from tenantry_shared.schemas.common import Role, TaskStatus
from tenantry_shared.schemas.tasks import TaskCreate, TaskUpdate

log = structlog.get_logger()

# Managers and above edit any task; technicians only their own.
TASK_WRITE_POLICY: Policy = CreatorOrRolePolicy(min_role=Role.MANAGER)


def escape_like(term: str) -> str:
    """Make `%`, `_` and `\\` in user input match literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _active(org_id: uuid.UUID):
    return select(Task).where(Task.org_id == org_id, Task.deleted_at.is_(None))


def ensure_can_modify(task: Task, role: Role, caller_id: uuid.UUID, action: str) -> None:
    ctx = PolicyContext(
        role=role,
        action=action,
        caller_id=caller_id,
        resource_owner_id=task.created_by,
    )
    if not TASK_WRITE_POLICY.evaluate(ctx):
        raise InsufficientRole(f"You do not have permission to {action} this task")


async def create_task(
    org_id: uuid.UUID, user_id: uuid.UUID, data: TaskCreate, session: AsyncSession
) -> Task:
    task = Task(
        org_id=org_id,
        title=data.title,
        description=data.description,
        status=data.status.value,
        created_by=user_id,
    )
    session.add(task)
    await session.flush()
    log.info("task.created", task_id=str(task.id), org_id=str(org_id))
    return task


async def list_tasks(
    org_id: uuid.UUID,
    session: AsyncSession,
    *,
    status: Optional[TaskStatus] = None,
    created_by: Optional[uuid.UUID] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Task], int, int, int]:
    """Returns (tasks, total, page, total_pages), newest first."""
    stmt = _active(org_id)
    if status is not None:
        stmt = stmt.where(Task.status == TaskStatus(status).value)
    if created_by is not None:
        stmt = stmt.where(Task.created_by == created_by)
    if search:
        pattern = f"%{escape_like(search.lower())}%"
        stmt = stmt.where(
            or_(
                func.lower(Task.title).like(pattern, escape="\\"),
                func.lower(func.coalesce(Task.description, "")).like(pattern, escape="\\"),
            )
        )

    total = (
        await session.execute(select(func.count()).select_from(stmt.subquery()))
    ).scalar_one()

    result = await session.execute(
        stmt.order_by(Task.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    total_pages = math.ceil(total / limit) if limit else 0
    return list(result.scalars().all()), total, page, total_pages


async def get_task(org_id: uuid.UUID, task_id: uuid.UUID, session: AsyncSession) -> Task:
    result = await session.execute(_active(org_id).where(Task.id == task_id))
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFound.resource("Task")
    return task


async def update_task(
    org_id: uuid.UUID,
    task_id: uuid.UUID,
    data: TaskUpdate,
    role: Role,
    caller_id: uuid.UUID,
    session: AsyncSession,
) -> Task:
    task = await get_task(org_id, task_id, session)
    ensure_can_modify(task, role, caller_id, "update")

    changes = data.model_dump(exclude_unset=True)
    # Only the description may be cleared.
    changes = {k: v for k, v in changes.items() if v is not None or k == "description"}
    if "status" in changes:
        changes["status"] = TaskStatus(changes["status"]).value
    for key, value in changes.items():
        setattr(task, key, value)

    session.add(task)
    await session.flush()
    log.info("task.updated", task_id=str(task.id), fields=sorted(changes))
    return task


async def delete_task(
    org_id: uuid.UUID,
    task_id: uuid.UUID,
    role: Role,
    caller_id: uuid.UUID,
    session: AsyncSession,
) -> None:
    task = await get_task(org_id, task_id, session)
    ensure_can_modify(task, role, caller_id, "delete")

    now = utcnow()
    result = await session.execute(
        update(Task)
        .where(Task.id == task.id, Task.org_id == org_id, Task.deleted_at.is_(None))
        .values(deleted_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound.resource("Task")
    log.info("task.deleted", task_id=str(task_id), org_id=str(org_id))
