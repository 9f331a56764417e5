"""
Task endpoints: org-scoped CRUD.

Any member may read tasks; creating them takes a manager. Updating and
deleting is open to managers and above, and to the task's creator.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tenantry.core.auth import OrgContext, require_manager, require_member
from tenantry.core.database import get_session
from tenantry.services import tasks as task_service
from tenantry_shared.schemas.common import MessageResponse, Pagination, TaskStatus
from tenantry_shared.schemas.tasks import TaskCreate, TaskListResponse, TaskRead, TaskUpdate

router = APIRouter()


@router.post("", response_model=TaskRead, status_code=201)
async def create_task_endpoint(
    task_in: TaskCreate,
    ctx: OrgContext = Depends(require_manager),
    session: AsyncSession = Depends(get_session),
):
    task = await task_service.create_task(ctx.org_id, ctx.user_id, task_in, session)
    return TaskRead.model_validate(task)


@router.get("", response_model=TaskListResponse)
async def list_tasks_endpoint(
    status: Optional[TaskStatus] = None,
    created_by: Optional[uuid.UUID] = Query(None, alias="createdBy"),
    search: Optional[str] = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    ctx: OrgContext = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    """List tasks with optional status/creator filters and a text search."""
    tasks, total, page, total_pages = await task_service.list_tasks(
        ctx.org_id,
        session,
        status=status,
        created_by=created_by,
        search=search,
        page=page,
        limit=limit,
    )
    return TaskListResponse(
        data=[TaskRead.model_validate(t) for t in tasks],
        meta=Pagination(page=page, limit=limit, total=total, total_pages=total_pages),
    )


@router.get("/{task_id}", response_model=TaskRead)
async def get_task_endpoint(
    task_id: uuid.UUID,
    ctx: OrgContext = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    task = await task_service.get_task(ctx.org_id, task_id, session)
    return TaskRead.model_validate(task)


@router.put("/{task_id}", response_model=TaskRead)
async def update_task_endpoint(
    task_id: uuid.UUID,
    task_in: TaskUpdate,
    ctx: OrgContext = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    task = await task_service.update_task(
        ctx.org_id, task_id, task_in, ctx.role, ctx.user_id, session
    )
    return TaskRead.model_validate(task)


@router.delete("/{task_id}", response_model=MessageResponse)
async def delete_task_endpoint(
    task_id: uuid.UUID,
    ctx: OrgContext = Depends(require_member),
    session: AsyncSession = Depends(get_session),
):
    await task_service.delete_task(ctx.org_id, task_id, ctx.role, ctx.user_id, session)
    return MessageResponse(message="Task deleted successfully")
