"""Task endpoints. Every route sits behind the token and the license gate."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bountyboard.auth.dependencies import get_current_user, require_lead, require_valid_license
from bountyboard.database import get_session
from bountyboard.db.models import TaskPriority, TaskStatus, User
from bountyboard.redis_client import get_optional_redis
from bountyboard.tasks import service
from bountyboard.tasks.schemas import (
    AssignTaskRequest,
    CreateTaskRequest,
    KanbanBoardResponse,
    TaskResponse,
    TaskStatisticsResponse,
    UpdateStatusRequest,
    UpdateTaskRequest,
)

router = APIRouter(
    prefix="/api/v1/tasks",
    tags=["Tasks"],
    dependencies=[Depends(require_valid_license)],
)


@router.get("/board", response_model=KanbanBoardResponse)
async def board(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> KanbanBoardResponse:
    columns = await service.get_kanban_board(db, user)
    return KanbanBoardResponse(
        **{name: [TaskResponse.model_validate(t) for t in tasks] for name, tasks in columns.items()}
    )


@router.get("/statistics", response_model=TaskStatisticsResponse)
async def statistics(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> TaskStatisticsResponse:
    return TaskStatisticsResponse(**await service.get_task_statistics(db, user))


@router.get("", response_model=list[TaskResponse])
async def list_tasks(
    status: TaskStatus | None = None,
    priority: TaskPriority | None = None,
    created_by: int | None = None,
    assigned_to: int | None = None,
    search: str | None = Query(None, max_length=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[TaskResponse]:
    tasks = await service.list_tasks(
        db,
        user,
        status=status.value if status else None,
        priority=priority.value if priority else None,
        created_by=created_by,
        assigned_to=assigned_to,
        search=search,
    )
    return [TaskResponse.model_validate(t) for t in tasks]


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> TaskResponse:
    return TaskResponse.model_validate(await service.get_task(db, task_id, user))


@router.post("", response_model=TaskResponse, status_code=201)
async def create_task(
    body: CreateTaskRequest,
    user: User = Depends(require_lead),
    db: AsyncSession = Depends(get_session),
) -> TaskResponse:
    task = await service.create_task(
        db,
        user,
        title=body.title,
        description=body.description,
        bounty_amount=body.bounty_amount,
        deadline=body.deadline,
        priority=body.priority.value,
        tags=body.tags,
    )
    await db.commit()
    return TaskResponse.model_validate(await service.get_task(db, task.id, user))


@router.put("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: int,
    body: UpdateTaskRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> TaskResponse:
    fields = body.model_dump(exclude_unset=True)
    if "priority" in fields and fields["priority"] is not None:
        fields["priority"] = fields["priority"].value
    await service.update_task(db, task_id, user, **fields)
    await db.commit()
    return TaskResponse.model_validate(await service.get_task(db, task_id, user))


@router.delete("/{task_id}")
async def delete_task(
    task_id: int,
    user: User = Depends(require_lead),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    await service.delete_task(db, task_id, user)
    return {"status": "task_deleted"}


@router.post("/{task_id}/assign", response_model=TaskResponse)
async def assign_task(
    task_id: int,
    body: AssignTaskRequest | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Any = Depends(get_optional_redis),
) -> TaskResponse:
    """Claim an available task. Leads and admins may name another team member."""
    assignee_id = body.user_id if body else None
    task = await service.assign_task(db, task_id, user, assignee_id=assignee_id, redis=redis)
    return TaskResponse.model_validate(task)


@router.put("/{task_id}/status", response_model=TaskResponse)
async def update_status(
    task_id: int,
    body: UpdateStatusRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Any = Depends(get_optional_redis),
) -> TaskResponse:
    task = await service.update_task_status(db, task_id, body.status.value, user, redis=redis)
    return TaskResponse.model_validate(task)
