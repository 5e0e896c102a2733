"""Task lifecycle.

State machine:
    AVAILABLE --assign--> IN_PROGRESS --> REVIEW --> COMPLETED
    IN_PROGRESS --> AVAILABLE (unassign; clears the assignee)

The first transition to COMPLETED pays the bounty when on time, or applies a
penalty of ``bounty_amount * penalty_multiplier`` when late. The status change
and the ledger write share one transaction; notifications go out after commit.

Tasks belong to their creator's team and are only visible inside it (admins
see every team).
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import case, func, or_, select

from bountyboard.config import get_settings
from bountyboard.db.models import Role, Task, TaskPriority, TaskStatus, User
from bountyboard.errors import BusinessRuleError, ForbiddenError, TaskNotFoundError, UserNotFoundError
from bountyboard.ledger.service import apply_penalty, money_str, notify_entry, process_bounty, to_money
from bountyboard.notifications.service import NotificationType, create_notification

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

TRANSITIONS: dict[str, frozenset[str]] = {
    TaskStatus.AVAILABLE.value: frozenset(),
    TaskStatus.IN_PROGRESS.value: frozenset({TaskStatus.REVIEW.value, TaskStatus.AVAILABLE.value}),
    TaskStatus.REVIEW.value: frozenset({TaskStatus.COMPLETED.value}),
    TaskStatus.COMPLETED.value: frozenset(),
}

MANAGER_ROLES = frozenset({Role.LEAD.value, Role.ADMIN.value})

_PRIORITY_RANK = case(
    (Task.priority == TaskPriority.HIGH.value, 3),
    (Task.priority == TaskPriority.MEDIUM.value, 2),
    else_=1,
)


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, frozenset())


def is_on_time(task: Task, now: datetime) -> bool:
    return now <= task.deadline


def penalty_for(bounty_amount: Decimal, multiplier: Decimal | None = None) -> Decimal:
    if multiplier is None:
        multiplier = get_settings().penalty_multiplier
    return to_money(Decimal(bounty_amount) * Decimal(multiplier))


# ---------------------------------------------------------------------------
# Loading & scope
# ---------------------------------------------------------------------------


def _scoped(stmt: Any, viewer: User) -> Any:
    if viewer.role == Role.ADMIN.value:
        return stmt
    return stmt.where(Task.team_id == viewer.team_id)


async def _load(db: AsyncSession, task_id: int, *, for_update: bool = False) -> Task:
    stmt = select(Task).where(Task.id == task_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update(of=Task)
    result = await db.execute(stmt)
    task = result.unique().scalar_one_or_none()
    if task is None:
        raise TaskNotFoundError
    return task


def _ensure_visible(task: Task, viewer: User) -> None:
    if viewer.role != Role.ADMIN.value and task.team_id != viewer.team_id:
        msg = "Access denied to this task"
        raise ForbiddenError(msg)


async def get_task(db: AsyncSession, task_id: int, viewer: User, *, for_update: bool = False) -> Task:
    """
    Raises:
        TaskNotFoundError: If the task does not exist.
        ForbiddenError: If it belongs to another team.
    """
    task = await _load(db, task_id, for_update=for_update)
    _ensure_visible(task, viewer)
    return task


async def list_tasks(
    db: AsyncSession,
    viewer: User,
    *,
    status: str | None = None,
    priority: str | None = None,
    created_by: int | None = None,
    assigned_to: int | None = None,
    search: str | None = None,
) -> list[Task]:
    stmt = _scoped(select(Task), viewer)
    if status:
        stmt = stmt.where(Task.status == status)
    if priority:
        stmt = stmt.where(Task.priority == priority)
    if created_by is not None:
        stmt = stmt.where(Task.created_by == created_by)
    if assigned_to is not None:
        stmt = stmt.where(Task.assigned_to == assigned_to)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Task.title.ilike(pattern), Task.description.ilike(pattern)))
    result = await db.execute(stmt.order_by(Task.created_at.desc(), Task.id.desc()))
    return list(result.unique().scalars().all())


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


async def _notify(
    db: AsyncSession,
    user_id: int,
    type_: NotificationType,
    data: dict[str, Any],
    redis: Any | None,
) -> None:
    """Create and commit one notification. Failures are logged, never raised."""
    try:
        await create_notification(db, user_id, type_, data, redis=redis)
        await db.commit()
    except Exception:
        logger.warning("task_notification_failed", user_id=user_id, type=type_.value, exc_info=True)
        await db.rollback()


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


async def create_task(
    db: AsyncSession,
    creator: User,
    *,
    title: str,
    description: str,
    bounty_amount: Decimal,
    deadline: datetime,
    priority: str = TaskPriority.MEDIUM.value,
    tags: list[str] | None = None,
) -> Task:
    """
    Raises:
        BusinessRuleError: Non-positive bounty or a deadline in the past.
    """
    bounty = to_money(bounty_amount)
    if bounty <= 0:
        msg = "Bounty amount must be positive"
        raise BusinessRuleError(msg)
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    if deadline <= datetime.now(timezone.utc):
        msg = "Deadline must be in the future"
        raise BusinessRuleError(msg)

    task = Task(
        title=title,
        description=description,
        bounty_amount=bounty,
        deadline=deadline,
        priority=priority,
        tags=list(tags or []),
        status=TaskStatus.AVAILABLE.value,
        team_id=creator.team_id,
        created_by=creator.id,
    )
    db.add(task)
    await db.flush()
    logger.info("task_created", task_id=task.id, creator_id=creator.id, bounty=str(bounty))
    return task


async def update_task(db: AsyncSession, task_id: int, actor: User, **fields: Any) -> Task:
    """
    Update descriptive fields. Only the creator or an admin may change the
    bounty or deadline.
    """
    task = await get_task(db, task_id, actor, for_update=True)
    changes = {k: v for k, v in fields.items() if v is not None}

    if ("bounty_amount" in changes or "deadline" in changes) and (
        task.created_by != actor.id and actor.role != Role.ADMIN.value
    ):
        msg = "Only task creator or admin can update bounty/deadline"
        raise ForbiddenError(msg)
    if "bounty_amount" in changes:
        changes["bounty_amount"] = to_money(changes["bounty_amount"])
        if changes["bounty_amount"] <= 0:
            msg = "Bounty amount must be positive"
            raise BusinessRuleError(msg)
    if "deadline" in changes and changes["deadline"].tzinfo is None:
        changes["deadline"] = changes["deadline"].replace(tzinfo=timezone.utc)

    for key, value in changes.items():
        setattr(task, key, value)
    await db.flush()
    logger.info("task_updated", task_id=task_id, fields=sorted(changes))
    return task


async def delete_task(db: AsyncSession, task_id: int, actor: User) -> None:
    """
    Delete a task that was never worked on.

    Once a task has an assignee it may carry ledger entries, so it stays.

    Raises:
        ForbiddenError: If the actor is neither the creator nor a lead/admin.
        BusinessRuleError: If the task has an assignee.
    """
    task = await get_task(db, task_id, actor, for_update=True)
    if task.created_by != actor.id and actor.role not in MANAGER_ROLES:
        msg = "Insufficient permissions to delete task"
        raise ForbiddenError(msg)
    if task.assigned_to is not None or task.status != TaskStatus.AVAILABLE.value:
        msg = "Cannot delete assigned or in-progress tasks"
        raise BusinessRuleError(msg)

    await db.delete(task)
    await db.commit()
    logger.info("task_deleted", task_id=task_id, actor_id=actor.id)


# ---------------------------------------------------------------------------
# Assignment & status
# ---------------------------------------------------------------------------


async def assign_task(
    db: AsyncSession,
    task_id: int,
    actor: User,
    *,
    assignee_id: int | None = None,
    redis: Any | None = None,
) -> Task:
    """
    Claim an AVAILABLE task, or (lead/admin) hand it to a team member.

    Raises:
        BusinessRuleError: "Task is not available" / "Task is already assigned".
    """
    task = await get_task(db, task_id, actor, for_update=True)
    if task.status != TaskStatus.AVAILABLE.value:
        msg = "Task is not available"
        raise BusinessRuleError(msg)
    if task.assigned_to is not None:
        msg = "Task is already assigned"
        raise BusinessRuleError(msg)

    target_id = actor.id
    if assignee_id is not None and assignee_id != actor.id:
        if actor.role not in MANAGER_ROLES:
            msg = "Only leads and admins can assign tasks to others"
            raise ForbiddenError(msg)
        target = await db.get(User, assignee_id)
        if target is None or not target.is_active:
            raise UserNotFoundError
        if target.team_id != task.team_id:
            msg = "Assignee must belong to the task's team"
            raise BusinessRuleError(msg)
        target_id = target.id

    task.assigned_to = target_id
    task.assigned_at = datetime.now(timezone.utc)
    task.status = TaskStatus.IN_PROGRESS.value
    await db.commit()
    logger.info("task_assigned", task_id=task_id, assignee_id=target_id)

    task = await _load(db, task_id)
    await _notify(
        db,
        target_id,
        NotificationType.TASK_ASSIGNED,
        {
            "task_title": task.title,
            "assigner_name": task.creator.username,
            "bounty_amount": money_str(task.bounty_amount),
            "task_id": task.id,
        },
        redis,
    )
    return await _load(db, task_id)


async def update_task_status(
    db: AsyncSession,
    task_id: int,
    new_status: str,
    actor: User,
    *,
    redis: Any | None = None,
    now: datetime | None = None,
) -> Task:
    """
    Drive the state machine.

    Re-sending the current status is a no-op, so the ledger is triggered at
    most once per task. If the ledger write fails the status is not advanced.

    Raises:
        ForbiddenError: Actor is not the assignee, a lead or an admin.
        BusinessRuleError: Transition not allowed.
    """
    task = await get_task(db, task_id, actor, for_update=True)
    if task.assigned_to != actor.id and actor.role not in MANAGER_ROLES:
        msg = "Only assigned user can update task status"
        raise ForbiddenError(msg)

    old_status = task.status
    if new_status == old_status:
        return task
    if not can_transition(old_status, new_status):
        msg = f"Invalid status transition from {old_status} to {new_status}"
        raise BusinessRuleError(msg)

    entry = None
    assignee_id = task.assigned_to
    try:
        task.status = new_status
        if new_status == TaskStatus.AVAILABLE.value:
            task.assigned_to = None
            task.assigned_at = None
        elif new_status == TaskStatus.COMPLETED.value:
            if assignee_id is None:
                msg = "Task has no assignee"
                raise BusinessRuleError(msg)
            now = now or datetime.now(timezone.utc)
            task.completed_at = now
            if is_on_time(task, now):
                entry = await process_bounty(db, assignee_id, task.id, task.bounty_amount, commit=False)
            else:
                # Sub-cent penalties round to zero and are not recorded
                penalty = penalty_for(task.bounty_amount)
                if penalty > 0:
                    entry = await apply_penalty(db, assignee_id, task.id, penalty, "Missed deadline", commit=False)
        await db.flush()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("task_status_changed", task_id=task_id, old=old_status, new=new_status, actor_id=actor.id)

    if new_status == TaskStatus.COMPLETED.value:
        if entry is not None:
            await notify_entry(db, entry, redis=redis)
        task = await _load(db, task_id)
        await _notify(
            db,
            task.created_by,
            NotificationType.TASK_COMPLETED,
            {
                "task_title": task.title,
                "assignee_name": task.assignee.username if task.assignee else "",
                "task_id": task.id,
            },
            redis,
        )
    return await _load(db, task_id)


# ---------------------------------------------------------------------------
# Board, statistics, deadlines
# ---------------------------------------------------------------------------


async def get_kanban_board(db: AsyncSession, viewer: User) -> dict[str, list[Task]]:
    """Tasks grouped by status. Members see available tasks and their own."""
    stmt = _scoped(select(Task), viewer)
    if viewer.role == Role.MEMBER.value:
        stmt = stmt.where(or_(Task.status == TaskStatus.AVAILABLE.value, Task.assigned_to == viewer.id))
    result = await db.execute(stmt.order_by(_PRIORITY_RANK.desc(), Task.deadline.asc()))
    tasks = list(result.unique().scalars().all())
    return {
        "available": [t for t in tasks if t.status == TaskStatus.AVAILABLE.value],
        "in_progress": [t for t in tasks if t.status == TaskStatus.IN_PROGRESS.value],
        "review": [t for t in tasks if t.status == TaskStatus.REVIEW.value],
        "completed": [t for t in tasks if t.status == TaskStatus.COMPLETED.value],
    }


async def get_task_statistics(db: AsyncSession, viewer: User) -> dict[str, Any]:
    rows = await db.execute(_scoped(select(Task.status, func.count()), viewer).group_by(Task.status))
    by_status = {status: count for status, count in rows.all()}

    average = await db.scalar(_scoped(select(func.avg(Task.bounty_amount)), viewer))
    available_total = await db.scalar(
        _scoped(select(func.coalesce(func.sum(Task.bounty_amount), 0)), viewer).where(
            Task.status == TaskStatus.AVAILABLE.value
        )
    )
    return {
        "total": sum(by_status.values()),
        "by_status": {
            "available": by_status.get(TaskStatus.AVAILABLE.value, 0),
            "in_progress": by_status.get(TaskStatus.IN_PROGRESS.value, 0),
            "review": by_status.get(TaskStatus.REVIEW.value, 0),
            "completed": by_status.get(TaskStatus.COMPLETED.value, 0),
        },
        "average_bounty": money_str(average),
        "total_available_bounty": money_str(available_total),
    }


async def check_deadlines(db: AsyncSession, window_hours: int = 24, *, redis: Any | None = None) -> int:
    """Remind assignees of IN_PROGRESS tasks due within the window. Returns reminders sent."""
    now = datetime.now(timezone.utc)
    result = await db.execute(
        select(Task).where(
            Task.status == TaskStatus.IN_PROGRESS.value,
            Task.assigned_to.is_not(None),
            Task.deadline >= now,
            Task.deadline <= now + timedelta(hours=window_hours),
        )
    )
    tasks = list(result.unique().scalars().all())
    reminders = [
        (task.assigned_to, task.title, task.id, math.ceil((task.deadline - now).total_seconds() / 3600))
        for task in tasks
    ]

    for assignee_id, title, tid, hours in reminders:
        await _notify(
            db,
            assignee_id,
            NotificationType.DEADLINE_REMINDER,
            {"task_title": title, "hours_remaining": hours, "task_id": tid},
            redis,
        )
    logger.info("deadline_reminders_sent", count=len(reminders))
    return len(reminders)
