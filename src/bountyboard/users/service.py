"""User management business logic."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, select

from bountyboard.auth.service import get_user_by_id
from bountyboard.db.models import Role, Task, TaskStatus, Transaction, TransactionType, User
from bountyboard.errors import BusinessRuleError, ConflictError, ForbiddenError, UserNotFoundError
from bountyboard.ledger.service import money_str

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


async def list_users(
    db: AsyncSession,
    *,
    role: str | None = None,
    is_active: bool | None = None,
) -> list[User]:
    stmt = select(User)
    if role:
        stmt = stmt.where(User.role == role)
    if is_active is not None:
        stmt = stmt.where(User.is_active.is_(is_active))
    result = await db.execute(stmt.order_by(User.created_at.desc(), User.id.desc()))
    return list(result.scalars().all())


async def get_user(db: AsyncSession, user_id: int, viewer: User | None = None) -> User:
    """
    Fetch an active user, honoring team isolation for non-admin viewers.

    Raises:
        UserNotFoundError: Missing or deactivated.
        ForbiddenError: The viewer is on a different team.
    """
    user = await get_user_by_id(db, user_id)
    if user is None:
        raise UserNotFoundError
    if viewer is not None and viewer.role != Role.ADMIN.value and viewer.id != user.id:
        if viewer.team_id is None or viewer.team_id != user.team_id:
            msg = "Access denied: Cannot view users from other teams"
            raise ForbiddenError(msg)
    return user


async def get_user_profile(db: AsyncSession, user: User) -> dict[str, Any]:
    """Task counts and earnings for one user."""
    created = await db.scalar(select(func.count()).select_from(Task).where(Task.created_by == user.id)) or 0
    rows = await db.execute(
        select(Task.status, func.count()).where(Task.assigned_to == user.id).group_by(Task.status)
    )
    assigned_by_status = {status: count for status, count in rows.all()}
    assigned = sum(assigned_by_status.values())
    completed = assigned_by_status.get(TaskStatus.COMPLETED.value, 0)

    sums = await db.execute(
        select(Transaction.type, func.coalesce(func.sum(Transaction.amount), 0))
        .where(Transaction.user_id == user.id)
        .group_by(Transaction.type)
    )
    totals = {type_: Decimal(str(total)) for type_, total in sums.all()}

    return {
        "tasks_created": created,
        "tasks_assigned": assigned,
        "tasks_completed": completed,
        "tasks_in_progress": assigned_by_status.get(TaskStatus.IN_PROGRESS.value, 0),
        "total_earned": money_str(abs(totals.get(TransactionType.BOUNTY.value, Decimal(0)))),
        "total_penalties": money_str(abs(totals.get(TransactionType.PENALTY.value, Decimal(0)))),
        "current_balance": money_str(user.balance),
        "completion_rate": money_str(Decimal(completed) * 100 / assigned) if assigned else "0.00",
    }


async def get_user_tasks(db: AsyncSession, user_id: int, status: str | None = None) -> list[Task]:
    """Tasks assigned to the user, soonest deadline first."""
    stmt = select(Task).where(Task.assigned_to == user_id)
    if status:
        stmt = stmt.where(Task.status == status)
    result = await db.execute(stmt.order_by(Task.deadline.asc()))
    return list(result.unique().scalars().all())


async def update_user(
    db: AsyncSession,
    user: User,
    *,
    email: str | None = None,
    bio: str | None = None,
) -> User:
    """
    Update profile fields. Password and role have their own flows.

    Raises:
        ConflictError: If the email belongs to another account.
    """
    if email is not None and email != user.email:
        clash = await db.execute(select(User.id).where(User.email == email, User.id != user.id))
        if clash.first() is not None:
            msg = "Email already in use"
            raise ConflictError(msg)
        user.email = email
    if bio is not None:
        user.bio = bio
    await db.flush()
    logger.info("user_updated", user_id=user.id)
    return user


async def update_user_role(db: AsyncSession, user: User, role: str) -> User:
    user.role = Role(role).value
    await db.flush()
    logger.info("user_role_updated", user_id=user.id, role=user.role)
    return user


async def deactivate_user(db: AsyncSession, actor: User, user: User) -> None:
    """Soft delete. The row stays for ledger and task history."""
    if actor.id == user.id:
        msg = "Cannot deactivate your own account"
        raise BusinessRuleError(msg)
    user.is_active = False
    await db.flush()
    logger.info("user_deactivated", user_id=user.id, actor_id=actor.id)
