"""Team business logic.

Rules:
- A team is created together with exactly one license, atomically
- One team per user
- Seats are capped by the license's ``max_users``; the license row is locked
  while counting so concurrent joins serialize
- Deleting a team deactivates it and detaches every member
- Leads manage only their own team; admins manage any team
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from bountyboard.auth.service import SessionInfo, build_session_token, create_user, get_user_by_id
from bountyboard.db.models import License, Role, Task, TaskStatus, Team, Transaction, TransactionType, User
from bountyboard.errors import (
    BusinessRuleError,
    CapacityExceededError,
    ConflictError,
    ForbiddenError,
    TeamNotFoundError,
    UserNotFoundError,
)
from bountyboard.licensing.service import (
    create_license_for_team,
    get_license_by_team_id,
    validate_for_team_creation,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from bountyboard.licensing.catalog import LicenseCatalog

logger = structlog.get_logger()

MEMBER_ROLES = frozenset({Role.MEMBER.value, Role.LEAD.value})
CAPACITY_MESSAGE = "Team has reached maximum user capacity"
ALREADY_IN_TEAM_MESSAGE = "User is already a member of a team"


@dataclass
class TeamDetail:
    team: Team
    license: License | None
    members: list[User]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_team(db: AsyncSession, team_id: int, *, active_only: bool = True) -> Team:
    """
    Raises:
        TeamNotFoundError: If the team does not exist (or is deactivated).
    """
    stmt = select(Team).where(Team.id == team_id)
    if active_only:
        stmt = stmt.where(Team.is_active.is_(True))
    result = await db.execute(stmt)
    team = result.scalar_one_or_none()
    if team is None:
        raise TeamNotFoundError
    return team


async def get_team_members(db: AsyncSession, team_id: int) -> list[User]:
    result = await db.execute(select(User).where(User.team_id == team_id).order_by(User.id))
    return list(result.scalars().all())


async def get_team_detail(db: AsyncSession, team_id: int) -> TeamDetail:
    """Team with its license and members."""
    team = await get_team(db, team_id)
    license_ = await get_license_by_team_id(db, team_id)
    members = await get_team_members(db, team_id)
    return TeamDetail(team=team, license=license_, members=members)


async def list_teams(
    db: AsyncSession,
    *,
    page: int = 1,
    limit: int = 10,
    search: str | None = None,
) -> tuple[list[Team], int]:
    """Paginated teams, newest first. Returns (teams, total)."""
    stmt = select(Team)
    count_stmt = select(func.count()).select_from(Team)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(Team.name.ilike(pattern))
        count_stmt = count_stmt.where(Team.name.ilike(pattern))

    total = await db.scalar(count_stmt) or 0
    result = await db.execute(
        stmt.options(selectinload(Team.license))
        .order_by(Team.created_at.desc(), Team.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return list(result.scalars().all()), total


async def count_members(db: AsyncSession, team_id: int) -> int:
    return await db.scalar(select(func.count()).select_from(User).where(User.team_id == team_id)) or 0


def ensure_can_manage(actor: User, team_id: int) -> None:
    """
    Raises:
        ForbiddenError: If a non-admin acts on a team other than their own.
    """
    if actor.role == Role.ADMIN.value:
        return
    if actor.role != Role.LEAD.value or actor.team_id != team_id:
        msg = "You can only manage your own team"
        raise ForbiddenError(msg)


def ensure_can_view(actor: User, team_id: int) -> None:
    if actor.role != Role.ADMIN.value and actor.team_id != team_id:
        msg = "Access denied to this team"
        raise ForbiddenError(msg)


# ---------------------------------------------------------------------------
# Creation saga
# ---------------------------------------------------------------------------


async def create_team(
    db: AsyncSession,
    catalog: LicenseCatalog,
    creator: User,
    *,
    name: str,
    description: str | None,
    license_key: str,
) -> SessionInfo:
    """
    Create a team, bind its license and move the creator into it.

    All steps share one transaction which is committed here. On any failure
    the transaction is rolled back so no team, license or membership change
    survives. Returns a fresh session token carrying the new team claims;
    the creator's previous token is stale from this point.

    Raises:
        BusinessRuleError: Invalid/expired/bound key, duplicate name, or the
            creator already belongs to a team.
    """
    try:
        if creator.team_id is not None:
            raise BusinessRuleError(ALREADY_IN_TEAM_MESSAGE)

        config = await validate_for_team_creation(db, catalog, license_key)

        existing = await db.execute(select(Team.id).where(Team.name == name))
        if existing.first() is not None:
            msg = "Team name already exists"
            raise BusinessRuleError(msg)

        team = Team(name=name, description=description, created_by=creator.id, is_active=True)
        db.add(team)
        await db.flush()

        await create_license_for_team(db, team.id, team.name, config)

        creator.team_id = team.id
        await db.flush()

        session = await build_session_token(db, creator)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        msg = "Team name or license key is already in use"
        raise BusinessRuleError(msg) from e
    except Exception:
        await db.rollback()
        raise

    logger.info("team_created", team_id=team.id, name=team.name, creator_id=creator.id)
    return session


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


async def _reserve_seat(db: AsyncSession, team_id: int) -> None:
    """Lock the team license and check a seat is free. Held until commit."""
    license_ = await get_license_by_team_id(db, team_id, for_update=True)
    if license_ is None:
        return
    if await count_members(db, team_id) >= license_.max_users:
        raise CapacityExceededError(CAPACITY_MESSAGE)


async def add_member(
    db: AsyncSession,
    team_id: int,
    *,
    username: str,
    email: str,
    password: str,
    role: str = Role.MEMBER.value,
) -> User:
    """
    Create a brand-new account bound to the team.

    Raises:
        TeamNotFoundError: If the team is missing or deactivated.
        BusinessRuleError: Role outside {member, lead}, weak password.
        DuplicateIdentityError: Username or email taken.
        CapacityExceededError: No free seat on the license.
    """
    await get_team(db, team_id)
    if role not in MEMBER_ROLES:
        msg = "Role must be one of: member, lead"
        raise BusinessRuleError(msg)

    await _reserve_seat(db, team_id)
    user = await create_user(db, username=username, email=email, password=password, role=role, team_id=team_id)
    logger.info("team_member_added", team_id=team_id, user_id=user.id)
    return user


async def attach_member(db: AsyncSession, team_id: int, user_id: int) -> User:
    """
    Move an existing team-less user into the team.

    Raises:
        BusinessRuleError: If the user already belongs to a team.
        CapacityExceededError: No free seat on the license.
    """
    await get_team(db, team_id)
    user = await get_user_by_id(db, user_id)
    if user is None:
        raise UserNotFoundError
    if user.team_id is not None:
        raise BusinessRuleError(ALREADY_IN_TEAM_MESSAGE)

    await _reserve_seat(db, team_id)
    user.team_id = team_id
    await db.flush()
    logger.info("team_member_attached", team_id=team_id, user_id=user_id)
    return user


async def remove_member(db: AsyncSession, team_id: int, user_id: int) -> User:
    """
    Detach a user from the team.

    Raises:
        UserNotFoundError: If the user does not exist.
        BusinessRuleError: If the user is not a member of this team.
    """
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFoundError
    if user.team_id != team_id:
        msg = "User is not a member of this team"
        raise BusinessRuleError(msg)

    user.team_id = None
    await db.flush()
    logger.info("team_member_removed", team_id=team_id, user_id=user_id)
    return user


async def delete_team(db: AsyncSession, team_id: int) -> None:
    """Deactivate the team and clear team_id on every member in one flush."""
    team = await get_team(db, team_id, active_only=False)
    team.is_active = False
    await db.execute(
        update(User).where(User.team_id == team_id).values(team_id=None).execution_options(synchronize_session="fetch")
    )
    await db.flush()
    logger.info("team_deleted", team_id=team_id)


# ---------------------------------------------------------------------------
# Updates & statistics
# ---------------------------------------------------------------------------


async def update_team(
    db: AsyncSession,
    team_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    is_active: bool | None = None,
) -> Team:
    """
    Raises:
        ConflictError: If the new name is taken by another team.
    """
    team = await get_team(db, team_id, active_only=False)
    if name is not None and name != team.name:
        clash = await db.execute(select(Team.id).where(Team.name == name, Team.id != team_id))
        if clash.first() is not None:
            msg = "Team name already exists"
            raise ConflictError(msg)
        team.name = name
        await db.execute(update(License).where(License.team_id == team_id).values(team_name=name))
    if description is not None:
        team.description = description
    if is_active is not None:
        team.is_active = is_active
    await db.flush()
    logger.info("team_updated", team_id=team_id)
    return team


async def get_team_statistics(db: AsyncSession, team_id: int) -> dict[str, Any]:
    """Member count, task counts by state and total bounty earnings."""
    await get_team(db, team_id)

    member_count = await db.scalar(
        select(func.count()).select_from(User).where(User.team_id == team_id, User.is_active.is_(True))
    )

    rows = await db.execute(
        select(Task.status, func.count()).where(Task.team_id == team_id).group_by(Task.status)
    )
    by_status = {status: count for status, count in rows.all()}

    earnings = await db.scalar(
        select(func.coalesce(func.sum(Transaction.amount), 0))
        .join(User, User.id == Transaction.user_id)
        .where(User.team_id == team_id, Transaction.type == TransactionType.BOUNTY.value)
    )

    return {
        "member_count": member_count or 0,
        "total_tasks": sum(by_status.values()),
        "available_tasks": by_status.get(TaskStatus.AVAILABLE.value, 0),
        "in_progress_tasks": by_status.get(TaskStatus.IN_PROGRESS.value, 0),
        "review_tasks": by_status.get(TaskStatus.REVIEW.value, 0),
        "completed_tasks": by_status.get(TaskStatus.COMPLETED.value, 0),
        "total_earnings": f"{Decimal(str(earnings or 0)):.2f}",
    }
