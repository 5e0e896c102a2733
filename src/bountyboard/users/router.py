"""User endpoints: directory, profiles and admin account management."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bountyboard.auth.dependencies import get_current_user, require_admin, require_valid_license
from bountyboard.auth.schemas import LicenseSummary, UserResponse
from bountyboard.database import get_session
from bountyboard.db.models import Role, TaskStatus, User
from bountyboard.errors import ForbiddenError
from bountyboard.ledger.router import transaction_response
from bountyboard.ledger.schemas import TransactionResponse
from bountyboard.ledger.service import get_user_transactions
from bountyboard.licensing.service import licenses_for_user
from bountyboard.tasks.schemas import TaskResponse
from bountyboard.users import service
from bountyboard.users.schemas import (
    UpdateRoleRequest,
    UpdateUserRequest,
    UserDetailResponse,
    UserProfileResponse,
    UserStats,
)

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


@router.get("", response_model=list[UserResponse], dependencies=[Depends(require_valid_license)])
async def list_users(
    role: Role | None = None,
    is_active: bool | None = None,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> list[UserResponse]:
    users = await service.list_users(db, role=role.value if role else None, is_active=is_active)
    return [UserResponse.model_validate(u) for u in users]


@router.get("/{user_id}", response_model=UserDetailResponse)
async def get_user(
    user_id: int,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> UserDetailResponse:
    user = await service.get_user(db, user_id, viewer)
    licenses = await licenses_for_user(db, user.id)
    return UserDetailResponse(
        **UserResponse.model_validate(user).model_dump(),
        licenses=[LicenseSummary.model_validate(lic) for lic in licenses],
    )


@router.get("/{user_id}/profile", response_model=UserProfileResponse)
async def get_profile(
    user_id: int,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> UserProfileResponse:
    user = await service.get_user(db, user_id, viewer)
    stats = await service.get_user_profile(db, user)
    return UserProfileResponse(user=UserResponse.model_validate(user), stats=UserStats(**stats))


@router.get("/{user_id}/tasks", response_model=list[TaskResponse])
async def get_tasks(
    user_id: int,
    status: TaskStatus | None = None,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[TaskResponse]:
    user = await service.get_user(db, user_id, viewer)
    tasks = await service.get_user_tasks(db, user.id, status.value if status else None)
    return [TaskResponse.model_validate(t) for t in tasks]


@router.get("/{user_id}/transactions", response_model=list[TransactionResponse])
async def get_transactions(
    user_id: int,
    limit: int = Query(50, ge=1, le=200),
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[TransactionResponse]:
    user = await service.get_user(db, user_id, viewer)
    return [transaction_response(t) for t in await get_user_transactions(db, user.id, limit)]


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    body: UpdateUserRequest,
    viewer: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> UserResponse:
    """Self or admin. Email and bio only."""
    if viewer.id != user_id and viewer.role != Role.ADMIN.value:
        msg = "You can only update your own profile"
        raise ForbiddenError(msg)
    user = await service.get_user(db, user_id)
    user = await service.update_user(db, user, email=body.email, bio=body.bio)
    await db.commit()
    return UserResponse.model_validate(user)


@router.put("/{user_id}/role", response_model=UserResponse, dependencies=[Depends(require_valid_license)])
async def update_role(
    user_id: int,
    body: UpdateRoleRequest,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> UserResponse:
    user = await service.get_user(db, user_id)
    user = await service.update_user_role(db, user, body.role.value)
    await db.commit()
    return UserResponse.model_validate(user)


@router.delete("/{user_id}")
async def deactivate_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    user = await service.get_user(db, user_id)
    await service.deactivate_user(db, admin, user)
    await db.commit()
    return {"status": "user_deactivated"}
