"""Bounty endpoints: admin adjustments, ledger statistics and transaction history."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bountyboard.auth.dependencies import get_current_user, require_admin, require_valid_license
from bountyboard.database import get_session
from bountyboard.db.models import Role, Transaction, User
from bountyboard.errors import ForbiddenError, UserNotFoundError
from bountyboard.ledger import service
from bountyboard.ledger.schemas import (
    AdjustBalanceRequest,
    AdjustBalanceResponse,
    BountyStatisticsResponse,
    TransactionResponse,
)
from bountyboard.licensing.service import LicenseContext
from bountyboard.redis_client import get_optional_redis

router = APIRouter(prefix="/api/v1/bounties", tags=["Bounties"])


def transaction_response(txn: Transaction) -> TransactionResponse:
    return TransactionResponse(
        id=txn.id,
        user_id=txn.user_id,
        task_id=txn.task_id,
        task_title=txn.task.title if txn.task else None,
        type=txn.type,
        amount=txn.amount,
        description=txn.description,
        balance_before=txn.balance_before,
        balance_after=txn.balance_after,
        created_by=txn.created_by,
        created_at=txn.created_at,
    )


async def ensure_can_view_ledger(db: AsyncSession, viewer: User, user_id: int) -> None:
    """Self, admins, or a lead of the same team."""
    if viewer.id == user_id or viewer.role == Role.ADMIN.value:
        return
    target = await db.get(User, user_id)
    if target is None:
        raise UserNotFoundError
    if viewer.role == Role.LEAD.value and viewer.team_id is not None and target.team_id == viewer.team_id:
        return
    msg = "Access denied"
    raise ForbiddenError(msg)


@router.post("/adjust", response_model=AdjustBalanceResponse)
async def adjust(
    body: AdjustBalanceRequest,
    admin: User = Depends(require_admin),
    _license: LicenseContext = Depends(require_valid_license),
    db: AsyncSession = Depends(get_session),
    redis: Any = Depends(get_optional_redis),
) -> AdjustBalanceResponse:
    """Apply a signed balance adjustment. The result is floored at zero."""
    admin_id = admin.id
    entry = await service.adjust_balance(db, body.user_id, body.amount, body.reason, admin_id, redis=redis)
    return AdjustBalanceResponse(
        user_id=entry.user_id,
        balance_before=entry.balance_before,
        balance_after=entry.balance_after,
        adjustment=entry.amount,
    )


@router.get("/statistics", response_model=BountyStatisticsResponse)
async def statistics(
    _license: LicenseContext = Depends(require_valid_license),
    db: AsyncSession = Depends(get_session),
) -> BountyStatisticsResponse:
    return BountyStatisticsResponse(**await service.get_bounty_statistics(db))


@router.get("/transactions/{user_id}", response_model=list[TransactionResponse])
async def transactions(
    user_id: int,
    limit: int = Query(50, ge=1, le=200),
    viewer: User = Depends(get_current_user),
    _license: LicenseContext = Depends(require_valid_license),
    db: AsyncSession = Depends(get_session),
) -> list[TransactionResponse]:
    await ensure_can_view_ledger(db, viewer, user_id)
    return [transaction_response(t) for t in await service.get_user_transactions(db, user_id, limit)]
