"""
Ledger: the only writer of user balances.

Every mutation follows the same shape:
1. Lock the user row (SELECT ... FOR UPDATE)
2. Compute the new balance in Decimal, quantized to cents, floored at zero
   for penalties and adjustments
3. Write the user row and an append-only Transaction row
4. Commit, or roll back and re-raise on any error
5. After commit, notify the user (best-effort; failures are only logged)

Callers that need the mutation inside a larger transaction (the task
orchestrator) pass ``commit=False``, commit themselves and then call
``notify_entry``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, select

from bountyboard.db.models import Transaction, TransactionType, User
from bountyboard.errors import BusinessRuleError, UserNotFoundError
from bountyboard.notifications.service import NotificationType, create_notification

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Coerce to a Decimal with two places, rounding half up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Decimal | int | float | str | None) -> str:
    return str(to_money(value or 0))


@dataclass
class LedgerEntry:
    """Outcome of one balance mutation."""

    transaction: Transaction
    user_id: int
    balance_before: Decimal
    balance_after: Decimal
    amount: Decimal
    notification_type: NotificationType
    notification_data: dict[str, Any]


# ---------------------------------------------------------------------------
# Core mutation
# ---------------------------------------------------------------------------


async def _lock_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(
        select(User).where(User.id == user_id).with_for_update().execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFoundError
    return user


async def _apply(
    db: AsyncSession,
    user_id: int,
    type_: TransactionType,
    amount: Decimal,
    *,
    floor_at_zero: bool,
    task_id: int | None = None,
    description: str | None = None,
    created_by: int | None = None,
) -> tuple[Transaction, Decimal, Decimal]:
    """Write the balance change and its Transaction row. Flushes, never commits."""
    user = await _lock_user(db, user_id)
    balance_before = to_money(user.balance)
    balance_after = balance_before + amount
    if floor_at_zero and balance_after < ZERO:
        balance_after = ZERO

    user.balance = balance_after
    txn = Transaction(
        user_id=user_id,
        task_id=task_id,
        type=type_.value,
        amount=amount,
        description=description,
        balance_before=balance_before,
        balance_after=balance_after,
        created_by=created_by,
    )
    db.add(txn)
    await db.flush()
    return txn, balance_before, balance_after


async def _run(
    db: AsyncSession,
    commit: bool,
    redis: Any | None,
    build: Callable[[], Awaitable[LedgerEntry]],
) -> LedgerEntry:
    if not commit:
        return await build()
    try:
        entry = await build()
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await notify_entry(db, entry, redis=redis)
    return entry


async def notify_entry(db: AsyncSession, entry: LedgerEntry, *, redis: Any | None = None) -> None:
    """Send the entry's notification and commit it. Never raises."""
    try:
        await create_notification(db, entry.user_id, entry.notification_type, entry.notification_data, redis=redis)
        await db.commit()
    except Exception:
        logger.warning(
            "ledger_notification_failed",
            user_id=entry.user_id,
            type=entry.notification_type.value,
            exc_info=True,
        )
        await db.rollback()


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------


async def process_bounty(
    db: AsyncSession,
    user_id: int,
    task_id: int | None,
    amount: Decimal | int | str,
    *,
    redis: Any | None = None,
    commit: bool = True,
) -> LedgerEntry:
    """
    Credit a bounty.

    Raises:
        BusinessRuleError: If the amount is not positive.
        UserNotFoundError: If the user row does not exist.
    """
    value = to_money(amount)
    if value <= ZERO:
        msg = "Bounty amount must be positive"
        raise BusinessRuleError(msg)

    async def build() -> LedgerEntry:
        txn, before, after = await _apply(
            db,
            user_id,
            TransactionType.BOUNTY,
            value,
            floor_at_zero=False,
            task_id=task_id,
            description="Task completion bounty",
        )
        logger.info("bounty_processed", user_id=user_id, task_id=task_id, amount=str(value))
        return LedgerEntry(
            transaction=txn,
            user_id=user_id,
            balance_before=before,
            balance_after=after,
            amount=value,
            notification_type=NotificationType.BOUNTY_RECEIVED,
            notification_data={"amount": str(value), "task_id": task_id},
        )

    return await _run(db, commit, redis, build)


async def apply_penalty(
    db: AsyncSession,
    user_id: int,
    task_id: int | None,
    amount: Decimal | int | str,
    reason: str = "Missed deadline",
    *,
    redis: Any | None = None,
    commit: bool = True,
) -> LedgerEntry:
    """
    Deduct a penalty. The balance never goes below zero; the stored amount is
    the negated penalty magnitude even when the floor clipped the deduction.

    Raises:
        BusinessRuleError: If the amount is not positive.
        UserNotFoundError: If the user row does not exist.
    """
    value = to_money(amount)
    if value <= ZERO:
        msg = "Penalty amount must be positive"
        raise BusinessRuleError(msg)

    async def build() -> LedgerEntry:
        txn, before, after = await _apply(
            db,
            user_id,
            TransactionType.PENALTY,
            -value,
            floor_at_zero=True,
            task_id=task_id,
            description=reason,
        )
        logger.info("penalty_applied", user_id=user_id, task_id=task_id, amount=str(value), reason=reason)
        return LedgerEntry(
            transaction=txn,
            user_id=user_id,
            balance_before=before,
            balance_after=after,
            amount=-value,
            notification_type=NotificationType.PENALTY_APPLIED,
            notification_data={"amount": str(value), "reason": reason, "task_id": task_id},
        )

    return await _run(db, commit, redis, build)


async def adjust_balance(
    db: AsyncSession,
    user_id: int,
    amount: Decimal | int | str,
    reason: str,
    admin_id: int,
    *,
    redis: Any | None = None,
    commit: bool = True,
) -> LedgerEntry:
    """
    Apply an arbitrary signed admin adjustment, floored at zero.

    Admin authorization is enforced by the caller.

    Raises:
        BusinessRuleError: If the amount is zero.
        UserNotFoundError: If the user row does not exist.
    """
    value = to_money(amount)
    if value == ZERO:
        msg = "Adjustment amount must be non-zero"
        raise BusinessRuleError(msg)

    async def build() -> LedgerEntry:
        txn, before, after = await _apply(
            db,
            user_id,
            TransactionType.ADJUSTMENT,
            value,
            floor_at_zero=True,
            description=f"Admin adjustment: {reason}",
            created_by=admin_id,
        )
        logger.info("balance_adjusted", user_id=user_id, admin_id=admin_id, amount=str(value), reason=reason)
        return LedgerEntry(
            transaction=txn,
            user_id=user_id,
            balance_before=before,
            balance_after=after,
            amount=value,
            notification_type=NotificationType.BALANCE_ADJUSTED,
            notification_data={"amount": str(value), "reason": reason},
        )

    return await _run(db, commit, redis, build)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_user_transactions(db: AsyncSession, user_id: int, limit: int = 50) -> list[Transaction]:
    """Newest first."""
    result = await db.execute(
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
    )
    return list(result.unique().scalars().all())


async def get_bounty_statistics(db: AsyncSession) -> dict[str, Any]:
    """Ledger-wide totals. Money values are 2-dp strings; penalties are reported positive."""
    rows = await db.execute(
        select(Transaction.type, func.coalesce(func.sum(Transaction.amount), 0), func.count())
        .where(Transaction.type.in_([TransactionType.BOUNTY.value, TransactionType.PENALTY.value]))
        .group_by(Transaction.type)
    )
    totals = {type_: (to_money(total), count) for type_, total, count in rows.all()}
    bounty_total, bounty_count = totals.get(TransactionType.BOUNTY.value, (ZERO, 0))
    penalty_total, penalty_count = totals.get(TransactionType.PENALTY.value, (ZERO, 0))
    average = bounty_total / bounty_count if bounty_count else ZERO

    return {
        "total_bounties_paid": money_str(bounty_total),
        "total_penalties": money_str(abs(penalty_total)),
        "bounty_count": bounty_count,
        "penalty_count": penalty_count,
        "average_bounty": money_str(average),
    }
