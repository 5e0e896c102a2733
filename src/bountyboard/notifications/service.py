"""Notification creation and delivery service.

Notifications are:
1. Rendered from a fixed template per type
2. Persisted in the database
3. Pushed to the user via Redis pub/sub (``ws:user:{id}``), best-effort

Callers treat the whole thing as best-effort: a failure here must never undo
the operation that triggered it.
"""

from __future__ import annotations

import enum
import json
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bountyboard.db.models import Notification
from bountyboard.errors import NotFoundError
from bountyboard.redis_client import user_channel

logger = logging.getLogger(__name__)


class NotificationType(str, enum.Enum):
    TASK_ASSIGNED = "TASK_ASSIGNED"
    DEADLINE_REMINDER = "DEADLINE_REMINDER"
    TASK_COMPLETED = "TASK_COMPLETED"
    BOUNTY_RECEIVED = "BOUNTY_RECEIVED"
    PENALTY_APPLIED = "PENALTY_APPLIED"
    BALANCE_ADJUSTED = "BALANCE_ADJUSTED"
    LICENSE_EXPIRING = "LICENSE_EXPIRING"
    TASK_DELETED = "TASK_DELETED"


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


TEMPLATES: dict[NotificationType, Callable[[dict[str, Any]], tuple[str, str]]] = {
    NotificationType.TASK_ASSIGNED: lambda d: (
        "New Task Assigned",
        f'{d["assigner_name"]} has assigned you the task: "{d["task_title"]}" (Bounty: ${d["bounty_amount"]})',
    ),
    NotificationType.DEADLINE_REMINDER: lambda d: (
        "Task Deadline Approaching",
        f'Reminder: Task "{d["task_title"]}" is due in {_plural(d["hours_remaining"], "hour")}',
    ),
    NotificationType.TASK_COMPLETED: lambda d: (
        "Task Completed",
        f'{d["assignee_name"]} has completed the task: "{d["task_title"]}"',
    ),
    NotificationType.BOUNTY_RECEIVED: lambda d: (
        "Bounty Received!",
        f"Congratulations! You've earned ${d['amount']} for completing the task.",
    ),
    NotificationType.PENALTY_APPLIED: lambda d: (
        "Penalty Applied",
        f"A penalty of ${d['amount']} has been applied. Reason: {d['reason']}",
    ),
    NotificationType.BALANCE_ADJUSTED: lambda d: (
        "Balance Adjusted",
        f"Your balance was adjusted by ${d['amount']}. Reason: {d['reason']}",
    ),
    NotificationType.LICENSE_EXPIRING: lambda d: (
        "License Expiring Soon",
        f'The license for team "{d["team_name"]}" expires in {_plural(d["days_remaining"], "day")}',
    ),
    NotificationType.TASK_DELETED: lambda d: (
        "Task Deleted",
        f'The task "{d["task_title"]}" has been deleted. {d.get("reason", "")}'.rstrip(),
    ),
}


def render(type_: NotificationType | str, data: dict[str, Any]) -> tuple[str, str]:
    """Return (title, message) for a notification type."""
    try:
        template = TEMPLATES[NotificationType(type_)]
    except ValueError:
        raise ValueError(f"Invalid notification type: {type_}") from None
    return template(data)


async def push_notification_to_user(redis: Any | None, notification: Notification) -> None:
    """Publish a flushed notification on the user's channel. Never raises."""
    if redis is None:
        return

    payload = {
        "event": "notification",
        "data": {
            "id": str(notification.id),
            "type": notification.type,
            "title": notification.title,
            "message": notification.message,
            "task_id": notification.related_task_id,
            "timestamp": notification.created_at.isoformat() if notification.created_at else None,
            "read": False,
        },
    }
    try:
        await redis.publish(user_channel(notification.user_id), json.dumps(payload))
    except Exception:
        logger.warning("Failed to push notification to user %s", notification.user_id, exc_info=True)


async def create_notification(
    db: AsyncSession,
    user_id: int,
    type_: NotificationType | str,
    data: dict[str, Any],
    redis: Any | None = None,
) -> Notification:
    """Render, persist (flush) and push a notification."""
    title, message = render(type_, data)
    notification = Notification(
        user_id=user_id,
        type=NotificationType(type_).value,
        title=title,
        message=message,
        related_task_id=data.get("task_id"),
        read=False,
        created_at=datetime.now(timezone.utc),
    )
    db.add(notification)
    await db.flush()
    logger.info("Notification created: %s for user %s", notification.type, user_id)

    await push_notification_to_user(redis, notification)
    return notification


async def notify_users(
    db: AsyncSession,
    user_ids: Iterable[int],
    type_: NotificationType | str,
    data: dict[str, Any],
    redis: Any | None = None,
) -> int:
    """Send the same notification to several users. Returns the number created."""
    title, message = render(type_, data)
    now = datetime.now(timezone.utc)
    notifications = [
        Notification(
            user_id=uid,
            type=NotificationType(type_).value,
            title=title,
            message=message,
            related_task_id=data.get("task_id"),
            read=False,
            created_at=now,
        )
        for uid in dict.fromkeys(user_ids)
    ]
    db.add_all(notifications)
    await db.flush()
    for notification in notifications:
        await push_notification_to_user(redis, notification)
    logger.info("Bulk notification created: %s for %d users", type_, len(notifications))
    return len(notifications)


async def get_notifications(
    db: AsyncSession,
    user_id: int,
    *,
    unread_only: bool = False,
    limit: int = 50,
) -> list[Notification]:
    """User's notifications, most recent first."""
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    result = await db.execute(stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit))
    return list(result.scalars().all())


async def get_unread_count(db: AsyncSession, user_id: int) -> int:
    """Get count of unread notifications."""
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
    )
    return result.scalar_one()


async def mark_as_read(db: AsyncSession, user_id: int, notification_id: int) -> Notification:
    """
    Raises:
        NotFoundError: If the notification does not exist or belongs to someone else.
    """
    result = await db.execute(
        select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        msg = "Notification not found"
        raise NotFoundError(msg)
    notification.read = True
    await db.flush()
    return notification


async def mark_all_as_read(db: AsyncSession, user_id: int) -> int:
    """Mark all unread notifications as read. Returns count updated."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True)
    )
    await db.flush()
    return result.rowcount


async def delete_notification(db: AsyncSession, user_id: int, notification_id: int) -> None:
    result = await db.execute(
        delete(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    if result.rowcount == 0:
        msg = "Notification not found"
        raise NotFoundError(msg)
    await db.flush()


async def cleanup_old_notifications(db: AsyncSession, days: int = 30) -> int:
    """Delete notifications older than ``days``. Returns count deleted."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    result = await db.execute(delete(Notification).where(Notification.created_at < cutoff))
    await db.flush()
    logger.info("Cleaned up %d notifications older than %d days", result.rowcount, days)
    return result.rowcount
