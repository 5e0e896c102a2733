"""Scheduled maintenance jobs run by the arq worker.

- Hourly: deadline reminders for IN_PROGRESS tasks due within the window
- Daily 00:00 UTC: delete old notifications
- Daily 09:00 UTC: warn teams whose license expires soon

Every job is safe to re-run; a repeated run at most sends duplicate
notifications.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bountyboard.config import get_settings
from bountyboard.database import close_db, init_db, session_scope
from bountyboard.db.models import User
from bountyboard.licensing.service import find_expiring_licenses, users_for_license
from bountyboard.notifications.service import NotificationType, cleanup_old_notifications, notify_users
from bountyboard.tasks.service import check_deadlines

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Job bodies (take a session; unit-testable)
# ---------------------------------------------------------------------------


async def run_deadline_reminders(db: AsyncSession, window_hours: int = 24, redis: Any | None = None) -> int:
    return await check_deadlines(db, window_hours, redis=redis)


async def run_notification_cleanup(db: AsyncSession, days: int = 30) -> int:
    deleted = await cleanup_old_notifications(db, days)
    await db.commit()
    return deleted


async def run_license_expiry_scan(db: AsyncSession, days: int = 7, redis: Any | None = None) -> int:
    """
    Notify the members of every team whose active license expires within
    ``days``, plus any users linked to the license through the legacy
    association table. Returns the number of notifications created.
    """
    now = datetime.now(timezone.utc)
    licenses = await find_expiring_licenses(db, days)
    sent = 0
    for license_ in licenses:
        expires = license_.expiration_date
        if expires is None:
            continue
        days_remaining = max(1, math.ceil((expires - now).total_seconds() / 86400))

        result = await db.execute(
            select(User.id).where(User.team_id == license_.team_id, User.is_active.is_(True))
        )
        recipients = [row[0] for row in result]
        recipients += [u.id for u in await users_for_license(db, license_.id) if u.is_active]
        if not recipients:
            continue

        try:
            sent += await notify_users(
                db,
                recipients,
                NotificationType.LICENSE_EXPIRING,
                {"days_remaining": days_remaining, "team_name": license_.team_name},
                redis=redis,
            )
            await db.commit()
        except Exception:
            logger.warning("License expiry notification failed for license %s", license_.id, exc_info=True)
            await db.rollback()
    logger.info("License expiry scan: %d licenses, %d notifications", len(licenses), sent)
    return sent


# ---------------------------------------------------------------------------
# arq entry points
# ---------------------------------------------------------------------------


async def scheduler_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Scheduler worker started")


async def scheduler_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Scheduler worker shut down")


async def deadline_reminders(ctx: dict) -> int:  # type: ignore[type-arg]
    """Hourly."""
    settings = get_settings()
    async with session_scope() as db:
        return await run_deadline_reminders(db, settings.deadline_reminder_window_hours, ctx.get("redis"))


async def cleanup_notifications(ctx: dict) -> int:  # type: ignore[type-arg]
    """Daily at midnight UTC."""
    settings = get_settings()
    async with session_scope() as db:
        return await run_notification_cleanup(db, settings.notification_retention_days)


async def license_expiry_scan(ctx: dict) -> int:  # type: ignore[type-arg]
    """Daily at 09:00 UTC."""
    settings = get_settings()
    async with session_scope() as db:
        return await run_license_expiry_scan(db, settings.license_expiry_warning_days, ctx.get("redis"))
