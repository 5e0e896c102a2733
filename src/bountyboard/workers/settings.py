"""arq worker settings module.

Import path for arq CLI: arq bountyboard.workers.settings.WorkerSettings
"""

from __future__ import annotations

from arq import cron
from arq.connections import RedisSettings

from bountyboard.config import get_settings
from bountyboard.workers.scheduler import (
    cleanup_notifications,
    deadline_reminders,
    license_expiry_scan,
    scheduler_shutdown,
    scheduler_startup,
)


class WorkerSettings:
    """arq worker settings for the scheduled maintenance jobs."""

    functions = [deadline_reminders, cleanup_notifications, license_expiry_scan]
    cron_jobs = [
        cron(deadline_reminders, minute=0, run_at_startup=False),
        cron(cleanup_notifications, hour=0, minute=0),
        cron(license_expiry_scan, hour=9, minute=0),
    ]
    on_startup = scheduler_startup
    on_shutdown = scheduler_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 4
    job_timeout = 300


__all__ = ["WorkerSettings"]
