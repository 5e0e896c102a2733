"""Tests for the scheduled maintenance jobs."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bountyboard.db.models import License, Notification, UserLicense
from bountyboard.notifications.service import NotificationType, create_notification
from bountyboard.tasks.service import assign_task
from bountyboard.workers.scheduler import (
    run_deadline_reminders,
    run_license_expiry_scan,
    run_notification_cleanup,
)
from bountyboard.workers.settings import WorkerSettings
from tests.conftest import make_task, make_user


async def _notifications(db: AsyncSession, type_: NotificationType) -> list[Notification]:
    result = await db.execute(select(Notification).where(Notification.type == type_.value))
    return list(result.scalars().all())


class TestDeadlineReminders:
    async def test_reminds_assignee_of_tasks_due_soon(self, db_session: AsyncSession, lead_with_team, member):
        lead, _ = lead_with_team
        now = datetime.now(timezone.utc)
        soon = await make_task(db_session, lead, title="Due soon", deadline=now + timedelta(hours=5))
        later = await make_task(db_session, lead, title="Due later", deadline=now + timedelta(days=5))
        await assign_task(db_session, soon.id, member)
        await assign_task(db_session, later.id, member)

        assert await run_deadline_reminders(db_session, window_hours=24) == 1
        (reminder,) = await _notifications(db_session, NotificationType.DEADLINE_REMINDER)
        assert reminder.user_id == member.id
        assert '"Due soon"' in reminder.message
        assert reminder.related_task_id == soon.id

    async def test_unassigned_tasks_are_ignored(self, db_session: AsyncSession, lead_with_team):
        lead, _ = lead_with_team
        await make_task(db_session, lead, deadline=datetime.now(timezone.utc) + timedelta(hours=2))
        assert await run_deadline_reminders(db_session) == 0


class TestNotificationCleanup:
    async def test_deletes_old_notifications(self, db_session: AsyncSession, member):
        old = await create_notification(db_session, member.id, NotificationType.BOUNTY_RECEIVED, {"amount": "1.00"})
        old.created_at = datetime.now(timezone.utc) - timedelta(days=45)
        await create_notification(db_session, member.id, NotificationType.BOUNTY_RECEIVED, {"amount": "2.00"})
        await db_session.commit()

        assert await run_notification_cleanup(db_session, days=30) == 1
        assert len(await _notifications(db_session, NotificationType.BOUNTY_RECEIVED)) == 1


class TestLicenseExpiryScan:
    async def _expire_in(self, db: AsyncSession, team_id: int, delta: timedelta) -> License:
        license_ = (await db.execute(select(License).where(License.team_id == team_id))).scalar_one()
        license_.expiration_date = datetime.now(timezone.utc) + delta
        await db.commit()
        return license_

    async def test_warns_every_team_member(self, db_session: AsyncSession, lead_with_team, member):
        lead, team = lead_with_team
        await self._expire_in(db_session, team.id, timedelta(days=2, hours=12))

        assert await run_license_expiry_scan(db_session, days=7) == 2
        warnings = await _notifications(db_session, NotificationType.LICENSE_EXPIRING)
        assert sorted(n.user_id for n in warnings) == sorted([lead.id, member.id])
        assert all(n.message == 'The license for team "Alpha" expires in 3 days' for n in warnings)

    async def test_includes_legacy_linked_users(self, db_session: AsyncSession, lead_with_team):
        lead, team = lead_with_team
        license_ = await self._expire_in(db_session, team.id, timedelta(days=1))
        outsider = await make_user(db_session, "billing_contact")
        db_session.add(UserLicense(user_id=outsider.id, license_id=license_.id))
        await db_session.commit()

        assert await run_license_expiry_scan(db_session, days=7) == 2
        warnings = await _notifications(db_session, NotificationType.LICENSE_EXPIRING)
        assert {n.user_id for n in warnings} == {lead.id, outsider.id}

    async def test_distant_expiry_is_ignored(self, db_session: AsyncSession, lead_with_team):
        assert await run_license_expiry_scan(db_session, days=7) == 0

    async def test_already_expired_is_ignored(self, db_session: AsyncSession, lead_with_team):
        _, team = lead_with_team
        await self._expire_in(db_session, team.id, -timedelta(hours=1))
        assert await run_license_expiry_scan(db_session, days=7) == 0


class TestWorkerSettings:
    def test_cron_schedule(self):
        names = {job.name for job in WorkerSettings.cron_jobs}
        assert names == {"cron:deadline_reminders", "cron:cleanup_notifications", "cron:license_expiry_scan"}
        assert len(WorkerSettings.functions) == 3

