"""Integration tests: task lifecycle, bounty payout and late penalties."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bountyboard.db.models import Notification, Role, Task, Transaction, User
from bountyboard.errors import BusinessRuleError, ForbiddenError
from bountyboard.tasks import service
from tests.conftest import auth_headers, make_task, make_team, make_user


async def _balance(db: AsyncSession, user_id: int) -> Decimal:
    result = await db.execute(select(User.balance).where(User.id == user_id))
    return Decimal(str(result.scalar_one()))


async def _transactions(db: AsyncSession, user_id: int) -> list[Transaction]:
    result = await db.execute(select(Transaction).where(Transaction.user_id == user_id).order_by(Transaction.id))
    return list(result.unique().scalars().all())


async def _move_deadline(db: AsyncSession, task_id: int, deadline: datetime) -> None:
    task = (await db.execute(select(Task).where(Task.id == task_id))).unique().scalar_one()
    task.deadline = deadline
    await db.commit()


async def _advance(client: AsyncClient, task_id: int, user: User, *statuses: str):
    response = None
    for status in statuses:
        response = await client.put(
            f"/api/v1/tasks/{task_id}/status", headers=auth_headers(user), json={"status": status}
        )
        assert response.status_code == 200, response.text
    return response


class TestCreate:
    async def test_lead_creates_task(self, client: AsyncClient, lead_with_team):
        lead, team = lead_with_team
        deadline = datetime.now(timezone.utc) + timedelta(days=2)
        response = await client.post(
            "/api/v1/tasks",
            headers=auth_headers(lead),
            json={
                "title": "Write docs",
                "description": "Document the API",
                "bounty_amount": "75.50",
                "deadline": deadline.isoformat(),
                "priority": "HIGH",
                "tags": ["docs"],
            },
        )
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "AVAILABLE"
        assert data["team_id"] == team.id
        assert Decimal(data["bounty_amount"]) == Decimal("75.50")
        assert data["creator"]["username"] == lead.username
        assert data["assignee"] is None

    async def test_member_cannot_create(self, client: AsyncClient, member):
        response = await client.post(
            "/api/v1/tasks",
            headers=auth_headers(member),
            json={
                "title": "Sneaky",
                "description": "x",
                "bounty_amount": "10",
                "deadline": (datetime.now(timezone.utc) + timedelta(days=1)).isoformat(),
            },
        )
        assert response.status_code == 403

    async def test_past_deadline_rejected(self, client: AsyncClient, lead_with_team):
        lead, _ = lead_with_team
        response = await client.post(
            "/api/v1/tasks",
            headers=auth_headers(lead),
            json={
                "title": "Too late",
                "description": "x",
                "bounty_amount": "10",
                "deadline": (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat(),
            },
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Deadline must be in the future"

    async def test_non_positive_bounty_is_validation_error(self, client: AsyncClient, lead_with_team):
        lead, _ = lead_with_team
        response = await client.post(
            "/api/v1/tasks",
            headers=auth_headers(lead),
            json={
                "title": "Free work",
                "description": "x",
                "bounty_amount": "0",
                "deadline": (datetime.now(timezone.utc) + timedelta(days=1)).isoformat(),
            },
        )
        assert response.status_code == 400
        assert any(err["field"] == "bounty_amount" for err in response.json()["errors"])


class TestAssign:
    async def test_claim(self, client: AsyncClient, db_session: AsyncSession, lead_with_team, member):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead)
        response = await client.post(f"/api/v1/tasks/{task.id}/assign", headers=auth_headers(member))
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "IN_PROGRESS"
        assert data["assigned_to"] == member.id
        assert data["assigned_at"] is not None

        notification = (
            await db_session.execute(select(Notification).where(Notification.user_id == member.id))
        ).scalar_one()
        assert notification.type == "TASK_ASSIGNED"
        assert lead.username in notification.message

    async def test_double_assign_rejected(self, client: AsyncClient, db_session: AsyncSession, lead_with_team, member):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead)
        first = await client.post(f"/api/v1/tasks/{task.id}/assign", headers=auth_headers(member))
        assert first.status_code == 200
        second = await client.post(f"/api/v1/tasks/{task.id}/assign", headers=auth_headers(lead))
        assert second.status_code == 400
        assert second.json()["detail"] == "Task is not available"

    async def test_lead_assigns_to_member(self, client: AsyncClient, db_session: AsyncSession, lead_with_team, member):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead)
        response = await client.post(
            f"/api/v1/tasks/{task.id}/assign", headers=auth_headers(lead), json={"user_id": member.id}
        )
        assert response.status_code == 200
        assert response.json()["assignee"]["id"] == member.id

    async def test_member_cannot_assign_others(
        self, client: AsyncClient, db_session: AsyncSession, lead_with_team, member
    ):
        lead, team = lead_with_team
        other = await make_user(db_session, "other_member", team_id=team.id)
        task = await make_task(db_session, lead)
        response = await client.post(
            f"/api/v1/tasks/{task.id}/assign", headers=auth_headers(member), json={"user_id": other.id}
        )
        assert response.status_code == 403

    async def test_assignee_must_share_team(self, db_session: AsyncSession, lead_with_team):
        lead, _ = lead_with_team
        outsider = await make_user(db_session, "outsider")
        task = await make_task(db_session, lead)
        with pytest.raises(BusinessRuleError, match="Assignee must belong"):
            await service.assign_task(db_session, task.id, lead, assignee_id=outsider.id)


class TestCompletion:
    async def test_on_time_completion_pays_bounty(
        self, client: AsyncClient, db_session: AsyncSession, lead_with_team, member
    ):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead, bounty="100.00")
        await client.post(f"/api/v1/tasks/{task.id}/assign", headers=auth_headers(member))
        response = await _advance(client, task.id, member, "REVIEW", "COMPLETED")

        data = response.json()
        assert data["status"] == "COMPLETED"
        assert data["completed_at"] is not None
        assert await _balance(db_session, member.id) == Decimal("100.00")

        (txn,) = await _transactions(db_session, member.id)
        assert txn.type == "BOUNTY"
        assert txn.task_id == task.id
        assert Decimal(str(txn.amount)) == Decimal("100.00")

        types = set(
            (await db_session.execute(select(Notification.type).where(Notification.user_id == member.id))).scalars()
        )
        assert {"TASK_ASSIGNED", "BOUNTY_RECEIVED"} <= types
        creator_types = set(
            (await db_session.execute(select(Notification.type).where(Notification.user_id == lead.id))).scalars()
        )
        assert "TASK_COMPLETED" in creator_types

    async def test_late_completion_applies_penalty(
        self, client: AsyncClient, db_session: AsyncSession, lead_with_team, member
    ):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead, bounty="100.00")
        await client.post(f"/api/v1/tasks/{task.id}/assign", headers=auth_headers(member))
        await _advance(client, task.id, member, "REVIEW")
        await _move_deadline(db_session, task.id, datetime.now(timezone.utc) - timedelta(hours=1))

        await _advance(client, task.id, member, "COMPLETED")

        assert await _balance(db_session, member.id) == Decimal("0.00")
        (txn,) = await _transactions(db_session, member.id)
        assert txn.type == "PENALTY"
        assert Decimal(str(txn.amount)) == Decimal("-10.00")
        assert Decimal(str(txn.balance_before)) == Decimal("0.00")
        assert Decimal(str(txn.balance_after)) == Decimal("0.00")

    async def test_late_penalty_reduces_existing_balance(self, db_session: AsyncSession, catalog):
        lead = await make_user(db_session, "lead", role=Role.LEAD)
        team = await make_team(db_session, catalog, lead)
        worker = await make_user(db_session, "worker", team_id=team.id, balance="50.00")
        task = await make_task(db_session, lead, bounty="100.00")

        await service.assign_task(db_session, task.id, worker)
        await service.update_task_status(db_session, task.id, "REVIEW", worker)
        late = task.deadline + timedelta(minutes=1)
        await service.update_task_status(db_session, task.id, "COMPLETED", worker, now=late)

        assert await _balance(db_session, worker.id) == Decimal("40.00")

    async def test_completion_is_idempotent(
        self, client: AsyncClient, db_session: AsyncSession, lead_with_team, member
    ):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead, bounty="100.00")
        await client.post(f"/api/v1/tasks/{task.id}/assign", headers=auth_headers(member))
        await _advance(client, task.id, member, "REVIEW", "COMPLETED", "COMPLETED")

        assert await _balance(db_session, member.id) == Decimal("100.00")
        assert len(await _transactions(db_session, member.id)) == 1

    async def test_ledger_failure_keeps_status(self, db_session: AsyncSession, lead_with_team, member, monkeypatch):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead)
        task_id = task.id
        await service.assign_task(db_session, task_id, member)
        await service.update_task_status(db_session, task_id, "REVIEW", member)

        async def boom(*args, **kwargs):
            raise RuntimeError("ledger down")

        monkeypatch.setattr(service, "process_bounty", boom)
        with pytest.raises(RuntimeError):
            await service.update_task_status(db_session, task_id, "COMPLETED", member)

        # The rollback expired every loaded object; read the row afresh
        reloaded = (
            await db_session.execute(
                select(Task).where(Task.id == task_id).execution_options(populate_existing=True)
            )
        ).unique().scalar_one()
        assert reloaded.status == "REVIEW"
        assert reloaded.completed_at is None
        assert await db_session.scalar(select(func.count()).select_from(Transaction)) == 0


class TestTransitions:
    async def test_skipping_review_rejected(
        self, client: AsyncClient, db_session: AsyncSession, lead_with_team, member
    ):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead)
        await client.post(f"/api/v1/tasks/{task.id}/assign", headers=auth_headers(member))
        response = await client.put(
            f"/api/v1/tasks/{task.id}/status", headers=auth_headers(member), json={"status": "COMPLETED"}
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid status transition from IN_PROGRESS to COMPLETED"

    async def test_unassign_returns_task_to_pool(
        self, client: AsyncClient, db_session: AsyncSession, lead_with_team, member
    ):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead)
        await client.post(f"/api/v1/tasks/{task.id}/assign", headers=auth_headers(member))
        response = await _advance(client, task.id, member, "AVAILABLE")
        data = response.json()
        assert data["status"] == "AVAILABLE"
        assert data["assigned_to"] is None

        again = await client.post(f"/api/v1/tasks/{task.id}/assign", headers=auth_headers(lead))
        assert again.status_code == 200

    async def test_non_assignee_member_cannot_move(self, db_session: AsyncSession, lead_with_team, member):
        lead, team = lead_with_team
        bystander = await make_user(db_session, "bystander", team_id=team.id)
        task = await make_task(db_session, lead)
        await service.assign_task(db_session, task.id, member)
        with pytest.raises(ForbiddenError):
            await service.update_task_status(db_session, task.id, "REVIEW", bystander)


class TestVisibility:
    async def test_other_team_cannot_see_task(
        self, client: AsyncClient, db_session: AsyncSession, catalog, lead_with_team
    ):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead)
        outsider = await make_user(db_session, "outsider", role=Role.LEAD)
        await make_team(db_session, catalog, outsider, name="Beta", license_key="TEAM-BRAVO-2099")

        response = await client.get(f"/api/v1/tasks/{task.id}", headers=auth_headers(outsider))
        assert response.status_code == 403
        listing = await client.get("/api/v1/tasks", headers=auth_headers(outsider))
        assert listing.json() == []

    async def test_missing_task(self, client: AsyncClient, lead_with_team):
        lead, _ = lead_with_team
        response = await client.get("/api/v1/tasks/999", headers=auth_headers(lead))
        assert response.status_code == 404


class TestBoardAndStatistics:
    async def test_board_columns(self, client: AsyncClient, db_session: AsyncSession, lead_with_team, member):
        lead, _ = lead_with_team
        open_task = await make_task(db_session, lead, title="Open one")
        taken = await make_task(db_session, lead, title="Taken one")
        await client.post(f"/api/v1/tasks/{taken.id}/assign", headers=auth_headers(member))

        board = (await client.get("/api/v1/tasks/board", headers=auth_headers(member))).json()
        assert [t["id"] for t in board["available"]] == [open_task.id]
        assert [t["id"] for t in board["in_progress"]] == [taken.id]
        assert board["review"] == []
        assert board["completed"] == []

    async def test_statistics(self, client: AsyncClient, db_session: AsyncSession, lead_with_team):
        lead, _ = lead_with_team
        await make_task(db_session, lead, bounty="100")
        await make_task(db_session, lead, bounty="50")
        stats = (await client.get("/api/v1/tasks/statistics", headers=auth_headers(lead))).json()
        assert stats["total"] == 2
        assert stats["by_status"]["available"] == 2
        assert stats["average_bounty"] == "75.00"
        assert stats["total_available_bounty"] == "150.00"


class TestDelete:
    async def test_delete_available_task(self, client: AsyncClient, db_session: AsyncSession, lead_with_team):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead)
        response = await client.delete(f"/api/v1/tasks/{task.id}", headers=auth_headers(lead))
        assert response.status_code == 200
        assert await db_session.scalar(select(func.count()).select_from(Task)) == 0

    async def test_cannot_delete_in_progress(
        self, client: AsyncClient, db_session: AsyncSession, lead_with_team, member
    ):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead)
        await client.post(f"/api/v1/tasks/{task.id}/assign", headers=auth_headers(member))
        response = await client.delete(f"/api/v1/tasks/{task.id}", headers=auth_headers(lead))
        assert response.status_code == 400
        assert response.json()["detail"] == "Cannot delete assigned or in-progress tasks"

    async def test_completed_task_cannot_be_deleted(
        self, client: AsyncClient, db_session: AsyncSession, lead_with_team, member
    ):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead, title="Old work")
        task_id = task.id
        await client.post(f"/api/v1/tasks/{task_id}/assign", headers=auth_headers(member))
        await _advance(client, task_id, member, "REVIEW", "COMPLETED")

        response = await client.delete(f"/api/v1/tasks/{task_id}", headers=auth_headers(lead))
        assert response.status_code == 400
        assert response.json()["detail"] == "Cannot delete assigned or in-progress tasks"

        db_session.expire_all()
        assert await db_session.scalar(select(func.count()).select_from(Task).where(Task.id == task_id)) == 1
        [entry] = await _transactions(db_session, member.id)
        assert entry.task_id == task_id
        assert await _balance(db_session, member.id) == Decimal("100.00")

    async def test_released_task_can_be_deleted(
        self, client: AsyncClient, db_session: AsyncSession, lead_with_team, member
    ):
        lead, _ = lead_with_team
        task = await make_task(db_session, lead)
        task_id = task.id
        await client.post(f"/api/v1/tasks/{task_id}/assign", headers=auth_headers(member))
        await _advance(client, task_id, member, "AVAILABLE")

        response = await client.delete(f"/api/v1/tasks/{task_id}", headers=auth_headers(lead))
        assert response.status_code == 200
