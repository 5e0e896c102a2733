"""Integration tests: admin adjustments, statistics and transaction history."""

from __future__ import annotations

from decimal import Decimal

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from bountyboard.ledger.service import process_bounty
from tests.conftest import auth_headers, make_user


class TestAdjust:
    async def test_admin_adjusts_balance(self, client: AsyncClient, admin, member):
        response = await client.post(
            "/api/v1/bounties/adjust",
            headers=auth_headers(admin),
            json={"user_id": member.id, "amount": "25.00", "reason": "Hackathon prize"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == member.id
        assert Decimal(data["balance_before"]) == Decimal("0")
        assert Decimal(data["balance_after"]) == Decimal("25.00")
        assert Decimal(data["adjustment"]) == Decimal("25.00")

    async def test_negative_adjustment_floors_at_zero(self, client: AsyncClient, admin, member):
        response = await client.post(
            "/api/v1/bounties/adjust",
            headers=auth_headers(admin),
            json={"user_id": member.id, "amount": "-99999", "reason": "Clawback"},
        )
        assert response.status_code == 200
        assert Decimal(response.json()["balance_after"]) == Decimal("0")

    async def test_lead_cannot_adjust(self, client: AsyncClient, lead_with_team, member):
        lead, _ = lead_with_team
        response = await client.post(
            "/api/v1/bounties/adjust",
            headers=auth_headers(lead),
            json={"user_id": member.id, "amount": "10", "reason": "Favouritism"},
        )
        assert response.status_code == 403

    async def test_unknown_user(self, client: AsyncClient, admin):
        response = await client.post(
            "/api/v1/bounties/adjust",
            headers=auth_headers(admin),
            json={"user_id": 99999, "amount": "10", "reason": "Ghost"},
        )
        assert response.status_code == 404


class TestHistory:
    async def test_user_sees_own_history(self, client: AsyncClient, db_session: AsyncSession, member):
        await process_bounty(db_session, member.id, None, "10")
        response = await client.get(f"/api/v1/bounties/transactions/{member.id}", headers=auth_headers(member))
        assert response.status_code == 200
        (txn,) = response.json()
        assert txn["type"] == "BOUNTY"
        assert Decimal(txn["amount"]) == Decimal("10.00")

    async def test_lead_sees_team_member_history(self, client: AsyncClient, lead_with_team, member):
        lead, _ = lead_with_team
        response = await client.get(f"/api/v1/bounties/transactions/{member.id}", headers=auth_headers(lead))
        assert response.status_code == 200

    async def test_member_cannot_see_peer_history(self, client: AsyncClient, db_session: AsyncSession, member):
        peer = await make_user(db_session, "peer", team_id=member.team_id)
        response = await client.get(f"/api/v1/bounties/transactions/{peer.id}", headers=auth_headers(member))
        assert response.status_code == 403


async def test_statistics_endpoint(client: AsyncClient, db_session: AsyncSession, member):
    await process_bounty(db_session, member.id, None, "30")
    response = await client.get("/api/v1/bounties/statistics", headers=auth_headers(member))
    assert response.status_code == 200
    assert response.json() == {
        "total_bounties_paid": "30.00",
        "total_penalties": "0.00",
        "bounty_count": 1,
        "penalty_count": 0,
        "average_bounty": "30.00",
    }
