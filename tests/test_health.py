"""Tests for health, readiness and version endpoints."""

from httpx import ASGITransport, AsyncClient

from bountyboard.licensing.catalog import LicenseCatalog
from bountyboard.main import create_app


async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_ready_reports_checks(client: AsyncClient):
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["checks"]["database"] == "ok"
    # Redis is not started in tests
    assert data["checks"]["redis"].startswith("error")
    assert data["status"] == "degraded"
    assert data["checks"]["license_catalog"] == "ok"
    assert data["checks"]["license_catalog_entries"] == 4


async def test_version(client: AsyncClient):
    response = await client.get("/version")
    assert response.status_code == 200
    assert response.json()["environment"] == "test"


async def test_empty_catalog_degrades_readiness():
    app = create_app()
    app.state.license_catalog = LicenseCatalog()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        data = (await ac.get("/ready")).json()
    assert data["checks"]["license_catalog"] == "empty"
    assert data["checks"]["license_catalog_entries"] == 0
    assert data["status"] == "degraded"
