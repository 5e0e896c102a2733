"""Shared test fixtures."""

from __future__ import annotations

import json
import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

# Settings are read at import time by bountyboard.main, so the environment
# has to be in place first.
TEST_LICENSES = [
    {"key": "TEAM-ALPHA-2099", "max_users": 50, "expiry_date": "2099-12-31", "notes": "standard"},
    {"key": "TEAM-BRAVO-2099", "max_users": 50, "expiry_date": "2099-12-31"},
    {"key": "TEAM-SMALL-2099", "max_users": 3, "expiry_date": "2099-12-31"},
    {"key": "TEAM-EXPIRED-2000", "max_users": 50, "expiry_date": "2000-01-01"},
]
os.environ["BB_JWT_SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["BB_JWT_ALGORITHM"] = "HS256"
os.environ["BB_LICENSES"] = json.dumps(TEST_LICENSES)
os.environ["BB_LOG_FORMAT"] = "console"
os.environ["BB_ENVIRONMENT"] = "test"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from bountyboard.auth.jwt import create_access_token, reset_keys  # noqa: E402
from bountyboard.auth.service import create_user  # noqa: E402
from bountyboard.config import get_settings  # noqa: E402
from bountyboard.database import close_db, get_engine, get_session, init_db  # noqa: E402
from bountyboard.db import models  # noqa: E402, F401
from bountyboard.db.base import Base  # noqa: E402
from bountyboard.db.models import Role, Task, Team, User  # noqa: E402
from bountyboard.licensing.catalog import LicenseCatalog, load_license_catalog  # noqa: E402
from bountyboard.main import create_app  # noqa: E402
from bountyboard.tasks.service import create_task  # noqa: E402
from bountyboard.teams.service import create_team  # noqa: E402

get_settings.cache_clear()
reset_keys()

PASSWORD = "Secur3Passw0rd"


@pytest_asyncio.fixture(autouse=True)
async def database(tmp_path: Path) -> AsyncGenerator[None, None]:
    """Fresh SQLite database per test, schema created from the ORM metadata."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'bountyboard.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest.fixture
def catalog() -> LicenseCatalog:
    return load_license_catalog(get_settings().licenses)


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client. The database fixture stands in for the lifespan."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for setup and assertions."""
    async for session in get_session():
        yield session
        break


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


async def make_user(
    db: AsyncSession,
    username: str,
    *,
    role: Role = Role.MEMBER,
    team_id: int | None = None,
    balance: Decimal | str | int = 0,
    password: str = PASSWORD,
) -> User:
    user = await create_user(
        db,
        username=username,
        email=f"{username}@example.com",
        password=password,
        role=role.value,
        team_id=team_id,
    )
    user.balance = Decimal(str(balance))
    await db.commit()
    return user


async def make_team(
    db: AsyncSession,
    catalog: LicenseCatalog,
    creator: User,
    name: str = "Alpha",
    license_key: str = "TEAM-ALPHA-2099",
) -> Team:
    session = await create_team(db, catalog, creator, name=name, description=f"{name} team", license_key=license_key)
    assert session.team is not None
    return session.team


async def make_task(
    db: AsyncSession,
    creator: User,
    *,
    title: str = "Fix the build",
    bounty: Decimal | str | int = "100.00",
    deadline: datetime | None = None,
) -> Task:
    task = await create_task(
        db,
        creator,
        title=title,
        description="Something needs doing",
        bounty_amount=Decimal(str(bounty)),
        deadline=deadline or datetime.now(timezone.utc) + timedelta(days=3),
    )
    await db.commit()
    return task


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.id, user.username, user.role, team_id=user.team_id)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def lead_with_team(db_session: AsyncSession, catalog: LicenseCatalog) -> tuple[User, Team]:
    """A lead who created team Alpha on the standard 50-seat license."""
    lead = await make_user(db_session, "lead_alpha", role=Role.LEAD)
    team = await make_team(db_session, catalog, lead)
    return lead, team


@pytest_asyncio.fixture
async def member(db_session: AsyncSession, lead_with_team: tuple[User, Team]) -> User:
    _, team = lead_with_team
    return await make_user(db_session, "member_alpha", team_id=team.id)


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession, catalog: LicenseCatalog) -> User:
    """An admin whose own team holds a valid license, so gated admin routes admit them."""
    admin = await make_user(db_session, "root_admin", role=Role.ADMIN)
    await make_team(db_session, catalog, admin, name="Ops", license_key="TEAM-BRAVO-2099")
    return admin
