"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from bountyboard.auth.router import router as auth_router
from bountyboard.config import get_settings
from bountyboard.database import close_db, init_db
from bountyboard.health.router import router as health_router
from bountyboard.ledger.router import router as ledger_router
from bountyboard.licensing.catalog import load_license_catalog
from bountyboard.licensing.router import router as licensing_router
from bountyboard.middleware import setup_middleware
from bountyboard.notifications.router import router as notifications_router
from bountyboard.redis_client import close_redis, init_redis
from bountyboard.tasks.router import router as tasks_router
from bountyboard.teams.router import router as teams_router
from bountyboard.users.router import router as users_router


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="BountyBoard API",
        description="Team bounty tracker: licensed teams, tasks with bounties, and a balance ledger",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    # Parsed once per process; handlers receive it through get_license_catalog
    app.state.license_catalog = load_license_catalog(settings.licenses)

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router)
    app.include_router(licensing_router)
    app.include_router(teams_router)
    app.include_router(ledger_router)
    app.include_router(tasks_router)
    app.include_router(users_router)
    app.include_router(notifications_router)

    return app


app = create_app()
