"""Authentication router: all /api/v1/auth/* endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from bountyboard.auth.dependencies import get_current_user
from bountyboard.auth.schemas import (
    ChangePasswordRequest,
    LicenseSummary,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    RegisterResponse,
    TeamSummary,
    UserResponse,
)
from bountyboard.auth.service import SessionInfo, authenticate, change_password, register
from bountyboard.database import get_session
from bountyboard.db.models import Role, User

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def session_response(session: SessionInfo) -> LoginResponse:
    """Shape a SessionInfo into the login/team-creation payload."""
    response = LoginResponse(user=UserResponse.model_validate(session.user), token=session.token)
    if session.team is None:
        response.no_team = True
    else:
        response.team = TeamSummary(
            id=session.team.id,
            name=session.team.name,
            description=session.team.description,
            license=LicenseSummary.model_validate(session.license) if session.license else None,
        )
    return response


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register_endpoint(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_session),
) -> RegisterResponse:
    """Create a team-less account. Log in afterwards to obtain a token."""
    if body.role is Role.ADMIN:
        raise HTTPException(status_code=403, detail="Admin accounts cannot be self-registered")
    user = await register(
        db,
        username=body.username,
        email=body.email,
        password=body.password,
        role=body.role.value,
    )
    await db.commit()
    return RegisterResponse(message="User registered successfully", user=UserResponse.model_validate(user))


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_session),
) -> LoginResponse:
    """Login with username or email + password."""
    session = await authenticate(db, body.username, body.password)
    await db.commit()
    return session_response(session)


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)) -> UserResponse:
    """The authenticated principal, read live from the database."""
    return UserResponse.model_validate(user)


@router.post("/change-password")
async def change_password_endpoint(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    """Change password. Requires the current password."""
    await change_password(db, user, body.current_password, body.new_password)
    await db.commit()
    return {"status": "password_changed"}
