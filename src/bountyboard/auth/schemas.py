"""Request/response schemas for authentication endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from bountyboard.db.models import Role


class RegisterRequest(BaseModel):
    """Self-service registration. Admin accounts cannot be self-registered."""

    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    role: Role = Role.MEMBER


class LoginRequest(BaseModel):
    """Login with username or email + password."""

    username: str = Field(..., min_length=1, max_length=320, description="Username or email")
    password: str = Field(..., min_length=1, max_length=128)


class ChangePasswordRequest(BaseModel):
    """Change password (requires current password)."""

    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=1, max_length=128)


class UserResponse(BaseModel):
    """Public user profile. Never includes the password hash."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    role: str
    team_id: int | None = None
    balance: Decimal
    is_active: bool
    bio: str | None = None
    last_login: datetime | None = None
    created_at: datetime


class LicenseSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    license_key: str
    max_users: int
    expiration_date: datetime | None = None
    is_active: bool


class TeamSummary(BaseModel):
    id: int
    name: str
    description: str | None = None
    license: LicenseSummary | None = None


class LoginResponse(BaseModel):
    """``no_team`` is present only for team-less users; ``team`` only otherwise."""

    user: UserResponse
    token: str
    no_team: bool | None = None
    team: TeamSummary | None = None


class RegisterResponse(BaseModel):
    message: str
    user: UserResponse
