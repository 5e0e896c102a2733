"""Request/response schemas for user endpoints."""

from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field

from bountyboard.auth.schemas import LicenseSummary, UserResponse
from bountyboard.db.models import Role


class UpdateUserRequest(BaseModel):
    email: EmailStr | None = None
    bio: str | None = Field(None, max_length=500)


class UpdateRoleRequest(BaseModel):
    role: Role


class UserDetailResponse(UserResponse):
    licenses: list[LicenseSummary] = []


class UserStats(BaseModel):
    tasks_created: int
    tasks_assigned: int
    tasks_completed: int
    tasks_in_progress: int
    total_earned: str
    total_penalties: str
    current_balance: str
    completion_rate: str


class UserProfileResponse(BaseModel):
    user: UserResponse
    stats: UserStats
