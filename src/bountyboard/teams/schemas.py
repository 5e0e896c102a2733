"""Request/response schemas for team endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from bountyboard.auth.schemas import LicenseSummary, UserResponse
from bountyboard.db.models import Role


class CreateTeamRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: str | None = Field(None, max_length=500)
    license_key: str = Field(..., min_length=1, max_length=255)


class UpdateTeamRequest(BaseModel):
    name: str | None = Field(None, min_length=2, max_length=100)
    description: str | None = Field(None, max_length=500)
    is_active: bool | None = None


class AddMemberRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    role: Role = Role.MEMBER


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None
    created_by: int
    is_active: bool
    created_at: datetime


class TeamListItem(TeamResponse):
    license: LicenseSummary | None = None


class TeamDetailResponse(TeamResponse):
    license: LicenseSummary | None = None
    members: list[UserResponse] = []
    member_count: int


class TeamListResponse(BaseModel):
    teams: list[TeamListItem]
    total: int
    page: int
    limit: int
    total_pages: int


class TeamStatisticsResponse(BaseModel):
    member_count: int
    total_tasks: int
    available_tasks: int
    in_progress_tasks: int
    review_tasks: int
    completed_tasks: int
    total_earnings: str


class MemberResponse(BaseModel):
    message: str
    user: UserResponse
