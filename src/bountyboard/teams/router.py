"""Team endpoints: creation saga, membership and team administration."""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bountyboard.auth.dependencies import get_current_user, get_license_catalog, require_admin, require_lead
from bountyboard.auth.router import session_response
from bountyboard.auth.schemas import LicenseSummary, LoginResponse, UserResponse
from bountyboard.database import get_session
from bountyboard.db.models import User
from bountyboard.licensing.catalog import LicenseCatalog
from bountyboard.teams import service
from bountyboard.teams.schemas import (
    AddMemberRequest,
    CreateTeamRequest,
    MemberResponse,
    TeamDetailResponse,
    TeamListItem,
    TeamListResponse,
    TeamResponse,
    TeamStatisticsResponse,
    UpdateTeamRequest,
)

router = APIRouter(prefix="/api/v1/teams", tags=["Teams"])


def _detail_response(detail: service.TeamDetail) -> TeamDetailResponse:
    team = detail.team
    return TeamDetailResponse(
        id=team.id,
        name=team.name,
        description=team.description,
        created_by=team.created_by,
        is_active=team.is_active,
        created_at=team.created_at,
        license=LicenseSummary.model_validate(detail.license) if detail.license else None,
        members=[UserResponse.model_validate(m) for m in detail.members],
        member_count=len(detail.members),
    )


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


@router.post("/create", response_model=LoginResponse, response_model_exclude_none=True, status_code=201)
@router.post("", response_model=LoginResponse, response_model_exclude_none=True, status_code=201)
async def create_team(
    body: CreateTeamRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    catalog: LicenseCatalog = Depends(get_license_catalog),
) -> LoginResponse:
    """Create a team bound to a license key. The response carries a replacement token."""
    session = await service.create_team(
        db,
        catalog,
        user,
        name=body.name,
        description=body.description,
        license_key=body.license_key,
    )
    return session_response(session)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/my-team", response_model=TeamDetailResponse)
async def my_team(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> TeamDetailResponse:
    if user.team_id is None:
        raise HTTPException(status_code=404, detail="You are not a member of any team")
    return _detail_response(await service.get_team_detail(db, user.team_id))


@router.get("", response_model=TeamListResponse)
async def list_teams(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = Query(None, max_length=100),
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> TeamListResponse:
    teams, total = await service.list_teams(db, page=page, limit=limit, search=search)
    return TeamListResponse(
        teams=[TeamListItem.model_validate(t) for t in teams],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit),
    )


@router.get("/{team_id}", response_model=TeamDetailResponse)
async def get_team(
    team_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> TeamDetailResponse:
    detail = await service.get_team_detail(db, team_id)
    service.ensure_can_view(user, team_id)
    return _detail_response(detail)


@router.get("/{team_id}/members", response_model=list[UserResponse])
async def get_members(
    team_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[UserResponse]:
    await service.get_team(db, team_id)
    service.ensure_can_view(user, team_id)
    return [UserResponse.model_validate(m) for m in await service.get_team_members(db, team_id)]


@router.get("/{team_id}/statistics", response_model=TeamStatisticsResponse)
async def get_statistics(
    team_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> TeamStatisticsResponse:
    await service.get_team(db, team_id)
    service.ensure_can_view(user, team_id)
    return TeamStatisticsResponse(**await service.get_team_statistics(db, team_id))


# ---------------------------------------------------------------------------
# Management
# ---------------------------------------------------------------------------


@router.put("/{team_id}", response_model=TeamResponse)
async def update_team(
    team_id: int,
    body: UpdateTeamRequest,
    user: User = Depends(require_lead),
    db: AsyncSession = Depends(get_session),
) -> TeamResponse:
    service.ensure_can_manage(user, team_id)
    team = await service.update_team(
        db, team_id, name=body.name, description=body.description, is_active=body.is_active
    )
    await db.commit()
    return TeamResponse.model_validate(team)


@router.delete("/{team_id}")
async def delete_team(
    team_id: int,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    await service.delete_team(db, team_id)
    await db.commit()
    return {"status": "team_deleted"}


@router.post("/{team_id}/members", response_model=MemberResponse, status_code=201)
async def add_member(
    team_id: int,
    body: AddMemberRequest,
    user: User = Depends(require_lead),
    db: AsyncSession = Depends(get_session),
) -> MemberResponse:
    """Create a new account inside the team."""
    service.ensure_can_manage(user, team_id)
    member = await service.add_member(
        db,
        team_id,
        username=body.username,
        email=body.email,
        password=body.password,
        role=body.role.value,
    )
    await db.commit()
    return MemberResponse(message="Member added successfully", user=UserResponse.model_validate(member))


@router.put("/{team_id}/members/{user_id}", response_model=MemberResponse)
async def attach_member(
    team_id: int,
    user_id: int,
    user: User = Depends(require_lead),
    db: AsyncSession = Depends(get_session),
) -> MemberResponse:
    """Move an existing team-less user into the team."""
    service.ensure_can_manage(user, team_id)
    member = await service.attach_member(db, team_id, user_id)
    await db.commit()
    return MemberResponse(message="Member added successfully", user=UserResponse.model_validate(member))


@router.delete("/{team_id}/members/{user_id}", response_model=MemberResponse)
async def remove_member(
    team_id: int,
    user_id: int,
    user: User = Depends(require_lead),
    db: AsyncSession = Depends(get_session),
) -> MemberResponse:
    service.ensure_can_manage(user, team_id)
    member = await service.remove_member(db, team_id, user_id)
    await db.commit()
    return MemberResponse(message="Member removed successfully", user=UserResponse.model_validate(member))
