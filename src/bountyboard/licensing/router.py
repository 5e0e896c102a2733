"""License endpoints: pre-validation of catalog keys and the caller's team license."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bountyboard.auth.dependencies import get_current_user, get_license_catalog, require_valid_license
from bountyboard.database import get_session
from bountyboard.db.models import User
from bountyboard.licensing.catalog import LicenseCatalog
from bountyboard.licensing.schemas import MyLicenseResponse, ValidateLicenseRequest, ValidateLicenseResponse
from bountyboard.licensing.service import LicenseContext, validate_for_team_creation

router = APIRouter(prefix="/api/v1/licenses", tags=["Licenses"])


@router.post("/validate", response_model=ValidateLicenseResponse)
async def validate_license(
    body: ValidateLicenseRequest,
    db: AsyncSession = Depends(get_session),
    catalog: LicenseCatalog = Depends(get_license_catalog),
) -> ValidateLicenseResponse:
    """Check a key could be used to create a team. 400 with the failing rule otherwise."""
    config = await validate_for_team_creation(db, catalog, body.license_key)
    return ValidateLicenseResponse(valid=True, max_users=config.max_users, expiry_date=config.expiry_date)


@router.get("/me", response_model=MyLicenseResponse)
async def my_license(
    user: User = Depends(get_current_user),
    license_ctx: LicenseContext = Depends(require_valid_license),
    db: AsyncSession = Depends(get_session),
) -> MyLicenseResponse:
    """The caller's team license and seat usage."""
    members = await db.scalar(
        select(func.count()).select_from(User).where(User.team_id == user.team_id)
    )
    members = members or 0
    return MyLicenseResponse(
        id=license_ctx.id,
        license_key=license_ctx.key,
        max_users=license_ctx.max_users,
        expiration_date=license_ctx.expiration_date,
        members=members,
        seats_remaining=max(0, license_ctx.max_users - members),
    )
