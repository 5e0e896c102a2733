"""FastAPI authentication and authorization dependencies."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import jwt
from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from bountyboard.auth.jwt import verify_token
from bountyboard.auth.service import LICENSE_EXPIRED_MESSAGE, LICENSE_REVOKED_MESSAGE, get_user_by_id
from bountyboard.database import get_session
from bountyboard.db.models import Role, User
from bountyboard.licensing.catalog import LicenseCatalog
from bountyboard.licensing.service import LicenseContext, LicenseStatus, check_license, to_context

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Extract and verify the bearer token, return the live User row.

    The token only proves identity. A user that has since been deactivated
    or removed is rejected even while the token is unexpired.
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    user = await get_user_by_id(db, int(payload["sub"]))
    if user is None:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user


def require_roles(*roles: Role) -> Callable[..., Awaitable[User]]:
    """Build a dependency that admits only the given roles."""
    allowed = {role.value for role in roles}

    async def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return _check


require_admin = require_roles(Role.ADMIN)
require_lead = require_roles(Role.LEAD, Role.ADMIN)


async def require_valid_license(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> LicenseContext:
    """
    License gate. Re-reads the team's license on every request.

    Checks run in a fixed order: team, license row, revocation, expiry. An
    expired license still flagged active is deactivated before rejecting.
    """
    if user.team_id is None:
        raise HTTPException(
            status_code=403,
            detail="No team assigned. Please complete team creation to access this resource.",
        )

    license_, status = await check_license(db, user.team_id)
    if license_ is None:
        raise HTTPException(status_code=403, detail="No valid license found for your team.")
    if status is LicenseStatus.REVOKED:
        raise HTTPException(status_code=403, detail=LICENSE_REVOKED_MESSAGE)
    if status is LicenseStatus.EXPIRED:
        raise HTTPException(status_code=403, detail=LICENSE_EXPIRED_MESSAGE)
    return to_context(license_)


def get_license_catalog(request: Request) -> LicenseCatalog:
    """The catalog parsed once at application start."""
    return request.app.state.license_catalog
