"""
Authentication business logic.

Handles registration, login, session token issue and password changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import or_, select

from bountyboard.auth.jwt import create_access_token
from bountyboard.auth.password import (
    PasswordStrengthError,
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)
from bountyboard.db.models import License, Role, Team, User
from bountyboard.errors import (
    AccountDisabledError,
    BusinessRuleError,
    DuplicateIdentityError,
    InvalidCredentialsError,
    LicenseInvalidError,
)
from bountyboard.licensing.service import (
    LicenseStatus,
    check_license,
    get_license_by_team_id,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

LICENSE_REVOKED_MESSAGE = "Team license has been revoked. Please contact administrator."
LICENSE_EXPIRED_MESSAGE = "Team license has expired. Please renew your license."


@dataclass
class SessionInfo:
    """A freshly issued token plus the team/license snapshot it embeds."""

    user: User
    token: str
    team: Team | None = None
    license: License | None = None


# ---------------------------------------------------------------------------
# User queries
# ---------------------------------------------------------------------------


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    """Fetch an active user by ID. Deactivated users are treated as missing."""
    result = await db.execute(select(User).where(User.id == user_id, User.is_active.is_(True)))
    return result.scalar_one_or_none()


async def get_user_by_login(db: AsyncSession, username_or_email: str) -> User | None:
    """Fetch a user by exact username or exact email in a single query."""
    result = await db.execute(
        select(User).where(or_(User.username == username_or_email, User.email == username_or_email))
    )
    return result.scalars().first()


async def ensure_identity_available(db: AsyncSession, username: str, email: str) -> None:
    """
    Raises:
        DuplicateIdentityError: If the username or email is already taken.
    """
    result = await db.execute(select(User.id).where(or_(User.username == username, User.email == email)))
    if result.first() is not None:
        msg = "User with this username or email already exists"
        raise DuplicateIdentityError(msg)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


async def create_user(
    db: AsyncSession,
    *,
    username: str,
    email: str,
    password: str,
    role: str = Role.MEMBER.value,
    team_id: int | None = None,
) -> User:
    """
    Validate and insert a user row. Flushes, never commits.

    Raises:
        BusinessRuleError: If the password is too weak.
        DuplicateIdentityError: If username or email is taken.
    """
    try:
        validate_password_strength(password)
    except PasswordStrengthError as e:
        raise BusinessRuleError(str(e)) from e

    await ensure_identity_available(db, username, email)

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        team_id=team_id,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    return user


async def register(
    db: AsyncSession,
    *,
    username: str,
    email: str,
    password: str,
    role: str = Role.MEMBER.value,
) -> User:
    """Register a new team-less user."""
    user = await create_user(db, username=username, email=email, password=password, role=role)
    logger.info("user_registered", user_id=user.id, username=username, role=role)
    return user


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


async def build_session_token(db: AsyncSession, user: User) -> SessionInfo:
    """Issue a token whose team/license claims reflect the current database state."""
    team: Team | None = None
    license_: License | None = None
    if user.team_id is not None:
        team = await db.get(Team, user.team_id)
        license_ = await get_license_by_team_id(db, user.team_id)

    token = create_access_token(
        user.id,
        user.username,
        user.role,
        team_id=team.id if team else None,
        team_name=team.name if team else None,
        license_key=license_.license_key if license_ else None,
        license_expiry=license_.expiration_date if license_ else None,
    )
    return SessionInfo(user=user, token=token, team=team, license=license_)


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


async def authenticate(db: AsyncSession, username_or_email: str, password: str) -> SessionInfo:
    """
    Verify credentials and issue a session token.

    Unknown user and wrong password are indistinguishable to the caller.
    Login is license-gated: a team whose license is revoked or expired cannot
    sign in. A team with no license row at all is let through.

    Raises:
        InvalidCredentialsError: Unknown user or wrong password.
        AccountDisabledError: The account is deactivated.
        LicenseInvalidError: The team license is revoked or expired.
    """
    user = await get_user_by_login(db, username_or_email)
    if user is None or not verify_password(password, user.password_hash):
        logger.info("login_failed", login=username_or_email)
        raise InvalidCredentialsError

    if not user.is_active:
        raise AccountDisabledError

    if user.team_id is not None:
        _, status = await check_license(db, user.team_id)
        if status is LicenseStatus.REVOKED:
            raise LicenseInvalidError(LICENSE_REVOKED_MESSAGE)
        if status is LicenseStatus.EXPIRED:
            raise LicenseInvalidError(LICENSE_EXPIRED_MESSAGE)

    if check_needs_rehash(user.password_hash):
        user.password_hash = hash_password(password)
    user.last_login = datetime.now(timezone.utc)
    await db.flush()

    session = await build_session_token(db, user)
    logger.info("user_logged_in", user_id=user.id, team_id=user.team_id)
    return session


# ---------------------------------------------------------------------------
# Password change
# ---------------------------------------------------------------------------


async def change_password(db: AsyncSession, user: User, current_password: str, new_password: str) -> None:
    """
    Raises:
        InvalidCredentialsError: If the current password is wrong.
        BusinessRuleError: If the new password is too weak.
    """
    if not verify_password(current_password, user.password_hash):
        msg = "Current password is incorrect"
        raise InvalidCredentialsError(msg)
    try:
        validate_password_strength(new_password)
    except PasswordStrengthError as e:
        raise BusinessRuleError(str(e)) from e

    user.password_hash = hash_password(new_password)
    await db.flush()
    logger.info("password_changed", user_id=user.id)
