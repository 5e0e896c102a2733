"""
License registry: binding catalog keys to teams and checking team licenses.

A license is valid iff ``is_active`` and (no expiration or expiration in the
future). Reading an expired license that is still flagged active flips it to
inactive; ``reconcile_expiry`` computes that transition and the caller
persists it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from bountyboard.db.models import License, User, UserLicense
from bountyboard.errors import BusinessRuleError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from bountyboard.licensing.catalog import LicenseCatalog, LicenseConfig

logger = structlog.get_logger()

INVALID_KEY_MESSAGE = "Invalid or expired license key"
KEY_TAKEN_MESSAGE = "License key is already assigned to another team"


class LicenseStatus(str, enum.Enum):
    VALID = "valid"
    NO_LICENSE = "no_license"
    REVOKED = "revoked"
    EXPIRED = "expired"


@dataclass(frozen=True)
class LicenseContext:
    """License details attached to a request that passed the gate."""

    id: int
    key: str
    max_users: int
    expiration_date: datetime | None


# ---------------------------------------------------------------------------
# Team creation
# ---------------------------------------------------------------------------


async def get_license_by_key(db: AsyncSession, license_key: str) -> License | None:
    result = await db.execute(select(License).where(License.license_key == license_key))
    return result.scalar_one_or_none()


async def validate_for_team_creation(
    db: AsyncSession,
    catalog: LicenseCatalog,
    license_key: str,
) -> LicenseConfig:
    """
    Check a key can be bound to a new team.

    Order: catalog lookup, then not already bound.

    Raises:
        BusinessRuleError: With the exact failing rule's message.
    """
    config = catalog.lookup(license_key)
    if config is None:
        raise BusinessRuleError(INVALID_KEY_MESSAGE)

    if await get_license_by_key(db, license_key) is not None:
        raise BusinessRuleError(KEY_TAKEN_MESSAGE)

    return config


async def create_license_for_team(
    db: AsyncSession,
    team_id: int,
    team_name: str,
    config: LicenseConfig,
) -> License:
    """Insert the License row for a freshly created team. Flushes, never commits."""
    license_ = License(
        team_id=team_id,
        team_name=team_name,
        license_key=config.key,
        max_users=config.max_users,
        expiration_date=config.expiry_date,
        notes=config.notes,
        is_active=True,
    )
    db.add(license_)
    await db.flush()
    logger.info("license_bound", license_key=config.key, team_id=team_id)
    return license_


# ---------------------------------------------------------------------------
# Validity
# ---------------------------------------------------------------------------


def is_expired(license_: License, now: datetime | None = None) -> bool:
    if license_.expiration_date is None:
        return False
    now = now or datetime.now(timezone.utc)
    return license_.expiration_date < now


def reconcile_expiry(license_: License, now: datetime | None = None) -> bool:
    """
    Deactivate an expired license in memory.

    Returns True when the license transitioned from active to inactive. The
    caller must flush/commit to persist it.
    """
    if license_.is_active and is_expired(license_, now):
        license_.is_active = False
        return True
    return False


async def get_license_by_team_id(
    db: AsyncSession,
    team_id: int,
    *,
    for_update: bool = False,
) -> License | None:
    stmt = select(License).where(License.team_id == team_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def check_license(db: AsyncSession, team_id: int) -> tuple[License | None, LicenseStatus]:
    """
    Fetch a team's license and classify it.

    Revocation is checked before expiry. A still-active expired license is
    deactivated and committed before returning EXPIRED.
    """
    license_ = await get_license_by_team_id(db, team_id)
    if license_ is None:
        return None, LicenseStatus.NO_LICENSE
    if not license_.is_active:
        return license_, LicenseStatus.REVOKED
    if reconcile_expiry(license_):
        await db.commit()
        logger.warning("license_deactivated_on_read", team_id=team_id, license_id=license_.id)
        return license_, LicenseStatus.EXPIRED
    return license_, LicenseStatus.VALID


async def is_license_valid(db: AsyncSession, team_id: int) -> bool:
    _, status = await check_license(db, team_id)
    return status is LicenseStatus.VALID


def to_context(license_: License) -> LicenseContext:
    return LicenseContext(
        id=license_.id,
        key=license_.license_key,
        max_users=license_.max_users,
        expiration_date=license_.expiration_date,
    )


# ---------------------------------------------------------------------------
# Expiry scan & legacy associations
# ---------------------------------------------------------------------------


async def find_expiring_licenses(db: AsyncSession, days: int = 7) -> list[License]:
    """Active licenses whose expiration falls within the next ``days`` days."""
    now = datetime.now(timezone.utc)
    result = await db.execute(
        select(License)
        .where(
            License.is_active.is_(True),
            License.expiration_date.is_not(None),
            License.expiration_date >= now,
            License.expiration_date <= now + timedelta(days=days),
        )
        .order_by(License.expiration_date.asc())
    )
    return list(result.scalars().all())


async def licenses_for_user(db: AsyncSession, user_id: int) -> list[License]:
    """Licenses linked to a user through the legacy association table."""
    result = await db.execute(
        select(License)
        .join(UserLicense, UserLicense.license_id == License.id)
        .where(UserLicense.user_id == user_id)
        .order_by(License.id)
    )
    return list(result.scalars().all())


async def users_for_license(db: AsyncSession, license_id: int) -> list[User]:
    """Users linked to a license through the legacy association table."""
    result = await db.execute(
        select(User)
        .join(UserLicense, UserLicense.user_id == User.id)
        .where(UserLicense.license_id == license_id)
        .order_by(User.id)
    )
    return list(result.scalars().all())
