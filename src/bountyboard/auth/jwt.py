"""
Session token management.

Tokens carry identity plus a snapshot of the holder's team and license. The
snapshot is for display only: authorization always re-reads the database, and
any change to team membership requires issuing a fresh token.

HMAC algorithms (HS256, default) sign with ``jwt_secret_key``. Asymmetric
algorithms (RS256, ES256, ...) read PEM keys from disk.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import jwt

from bountyboard.config import get_settings

_private_key: str | None = None
_public_key: str | None = None


def _load_keys() -> tuple[str, str]:
    """Return (signing key, verification key), cached after first call."""
    global _private_key, _public_key  # noqa: PLW0603
    if _private_key is None or _public_key is None:
        settings = get_settings()
        if settings.jwt_algorithm.startswith("HS"):
            _private_key = _public_key = settings.jwt_secret_key
        else:
            _private_key = Path(settings.jwt_private_key_path).read_text()
            _public_key = Path(settings.jwt_public_key_path).read_text()
    return _private_key, _public_key


def reset_keys() -> None:
    """Reset cached keys (useful for testing)."""
    global _private_key, _public_key  # noqa: PLW0603
    _private_key = None
    _public_key = None


def access_token_lifetime() -> timedelta:
    return timedelta(hours=get_settings().jwt_access_token_expire_hours)


def create_access_token(
    user_id: int,
    username: str,
    role: str,
    *,
    team_id: int | None = None,
    team_name: str | None = None,
    license_key: str | None = None,
    license_expiry: datetime | None = None,
) -> str:
    """
    Create a session token with an absolute expiry (8 hours by default).

    Args:
        user_id: The user's database ID.
        username: Display identity.
        role: The user's role at issue time.
        team_id: Current team, or None for a team-less user.
        team_name: Name of that team.
        license_key: The team's license key.
        license_expiry: The team license expiration date.

    Returns:
        Encoded JWT string.
    """
    private_key, _ = _load_keys()
    settings = get_settings()
    now = datetime.now(timezone.utc).replace(microsecond=0)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "id": user_id,
        "username": username,
        "role": role,
        "team_id": team_id,
        "team_name": team_name,
        "license_key": license_key,
        "license_expiry": license_expiry.isoformat() if license_expiry else None,
        "iat": now,
        "exp": now + access_token_lifetime(),
        "iss": settings.jwt_issuer,
        "type": "access",
    }
    return jwt.encode(payload, private_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode a session token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or of the wrong type.
    """
    _, public_key = _load_keys()
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            public_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "iat", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type") != "access":
        msg = f"Expected token type 'access', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)

    return payload
