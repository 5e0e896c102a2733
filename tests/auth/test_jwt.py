"""Tests for session token issue and verification."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from bountyboard.auth.jwt import create_access_token, verify_token
from bountyboard.config import get_settings


class TestAccessToken:
    def test_lifetime_is_eight_hours(self):
        payload = verify_token(create_access_token(1, "alice", "member"))
        assert payload["exp"] - payload["iat"] == 28800

    def test_identity_claims(self):
        payload = verify_token(create_access_token(7, "alice", "lead"))
        assert payload["sub"] == "7"
        assert payload["id"] == 7
        assert payload["username"] == "alice"
        assert payload["role"] == "lead"
        assert payload["type"] == "access"

    def test_team_less_claims_are_null(self):
        payload = verify_token(create_access_token(1, "alice", "member"))
        assert payload["team_id"] is None
        assert payload["team_name"] is None
        assert payload["license_key"] is None
        assert payload["license_expiry"] is None

    def test_team_claims(self):
        expiry = datetime(2099, 12, 31, tzinfo=timezone.utc)
        token = create_access_token(
            1,
            "alice",
            "lead",
            team_id=3,
            team_name="Alpha",
            license_key="TEAM-ALPHA-2099",
            license_expiry=expiry,
        )
        payload = verify_token(token)
        assert payload["team_id"] == 3
        assert payload["team_name"] == "Alpha"
        assert payload["license_key"] == "TEAM-ALPHA-2099"
        assert payload["license_expiry"] == expiry.isoformat()

    def test_tampered_token_rejected(self):
        token = create_access_token(1, "alice", "member")
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB"))

    def test_wrong_secret_rejected(self):
        settings = get_settings()
        now = datetime.now(timezone.utc)
        forged = jwt.encode(
            {"sub": "1", "iat": now, "exp": now + timedelta(hours=1), "iss": settings.jwt_issuer, "type": "access"},
            "some-other-secret-of-reasonable-length-123",
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(forged)

    def test_expired_token_rejected(self):
        settings = get_settings()
        issued = datetime.now(timezone.utc) - timedelta(hours=9)
        expired = jwt.encode(
            {
                "sub": "1",
                "iat": issued,
                "exp": issued + timedelta(hours=8),
                "iss": settings.jwt_issuer,
                "type": "access",
            },
            settings.jwt_secret_key,
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError, match="expired"):
            verify_token(expired)

    def test_wrong_type_rejected(self):
        settings = get_settings()
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "1", "iat": now, "exp": now + timedelta(hours=1), "iss": settings.jwt_issuer, "type": "refresh"},
            settings.jwt_secret_key,
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError, match="Expected token type"):
            verify_token(token)
