"""Tests for password hashing and strength rules."""

import pytest

from bountyboard.auth.password import (
    PasswordStrengthError,
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)


class TestHashing:
    def test_hash_is_argon2id(self):
        hashed = hash_password("Correct1horse")
        assert hashed.startswith("$argon2id$")

    def test_hash_is_salted(self):
        assert hash_password("Correct1horse") != hash_password("Correct1horse")

    def test_verify_roundtrip(self):
        hashed = hash_password("Correct1horse")
        assert verify_password("Correct1horse", hashed) is True
        assert verify_password("wrong1horse", hashed) is False

    def test_garbage_hash_does_not_raise(self):
        assert verify_password("anything1", "not-a-hash") is False

    def test_fresh_hash_needs_no_rehash(self):
        assert check_needs_rehash(hash_password("Correct1horse")) is False


class TestStrength:
    @pytest.mark.parametrize(
        ("password", "message"),
        [
            ("", "cannot be empty"),
            ("   ", "cannot be empty"),
            ("abc1", "at least 8"),
            ("abcdefghij", "at least one digit"),
            ("1234567890", "at least one letter"),
            ("a1" * 70, "must not exceed"),
        ],
    )
    def test_weak_passwords_rejected(self, password, message):
        with pytest.raises(PasswordStrengthError, match=message):
            validate_password_strength(password)

    def test_strong_password_accepted(self):
        validate_password_strength("Secur3Passw0rd")
