"""Tests for password hashing, the password policy and signed tokens."""

from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from src.crm.config import get_settings
from src.crm.core.errors import AuthenticationError
from src.crm.core.security import (
    EMAIL_VERIFICATION_TOKEN,
    PASSWORD_RESET_TOKEN,
    SESSION_TOKEN,
    _encode,
    create_email_verification_token,
    create_password_reset_token,
    create_session_token,
    hash_password,
    password_fingerprint,
    validate_password_strength,
    verify_password,
    verify_token,
)

STRONG = "Tr0ub4dor&Seed!"


# ── Hashing ──────────────────────────────────────────────────────────────────


def test_hash_and_verify():
    hashed = hash_password(STRONG)
    assert hashed != STRONG
    assert verify_password(STRONG, hashed) is True
    assert verify_password("wrong-Password1!", hashed) is False


def test_fingerprint_changes_with_hash():
    assert password_fingerprint(hash_password(STRONG)) != password_fingerprint(hash_password(STRONG))


# ── Password Policy ──────────────────────────────────────────────────────────


def test_strong_password_accepted():
    assert validate_password_strength(STRONG) == []


@pytest.mark.parametrize(
    "password, fragment",
    [
        ("Sh0rt!", "at least 8 characters"),
        ("alllower#9x", "uppercase letter"),
        ("ALLUPPER#9X", "lowercase letter"),
        ("NoDigits#Here", "number"),
        ("NoSpecial9Here", "special character"),
        ("Passsword#9x", "3 times in a row"),
        ("Xy#1234wrk", "sequential characters"),
        ("Xy#9abcdPq", "sequential characters"),
    ],
)
def test_weak_passwords(password, fragment):
    problems = validate_password_strength(password)
    assert any(fragment in p for p in problems), problems


def test_common_password_rejected():
    assert "Password is too common" in validate_password_strength("password123")


# ── Tokens ───────────────────────────────────────────────────────────────────


def test_session_token_round_trip():
    token, expires_at = create_session_token("user-1")
    payload = verify_token(token, SESSION_TOKEN)
    assert payload["sub"] == "user-1"
    assert payload["type"] == SESSION_TOKEN


def test_remember_me_extends_session():
    _, short = create_session_token("user-1")
    _, long = create_session_token("user-1", remember_me=True)
    settings = get_settings()
    delta = long - short
    expected = timedelta(days=settings.SESSION_REMEMBER_ME_DAYS - settings.SESSION_EXPIRE_DAYS)
    assert abs(delta - expected) < timedelta(seconds=5)


def test_token_type_is_enforced():
    token = create_email_verification_token("user-1", "a@example.com")
    assert verify_token(token, EMAIL_VERIFICATION_TOKEN)["email"] == "a@example.com"
    with pytest.raises(AuthenticationError):
        verify_token(token, SESSION_TOKEN)


def test_reset_token_carries_fingerprint():
    hashed = hash_password(STRONG)
    payload = verify_token(create_password_reset_token("user-1", hashed), PASSWORD_RESET_TOKEN)
    assert payload["pwd"] == password_fingerprint(hashed)


def test_expired_token_rejected():
    token, _ = _encode({"sub": "user-1"}, SESSION_TOKEN, timedelta(seconds=-10))
    with pytest.raises(AuthenticationError) as exc_info:
        verify_token(token)
    assert exc_info.value.message == "Invalid or expired token"


def test_token_with_wrong_key_rejected():
    forged = jwt.encode({"sub": "user-1", "type": SESSION_TOKEN}, "not-the-key", algorithm="HS256")
    with pytest.raises(AuthenticationError):
        verify_token(forged)


def test_garbage_token_rejected():
    with pytest.raises(AuthenticationError):
        verify_token("not.a.jwt")
