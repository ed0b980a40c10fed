"""Password hashing, session/verification/reset tokens, and password policy.

Provides the core security primitives used by the auth service and the
request dependencies to authenticate callers.

Uses bcrypt directly (not passlib) for Python 3.13 compatibility.
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from src.crm.config import get_settings
from src.crm.core.errors import AuthenticationError

logger = logging.getLogger(__name__)

SESSION_TOKEN = "session"
EMAIL_VERIFICATION_TOKEN = "email_verification"
PASSWORD_RESET_TOKEN = "password_reset"

# ── Password Hashing ──────────────────────────────────────────────────────────


def hash_password(password: str) -> str:
    """Hash a plaintext password using bcrypt."""
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a plaintext password against its bcrypt hash."""
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


def password_fingerprint(password_hash: str) -> str:
    """Short digest of the stored hash, embedded in reset tokens.

    A reset token stops verifying as soon as the password changes, which
    makes it single-use without server-side token storage.
    """
    return hashlib.sha256(password_hash.encode("utf-8")).hexdigest()[:16]


# ── Password Policy ───────────────────────────────────────────────────────────

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128

COMMON_PASSWORDS = frozenset({
    "password", "password1", "password123", "12345678", "qwerty", "abc123",
    "monkey", "master", "dragon", "letmein", "login", "welcome", "football",
    "shadow", "superman", "iloveyou", "starwars",
})

_SEQUENCES = (
    "0123456789",
    "abcdefghijklmnopqrstuvwxyz",
    "qwertyuiop",
    "asdfghjkl",
    "zxcvbnm",
)


def _has_sequence(password: str, run: int = 4) -> bool:
    lowered = password.lower()
    for seq in _SEQUENCES:
        for i in range(len(seq) - run + 1):
            if seq[i:i + run] in lowered:
                return True
    return False


def validate_password_strength(password: str) -> list[str]:
    """Return the list of policy violations for a candidate password.

    An empty list means the password is acceptable.
    """
    problems: list[str] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        problems.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password) > PASSWORD_MAX_LENGTH:
        problems.append(f"Password must be at most {PASSWORD_MAX_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        problems.append("Password must contain an uppercase letter")
    if not re.search(r"[a-z]", password):
        problems.append("Password must contain a lowercase letter")
    if not re.search(r"[0-9]", password):
        problems.append("Password must contain a number")
    if not re.search(r"[^A-Za-z0-9]", password):
        problems.append("Password must contain a special character")
    if password.lower() in COMMON_PASSWORDS:
        problems.append("Password is too common")
    if re.search(r"(.)\1{2,}", password):
        problems.append("Password must not repeat the same character 3 times in a row")
    if _has_sequence(password):
        problems.append("Password must not contain sequential characters")
    return problems


# ── Token Creation ────────────────────────────────────────────────────────────


def _encode(data: dict, token_type: str, expires_delta: timedelta) -> tuple[str, datetime]:
    settings = get_settings()
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + expires_delta
    to_encode.update({
        "exp": expire,
        "iat": now,
        "type": token_type,
    })
    token = jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return token, expire


def create_session_token(user_id: str, remember_me: bool = False) -> tuple[str, datetime]:
    """Create a session JWT for a logged-in user.

    Returns:
        Tuple of (token, expires_at).
    """
    settings = get_settings()
    days = settings.SESSION_REMEMBER_ME_DAYS if remember_me else settings.SESSION_EXPIRE_DAYS
    return _encode({"sub": user_id}, SESSION_TOKEN, timedelta(days=days))


def create_email_verification_token(user_id: str, email: str) -> str:
    settings = get_settings()
    token, _ = _encode(
        {"sub": user_id, "email": email},
        EMAIL_VERIFICATION_TOKEN,
        timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS),
    )
    return token


def create_password_reset_token(user_id: str, password_hash: str) -> str:
    settings = get_settings()
    token, _ = _encode(
        {"sub": user_id, "pwd": password_fingerprint(password_hash)},
        PASSWORD_RESET_TOKEN,
        timedelta(hours=settings.PASSWORD_RESET_EXPIRE_HOURS),
    )
    return token


# ── Token Verification ────────────────────────────────────────────────────────


def verify_token(token: str, token_type: str = SESSION_TOKEN) -> dict:
    """Decode and validate a JWT.

    Args:
        token: The JWT string.
        token_type: Expected "type" claim.

    Returns:
        The decoded payload dict.

    Raises:
        AuthenticationError: If the token is invalid, expired, or the wrong type.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError as exc:
        logger.debug("Token rejected: %s", exc)
        raise AuthenticationError("Invalid or expired token") from exc
    if payload.get("type") != token_type or not payload.get("sub"):
        raise AuthenticationError("Invalid or expired token")
    return payload
