"""Account registration, login and password management.

Sessions are stateless JWTs (see core/security.py); this service owns the
stateful parts around them: lockout after repeated failures, email
verification, and the forgot/reset/change password flows.

Emails are sent best-effort. A failed send is logged and never fails the
account operation that triggered it, since the user can always ask for the
email again.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.crm.config import Settings, get_settings
from src.crm.core.errors import (
    AccountLockedError,
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    RateLimitError,
    ValidationError,
)
from src.crm.core.security import (
    EMAIL_VERIFICATION_TOKEN,
    PASSWORD_RESET_TOKEN,
    SESSION_TOKEN,
    create_email_verification_token,
    create_password_reset_token,
    create_session_token,
    hash_password,
    password_fingerprint,
    validate_password_strength,
    verify_password,
    verify_token,
)
from src.crm.schemas.auth import RegisterRequest, SessionResponse, UserRecord, UserResponse

logger = structlog.get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
ACCOUNT_LOCKED = "Account locked due to too many failed login attempts. Please try again later."
EMAIL_NOT_VERIFIED = "Please verify your email before logging in"
INVALID_VERIFICATION_TOKEN = "Invalid or expired verification token"
INVALID_RESET_TOKEN = "Invalid or expired reset token"
WEAK_PASSWORD = "Password does not meet requirements"

_HOUR = 3600


def _check_strength(password: str) -> None:
    problems = validate_password_strength(password)
    if problems:
        raise ValidationError(
            WEAK_PASSWORD,
            details=[{"field": "password", "message": p} for p in problems],
        )


class AuthService:
    """Authentication workflows over UserRepository.

    Args:
        user_repository: UserRepository (or a test double).
        email_service: EmailService used for account emails.
        rate_limiter: RateLimiter guarding forgot-password and
            resend-verification.
        settings: Application settings (defaults to get_settings()).
    """

    def __init__(
        self,
        user_repository: Any,
        email_service: Any,
        rate_limiter: Any,
        settings: Settings | None = None,
    ) -> None:
        self._users = user_repository
        self._email = email_service
        self._limiter = rate_limiter
        self._settings = settings or get_settings()

    async def _send(self, kind: str, coro) -> None:
        try:
            await coro
        except Exception:
            logger.warning("auth.email_failed", kind=kind, exc_info=True)

    async def _limit(self, action: str, email: str) -> None:
        result = await self._limiter.hit(
            f"{action}:{email.lower()}",
            limit=self._settings.PASSWORD_RESET_PER_HOUR,
            window_seconds=_HOUR,
        )
        if not result.allowed:
            retry_after = max(1, int(result.reset_at - datetime.now(timezone.utc).timestamp()))
            raise RateLimitError("Too many requests. Please try again later.", retry_after=retry_after)

    # ── Registration & Verification ──────────────────────────────────────

    async def register(self, data: RegisterRequest) -> UserResponse:
        _check_strength(data.password)
        if await self._users.get_by_email(data.email) is not None:
            raise ConflictError("Email already registered")

        user = await self._users.create(
            email=data.email,
            password_hash=hash_password(data.password),
            full_name=data.full_name,
            phone=data.phone,
        )
        logger.info("auth.registered", user_id=user.id)

        token = create_email_verification_token(user.id, user.email)
        await self._send("verification", self._email.send_verification(user.email, user.full_name, token))
        return user.public()

    async def verify_email(self, token: str) -> UserResponse:
        try:
            payload = verify_token(token, EMAIL_VERIFICATION_TOKEN)
        except AuthenticationError as exc:
            raise ValidationError(INVALID_VERIFICATION_TOKEN) from exc

        user = await self._users.get_by_id(payload["sub"])
        if user is None or user.email != payload.get("email"):
            raise ValidationError(INVALID_VERIFICATION_TOKEN)
        if user.email_verified:
            return user.public()

        now = datetime.now(timezone.utc)
        updated = await self._users.update(
            user.id, {"email_verified": True, "email_verified_at": now}
        )
        logger.info("auth.email_verified", user_id=user.id)
        return (updated or user).public()

    async def resend_verification(self, email: str) -> None:
        """Send a fresh verification link if the account exists and is unverified."""
        await self._limit("resend-verification", email)
        user = await self._users.get_by_email(email)
        if user is None or user.email_verified or not user.is_active:
            return
        token = create_email_verification_token(user.id, user.email)
        await self._send("verification", self._email.send_verification(user.email, user.full_name, token))

    # ── Sessions ─────────────────────────────────────────────────────────

    async def login(self, email: str, password: str, remember_me: bool = False) -> SessionResponse:
        user = await self._users.get_by_email(email)
        if user is None or not user.is_active:
            raise AuthenticationError(INVALID_CREDENTIALS)

        now = datetime.now(timezone.utc)
        if user.locked_until is not None and user.locked_until > now:
            raise AccountLockedError(ACCOUNT_LOCKED)

        if not verify_password(password, user.password_hash):
            await self._record_failure(user, now)

        if not user.email_verified:
            raise ForbiddenError(EMAIL_NOT_VERIFIED)

        updated = await self._users.update(
            user.id,
            {"failed_login_count": 0, "locked_until": None, "last_login_at": now},
        )
        token, expires_at = create_session_token(user.id, remember_me=remember_me)
        logger.info("auth.login", user_id=user.id, remember_me=remember_me)
        return SessionResponse(user=(updated or user).public(), token=token, expires_at=expires_at)

    async def _record_failure(self, user: UserRecord, now: datetime) -> None:
        """Count a failed password and lock the account at the threshold. Always raises."""
        failures = user.failed_login_count + 1
        if failures < self._settings.MAX_FAILED_LOGIN_ATTEMPTS:
            await self._users.update(user.id, {"failed_login_count": failures})
            logger.info("auth.login_failed", user_id=user.id, failures=failures)
            raise AuthenticationError(INVALID_CREDENTIALS)

        minutes = self._settings.LOCKOUT_DURATION_MINUTES
        await self._users.update(
            user.id,
            {"failed_login_count": 0, "locked_until": now + timedelta(minutes=minutes)},
        )
        logger.warning("auth.account_locked", user_id=user.id, minutes=minutes)
        await self._send("lockout", self._email.send_lockout_alert(user.email, user.full_name, minutes))
        raise AccountLockedError(ACCOUNT_LOCKED)

    async def authenticate(self, token: str) -> UserResponse:
        """Resolve a session token to its user."""
        payload = verify_token(token, SESSION_TOKEN)
        user = await self._users.get_by_id(payload["sub"])
        if user is None or not user.is_active:
            raise AuthenticationError("User not found or inactive")
        return user.public()

    # ── Passwords ────────────────────────────────────────────────────────

    async def forgot_password(self, email: str) -> None:
        """Email a reset link. Silent when the account does not exist."""
        await self._limit("forgot-password", email)
        user = await self._users.get_by_email(email)
        if user is None or not user.is_active:
            logger.info("auth.reset_requested_unknown")
            return
        token = create_password_reset_token(user.id, user.password_hash)
        await self._send("password_reset", self._email.send_password_reset(user.email, user.full_name, token))
        logger.info("auth.reset_requested", user_id=user.id)

    async def reset_password(self, token: str, new_password: str) -> None:
        try:
            payload = verify_token(token, PASSWORD_RESET_TOKEN)
        except AuthenticationError as exc:
            raise ValidationError(INVALID_RESET_TOKEN) from exc

        user = await self._users.get_by_id(payload["sub"])
        # The fingerprint no longer matches once the password has changed.
        if user is None or payload.get("pwd") != password_fingerprint(user.password_hash):
            raise ValidationError(INVALID_RESET_TOKEN)

        _check_strength(new_password)
        await self._users.update(
            user.id,
            {
                "password_hash": hash_password(new_password),
                "failed_login_count": 0,
                "locked_until": None,
            },
        )
        logger.info("auth.password_reset", user_id=user.id)
        await self._send("password_changed", self._email.send_password_changed(user.email, user.full_name))

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = await self._users.get_by_id(user_id)
        if user is None:
            raise AuthenticationError("User not found or inactive")
        if not verify_password(current_password, user.password_hash):
            raise ValidationError("Current password is incorrect")
        if current_password == new_password:
            raise ValidationError("New password must be different from the current password")

        _check_strength(new_password)
        await self._users.update(user.id, {"password_hash": hash_password(new_password)})
        logger.info("auth.password_changed", user_id=user.id)
        await self._send("password_changed", self._email.send_password_changed(user.email, user.full_name))
