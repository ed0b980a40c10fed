"""Transactional email through the Resend HTTP API.

EmailService sends the account emails (verification, password reset,
password changed, lockout alert) with one POST per message. Transport
failures and 5xx responses are retried with tenacity (3 attempts,
exponential backoff 1-10s); a 4xx is not retried.

With no RESEND_API_KEY configured (local development, tests) nothing is
sent and the link that would have been mailed is logged instead.
"""

from __future__ import annotations

from urllib.parse import urlencode

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.crm.config import Settings, get_settings

logger = structlog.get_logger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, httpx.TransportError)


_email_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_retryable),
    reraise=True,
)


class EmailService:
    """Sends account emails.

    Args:
        settings: Application settings (defaults to get_settings()).
        transport: Optional httpx transport, for tests.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._settings.RESEND_API_KEY)

    def _link(self, path: str, **params: str) -> str:
        base = self._settings.APP_BASE_URL.rstrip("/")
        return f"{base}{path}?{urlencode(params)}" if params else f"{base}{path}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {self._settings.RESEND_API_KEY}",
                "Content-Type": "application/json",
            },
            timeout=self._settings.EMAIL_TIMEOUT,
            transport=self._transport,
        )

    @_email_retry
    async def _post(self, payload: dict) -> str | None:
        async with self._client() as client:
            response = await client.post(self._settings.RESEND_API_URL, json=payload)
            response.raise_for_status()
            return response.json().get("id")

    async def send(self, to: str, subject: str, html: str, **log_fields) -> bool:
        """Send one email. Returns False when sending is disabled."""
        if not self.enabled:
            logger.info("email.skipped", to=to, subject=subject, **log_fields)
            return False
        message_id = await self._post({
            "from": self._settings.EMAIL_FROM,
            "to": [to],
            "subject": subject,
            "html": html,
        })
        logger.info("email.sent", to=to, subject=subject, message_id=message_id)
        return True

    # ── Account Emails ───────────────────────────────────────────────────

    async def send_verification(self, to: str, name: str, token: str) -> bool:
        link = self._link("/verify-email", token=token)
        return await self.send(
            to,
            "Verify your email address",
            f"<p>Hi {name},</p><p>Confirm your email address to finish setting up "
            f'your account: <a href="{link}">{link}</a></p>'
            f"<p>This link expires in {self._settings.EMAIL_VERIFICATION_EXPIRE_HOURS} hours.</p>",
            link=link,
        )

    async def send_password_reset(self, to: str, name: str, token: str) -> bool:
        link = self._link("/reset-password", token=token)
        return await self.send(
            to,
            "Reset your password",
            f"<p>Hi {name},</p><p>Use this link to choose a new password: "
            f'<a href="{link}">{link}</a></p>'
            f"<p>This link expires in {self._settings.PASSWORD_RESET_EXPIRE_HOURS} hour(s). "
            "If you did not ask for a reset, ignore this email.</p>",
            link=link,
        )

    async def send_password_changed(self, to: str, name: str) -> bool:
        return await self.send(
            to,
            "Your password was changed",
            f"<p>Hi {name},</p><p>The password for your account was just changed. "
            "If this was not you, reset your password immediately.</p>",
        )

    async def send_lockout_alert(self, to: str, name: str, minutes: int) -> bool:
        return await self.send(
            to,
            "Your account was temporarily locked",
            f"<p>Hi {name},</p><p>We locked your account for {minutes} minutes after "
            "several failed sign-in attempts.</p>",
        )
