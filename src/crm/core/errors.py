"""Domain error taxonomy and the JSON error envelope.

Every non-2xx response has the shape::

    {"error": str, "message"?: str, "details"?: list}

Services raise the CRMError subclasses below; route handlers let them
propagate and the handlers registered by register_exception_handlers()
render them. Anything unhandled becomes a 500. Outside production the 500
carries the underlying message; in production it is replaced.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.crm.config import get_settings

logger = structlog.get_logger(__name__)


# ── Error Taxonomy ───────────────────────────────────────────────────────────


class CRMError(Exception):
    """Base class for errors that map onto an HTTP status and envelope."""

    status_code: int = 500
    error: str = "Internal server error"

    def __init__(self, message: str | None = None, details: list[Any] | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message or self.error)

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.message:
            body["message"] = self.message
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(CRMError):
    """Malformed or policy-violating input."""

    status_code = 400
    error = "Validation failed"


class AuthenticationError(CRMError):
    """Missing, invalid, or expired session or credentials."""

    status_code = 401
    error = "Unauthorized"


class ForbiddenError(CRMError):
    """Authenticated, or credentials valid, but the action is not allowed yet."""

    status_code = 403
    error = "Forbidden"


class AccountLockedError(CRMError):
    status_code = 423
    error = "Account locked"


class NotFoundError(CRMError):
    """Resource absent or not visible to the caller."""

    status_code = 404
    error = "Not found"


class AccessDeniedError(NotFoundError):
    """Resource exists but belongs to someone else.

    Rendered exactly like NotFoundError so callers cannot test for
    other users' records.
    """


class ConflictError(CRMError):
    """Write lost a race with a concurrent change to the same record."""

    status_code = 409
    error = "Conflict"


class RateLimitError(CRMError):
    status_code = 429
    error = "Too many requests"

    def __init__(self, message: str | None = None, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UnexpectedError(CRMError):
    """Downstream failure with no more specific category."""

    status_code = 500
    error = "Internal server error"


# ── Envelope Rendering ───────────────────────────────────────────────────────


def _validation_details(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Flatten pydantic errors into JSON-safe field/message pairs."""
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        details.append({
            "field": ".".join(loc),
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        })
    return details


async def _crm_error_handler(request: Request, exc: CRMError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "request.domain_error",
            path=request.url.path,
            error=exc.error,
            message=exc.message,
        )
        body = exc.to_body()
        if get_settings().is_production:
            body.pop("message", None)
        return JSONResponse(status_code=exc.status_code, content=body)

    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "details": _validation_details(exc)},
    )


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    try:
        phrase = HTTPStatus(exc.status_code).phrase
    except ValueError:
        phrase = "Error"
    body: dict[str, Any] = {"error": phrase}
    if exc.detail and exc.detail != phrase:
        body["message"] = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=body,
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "request.unhandled_exception",
        path=request.url.path,
        method=request.method,
        exc_info=exc,
    )
    body: dict[str, Any] = {"error": "Internal server error"}
    if not get_settings().is_production:
        body["message"] = str(exc) or exc.__class__.__name__
    return JSONResponse(status_code=500, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the envelope handlers on an application."""
    app.add_exception_handler(CRMError, _crm_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
