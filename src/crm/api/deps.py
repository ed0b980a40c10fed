"""FastAPI dependencies for authentication and app.state services.

Services are built once in the application lifespan and stored on
``app.state``. Endpoints fetch them through service_from_state(), which
answers 503 when a service did not initialize.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.crm.config import get_settings
from src.crm.core.errors import AuthenticationError
from src.crm.schemas.auth import UserResponse


def service_from_state(request: Request, attr: str, label: str) -> Any:
    """Retrieve a service from app.state, 503 if not available."""
    service = getattr(request.app.state, attr, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not available.",
        )
    return service


def session_token_from(request: Request) -> str | None:
    """Session token from the Authorization header, else the session cookie."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get(get_settings().SESSION_COOKIE_NAME) or None


async def get_current_user(request: Request) -> UserResponse:
    """Resolve the caller from the session token.

    Checks the Authorization header for a Bearer JWT first, then the
    session cookie.

    Raises:
        AuthenticationError: No token, an invalid or expired token, or a
            token for a user that no longer exists.
    """
    token = session_token_from(request)
    if token is None:
        raise AuthenticationError("Authentication required")
    auth_service = service_from_state(request, "auth_service", "AuthService")
    user = await auth_service.authenticate(token)
    request.state.user_id = user.id
    return user
