"""Authentication API endpoints.

Provides registration, login/logout, current user info, email
verification and the password flows. Login sets the session cookie and
also returns the token for clients that prefer the Authorization header.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status

from src.crm.api.deps import get_current_user, service_from_state
from src.crm.config import get_settings
from src.crm.schemas.auth import (
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
    VerifyEmailRequest,
)

router = APIRouter(prefix="/auth", tags=["auth"])

RESET_REQUESTED = "If an account exists for this email, a password reset link has been sent."
VERIFICATION_RESENT = "If this account still needs verification, a new link has been sent."


def _get_auth_service(request: Request) -> Any:
    return service_from_state(request, "auth_service", "AuthService")


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, request: Request) -> dict:
    """Create an unverified account and email a verification link."""
    service = _get_auth_service(request)
    user = await service.register(body)
    return {
        "success": True,
        "data": user,
        "message": "Registration successful. Please check your email to verify your account.",
    }


@router.post("/login")
async def login(body: LoginRequest, request: Request, response: Response) -> dict:
    service = _get_auth_service(request)
    session = await service.login(body.email, body.password, remember_me=body.remember_me)

    settings = get_settings()
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session.token,
        expires=session.expires_at,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
        path="/",
    )
    return {"success": True, "data": session, "message": "Login successful"}


@router.post("/logout")
async def logout(response: Response) -> dict:
    """Clear the session cookie. Tokens are stateless and simply expire."""
    settings = get_settings()
    response.delete_cookie(key=settings.SESSION_COOKIE_NAME, path="/")
    return {"success": True, "message": "Logged out"}


@router.get("/me")
async def get_me(user: UserResponse = Depends(get_current_user)) -> dict:
    return {"success": True, "data": user}


@router.post("/verify-email")
async def verify_email(body: VerifyEmailRequest, request: Request) -> dict:
    service = _get_auth_service(request)
    user = await service.verify_email(body.token)
    return {"success": True, "data": user, "message": "Email verified successfully"}


@router.post("/resend-verification")
async def resend_verification(body: EmailRequest, request: Request) -> dict:
    service = _get_auth_service(request)
    await service.resend_verification(body.email)
    return {"success": True, "message": VERIFICATION_RESENT}


@router.post("/forgot-password")
async def forgot_password(body: EmailRequest, request: Request) -> dict:
    """Always 200 so the response does not reveal whether the account exists."""
    service = _get_auth_service(request)
    await service.forgot_password(body.email)
    return {"success": True, "message": RESET_REQUESTED}


@router.post("/reset-password")
async def reset_password(body: ResetPasswordRequest, request: Request) -> dict:
    service = _get_auth_service(request)
    await service.reset_password(body.token, body.new_password)
    return {"success": True, "message": "Password has been reset. You can now log in."}


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_auth_service(request)
    await service.change_password(user.id, body.current_password, body.new_password)
    return {"success": True, "message": "Password changed successfully"}
