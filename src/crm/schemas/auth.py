"""Pydantic schemas for authentication API endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator


class RegisterRequest(BaseModel):
    """Request schema for account registration."""

    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="Plaintext password")
    full_name: str = Field(..., min_length=1, max_length=255)
    phone: str | None = Field(default=None, max_length=50)

    @field_validator("full_name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name cannot be blank")
        return value


class LoginRequest(BaseModel):
    """Request schema for user login."""

    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")
    remember_me: bool = False


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


class EmailRequest(BaseModel):
    """Body of resend-verification and forgot-password."""

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    """Response schema for current user info."""

    id: str
    email: str
    full_name: str
    phone: str | None = None
    email_verified: bool = False
    last_login_at: datetime | None = None
    created_at: datetime | None = None


class UserRecord(UserResponse):
    """User as stored, including credential bookkeeping. Never returned by the API."""

    password_hash: str
    failed_login_count: int = 0
    locked_until: datetime | None = None
    is_active: bool = True

    def public(self) -> UserResponse:
        return UserResponse.model_validate(self.model_dump(include=set(UserResponse.model_fields)))


class SessionResponse(BaseModel):
    """Returned by login. The token is also set as the session cookie."""

    user: UserResponse
    token: str
    expires_at: datetime
