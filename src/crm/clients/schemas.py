"""Pydantic schemas for clients, their notes and tags, and the per-user
status and tag catalogues."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

PHONE_PATTERN = r"^\+1-\d{3}-\d{3}-\d{4}$"

# (name, color) in pipeline order; every new user starts with these.
DEFAULT_CLIENT_STATUSES = [
    ("New", "blue"),
    ("Contacted", "purple"),
    ("Qualified", "cyan"),
    ("Nurturing", "orange"),
    ("Negotiating", "yellow"),
    ("Won", "green"),
    ("Lost", "gray"),
]

DEFAULT_USER_TAGS = [
    ("VIP", "amber"),
    ("Hot Lead", "red"),
    ("Buyer", "blue"),
    ("Seller", "green"),
    ("Investor", "purple"),
    ("First-Time Buyer", "cyan"),
    ("Referral", "orange"),
    ("Past Client", "gray"),
]


def _required_text(value: str, label: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{label} cannot be blank")
    return value


def _optional_uuid(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return str(uuid.UUID(value.strip()))
    except ValueError:
        raise ValueError("Must be a valid id") from None


# ── Clients ──────────────────────────────────────────────────────────────────


class ClientCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, pattern=PHONE_PATTERN)
    birthday: date | None = None
    address: str | None = None
    status_id: str | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return _required_text(value, "Name")

    @field_validator("status_id")
    @classmethod
    def _check_status_id(cls, value: str | None) -> str | None:
        return _optional_uuid(value)


class ClientUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged. An explicit null
    ``status_id`` clears the status."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, pattern=PHONE_PATTERN)
    birthday: date | None = None
    address: str | None = None
    status_id: str | None = None

    @field_validator("status_id")
    @classmethod
    def _check_status_id(cls, value: str | None) -> str | None:
        return _optional_uuid(value)


class ClientRead(BaseModel):
    id: str
    name: str
    email: str | None = None
    phone: str | None = None
    birthday: date | None = None
    address: str | None = None
    status_id: str | None = None
    created_by: str
    assigned_to: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Notes ────────────────────────────────────────────────────────────────────


class NoteCreate(BaseModel):
    content: str = Field(min_length=1)
    is_important: bool = False

    @field_validator("content")
    @classmethod
    def _strip_content(cls, value: str) -> str:
        return _required_text(value, "Note content")


class NoteUpdate(BaseModel):
    content: str | None = Field(default=None, min_length=1)
    is_important: bool | None = None

    @field_validator("content")
    @classmethod
    def _strip_content(cls, value: str | None) -> str | None:
        return None if value is None else _required_text(value, "Note content")


class NoteRead(BaseModel):
    id: str
    client_id: str
    client_name: str | None = None
    content: str
    is_important: bool = False
    created_by: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Tags ─────────────────────────────────────────────────────────────────────


class ClientTagCreate(BaseModel):
    tag_name: str = Field(min_length=1, max_length=100)

    @field_validator("tag_name")
    @classmethod
    def _strip_tag_name(cls, value: str) -> str:
        return _required_text(value, "Tag name")


class ClientTagRead(BaseModel):
    id: str
    client_id: str
    tag_id: str | None = None
    tag_name: str
    created_by: str
    created_at: datetime | None = None


class UserTagCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    color: str = Field(min_length=1, max_length=20)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return _required_text(value, "Tag name")


class UserTagUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=50)
    color: str | None = Field(default=None, min_length=1, max_length=20)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str | None) -> str | None:
        return None if value is None else _required_text(value, "Tag name")


class UserTagRead(BaseModel):
    id: str
    user_id: str
    name: str
    color: str
    created_at: datetime | None = None


# ── Statuses ─────────────────────────────────────────────────────────────────


class ClientStatusCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    color: str = Field(default="gray", min_length=1, max_length=20)
    position: int | None = Field(default=None, ge=0)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return _required_text(value, "Status name")


class ClientStatusUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=50)
    color: str | None = Field(default=None, min_length=1, max_length=20)
    position: int | None = Field(default=None, ge=0)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str | None) -> str | None:
        return None if value is None else _required_text(value, "Status name")


class ClientStatusRead(BaseModel):
    id: str
    user_id: str
    name: str
    color: str
    position: int
    is_default: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class StatusReorder(BaseModel):
    """The caller's status ids in their new order; positions become list indexes."""

    status_ids: list[str] = Field(min_length=1)

    @field_validator("status_ids")
    @classmethod
    def _check_ids(cls, value: list[str]) -> list[str]:
        ids = [_optional_uuid(v) for v in value]
        if len(set(ids)) != len(ids):
            raise ValueError("Status ids must be unique")
        return ids


# ── Stats ────────────────────────────────────────────────────────────────────


class FollowupClient(BaseModel):
    id: str
    name: str
    email: str | None = None
    last_note_date: datetime | None = None


class BirthdayClient(BaseModel):
    id: str
    name: str
    birthday: date
    days_until: int


class FollowupSummary(BaseModel):
    count: int = 0
    clients: list[FollowupClient] = Field(default_factory=list)


class BirthdaySummary(BaseModel):
    count: int = 0
    clients: list[BirthdayClient] = Field(default_factory=list)


class ClientStats(BaseModel):
    total_clients: int = 0
    new_this_month: int = 0
    need_followup: FollowupSummary = Field(default_factory=FollowupSummary)
    birthdays_soon: BirthdaySummary = Field(default_factory=BirthdaySummary)
