"""Pydantic schemas for client tasks."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _clean_title(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError("Title cannot be blank")
    return value


def _clean_user_id(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return str(uuid.UUID(value.strip()))
    except ValueError:
        raise ValueError("Must be a valid user id") from None


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    due_date: date | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.TODO
    assigned_to: str | None = None

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str | None) -> str | None:
        return _clean_title(value)

    @field_validator("assigned_to")
    @classmethod
    def _check_assignee(cls, value: str | None) -> str | None:
        return _clean_user_id(value)


class TaskUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    due_date: date | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    assigned_to: str | None = None

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str | None) -> str | None:
        return _clean_title(value)

    @field_validator("assigned_to")
    @classmethod
    def _check_assignee(cls, value: str | None) -> str | None:
        return _clean_user_id(value)


class TaskRead(BaseModel):
    id: str
    client_id: str
    client_name: str | None = None
    title: str
    description: str | None = None
    due_date: date | None = None
    priority: TaskPriority
    status: TaskStatus
    completed_at: datetime | None = None
    created_by: str
    assigned_to: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def overdue_on(self, today: date) -> bool:
        return (
            self.status != TaskStatus.CLOSED
            and self.due_date is not None
            and self.due_date < today
        )


class TaskFilter(BaseModel):
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_before: date | None = None
    due_after: date | None = None
    limit: int = Field(default=100, ge=1, le=500)
