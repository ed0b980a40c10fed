"""Pydantic schemas for notifications."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class NotificationCategory(str, Enum):
    TASK = "task"
    DEAL = "deal"
    CLIENT = "client"
    SYSTEM = "system"
    GENERAL = "general"


class NotificationType(str, Enum):
    """Types written by this service. The column itself is free-form."""

    TASK_OVERDUE = "task.overdue"
    TASK_DUE_TODAY = "task.due_today"
    TASK_ASSIGNED = "task.assigned"
    TASK_COMPLETED = "task.completed"


# A task carries at most one unread notification of these types; writing one
# marks the others read.
DUE_TASK_TYPES = (NotificationType.TASK_DUE_TODAY.value, NotificationType.TASK_OVERDUE.value)


class NotificationCreate(BaseModel):
    user_id: str
    type: str
    category: NotificationCategory = NotificationCategory.GENERAL
    title: str = Field(min_length=1)
    message: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationRead(BaseModel):
    id: str
    user_id: str
    type: str
    category: NotificationCategory
    title: str
    message: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    read_at: datetime | None = None
    dismissed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


def encode_cursor(created_at: datetime, notification_id: str) -> str:
    """Keyset position of a feed item: ``<created_at ISO>|<id>``."""
    return f"{created_at.isoformat()}|{notification_id}"


def decode_cursor(value: str) -> tuple[datetime, str | None]:
    """Inverse of :func:`encode_cursor`. A bare timestamp is accepted without an id.

    Raises:
        ValueError: if the timestamp or the id is malformed.
    """
    stamp, _, notification_id = value.strip().partition("|")
    created_at = datetime.fromisoformat(stamp)
    if not notification_id:
        return created_at, None
    return created_at, str(uuid.UUID(notification_id))


class NotificationQuery(BaseModel):
    """Feed filters. ``cursor``/``cursor_id`` locate the last item seen; ties
    on ``created_at`` are broken by id."""

    category: NotificationCategory | None = None
    read: bool | None = None
    limit: int = DEFAULT_PAGE_SIZE
    cursor: datetime | None = None
    cursor_id: str | None = None

    @property
    def clamped_limit(self) -> int:
        return max(1, min(self.limit, MAX_PAGE_SIZE))


class NotificationPage(BaseModel):
    data: list[NotificationRead] = Field(default_factory=list)
    next_cursor: str | None = None
    total_count: int = 0
    unread_count: int = 0


class EvaluationResult(BaseModel):
    """Outcome of one lazy evaluation run. Never raised, always returned."""

    user_id: str
    tasks_scanned: int = 0
    notifications_created: int = 0
    skipped_existing: int = 0
    superseded: int = 0
    errors: int = 0
    failed: bool = False
