"""Notification feed operations and direct notifications."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.crm.core.errors import NotFoundError
from src.crm.core.monitoring import notifications_created_total
from src.crm.notifications.schemas import (
    NotificationCreate,
    NotificationPage,
    NotificationQuery,
    NotificationRead,
    encode_cursor,
)

logger = structlog.get_logger(__name__)


class NotificationService:
    """Reads and writes a user's notifications.

    Args:
        repository: NotificationRepository (or a test double).
        dedup_hours: Window in which an already-read notification still
            counts as existing for exists().
    """

    def __init__(self, repository: Any, dedup_hours: int = 24) -> None:
        self._repo = repository
        self._dedup_hours = dedup_hours

    async def create(self, data: NotificationCreate) -> NotificationRead:
        notification = await self._repo.create(data)
        notifications_created_total.labels(type=data.type).inc()
        logger.info(
            "notification.created",
            notification_id=notification.id,
            user_id=data.user_id,
            type=data.type,
            entity_id=data.entity_id,
        )
        return notification

    async def notify(self, data: NotificationCreate) -> NotificationRead | None:
        """Best-effort create for side-channel notifications.

        Used where the triggering operation (assigning a task, closing it)
        has already succeeded and must not fail because its notification
        could not be written.
        """
        try:
            return await self.create(data)
        except Exception:
            logger.warning(
                "notification.create_failed",
                user_id=data.user_id,
                type=data.type,
                entity_id=data.entity_id,
                exc_info=True,
            )
            return None

    async def exists(
        self,
        user_id: str,
        notification_type: str,
        entity_id: str,
        within_hours: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Whether the user already has this notification for this entity.

        True when a matching row is unread, or was created within
        ``within_hours`` (default: the service's dedup window).
        """
        now = now or datetime.now(timezone.utc)
        hours = self._dedup_hours if within_hours is None else within_hours
        return await self._repo.exists(
            user_id, notification_type, entity_id, now - timedelta(hours=hours)
        )

    async def supersede(
        self,
        user_id: str,
        entity_id: str,
        notification_types: list[str],
        now: datetime | None = None,
    ) -> int:
        """Mark the user's unread notifications of these types for an entity read.

        Returns the number of rows marked.
        """
        now = now or datetime.now(timezone.utc)
        marked = await self._repo.mark_superseded(user_id, entity_id, notification_types, now)
        if marked:
            logger.info(
                "notification.superseded",
                user_id=user_id,
                entity_id=entity_id,
                types=notification_types,
                marked=marked,
            )
        return marked

    async def list_notifications(self, user_id: str, query: NotificationQuery) -> NotificationPage:
        """One page of the feed plus the totals the UI badge needs."""
        limit = query.clamped_limit
        items = await self._repo.list_page(user_id, query)
        total = await self._repo.count(user_id, category=query.category, read=query.read)
        unread = await self._repo.count(user_id, read=False)
        next_cursor = None
        if len(items) == limit:
            next_cursor = encode_cursor(items[-1].created_at, items[-1].id)
        return NotificationPage(
            data=items,
            next_cursor=next_cursor,
            total_count=total,
            unread_count=unread,
        )

    async def unread_count(self, user_id: str) -> int:
        return await self._repo.count(user_id, read=False)

    async def mark_read(self, notification_id: str, user_id: str) -> NotificationRead:
        notification = await self._repo.mark_read(
            notification_id, user_id, datetime.now(timezone.utc)
        )
        if notification is None:
            raise NotFoundError("Notification not found")
        return notification

    async def mark_all_read(self, user_id: str) -> int:
        updated = await self._repo.mark_all_read(user_id, datetime.now(timezone.utc))
        logger.info("notification.marked_all_read", user_id=user_id, updated=updated)
        return updated
