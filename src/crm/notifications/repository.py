"""Notification repository -- async persistence for the notification feed."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.notifications.models import NotificationModel
from src.crm.notifications.schemas import (
    NotificationCategory,
    NotificationCreate,
    NotificationQuery,
    NotificationRead,
)


def _as_uuid(value: str | None) -> uuid.UUID | None:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _model_to_notification(model: NotificationModel) -> NotificationRead:
    """Convert NotificationModel to NotificationRead schema."""
    return NotificationRead(
        id=str(model.id),
        user_id=str(model.user_id),
        type=model.type,
        category=model.category,
        title=model.title,
        message=model.message,
        entity_type=model.entity_type,
        entity_id=str(model.entity_id) if model.entity_id else None,
        metadata=model.metadata_json or {},
        read_at=model.read_at,
        dismissed_at=model.dismissed_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class NotificationRepository:
    """Async repository for notifications.

    Args:
        session_factory: Async callable yielding AsyncSession instances.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
    ) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _filtered(stmt, user_id: str, category: NotificationCategory | None, read: bool | None):
        stmt = stmt.where(NotificationModel.user_id == uuid.UUID(user_id))
        if category is not None:
            stmt = stmt.where(NotificationModel.category == category.value)
        if read is True:
            stmt = stmt.where(NotificationModel.read_at.is_not(None))
        elif read is False:
            stmt = stmt.where(NotificationModel.read_at.is_(None))
        return stmt

    async def create(self, data: NotificationCreate) -> NotificationRead:
        async for session in self._session_factory():
            model = NotificationModel(
                user_id=uuid.UUID(data.user_id),
                type=data.type,
                category=data.category.value,
                title=data.title,
                message=data.message,
                entity_type=data.entity_type,
                entity_id=_as_uuid(data.entity_id),
                metadata_json=data.metadata,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_notification(model)
        raise RuntimeError("session factory yielded no session")

    async def list_page(self, user_id: str, query: NotificationQuery) -> list[NotificationRead]:
        """One page of a user's notifications, newest first."""
        async for session in self._session_factory():
            stmt = self._filtered(select(NotificationModel), user_id, query.category, query.read)
            if query.cursor is not None:
                before = NotificationModel.created_at < query.cursor
                cursor_id = _as_uuid(query.cursor_id)
                if cursor_id is not None:
                    before = or_(
                        before,
                        and_(NotificationModel.created_at == query.cursor, NotificationModel.id < cursor_id),
                    )
                stmt = stmt.where(before)
            stmt = stmt.order_by(
                NotificationModel.created_at.desc(), NotificationModel.id.desc()
            ).limit(query.clamped_limit)
            result = await session.execute(stmt)
            return [_model_to_notification(m) for m in result.scalars().all()]
        return []

    async def count(
        self,
        user_id: str,
        category: NotificationCategory | None = None,
        read: bool | None = None,
    ) -> int:
        async for session in self._session_factory():
            stmt = self._filtered(
                select(func.count()).select_from(NotificationModel), user_id, category, read
            )
            result = await session.execute(stmt)
            return int(result.scalar_one())
        return 0

    async def mark_read(
        self, notification_id: str, user_id: str, now: datetime
    ) -> NotificationRead | None:
        """Mark one notification read. Already-read rows keep their read_at."""
        notification_uuid = _as_uuid(notification_id)
        if notification_uuid is None:
            return None
        async for session in self._session_factory():
            result = await session.execute(
                select(NotificationModel).where(
                    NotificationModel.id == notification_uuid,
                    NotificationModel.user_id == uuid.UUID(user_id),
                )
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            if model.read_at is None:
                model.read_at = now
                model.updated_at = now
                await session.commit()
                await session.refresh(model)
            return _model_to_notification(model)
        return None

    async def mark_all_read(self, user_id: str, now: datetime) -> int:
        async for session in self._session_factory():
            result = await session.execute(
                update(NotificationModel)
                .where(
                    NotificationModel.user_id == uuid.UUID(user_id),
                    NotificationModel.read_at.is_(None),
                )
                .values(read_at=now, updated_at=now)
            )
            await session.commit()
            return result.rowcount or 0
        return 0

    async def mark_superseded(
        self,
        user_id: str,
        entity_id: str,
        notification_types: list[str],
        now: datetime,
    ) -> int:
        """Mark unread notifications of the given types for one entity read."""
        entity_uuid = _as_uuid(entity_id)
        if entity_uuid is None or not notification_types:
            return 0
        async for session in self._session_factory():
            result = await session.execute(
                update(NotificationModel)
                .where(
                    NotificationModel.user_id == uuid.UUID(user_id),
                    NotificationModel.entity_id == entity_uuid,
                    NotificationModel.type.in_(notification_types),
                    NotificationModel.read_at.is_(None),
                )
                .values(read_at=now, updated_at=now)
            )
            await session.commit()
            return result.rowcount or 0
        return 0

    async def exists(
        self,
        user_id: str,
        notification_type: str,
        entity_id: str,
        created_since: datetime,
    ) -> bool:
        """Whether a matching notification is still unread or was created recently."""
        entity_uuid = _as_uuid(entity_id)
        async for session in self._session_factory():
            stmt = (
                select(NotificationModel.id)
                .where(
                    NotificationModel.user_id == uuid.UUID(user_id),
                    NotificationModel.type == notification_type,
                    NotificationModel.entity_id == entity_uuid,
                    or_(
                        NotificationModel.read_at.is_(None),
                        NotificationModel.created_at >= created_since,
                    ),
                )
                .limit(1)
            )
            result = await session.execute(stmt)
            return result.first() is not None
        return False
