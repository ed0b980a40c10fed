"""User repository -- account lookup and credential bookkeeping."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.clients.repository import default_catalogue
from src.crm.models.user import User
from src.crm.schemas.auth import UserRecord


def _model_to_user(model: User) -> UserRecord:
    return UserRecord(
        id=str(model.id),
        email=model.email,
        full_name=model.full_name,
        phone=model.phone,
        email_verified=model.email_verified,
        last_login_at=model.last_login_at,
        created_at=model.created_at,
        password_hash=model.password_hash,
        failed_login_count=model.failed_login_count or 0,
        locked_until=model.locked_until,
        is_active=model.is_active,
    )


class UserRepository:
    """Async repository for user accounts.

    Emails are stored lowercased and matched case-insensitively.

    Args:
        session_factory: Async callable yielding AsyncSession instances.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
    ) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, user_id: str) -> UserRecord | None:
        try:
            user_uuid = uuid.UUID(str(user_id))
        except ValueError:
            return None
        async for session in self._session_factory():
            model = await session.get(User, user_uuid)
            return _model_to_user(model) if model is not None else None
        return None

    async def get_by_email(self, email: str) -> UserRecord | None:
        async for session in self._session_factory():
            result = await session.execute(
                select(User).where(func.lower(User.email) == email.strip().lower())
            )
            model = result.scalar_one_or_none()
            return _model_to_user(model) if model is not None else None
        return None

    async def create(
        self,
        email: str,
        password_hash: str,
        full_name: str,
        phone: str | None = None,
    ) -> UserRecord:
        """Insert the user together with the default client statuses and tags."""
        user_id = uuid.uuid4()
        async for session in self._session_factory():
            model = User(
                id=user_id,
                email=email.strip().lower(),
                password_hash=password_hash,
                full_name=full_name,
                phone=phone,
            )
            session.add(model)
            session.add_all(default_catalogue(user_id))
            await session.commit()
            await session.refresh(model)
            return _model_to_user(model)
        raise RuntimeError("session factory yielded no session")

    async def update(self, user_id: str, values: dict[str, Any]) -> UserRecord | None:
        async for session in self._session_factory():
            model = await session.get(User, uuid.UUID(user_id))
            if model is None:
                return None
            for key, value in values.items():
                setattr(model, key, value)
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_user(model)
        return None
