"""Client repository -- async persistence for clients, their notes and
tags, and each user's status and tag catalogues.

Client records are scoped to the assigned user. Note and client-tag
methods take a client id the caller has already been checked against.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.clients.models import (
    ClientModel,
    ClientNoteModel,
    ClientStatusModel,
    ClientTagModel,
    UserTagModel,
)
from src.crm.clients.schemas import (
    DEFAULT_CLIENT_STATUSES,
    DEFAULT_USER_TAGS,
    ClientCreate,
    ClientRead,
    ClientStatusRead,
    ClientTagRead,
    NoteCreate,
    NoteRead,
    UserTagRead,
)


class DuplicateNameError(Exception):
    """A unique name constraint (status, user tag or client tag) was violated."""


def _as_uuid(value: str | None) -> uuid.UUID | None:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def default_catalogue(user_id: uuid.UUID) -> list[ClientStatusModel | UserTagModel]:
    """Rows every new user starts with: the default status pipeline and tags."""
    rows: list[ClientStatusModel | UserTagModel] = [
        ClientStatusModel(user_id=user_id, name=name, color=color, position=position, is_default=True)
        for position, (name, color) in enumerate(DEFAULT_CLIENT_STATUSES)
    ]
    rows.extend(UserTagModel(user_id=user_id, name=name, color=color) for name, color in DEFAULT_USER_TAGS)
    return rows


def _model_to_client(model: ClientModel) -> ClientRead:
    """Convert ClientModel to ClientRead schema."""
    return ClientRead(
        id=str(model.id),
        name=model.name,
        email=model.email,
        phone=model.phone,
        birthday=model.birthday,
        address=model.address,
        status_id=str(model.status_id) if model.status_id else None,
        created_by=str(model.created_by),
        assigned_to=str(model.assigned_to),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_note(model: ClientNoteModel, client_name: str | None = None) -> NoteRead:
    return NoteRead(
        id=str(model.id),
        client_id=str(model.client_id),
        client_name=client_name,
        content=model.content,
        is_important=bool(model.is_important),
        created_by=str(model.created_by),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_client_tag(model: ClientTagModel) -> ClientTagRead:
    return ClientTagRead(
        id=str(model.id),
        client_id=str(model.client_id),
        tag_id=str(model.tag_id) if model.tag_id else None,
        tag_name=model.tag_name,
        created_by=str(model.created_by),
        created_at=model.created_at,
    )


def _model_to_user_tag(model: UserTagModel) -> UserTagRead:
    return UserTagRead(
        id=str(model.id),
        user_id=str(model.user_id),
        name=model.name,
        color=model.color,
        created_at=model.created_at,
    )


def _model_to_status(model: ClientStatusModel) -> ClientStatusRead:
    return ClientStatusRead(
        id=str(model.id),
        user_id=str(model.user_id),
        name=model.name,
        color=model.color,
        position=model.position,
        is_default=bool(model.is_default),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class ClientRepository:
    """Async repository for clients.

    Args:
        session_factory: Async callable yielding AsyncSession instances.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
    ) -> None:
        self._session_factory = session_factory

    def _owned(self, user_id: str):
        return select(ClientModel).where(
            ClientModel.assigned_to == uuid.UUID(user_id),
            ClientModel.is_deleted == False,  # noqa: E712
        )

    async def create_client(self, user_id: str, data: ClientCreate) -> ClientRead:
        user_uuid = uuid.UUID(user_id)
        async for session in self._session_factory():
            values = data.model_dump()
            values["status_id"] = _as_uuid(values["status_id"])
            model = ClientModel(
                **values,
                created_by=user_uuid,
                assigned_to=user_uuid,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_client(model)
        raise RuntimeError("session factory yielded no session")

    async def get_client(self, client_id: str, user_id: str) -> ClientRead | None:
        client_uuid = _as_uuid(client_id)
        if client_uuid is None:
            return None
        async for session in self._session_factory():
            result = await session.execute(self._owned(user_id).where(ClientModel.id == client_uuid))
            model = result.scalar_one_or_none()
            return _model_to_client(model) if model is not None else None
        return None

    async def get_clients_by_ids(self, client_ids: list[str]) -> dict[str, ClientRead]:
        """Bulk lookup used to decorate tasks and notifications with client names."""
        ids = [u for u in (_as_uuid(c) for c in client_ids) if u is not None]
        if not ids:
            return {}
        async for session in self._session_factory():
            result = await session.execute(select(ClientModel).where(ClientModel.id.in_(ids)))
            return {str(m.id): _model_to_client(m) for m in result.scalars().all()}
        return {}

    async def list_clients(
        self,
        user_id: str,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ClientRead]:
        async for session in self._session_factory():
            stmt = self._owned(user_id)
            if search:
                pattern = f"%{search.strip()}%"
                stmt = stmt.where(or_(
                    ClientModel.name.ilike(pattern),
                    ClientModel.email.ilike(pattern),
                    ClientModel.phone.ilike(pattern),
                ))
            stmt = stmt.order_by(ClientModel.created_at.desc()).limit(limit).offset(offset)
            result = await session.execute(stmt)
            return [_model_to_client(m) for m in result.scalars().all()]
        return []

    async def count_clients(self, user_id: str) -> int:
        async for session in self._session_factory():
            result = await session.execute(
                select(func.count()).select_from(ClientModel).where(
                    ClientModel.assigned_to == uuid.UUID(user_id),
                    ClientModel.is_deleted == False,  # noqa: E712
                )
            )
            return int(result.scalar_one())
        return 0

    async def update_client(
        self, client_id: str, user_id: str, values: dict[str, Any]
    ) -> ClientRead | None:
        client_uuid = _as_uuid(client_id)
        if client_uuid is None:
            return None
        async for session in self._session_factory():
            result = await session.execute(self._owned(user_id).where(ClientModel.id == client_uuid))
            model = result.scalar_one_or_none()
            if model is None:
                return None
            for key, value in values.items():
                if key == "status_id":
                    value = _as_uuid(value)
                setattr(model, key, value)
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_client(model)
        return None

    async def soft_delete_client(self, client_id: str, user_id: str) -> bool:
        client_uuid = _as_uuid(client_id)
        if client_uuid is None:
            return False
        async for session in self._session_factory():
            result = await session.execute(self._owned(user_id).where(ClientModel.id == client_uuid))
            model = result.scalar_one_or_none()
            if model is None:
                return False
            model.is_deleted = True
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            return True
        return False

    async def list_all_clients(self, user_id: str) -> list[ClientRead]:
        """Every live client of a user, oldest first. Used for stats."""
        async for session in self._session_factory():
            result = await session.execute(self._owned(user_id).order_by(ClientModel.created_at.asc()))
            return [_model_to_client(m) for m in result.scalars().all()]
        return []

    async def count_clients_created_since(self, user_id: str, since: datetime) -> int:
        async for session in self._session_factory():
            result = await session.execute(
                select(func.count()).select_from(ClientModel).where(
                    ClientModel.assigned_to == uuid.UUID(user_id),
                    ClientModel.is_deleted == False,  # noqa: E712
                    ClientModel.created_at >= since,
                )
            )
            return int(result.scalar_one())
        return 0

    # ── Notes ────────────────────────────────────────────────────────────

    async def list_notes(self, client_id: str) -> list[NoteRead]:
        client_uuid = _as_uuid(client_id)
        if client_uuid is None:
            return []
        async for session in self._session_factory():
            result = await session.execute(
                select(ClientNoteModel)
                .where(ClientNoteModel.client_id == client_uuid)
                .order_by(ClientNoteModel.created_at.desc())
            )
            return [_model_to_note(m) for m in result.scalars().all()]
        return []

    async def create_note(self, client_id: str, user_id: str, data: NoteCreate) -> NoteRead:
        async for session in self._session_factory():
            model = ClientNoteModel(
                client_id=uuid.UUID(client_id),
                content=data.content,
                is_important=data.is_important,
                created_by=uuid.UUID(user_id),
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_note(model)
        raise RuntimeError("session factory yielded no session")

    async def update_note(
        self, note_id: str, client_id: str, values: dict[str, Any]
    ) -> NoteRead | None:
        note_uuid = _as_uuid(note_id)
        if note_uuid is None:
            return None
        async for session in self._session_factory():
            result = await session.execute(
                select(ClientNoteModel).where(
                    ClientNoteModel.id == note_uuid,
                    ClientNoteModel.client_id == _as_uuid(client_id),
                )
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            for key, value in values.items():
                setattr(model, key, value)
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_note(model)
        return None

    async def delete_note(self, note_id: str, client_id: str) -> bool:
        note_uuid = _as_uuid(note_id)
        if note_uuid is None:
            return False
        async for session in self._session_factory():
            result = await session.execute(
                delete(ClientNoteModel).where(
                    ClientNoteModel.id == note_uuid,
                    ClientNoteModel.client_id == _as_uuid(client_id),
                )
            )
            await session.commit()
            return result.rowcount > 0
        return False

    async def list_recent_notes(self, user_id: str, limit: int = 10) -> list[NoteRead]:
        """Notes the user wrote on live clients, newest first, with client names."""
        async for session in self._session_factory():
            stmt = (
                select(ClientNoteModel, ClientModel.name)
                .join(ClientModel, ClientModel.id == ClientNoteModel.client_id)
                .where(
                    ClientNoteModel.created_by == uuid.UUID(user_id),
                    ClientModel.is_deleted == False,  # noqa: E712
                )
                .order_by(ClientNoteModel.created_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_model_to_note(note, name) for note, name in result.all()]
        return []

    async def last_note_dates(self, user_id: str) -> dict[str, datetime]:
        """Newest note timestamp per live client of the user; clients without notes are absent."""
        async for session in self._session_factory():
            stmt = (
                select(ClientNoteModel.client_id, func.max(ClientNoteModel.created_at))
                .join(ClientModel, ClientModel.id == ClientNoteModel.client_id)
                .where(
                    ClientModel.assigned_to == uuid.UUID(user_id),
                    ClientModel.is_deleted == False,  # noqa: E712
                )
                .group_by(ClientNoteModel.client_id)
            )
            result = await session.execute(stmt)
            return {str(client_id): last for client_id, last in result.all()}
        return {}

    # ── Client Tags ──────────────────────────────────────────────────────

    async def list_client_tags(self, client_id: str) -> list[ClientTagRead]:
        client_uuid = _as_uuid(client_id)
        if client_uuid is None:
            return []
        async for session in self._session_factory():
            result = await session.execute(
                select(ClientTagModel)
                .where(ClientTagModel.client_id == client_uuid)
                .order_by(ClientTagModel.created_at.asc())
            )
            return [_model_to_client_tag(m) for m in result.scalars().all()]
        return []

    async def add_client_tag(
        self, client_id: str, user_id: str, tag_name: str, tag_id: str | None = None
    ) -> ClientTagRead:
        """Raises DuplicateNameError when the client already has the tag."""
        async for session in self._session_factory():
            model = ClientTagModel(
                client_id=uuid.UUID(client_id),
                tag_id=_as_uuid(tag_id),
                tag_name=tag_name,
                created_by=uuid.UUID(user_id),
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateNameError(tag_name) from exc
            await session.refresh(model)
            return _model_to_client_tag(model)
        raise RuntimeError("session factory yielded no session")

    async def delete_client_tag(self, tag_id: str, client_id: str) -> bool:
        tag_uuid = _as_uuid(tag_id)
        if tag_uuid is None:
            return False
        async for session in self._session_factory():
            result = await session.execute(
                delete(ClientTagModel).where(
                    ClientTagModel.id == tag_uuid,
                    ClientTagModel.client_id == _as_uuid(client_id),
                )
            )
            await session.commit()
            return result.rowcount > 0
        return False

    async def autocomplete_tags(self, user_id: str, prefix: str, limit: int = 10) -> list[str]:
        """Distinct tag names starting with ``prefix`` from the user's catalogue
        and from tags on the user's clients, alphabetical."""
        pattern = f"{prefix.strip()}%"
        async for session in self._session_factory():
            catalogue = select(UserTagModel.name.label("name")).where(
                UserTagModel.user_id == uuid.UUID(user_id),
                UserTagModel.name.ilike(pattern),
            )
            applied = (
                select(ClientTagModel.tag_name.label("name"))
                .join(ClientModel, ClientModel.id == ClientTagModel.client_id)
                .where(
                    ClientModel.assigned_to == uuid.UUID(user_id),
                    ClientModel.is_deleted == False,  # noqa: E712
                    ClientTagModel.tag_name.ilike(pattern),
                )
            )
            names = catalogue.union(applied).subquery()
            result = await session.execute(select(names.c.name).order_by(names.c.name).limit(limit))
            return [name for (name,) in result.all()]
        return []

    # ── User Tags ────────────────────────────────────────────────────────

    async def list_user_tags(self, user_id: str) -> list[UserTagRead]:
        async for session in self._session_factory():
            result = await session.execute(
                select(UserTagModel)
                .where(UserTagModel.user_id == uuid.UUID(user_id))
                .order_by(UserTagModel.name.asc())
            )
            return [_model_to_user_tag(m) for m in result.scalars().all()]
        return []

    async def get_user_tag(self, tag_id: str, user_id: str) -> UserTagRead | None:
        tag_uuid = _as_uuid(tag_id)
        if tag_uuid is None:
            return None
        async for session in self._session_factory():
            result = await session.execute(
                select(UserTagModel).where(
                    UserTagModel.id == tag_uuid,
                    UserTagModel.user_id == uuid.UUID(user_id),
                )
            )
            model = result.scalar_one_or_none()
            return _model_to_user_tag(model) if model is not None else None
        return None

    async def find_user_tag(self, user_id: str, name: str) -> UserTagRead | None:
        """Catalogue entry with this name, compared case-insensitively."""
        async for session in self._session_factory():
            result = await session.execute(
                select(UserTagModel).where(
                    UserTagModel.user_id == uuid.UUID(user_id),
                    func.lower(UserTagModel.name) == name.strip().lower(),
                ).limit(1)
            )
            model = result.scalar_one_or_none()
            return _model_to_user_tag(model) if model is not None else None
        return None

    async def create_user_tag(self, user_id: str, name: str, color: str) -> UserTagRead:
        """Raises DuplicateNameError when the user already has a tag with this name."""
        async for session in self._session_factory():
            model = UserTagModel(user_id=uuid.UUID(user_id), name=name, color=color)
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateNameError(name) from exc
            await session.refresh(model)
            return _model_to_user_tag(model)
        raise RuntimeError("session factory yielded no session")

    async def update_user_tag(
        self, tag_id: str, user_id: str, values: dict[str, Any]
    ) -> UserTagRead | None:
        """Renaming also renames the tag on every client it is applied to."""
        tag_uuid = _as_uuid(tag_id)
        if tag_uuid is None:
            return None
        async for session in self._session_factory():
            result = await session.execute(
                select(UserTagModel).where(
                    UserTagModel.id == tag_uuid,
                    UserTagModel.user_id == uuid.UUID(user_id),
                )
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            for key, value in values.items():
                setattr(model, key, value)
            if "name" in values:
                await session.execute(
                    update(ClientTagModel)
                    .where(ClientTagModel.tag_id == tag_uuid)
                    .values(tag_name=values["name"])
                )
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateNameError(values.get("name", "")) from exc
            await session.refresh(model)
            return _model_to_user_tag(model)
        return None

    async def delete_user_tag(self, tag_id: str, user_id: str) -> bool:
        """Deleting a catalogue entry removes it from every client (ON DELETE CASCADE)."""
        tag_uuid = _as_uuid(tag_id)
        if tag_uuid is None:
            return False
        async for session in self._session_factory():
            result = await session.execute(
                delete(UserTagModel).where(
                    UserTagModel.id == tag_uuid,
                    UserTagModel.user_id == uuid.UUID(user_id),
                )
            )
            await session.commit()
            return result.rowcount > 0
        return False

    # ── Statuses ─────────────────────────────────────────────────────────

    async def list_statuses(self, user_id: str) -> list[ClientStatusRead]:
        async for session in self._session_factory():
            result = await session.execute(
                select(ClientStatusModel)
                .where(ClientStatusModel.user_id == uuid.UUID(user_id))
                .order_by(ClientStatusModel.position.asc(), ClientStatusModel.name.asc())
            )
            return [_model_to_status(m) for m in result.scalars().all()]
        return []

    async def get_status(self, status_id: str, user_id: str) -> ClientStatusRead | None:
        status_uuid = _as_uuid(status_id)
        if status_uuid is None:
            return None
        async for session in self._session_factory():
            result = await session.execute(
                select(ClientStatusModel).where(
                    ClientStatusModel.id == status_uuid,
                    ClientStatusModel.user_id == uuid.UUID(user_id),
                )
            )
            model = result.scalar_one_or_none()
            return _model_to_status(model) if model is not None else None
        return None

    async def create_status(
        self, user_id: str, name: str, color: str, position: int | None = None
    ) -> ClientStatusRead:
        """Without a position the status goes to the end of the pipeline.

        Raises DuplicateNameError when the user already has a status with this name.
        """
        user_uuid = uuid.UUID(user_id)
        async for session in self._session_factory():
            if position is None:
                last = await session.execute(
                    select(func.max(ClientStatusModel.position)).where(ClientStatusModel.user_id == user_uuid)
                )
                highest = last.scalar_one_or_none()
                position = 0 if highest is None else highest + 1
            model = ClientStatusModel(user_id=user_uuid, name=name, color=color, position=position)
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateNameError(name) from exc
            await session.refresh(model)
            return _model_to_status(model)
        raise RuntimeError("session factory yielded no session")

    async def update_status(
        self, status_id: str, user_id: str, values: dict[str, Any]
    ) -> ClientStatusRead | None:
        status_uuid = _as_uuid(status_id)
        if status_uuid is None:
            return None
        async for session in self._session_factory():
            result = await session.execute(
                select(ClientStatusModel).where(
                    ClientStatusModel.id == status_uuid,
                    ClientStatusModel.user_id == uuid.UUID(user_id),
                )
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            for key, value in values.items():
                setattr(model, key, value)
            model.updated_at = datetime.now(timezone.utc)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateNameError(values.get("name", "")) from exc
            await session.refresh(model)
            return _model_to_status(model)
        return None

    async def count_clients_with_status(self, status_id: str) -> int:
        async for session in self._session_factory():
            result = await session.execute(
                select(func.count()).select_from(ClientModel).where(
                    ClientModel.status_id == uuid.UUID(status_id),
                    ClientModel.is_deleted == False,  # noqa: E712
                )
            )
            return int(result.scalar_one())
        return 0

    async def delete_status(self, status_id: str, user_id: str) -> bool:
        status_uuid = _as_uuid(status_id)
        if status_uuid is None:
            return False
        async for session in self._session_factory():
            result = await session.execute(
                delete(ClientStatusModel).where(
                    ClientStatusModel.id == status_uuid,
                    ClientStatusModel.user_id == uuid.UUID(user_id),
                )
            )
            await session.commit()
            return result.rowcount > 0
        return False

    async def reorder_statuses(self, user_id: str, status_ids: list[str]) -> list[ClientStatusRead]:
        """Set each listed status's position to its list index, in one transaction."""
        user_uuid = uuid.UUID(user_id)
        async for session in self._session_factory():
            now = datetime.now(timezone.utc)
            for position, status_id in enumerate(status_ids):
                await session.execute(
                    update(ClientStatusModel)
                    .where(
                        ClientStatusModel.id == uuid.UUID(status_id),
                        ClientStatusModel.user_id == user_uuid,
                    )
                    .values(position=position, updated_at=now)
                )
            await session.commit()
        return await self.list_statuses(user_id)
