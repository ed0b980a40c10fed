"""Task repository -- async persistence for client tasks."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.clients.models import ClientModel
from src.crm.tasks.models import TaskModel
from src.crm.tasks.schemas import TaskCreate, TaskFilter, TaskRead, TaskStatus


def _as_uuid(value: str | None) -> uuid.UUID | None:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _model_to_task(model: TaskModel, client_name: str | None = None) -> TaskRead:
    """Convert TaskModel to TaskRead schema."""
    return TaskRead(
        id=str(model.id),
        client_id=str(model.client_id),
        client_name=client_name,
        title=model.title,
        description=model.description,
        due_date=model.due_date,
        priority=model.priority,
        status=model.status,
        completed_at=model.completed_at,
        created_by=str(model.created_by),
        assigned_to=str(model.assigned_to),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class TaskRepository:
    """Async repository for client tasks.

    Tasks are visible to their assignee. Client-scoped reads additionally
    require the client to be live (not soft-deleted).

    Args:
        session_factory: Async callable yielding AsyncSession instances.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
    ) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _with_client():
        return (
            select(TaskModel, ClientModel.name)
            .join(ClientModel, ClientModel.id == TaskModel.client_id)
            .where(ClientModel.is_deleted == False)  # noqa: E712
        )

    # ── CRUD ─────────────────────────────────────────────────────────────

    async def create_task(
        self, client_id: str, user_id: str, data: TaskCreate
    ) -> TaskRead:
        values = data.model_dump(exclude={"assigned_to"})
        values["priority"] = data.priority.value
        values["status"] = data.status.value
        if data.status == TaskStatus.CLOSED:
            values["completed_at"] = datetime.now(timezone.utc)
        async for session in self._session_factory():
            model = TaskModel(
                **values,
                client_id=uuid.UUID(client_id),
                created_by=uuid.UUID(user_id),
                assigned_to=uuid.UUID(data.assigned_to or user_id),
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_task(model)
        raise RuntimeError("session factory yielded no session")

    async def get_task(self, task_id: str, client_id: str | None = None) -> TaskRead | None:
        task_uuid = _as_uuid(task_id)
        if task_uuid is None:
            return None
        async for session in self._session_factory():
            stmt = self._with_client().where(TaskModel.id == task_uuid)
            if client_id is not None:
                stmt = stmt.where(TaskModel.client_id == _as_uuid(client_id))
            row = (await session.execute(stmt)).first()
            return _model_to_task(row[0], row[1]) if row is not None else None
        return None

    async def list_client_tasks(self, client_id: str) -> list[TaskRead]:
        client_uuid = _as_uuid(client_id)
        if client_uuid is None:
            return []
        async for session in self._session_factory():
            stmt = (
                self._with_client()
                .where(TaskModel.client_id == client_uuid)
                .order_by(TaskModel.due_date.asc().nulls_last(), TaskModel.created_at.desc())
            )
            result = await session.execute(stmt)
            return [_model_to_task(task, name) for task, name in result.all()]
        return []

    async def list_tasks_for_user(self, user_id: str, filters: TaskFilter) -> list[TaskRead]:
        async for session in self._session_factory():
            stmt = self._with_client().where(TaskModel.assigned_to == uuid.UUID(user_id))
            if filters.status is not None:
                stmt = stmt.where(TaskModel.status == filters.status.value)
            if filters.priority is not None:
                stmt = stmt.where(TaskModel.priority == filters.priority.value)
            if filters.due_before is not None:
                stmt = stmt.where(TaskModel.due_date <= filters.due_before)
            if filters.due_after is not None:
                stmt = stmt.where(TaskModel.due_date >= filters.due_after)
            stmt = stmt.order_by(
                TaskModel.due_date.asc().nulls_last(), TaskModel.created_at.desc()
            ).limit(filters.limit)
            result = await session.execute(stmt)
            return [_model_to_task(task, name) for task, name in result.all()]
        return []

    async def update_task(self, task_id: str, values: dict[str, Any]) -> TaskRead | None:
        task_uuid = _as_uuid(task_id)
        if task_uuid is None:
            return None
        async for session in self._session_factory():
            row = (await session.execute(
                self._with_client().where(TaskModel.id == task_uuid)
            )).first()
            if row is None:
                return None
            model, client_name = row
            for key, value in values.items():
                if key == "assigned_to" and value is not None:
                    value = uuid.UUID(value)
                setattr(model, key, getattr(value, "value", value))
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_task(model, client_name)
        return None

    async def delete_task(self, task_id: str) -> bool:
        task_uuid = _as_uuid(task_id)
        if task_uuid is None:
            return False
        async for session in self._session_factory():
            model = await session.get(TaskModel, task_uuid)
            if model is None:
                return False
            await session.delete(model)
            await session.commit()
            return True
        return False

    # ── Due Dates ────────────────────────────────────────────────────────

    async def list_due_tasks(self, user_id: str, on_or_before: date) -> list[TaskRead]:
        """Open tasks assigned to the user that are due on or before a date."""
        async for session in self._session_factory():
            stmt = (
                self._with_client()
                .where(
                    TaskModel.assigned_to == uuid.UUID(user_id),
                    TaskModel.status != TaskStatus.CLOSED.value,
                    TaskModel.due_date.is_not(None),
                    TaskModel.due_date <= on_or_before,
                )
                .order_by(TaskModel.due_date.asc())
            )
            result = await session.execute(stmt)
            return [_model_to_task(task, name) for task, name in result.all()]
        return []

    async def list_upcoming_tasks(self, user_id: str, limit: int = 10) -> list[TaskRead]:
        """Open tasks with a due date assigned to the user, soonest (or most overdue) first."""
        async for session in self._session_factory():
            stmt = (
                self._with_client()
                .where(
                    TaskModel.assigned_to == uuid.UUID(user_id),
                    TaskModel.status != TaskStatus.CLOSED.value,
                    TaskModel.due_date.is_not(None),
                )
                .order_by(TaskModel.due_date.asc(), TaskModel.created_at.asc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_model_to_task(task, name) for task, name in result.all()]
        return []

    async def list_recent_tasks(self, user_id: str, limit: int = 10) -> list[TaskRead]:
        """The user's most recently touched tasks, for the activity feed."""
        touched = func.coalesce(TaskModel.updated_at, TaskModel.created_at)
        async for session in self._session_factory():
            stmt = (
                self._with_client()
                .where(TaskModel.assigned_to == uuid.UUID(user_id))
                .order_by(touched.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_model_to_task(task, name) for task, name in result.all()]
        return []

    async def count_due(self, user_id: str, today: date) -> tuple[int, int]:
        """Return ``(due_today, overdue)`` counts of the user's open tasks."""
        async for session in self._session_factory():
            base = (
                select(func.count())
                .select_from(TaskModel)
                .join(ClientModel, ClientModel.id == TaskModel.client_id)
                .where(
                    ClientModel.is_deleted == False,  # noqa: E712
                    TaskModel.assigned_to == uuid.UUID(user_id),
                    TaskModel.status != TaskStatus.CLOSED.value,
                )
            )
            due_today = (await session.execute(base.where(TaskModel.due_date == today))).scalar_one()
            overdue = (await session.execute(base.where(TaskModel.due_date < today))).scalar_one()
            return int(due_today), int(overdue)
        return 0, 0
