"""Task lifecycle rules and the direct notifications they trigger."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog

from src.crm.core.errors import NotFoundError, ValidationError
from src.crm.notifications.schemas import (
    NotificationCategory,
    NotificationCreate,
    NotificationType,
)
from src.crm.tasks.schemas import TaskCreate, TaskFilter, TaskRead, TaskStatus, TaskUpdate

logger = structlog.get_logger(__name__)

CLIENT_NOT_FOUND = "Client not found or access denied"
TASK_NOT_FOUND = "Task not found"

# Columns that are NOT NULL; an explicit null in a PATCH leaves them unchanged.
_REQUIRED_FIELDS = ("title", "status", "priority", "assigned_to")


def task_action_url(client_id: str) -> str:
    return f"/clients/{client_id}?tab=tasks"


class TaskService:
    """Creates, updates and lists client tasks.

    Args:
        repository: TaskRepository (or a test double).
        client_repository: Used to check the caller can see the client.
        notification_service: Receives best-effort task.assigned and
            task.completed notifications.
        user_repository: Resolves assignees other than the caller.
    """

    def __init__(
        self,
        repository: Any,
        client_repository: Any,
        notification_service: Any,
        user_repository: Any,
    ) -> None:
        self._repo = repository
        self._clients = client_repository
        self._notifications = notification_service
        self._users = user_repository

    async def _require_client(self, client_id: str, user_id: str):
        client = await self._clients.get_client(client_id, user_id)
        if client is None:
            raise NotFoundError(CLIENT_NOT_FOUND)
        return client

    async def _require_task(self, client_id: str, task_id: str) -> TaskRead:
        task = await self._repo.get_task(task_id, client_id=client_id)
        if task is None:
            raise NotFoundError(TASK_NOT_FOUND)
        return task

    async def _require_assignee(self, assigned_to: str, user_id: str) -> None:
        if assigned_to == user_id:
            return
        assignee = await self._users.get_by_id(assigned_to)
        if assignee is None or not assignee.is_active:
            raise ValidationError(
                "Assignee not found",
                details=[{"field": "assigned_to", "message": "No active user with this id"}],
            )

    # ── Queries ──────────────────────────────────────────────────────────

    async def list_client_tasks(self, client_id: str, user_id: str) -> list[TaskRead]:
        await self._require_client(client_id, user_id)
        return await self._repo.list_client_tasks(client_id)

    async def list_my_tasks(self, user_id: str, filters: TaskFilter) -> list[TaskRead]:
        return await self._repo.list_tasks_for_user(user_id, filters)

    # ── Commands ─────────────────────────────────────────────────────────

    async def create_task(self, client_id: str, user_id: str, data: TaskCreate) -> TaskRead:
        client = await self._require_client(client_id, user_id)
        if data.assigned_to is not None:
            await self._require_assignee(data.assigned_to, user_id)
        task = await self._repo.create_task(client_id, user_id, data)
        if task.client_name is None:
            task = task.model_copy(update={"client_name": client.name})
        logger.info(
            "task.created",
            task_id=task.id,
            client_id=client_id,
            user_id=user_id,
            assigned_to=task.assigned_to,
        )
        if task.assigned_to != user_id:
            await self._notify_assigned(task)
        return task

    async def update_task(
        self, client_id: str, task_id: str, user_id: str, data: TaskUpdate
    ) -> TaskRead:
        await self._require_client(client_id, user_id)
        current = await self._require_task(client_id, task_id)

        values = data.model_dump(exclude_unset=True)
        for field in _REQUIRED_FIELDS:
            if field in values and values[field] is None:
                del values[field]
        if "assigned_to" in values and values["assigned_to"] != current.assigned_to:
            await self._require_assignee(values["assigned_to"], user_id)
        if "status" in values:
            if values["status"] == TaskStatus.CLOSED:
                if current.status != TaskStatus.CLOSED:
                    values["completed_at"] = datetime.now(timezone.utc)
            else:
                values["completed_at"] = None
        if not values:
            return current

        updated = await self._repo.update_task(task_id, values)
        if updated is None:
            raise NotFoundError(TASK_NOT_FOUND)
        logger.info(
            "task.updated",
            task_id=task_id,
            user_id=user_id,
            fields=sorted(values),
        )

        if updated.assigned_to != current.assigned_to and updated.assigned_to != user_id:
            await self._notify_assigned(updated)
        if (
            updated.status == TaskStatus.CLOSED
            and current.status != TaskStatus.CLOSED
            and updated.created_by != user_id
        ):
            await self._notify_completed(updated)
        return updated

    async def delete_task(self, client_id: str, task_id: str, user_id: str) -> None:
        await self._require_client(client_id, user_id)
        await self._require_task(client_id, task_id)
        if not await self._repo.delete_task(task_id):
            raise NotFoundError(TASK_NOT_FOUND)
        logger.info("task.deleted", task_id=task_id, user_id=user_id)

    # ── Direct Notifications ─────────────────────────────────────────────

    async def _notify_assigned(self, task: TaskRead) -> None:
        await self._notifications.notify(NotificationCreate(
            user_id=task.assigned_to,
            type=NotificationType.TASK_ASSIGNED.value,
            category=NotificationCategory.TASK,
            title="New Task Assigned",
            message=f'You were assigned "{task.title}"',
            entity_type="task",
            entity_id=task.id,
            metadata={
                "task_title": task.title,
                "client_name": task.client_name,
                "client_id": task.client_id,
                "action_url": task_action_url(task.client_id),
            },
        ))

    async def _notify_completed(self, task: TaskRead) -> None:
        await self._notifications.notify(NotificationCreate(
            user_id=task.created_by,
            type=NotificationType.TASK_COMPLETED.value,
            category=NotificationCategory.TASK,
            title="Task Completed",
            message=f'"{task.title}" was completed',
            entity_type="task",
            entity_id=task.id,
            metadata={
                "task_title": task.title,
                "client_name": task.client_name,
                "client_id": task.client_id,
                "action_url": task_action_url(task.client_id),
            },
        ))
