"""Lazy evaluation of due and overdue task notifications.

Nothing runs on a timer. Whenever a user opens the notification feed, the
scheduler starts one background evaluation for that user; the evaluation
walks the user's open tasks that are due today or earlier and writes the
notifications that are missing.

Guarantees are at-least-once and eventually consistent: a due task gets its
notification on the next feed read after the evaluation finishes, and the
lookup-before-insert dedup is not backed by a constraint, so two evaluations
racing on different processes can still both insert.
"""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Any

import structlog

from src.crm.core.background import BackgroundTaskRunner
from src.crm.core.monitoring import notification_evaluations_total
from src.crm.notifications.schemas import (
    DUE_TASK_TYPES,
    EvaluationResult,
    NotificationCategory,
    NotificationCreate,
    NotificationType,
)
from src.crm.tasks.schemas import TaskRead
from src.crm.tasks.service import task_action_url

logger = structlog.get_logger(__name__)


def build_task_notification(task: TaskRead, today: date) -> NotificationCreate | None:
    """The notification a task warrants today, or None if it is not due yet."""
    if task.due_date is None or task.due_date > today:
        return None
    client_name = task.client_name or "a client"
    if task.due_date < today:
        notification_type = NotificationType.TASK_OVERDUE
        title = "Task Overdue"
        message = f'"{task.title}" for {client_name} is overdue'
    else:
        notification_type = NotificationType.TASK_DUE_TODAY
        title = "Task Due Today"
        message = f'"{task.title}" for {client_name} is due today'
    return NotificationCreate(
        user_id=task.assigned_to,
        type=notification_type.value,
        category=NotificationCategory.TASK,
        title=title,
        message=message,
        entity_type="task",
        entity_id=task.id,
        metadata={
            "task_title": task.title,
            "client_name": task.client_name,
            "client_id": task.client_id,
            "due_date": task.due_date.isoformat(),
            "action_url": task_action_url(task.client_id),
        },
    )


class TaskNotificationEvaluator:
    """Writes missing ``task.overdue`` / ``task.due_today`` notifications.

    A task keeps at most one unread notification of the two: writing one
    marks an unread sibling of the other type read, so a ``due_today`` left
    unread is replaced by ``overdue`` the next day.

    Args:
        task_repository: Provides ``list_due_tasks(user_id, on_or_before)``.
        notification_service: NotificationService used for the dedup
            lookup and the insert.
    """

    def __init__(self, task_repository: Any, notification_service: Any) -> None:
        self._tasks = task_repository
        self._notifications = notification_service

    async def evaluate(self, user_id: str, today: date | None = None) -> EvaluationResult:
        """Evaluate one user's due tasks.

        Never raises (cancellation aside). A failure to read the tasks marks
        the result ``failed``; a failure on a single task is logged, counted
        in ``errors`` and the scan moves on.
        """
        today = today or date.today()
        result = EvaluationResult(user_id=user_id)

        try:
            tasks = await self._tasks.list_due_tasks(user_id, on_or_before=today)
        except Exception:
            logger.error("notification.evaluation_failed", user_id=user_id, exc_info=True)
            notification_evaluations_total.labels(outcome="failed").inc()
            result.failed = True
            return result

        for task in tasks:
            result.tasks_scanned += 1
            notification = build_task_notification(task, today)
            if notification is None:
                continue
            try:
                if await self._notifications.exists(user_id, notification.type, task.id):
                    result.skipped_existing += 1
                    continue
                await self._notifications.create(notification)
                result.notifications_created += 1
                stale_types = [t for t in DUE_TASK_TYPES if t != notification.type]
                result.superseded += await self._notifications.supersede(user_id, task.id, stale_types)
            except Exception:
                result.errors += 1
                logger.warning(
                    "notification.evaluation_task_failed",
                    user_id=user_id,
                    task_id=task.id,
                    exc_info=True,
                )

        outcome = "partial" if result.errors else "ok"
        notification_evaluations_total.labels(outcome=outcome).inc()
        logger.info(
            "notification.evaluated",
            user_id=user_id,
            tasks_scanned=result.tasks_scanned,
            created=result.notifications_created,
            skipped=result.skipped_existing,
            superseded=result.superseded,
            errors=result.errors,
        )
        return result


class NotificationEvaluationScheduler:
    """Runs evaluations in the background, at most one per user at a time."""

    def __init__(self, evaluator: TaskNotificationEvaluator, runner: BackgroundTaskRunner) -> None:
        self._evaluator = evaluator
        self._runner = runner

    @staticmethod
    def key_for(user_id: str) -> str:
        return f"notifications:{user_id}"

    def schedule(self, user_id: str) -> asyncio.Task[EvaluationResult] | None:
        """Start an evaluation for ``user_id`` without waiting for it.

        Returns the running task, the already-running one if an evaluation
        for this user is in flight, or None after shutdown.
        """
        return self._runner.spawn(
            self.key_for(user_id),
            lambda: self._evaluator.evaluate(user_id),
        )
