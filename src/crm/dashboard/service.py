"""Dashboard statistics.

Everything here is read-only and computed per request from the deal,
client and task repositories; nothing is cached.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any

import structlog

from src.crm.clients.schemas import NoteRead
from src.crm.dashboard.schemas import (
    ActivityItem,
    ClosedComparison,
    ClosingSoonDeal,
    DashboardStats,
    UpcomingTask,
)
from src.crm.deals.schemas import DealFilter, DealRead, DealStatus, DealTypeRead
from src.crm.tasks.schemas import TaskRead, TaskStatus

logger = structlog.get_logger(__name__)

HOT_DEAL_DAYS = 30
COMPARISON_DAYS = 90
CLOSING_SOON_LIMIT = 10
UPCOMING_TASKS_LIMIT = 10
ACTIVITY_SOURCE_LIMIT = 10
ACTIVITY_FEED_LIMIT = 15
NOTE_PREVIEW_CHARS = 60


def _closing_within(deal: DealRead, today: date, days: int) -> bool:
    close = deal.expected_close_date
    return close is not None and today <= close <= today + timedelta(days=days)


def _task_activity(task: TaskRead) -> ActivityItem:
    if task.status == TaskStatus.CLOSED:
        title, when = "Task completed", task.completed_at or task.updated_at
    elif task.status == TaskStatus.IN_PROGRESS:
        title, when = "Task updated", task.updated_at
    else:
        title, when = "Task created", task.updated_at
    return ActivityItem(
        id=task.id,
        type="task",
        title=title,
        description=task.title,
        date=when or task.created_at,
        status=task.status.value,
        priority=task.priority.value,
        client_id=task.client_id,
        client_name=task.client_name,
    )


def _note_activity(note: NoteRead) -> ActivityItem:
    preview = note.content
    if len(preview) > NOTE_PREVIEW_CHARS:
        preview = preview[:NOTE_PREVIEW_CHARS] + "..."
    return ActivityItem(
        id=note.id,
        type="note",
        title="Note added",
        description=preview,
        date=note.created_at,
        client_id=note.client_id,
        client_name=note.client_name,
    )


def _deal_activity(deal: DealRead, deal_type: DealTypeRead | None, client_name: str | None) -> ActivityItem:
    stage = deal_type.stage(deal.current_stage) if deal_type else None
    stage_title = stage.name if stage else deal.current_stage.replace("_", " ").title()
    value = f"${deal.deal_value:,.0f}" if deal.deal_value else "Value not set"
    return ActivityItem(
        id=deal.id,
        type="deal",
        title="Deal created",
        description=f"{deal.deal_name} \u2022 {stage_title} \u2022 {value}",
        date=deal.created_at,
        status=getattr(deal.status, "value", deal.status),
        client_id=deal.client_id,
        client_name=client_name,
    )


class DashboardService:
    def __init__(self, deal_repository: Any, client_repository: Any, task_repository: Any) -> None:
        self._deals = deal_repository
        self._clients = client_repository
        self._tasks = task_repository

    async def stats(self, user_id: str, today: date | None = None) -> DashboardStats:
        today = today or date.today()
        active = await self._deals.list_active_deals(user_id)
        total_clients = await self._clients.count_clients(user_id)
        due_today, overdue = await self._tasks.count_due(user_id, today)

        since = datetime.combine(today - timedelta(days=COMPARISON_DAYS), time.min, tzinfo=timezone.utc)
        closed = await self._deals.count_closed_since(user_id, since)

        stats = DashboardStats(
            pipeline_value=sum(d.deal_value or 0.0 for d in active),
            active_deals_count=len(active),
            total_clients=total_clients,
            hot_deals_count=sum(1 for d in active if _closing_within(d, today, HOT_DEAL_DAYS)),
            expected_commission=sum(d.commission_amount or 0.0 for d in active),
            tasks_due_today=due_today,
            overdue_tasks=overdue,
            comparison=ClosedComparison(
                won_last_90_days=closed.get(DealStatus.CLOSED_WON.value, 0),
                lost_last_90_days=closed.get(DealStatus.CLOSED_LOST.value, 0),
            ),
        )
        logger.debug("dashboard.stats", user_id=user_id, active_deals=stats.active_deals_count)
        return stats

    async def closing_soon(self, user_id: str, today: date | None = None) -> list[ClosingSoonDeal]:
        """Active deals expected to close within the next 30 days, soonest first."""
        today = today or date.today()
        active = await self._deals.list_active_deals(user_id)
        deals = sorted(
            (d for d in active if _closing_within(d, today, HOT_DEAL_DAYS)),
            key=lambda d: d.expected_close_date,
        )[:CLOSING_SOON_LIMIT]
        if not deals:
            return []

        clients = await self._clients.get_clients_by_ids([d.client_id for d in deals])
        deal_types = {t.id: t for t in await self._deals.list_deal_types(active_only=False)}
        result = []
        for deal in deals:
            client = clients.get(deal.client_id)
            deal_type = deal_types.get(deal.deal_type_id)
            result.append(ClosingSoonDeal(
                id=deal.id,
                deal_name=deal.deal_name,
                deal_value=deal.deal_value,
                expected_close_date=deal.expected_close_date,
                current_stage=deal.current_stage,
                status=getattr(deal.status, "value", deal.status),
                client_id=deal.client_id,
                client_name=client.name if client else None,
                deal_type_name=deal_type.type_name if deal_type else None,
                deal_type_color=deal_type.color if deal_type else None,
            ))
        return result

    async def upcoming_tasks(self, user_id: str, today: date | None = None) -> list[UpcomingTask]:
        """Open dated tasks assigned to the caller; overdue ones sort first."""
        today = today or date.today()
        tasks = await self._tasks.list_upcoming_tasks(user_id, limit=UPCOMING_TASKS_LIMIT)
        return [
            UpcomingTask(
                **task.model_dump(),
                is_overdue=task.overdue_on(today),
                is_today=task.due_date == today,
            )
            for task in tasks
        ]

    async def activity(self, user_id: str) -> list[ActivityItem]:
        """Recent task, note and deal activity merged newest first."""
        tasks = await self._tasks.list_recent_tasks(user_id, limit=ACTIVITY_SOURCE_LIMIT)
        notes = await self._clients.list_recent_notes(user_id, limit=ACTIVITY_SOURCE_LIMIT)
        deals = await self._deals.list_deals(user_id, DealFilter(limit=ACTIVITY_SOURCE_LIMIT))

        items = [_task_activity(t) for t in tasks]
        items.extend(_note_activity(n) for n in notes)
        if deals:
            clients = await self._clients.get_clients_by_ids([d.client_id for d in deals])
            deal_types = {t.id: t for t in await self._deals.list_deal_types(active_only=False)}
            for deal in deals:
                client = clients.get(deal.client_id)
                items.append(_deal_activity(
                    deal, deal_types.get(deal.deal_type_id), client.name if client else None
                ))

        floor = datetime.min.replace(tzinfo=timezone.utc)
        items.sort(key=lambda item: item.date or floor, reverse=True)
        return items[:ACTIVITY_FEED_LIMIT]
