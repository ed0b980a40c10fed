"""The caller's tasks across all of their clients."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Request

from src.crm.api.deps import get_current_user, service_from_state
from src.crm.schemas.auth import UserResponse
from src.crm.tasks.schemas import TaskFilter, TaskPriority, TaskStatus

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("")
async def list_my_tasks(
    request: Request,
    task_status: TaskStatus | None = Query(None, alias="status"),
    priority: TaskPriority | None = Query(None),
    due_before: date | None = Query(None),
    due_after: date | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    user: UserResponse = Depends(get_current_user),
) -> dict:
    """Tasks assigned to the caller, soonest due first, each with its client name."""
    service = service_from_state(request, "task_service", "TaskService")
    filters = TaskFilter(
        status=task_status,
        priority=priority,
        due_before=due_before,
        due_after=due_after,
        limit=limit,
    )
    tasks = await service.list_my_tasks(user.id, filters)
    today = date.today()
    return {
        "success": True,
        "data": [{**t.model_dump(mode="json"), "is_overdue": t.overdue_on(today)} for t in tasks],
    }
