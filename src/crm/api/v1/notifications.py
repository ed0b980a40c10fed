"""Notification feed endpoints.

Listing the feed also schedules a lazy evaluation of the caller's due and
overdue tasks. The evaluation runs in the background and is not awaited,
so notifications it creates show up on the next read.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request

from src.crm.api.deps import get_current_user, service_from_state
from src.crm.core.errors import ValidationError
from src.crm.notifications.schemas import (
    DEFAULT_PAGE_SIZE,
    NotificationCategory,
    NotificationQuery,
    decode_cursor,
)
from src.crm.schemas.auth import UserResponse

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _get_notification_service(request: Request) -> Any:
    return service_from_state(request, "notification_service", "NotificationService")


@router.get("")
async def list_notifications(
    request: Request,
    category: NotificationCategory | None = Query(None),
    read: bool | None = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE),
    cursor: str | None = Query(None),
    user: UserResponse = Depends(get_current_user),
) -> dict:
    """One page of the caller's notifications, newest first."""
    service = _get_notification_service(request)

    scheduler = getattr(request.app.state, "notification_scheduler", None)
    if scheduler is not None:
        scheduler.schedule(user.id)
    else:
        logger.warning("notification.scheduler_unavailable", user_id=user.id)

    cursor_at = cursor_id = None
    if cursor:
        try:
            cursor_at, cursor_id = decode_cursor(cursor)
        except ValueError:
            raise ValidationError(
                "Invalid cursor", details=[{"field": "cursor", "message": "Use next_cursor from the previous page"}]
            ) from None

    query = NotificationQuery(
        category=category, read=read, limit=limit, cursor=cursor_at, cursor_id=cursor_id
    )
    page = await service.list_notifications(user.id, query)
    return page.model_dump(mode="json")


@router.get("/unread-count")
async def unread_count(
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_notification_service(request)
    return {"success": True, "data": {"count": await service.unread_count(user.id)}}


@router.patch("/read-all")
async def mark_all_read(
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_notification_service(request)
    return {"success": True, "data": {"updated": await service.mark_all_read(user.id)}}


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_notification_service(request)
    return {"success": True, "data": await service.mark_read(notification_id, user.id)}
