"""Dashboard endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from src.crm.api.deps import get_current_user, service_from_state
from src.crm.schemas.auth import UserResponse

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats")
async def get_stats(
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    """Pipeline, client and task counters plus won/lost over the last 90 days."""
    service = service_from_state(request, "dashboard_service", "DashboardService")
    return {"success": True, "data": await service.stats(user.id)}


@router.get("/closing-soon")
async def closing_soon(
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = service_from_state(request, "dashboard_service", "DashboardService")
    return {"success": True, "data": await service.closing_soon(user.id)}


@router.get("/upcoming-tasks")
async def upcoming_tasks(
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = service_from_state(request, "dashboard_service", "DashboardService")
    return {"success": True, "data": await service.upcoming_tasks(user.id)}


@router.get("/activity")
async def activity_feed(
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    """The 15 most recent task, note and deal events."""
    service = service_from_state(request, "dashboard_service", "DashboardService")
    return {"success": True, "data": await service.activity(user.id)}
