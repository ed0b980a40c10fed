"""REST API endpoints for deals, their checklist and activity log.

Also serves the deal-type catalogue and the per-user checklist template
settings. All endpoints require authentication; deals are only visible to
their assignee.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field

from src.crm.api.deps import get_current_user, service_from_state
from src.crm.deals.schemas import (
    ActivityCreate,
    ChecklistItemCreate,
    ChecklistItemUpdate,
    ChecklistTemplateItem,
    DealCreate,
    DealFilter,
    DealStatus,
    DealUpdate,
)
from src.crm.schemas.auth import UserResponse

router = APIRouter(prefix="/deals", tags=["deals"])
deal_types_router = APIRouter(prefix="/deal-types", tags=["deals"])
settings_router = APIRouter(prefix="/settings/deals", tags=["settings"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class StageChangeRequest(BaseModel):
    new_stage: str = Field(..., min_length=1, max_length=50)
    lost_reason: str | None = None


class MarkLostRequest(BaseModel):
    lost_reason: str = ""


class ChecklistTemplateRequest(BaseModel):
    checklist_template: list[ChecklistTemplateItem] = Field(default_factory=list)


def _get_deal_service(request: Request) -> Any:
    return service_from_state(request, "deal_service", "DealService")


# ── Deals ────────────────────────────────────────────────────────────────────


@router.get("")
async def list_deals(
    request: Request,
    client_id: str | None = Query(None),
    deal_status: DealStatus | None = Query(None, alias="status"),
    deal_type_id: str | None = Query(None),
    limit: int = Query(50),
    user: UserResponse = Depends(get_current_user),
) -> dict:
    """List the caller's deals, newest first. ``limit`` is clamped to 1..100."""
    service = _get_deal_service(request)
    filters = DealFilter(
        client_id=client_id,
        status=deal_status,
        deal_type_id=deal_type_id,
        limit=max(1, min(limit, 100)),
    )
    deals = await service.list_deals(user.id, filters)
    return {"success": True, "data": deals, "count": len(deals)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_deal(
    body: DealCreate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_deal_service(request)
    deal = await service.create_deal(user.id, body)
    return {"success": True, "data": deal}


@router.get("/pipeline")
async def get_pipeline(
    request: Request,
    deal_type_id: str | None = Query(None),
    user: UserResponse = Depends(get_current_user),
) -> dict:
    """Active deals grouped by the stages of one deal type."""
    service = _get_deal_service(request)
    pipeline = await service.get_pipeline(user.id, deal_type_id=deal_type_id)
    return {"success": True, "data": pipeline}


@router.get("/{deal_id}")
async def get_deal(
    deal_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_deal_service(request)
    return {"success": True, "data": await service.get_deal(deal_id, user.id)}


@router.patch("/{deal_id}")
async def update_deal(
    deal_id: str,
    body: DealUpdate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_deal_service(request)
    return {"success": True, "data": await service.update_deal(deal_id, user.id, body)}


@router.delete("/{deal_id}")
async def delete_deal(
    deal_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_deal_service(request)
    await service.delete_deal(deal_id, user.id)
    return {"success": True, "message": "Deal deleted"}


# ── Stage Changes ────────────────────────────────────────────────────────────


@router.patch("/{deal_id}/stage")
async def change_stage(
    deal_id: str,
    body: StageChangeRequest,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    """Move a deal to another stage of its pipeline.

    Entering a checklist stage (contract, application) creates the
    checklist items; entering a won or lost stage closes the deal.
    """
    service = _get_deal_service(request)
    result = await service.change_stage(deal_id, body.new_stage, body.lost_reason, user.id)
    return {"success": True, "data": result}


@router.post("/{deal_id}/mark-lost")
async def mark_lost(
    deal_id: str,
    body: MarkLostRequest,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_deal_service(request)
    deal = await service.mark_lost(deal_id, body.lost_reason, user.id)
    return {
        "success": True,
        "data": {
            "id": deal.id,
            "deal_name": deal.deal_name,
            "status": deal.status,
            "current_stage": deal.current_stage,
            "closed_at": deal.closed_at,
            "lost_reason": deal.lost_reason,
        },
    }


# ── Activities ───────────────────────────────────────────────────────────────


@router.get("/{deal_id}/activities")
async def list_activities(
    deal_id: str,
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_deal_service(request)
    activities = await service.list_activities(deal_id, user.id, limit=limit)
    return {"success": True, "data": activities}


@router.post("/{deal_id}/activities", status_code=status.HTTP_201_CREATED)
async def add_activity(
    deal_id: str,
    body: ActivityCreate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_deal_service(request)
    return {"success": True, "data": await service.add_activity(deal_id, user.id, body)}


# ── Checklist ────────────────────────────────────────────────────────────────


@router.get("/{deal_id}/checklist")
async def list_checklist(
    deal_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_deal_service(request)
    return {"success": True, "data": await service.list_checklist(deal_id, user.id)}


@router.post("/{deal_id}/checklist", status_code=status.HTTP_201_CREATED)
async def add_checklist_item(
    deal_id: str,
    body: ChecklistItemCreate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_deal_service(request)
    return {"success": True, "data": await service.add_checklist_item(deal_id, user.id, body)}


@router.patch("/{deal_id}/checklist/{item_id}")
async def update_checklist_item(
    deal_id: str,
    item_id: str,
    body: ChecklistItemUpdate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_deal_service(request)
    item = await service.update_checklist_item(deal_id, item_id, user.id, body)
    return {"success": True, "data": item}


@router.delete("/{deal_id}/checklist/{item_id}")
async def delete_checklist_item(
    deal_id: str,
    item_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_deal_service(request)
    await service.delete_checklist_item(deal_id, item_id, user.id)
    return {"success": True, "message": "Checklist item deleted"}


# ── Deal Types & Settings ────────────────────────────────────────────────────


@deal_types_router.get("")
async def list_deal_types(
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_deal_service(request)
    return {"success": True, "data": await service.list_deal_types()}


@settings_router.get("")
async def get_deal_settings(
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    """Effective checklist template per deal type for the caller."""
    service = _get_deal_service(request)
    return {"success": True, "data": await service.get_checklist_settings(user.id)}


@settings_router.put("/{deal_type_id}")
async def save_deal_settings(
    deal_type_id: str,
    body: ChecklistTemplateRequest,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_deal_service(request)
    saved = await service.set_checklist_template(user.id, deal_type_id, body.checklist_template)
    return {"success": True, "data": saved}
