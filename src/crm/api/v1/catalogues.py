"""Per-user catalogues: client statuses, user tags and tag autocomplete."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status

from src.crm.api.deps import get_current_user, service_from_state
from src.crm.clients.schemas import (
    ClientStatusCreate,
    ClientStatusUpdate,
    StatusReorder,
    UserTagCreate,
    UserTagUpdate,
)
from src.crm.schemas.auth import UserResponse

statuses_router = APIRouter(prefix="/client-statuses", tags=["clients"])
user_tags_router = APIRouter(prefix="/user-tags", tags=["clients"])
tags_router = APIRouter(prefix="/tags", tags=["clients"])


def _get_client_service(request: Request) -> Any:
    return service_from_state(request, "client_service", "ClientService")


# ── Client Statuses ──────────────────────────────────────────────────────────


@statuses_router.get("")
async def list_statuses(
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    """The caller's statuses in pipeline order."""
    service = _get_client_service(request)
    return {"success": True, "data": await service.list_statuses(user.id)}


@statuses_router.post("", status_code=status.HTTP_201_CREATED)
async def create_status(
    body: ClientStatusCreate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.create_status(user.id, body)}


@statuses_router.put("/reorder")
async def reorder_statuses(
    body: StatusReorder,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.reorder_statuses(user.id, body)}


@statuses_router.patch("/{status_id}")
async def update_status(
    status_id: str,
    body: ClientStatusUpdate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.update_status(status_id, user.id, body)}


@statuses_router.delete("/{status_id}")
async def delete_status(
    status_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    await service.delete_status(status_id, user.id)
    return {"success": True, "message": "Status deleted"}


# ── User Tags ────────────────────────────────────────────────────────────────


@user_tags_router.get("")
async def list_user_tags(
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.list_user_tags(user.id)}


@user_tags_router.post("", status_code=status.HTTP_201_CREATED)
async def create_user_tag(
    body: UserTagCreate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.create_user_tag(user.id, body)}


@user_tags_router.get("/{tag_id}")
async def get_user_tag(
    tag_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.get_user_tag(tag_id, user.id)}


@user_tags_router.patch("/{tag_id}")
async def update_user_tag(
    tag_id: str,
    body: UserTagUpdate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.update_user_tag(tag_id, user.id, body)}


@user_tags_router.delete("/{tag_id}")
async def delete_user_tag(
    tag_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    """Deleting a catalogue tag also removes it from every client."""
    service = _get_client_service(request)
    await service.delete_user_tag(tag_id, user.id)
    return {"success": True, "message": "Tag deleted"}


# ── Autocomplete ─────────────────────────────────────────────────────────────


@tags_router.get("/autocomplete")
async def autocomplete_tags(
    request: Request,
    q: str = Query("", max_length=100),
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.autocomplete_tags(user.id, q)}
