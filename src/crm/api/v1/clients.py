"""REST API endpoints for clients and the notes, tags and tasks attached to them."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status

from src.crm.api.deps import get_current_user, service_from_state
from src.crm.clients.schemas import ClientCreate, ClientTagCreate, ClientUpdate, NoteCreate, NoteUpdate
from src.crm.schemas.auth import UserResponse
from src.crm.tasks.schemas import TaskCreate, TaskUpdate

router = APIRouter(prefix="/clients", tags=["clients"])


def _get_client_service(request: Request) -> Any:
    return service_from_state(request, "client_service", "ClientService")


def _get_task_service(request: Request) -> Any:
    return service_from_state(request, "task_service", "TaskService")


# ── Clients ──────────────────────────────────────────────────────────────────


@router.get("")
async def list_clients(
    request: Request,
    search: str | None = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    clients, total = await service.list_clients(user.id, search=search, limit=limit, offset=offset)
    return {"success": True, "data": clients, "total_count": total}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_client(
    body: ClientCreate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.create_client(user.id, body)}


@router.get("/stats")
async def client_stats(
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    """Totals, clients due a follow-up and birthdays in the next 30 days."""
    service = _get_client_service(request)
    return {"success": True, "data": await service.stats(user.id)}


@router.get("/{client_id}")
async def get_client(
    client_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.get_client(client_id, user.id)}


@router.patch("/{client_id}")
async def update_client(
    client_id: str,
    body: ClientUpdate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.update_client(client_id, user.id, body)}


@router.delete("/{client_id}")
async def delete_client(
    client_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    await service.delete_client(client_id, user.id)
    return {"success": True, "message": "Client deleted"}


# ── Notes ────────────────────────────────────────────────────────────────────


@router.get("/{client_id}/notes")
async def list_notes(
    client_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.list_notes(client_id, user.id)}


@router.post("/{client_id}/notes", status_code=status.HTTP_201_CREATED)
async def add_note(
    client_id: str,
    body: NoteCreate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.add_note(client_id, user.id, body)}


@router.patch("/{client_id}/notes/{note_id}")
async def update_note(
    client_id: str,
    note_id: str,
    body: NoteUpdate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.update_note(client_id, note_id, user.id, body)}


@router.delete("/{client_id}/notes/{note_id}")
async def delete_note(
    client_id: str,
    note_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    await service.delete_note(client_id, note_id, user.id)
    return {"success": True, "message": "Note deleted"}


# ── Tags ─────────────────────────────────────────────────────────────────────


@router.get("/{client_id}/tags")
async def list_client_tags(
    client_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.list_client_tags(client_id, user.id)}


@router.post("/{client_id}/tags", status_code=status.HTTP_201_CREATED)
async def add_client_tag(
    client_id: str,
    body: ClientTagCreate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    return {"success": True, "data": await service.add_client_tag(client_id, user.id, body)}


@router.delete("/{client_id}/tags/{tag_id}")
async def remove_client_tag(
    client_id: str,
    tag_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_client_service(request)
    await service.remove_client_tag(client_id, tag_id, user.id)
    return {"success": True, "message": "Tag removed"}


# ── Client Tasks ─────────────────────────────────────────────────────────────


@router.get("/{client_id}/tasks")
async def list_client_tasks(
    client_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_task_service(request)
    return {"success": True, "data": await service.list_client_tasks(client_id, user.id)}


@router.post("/{client_id}/tasks", status_code=status.HTTP_201_CREATED)
async def create_client_task(
    client_id: str,
    body: TaskCreate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_task_service(request)
    return {"success": True, "data": await service.create_task(client_id, user.id, body)}


@router.patch("/{client_id}/tasks/{task_id}")
async def update_client_task(
    client_id: str,
    task_id: str,
    body: TaskUpdate,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_task_service(request)
    task = await service.update_task(client_id, task_id, user.id, body)
    return {"success": True, "data": task}


@router.delete("/{client_id}/tasks/{task_id}")
async def delete_client_task(
    client_id: str,
    task_id: str,
    request: Request,
    user: UserResponse = Depends(get_current_user),
) -> dict:
    service = _get_task_service(request)
    await service.delete_task(client_id, task_id, user.id)
    return {"success": True, "message": "Task deleted"}
