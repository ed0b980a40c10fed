"""Client records, notes, tags and the per-user status and tag catalogues.

Every operation on a client (its notes and tags included) first checks
the client is live and assigned to the caller. A client that fails the
check answers 404 whether it is missing or someone else's.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any

import structlog

from src.crm.clients.repository import DuplicateNameError
from src.crm.clients.schemas import (
    BirthdayClient,
    BirthdaySummary,
    ClientCreate,
    ClientRead,
    ClientStats,
    ClientStatusCreate,
    ClientStatusRead,
    ClientStatusUpdate,
    ClientTagCreate,
    ClientTagRead,
    ClientUpdate,
    FollowupClient,
    FollowupSummary,
    NoteCreate,
    NoteRead,
    NoteUpdate,
    StatusReorder,
    UserTagCreate,
    UserTagRead,
    UserTagUpdate,
)
from src.crm.core.errors import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

CLIENT_NOT_FOUND = "Client not found or access denied"
FOLLOWUP_DAYS = 30
BIRTHDAY_WINDOW_DAYS = 30
STATS_LIST_LIMIT = 10
AUTOCOMPLETE_LIMIT = 10


def next_birthday(birthday: date, today: date) -> date:
    """The next occurrence of ``birthday`` on or after ``today``.

    A 29 February birthday falls on 1 March in non-leap years.
    """

    def in_year(year: int) -> date:
        try:
            return birthday.replace(year=year)
        except ValueError:
            return date(year, 3, 1)

    upcoming = in_year(today.year)
    if upcoming < today:
        upcoming = in_year(today.year + 1)
    return upcoming


def days_until_birthday(birthday: date, today: date) -> int:
    return (next_birthday(birthday, today) - today).days


def needs_followup(last_note: datetime | None, now: datetime) -> bool:
    return last_note is None or last_note < now - timedelta(days=FOLLOWUP_DAYS)


class ClientService:
    """Owns every client-facing rule that is more than a single query.

    Args:
        repository: ClientRepository (or a test double).
    """

    def __init__(self, repository: Any) -> None:
        self._repo = repository

    async def _require_client(self, client_id: str, user_id: str) -> ClientRead:
        client = await self._repo.get_client(client_id, user_id)
        if client is None:
            raise NotFoundError(CLIENT_NOT_FOUND)
        return client

    async def _require_own_status(self, status_id: str | None, user_id: str) -> None:
        if status_id is None:
            return
        if await self._repo.get_status(status_id, user_id) is None:
            raise ValidationError(
                "Unknown client status",
                details=[{"field": "status_id", "message": "No status with this id"}],
            )

    # ── Clients ──────────────────────────────────────────────────────────

    async def list_clients(
        self, user_id: str, search: str | None = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[ClientRead], int]:
        clients = await self._repo.list_clients(user_id, search=search, limit=limit, offset=offset)
        return clients, await self._repo.count_clients(user_id)

    async def get_client(self, client_id: str, user_id: str) -> ClientRead:
        return await self._require_client(client_id, user_id)

    async def create_client(self, user_id: str, data: ClientCreate) -> ClientRead:
        await self._require_own_status(data.status_id, user_id)
        client = await self._repo.create_client(user_id, data)
        logger.info("client.created", client_id=client.id, user_id=user_id)
        return client

    async def update_client(self, client_id: str, user_id: str, data: ClientUpdate) -> ClientRead:
        values = data.model_dump(exclude_unset=True)
        if "name" in values and values["name"] is None:
            del values["name"]
        if not values:
            return await self._require_client(client_id, user_id)
        await self._require_own_status(values.get("status_id"), user_id)
        client = await self._repo.update_client(client_id, user_id, values)
        if client is None:
            raise NotFoundError(CLIENT_NOT_FOUND)
        logger.info("client.updated", client_id=client_id, user_id=user_id, fields=sorted(values))
        return client

    async def delete_client(self, client_id: str, user_id: str) -> None:
        if not await self._repo.soft_delete_client(client_id, user_id):
            raise NotFoundError(CLIENT_NOT_FOUND)
        logger.info("client.deleted", client_id=client_id, user_id=user_id)

    async def stats(self, user_id: str, now: datetime | None = None) -> ClientStats:
        """Client counts plus who needs a follow-up and whose birthday is coming.

        A client needs a follow-up when it has no notes or its newest note
        is more than 30 days old. Clients with no notes come first, then the
        longest-neglected.
        """
        now = now or datetime.now(timezone.utc)
        today = now.date()
        month_start = datetime.combine(today.replace(day=1), time.min, tzinfo=timezone.utc)

        clients = await self._repo.list_all_clients(user_id)
        last_notes = await self._repo.last_note_dates(user_id)
        new_this_month = await self._repo.count_clients_created_since(user_id, month_start)

        followups = [
            FollowupClient(id=c.id, name=c.name, email=c.email, last_note_date=last_notes.get(c.id))
            for c in clients
            if needs_followup(last_notes.get(c.id), now)
        ]
        followups.sort(key=lambda f: (f.last_note_date is not None, f.last_note_date or now))

        birthdays = []
        for c in clients:
            if c.birthday is None:
                continue
            days = days_until_birthday(c.birthday, today)
            if days <= BIRTHDAY_WINDOW_DAYS:
                birthdays.append(BirthdayClient(id=c.id, name=c.name, birthday=c.birthday, days_until=days))
        birthdays.sort(key=lambda b: b.days_until)

        return ClientStats(
            total_clients=len(clients),
            new_this_month=new_this_month,
            need_followup=FollowupSummary(count=len(followups), clients=followups[:STATS_LIST_LIMIT]),
            birthdays_soon=BirthdaySummary(count=len(birthdays), clients=birthdays[:STATS_LIST_LIMIT]),
        )

    # ── Notes ────────────────────────────────────────────────────────────

    async def list_notes(self, client_id: str, user_id: str) -> list[NoteRead]:
        await self._require_client(client_id, user_id)
        return await self._repo.list_notes(client_id)

    async def add_note(self, client_id: str, user_id: str, data: NoteCreate) -> NoteRead:
        await self._require_client(client_id, user_id)
        note = await self._repo.create_note(client_id, user_id, data)
        logger.info("client.note_added", client_id=client_id, note_id=note.id, user_id=user_id)
        return note

    async def update_note(
        self, client_id: str, note_id: str, user_id: str, data: NoteUpdate
    ) -> NoteRead:
        await self._require_client(client_id, user_id)
        values = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        if not values:
            raise ValidationError("Nothing to update")
        note = await self._repo.update_note(note_id, client_id, values)
        if note is None:
            raise NotFoundError("Note not found")
        return note

    async def delete_note(self, client_id: str, note_id: str, user_id: str) -> None:
        await self._require_client(client_id, user_id)
        if not await self._repo.delete_note(note_id, client_id):
            raise NotFoundError("Note not found")
        logger.info("client.note_deleted", client_id=client_id, note_id=note_id, user_id=user_id)

    # ── Client Tags ──────────────────────────────────────────────────────

    async def list_client_tags(self, client_id: str, user_id: str) -> list[ClientTagRead]:
        await self._require_client(client_id, user_id)
        return await self._repo.list_client_tags(client_id)

    async def add_client_tag(
        self, client_id: str, user_id: str, data: ClientTagCreate
    ) -> ClientTagRead:
        """Tag a client. A name matching the caller's catalogue links to that entry."""
        await self._require_client(client_id, user_id)
        catalogue_tag = await self._repo.find_user_tag(user_id, data.tag_name)
        tag_name = catalogue_tag.name if catalogue_tag else data.tag_name
        try:
            tag = await self._repo.add_client_tag(
                client_id, user_id, tag_name, catalogue_tag.id if catalogue_tag else None
            )
        except DuplicateNameError:
            raise ValidationError(
                "Tag already exists on this client",
                details=[{"field": "tag_name", "message": "Duplicate tag"}],
            ) from None
        logger.info("client.tag_added", client_id=client_id, tag_name=tag.tag_name, user_id=user_id)
        return tag

    async def remove_client_tag(self, client_id: str, tag_id: str, user_id: str) -> None:
        await self._require_client(client_id, user_id)
        if not await self._repo.delete_client_tag(tag_id, client_id):
            raise NotFoundError("Tag not found")

    async def autocomplete_tags(self, user_id: str, prefix: str) -> list[str]:
        if not prefix.strip():
            return []
        return await self._repo.autocomplete_tags(user_id, prefix, limit=AUTOCOMPLETE_LIMIT)

    # ── User Tags ────────────────────────────────────────────────────────

    async def list_user_tags(self, user_id: str) -> list[UserTagRead]:
        return await self._repo.list_user_tags(user_id)

    async def get_user_tag(self, tag_id: str, user_id: str) -> UserTagRead:
        tag = await self._repo.get_user_tag(tag_id, user_id)
        if tag is None:
            raise NotFoundError("Tag not found")
        return tag

    async def create_user_tag(self, user_id: str, data: UserTagCreate) -> UserTagRead:
        try:
            return await self._repo.create_user_tag(user_id, data.name, data.color)
        except DuplicateNameError:
            raise ValidationError("A tag with this name already exists") from None

    async def update_user_tag(self, tag_id: str, user_id: str, data: UserTagUpdate) -> UserTagRead:
        values = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        if not values:
            return await self.get_user_tag(tag_id, user_id)
        try:
            tag = await self._repo.update_user_tag(tag_id, user_id, values)
        except DuplicateNameError:
            raise ValidationError("A tag with this name already exists") from None
        if tag is None:
            raise NotFoundError("Tag not found")
        return tag

    async def delete_user_tag(self, tag_id: str, user_id: str) -> None:
        if not await self._repo.delete_user_tag(tag_id, user_id):
            raise NotFoundError("Tag not found")
        logger.info("user_tag.deleted", tag_id=tag_id, user_id=user_id)

    # ── Statuses ─────────────────────────────────────────────────────────

    async def list_statuses(self, user_id: str) -> list[ClientStatusRead]:
        return await self._repo.list_statuses(user_id)

    async def create_status(self, user_id: str, data: ClientStatusCreate) -> ClientStatusRead:
        try:
            status = await self._repo.create_status(user_id, data.name, data.color, data.position)
        except DuplicateNameError:
            raise ValidationError("A status with this name already exists") from None
        logger.info("client_status.created", status_id=status.id, user_id=user_id)
        return status

    async def update_status(
        self, status_id: str, user_id: str, data: ClientStatusUpdate
    ) -> ClientStatusRead:
        values = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        if not values:
            status = await self._repo.get_status(status_id, user_id)
        else:
            try:
                status = await self._repo.update_status(status_id, user_id, values)
            except DuplicateNameError:
                raise ValidationError("A status with this name already exists") from None
        if status is None:
            raise NotFoundError("Status not found")
        return status

    async def delete_status(self, status_id: str, user_id: str) -> None:
        """Default statuses and statuses still assigned to a client cannot be deleted."""
        status = await self._repo.get_status(status_id, user_id)
        if status is None:
            raise NotFoundError("Status not found")
        if status.is_default:
            raise ValidationError("Cannot delete default status")
        in_use = await self._repo.count_clients_with_status(status.id)
        if in_use:
            raise ValidationError(f"Cannot delete status: {in_use} client(s) are using it")
        await self._repo.delete_status(status.id, user_id)
        logger.info("client_status.deleted", status_id=status.id, user_id=user_id)

    async def reorder_statuses(self, user_id: str, data: StatusReorder) -> list[ClientStatusRead]:
        owned = {s.id for s in await self._repo.list_statuses(user_id)}
        unknown = [status_id for status_id in data.status_ids if status_id not in owned]
        if unknown:
            raise ValidationError(
                "Unknown client status",
                details=[{"field": "status_ids", "message": f"Not found: {', '.join(unknown)}"}],
            )
        return await self._repo.reorder_statuses(user_id, data.status_ids)
