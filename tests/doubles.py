"""In-memory repository doubles and deal-type builders shared by the tests.

The doubles mirror the async repository interfaces (same method names and
return types) so services and API routes run without PostgreSQL or Redis.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any

from src.crm.clients.repository import DuplicateNameError
from src.crm.clients.schemas import (
    DEFAULT_CLIENT_STATUSES,
    DEFAULT_USER_TAGS,
    ClientCreate,
    ClientRead,
    ClientStatusRead,
    ClientTagRead,
    NoteCreate,
    NoteRead,
    UserTagRead,
)
from src.crm.deals.schemas import (
    ActivityCreate,
    ActivityRead,
    ChecklistItemCreate,
    ChecklistItemRead,
    ChecklistTemplateItem,
    DealFilter,
    DealRead,
    DealTypeRead,
    DealTypeSettingsRead,
    PipelineStage,
    StageChange,
    StageType,
)
from src.crm.notifications.schemas import (
    NotificationCategory,
    NotificationCreate,
    NotificationQuery,
    NotificationRead,
)
from src.crm.schemas.auth import UserRecord
from src.crm.tasks.schemas import TaskCreate, TaskFilter, TaskRead, TaskStatus

USER_ID = "6f1c2a9e-4b7d-4e43-9a51-0c2f6d8b1e01"
OTHER_USER_ID = "0b8e7d35-92c4-4f1a-8e06-5d3a7c9f2b14"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ── Deal Types ───────────────────────────────────────────────────────────────


def make_residential_type(default_milestones: list[ChecklistTemplateItem] | None = None) -> DealTypeRead:
    return DealTypeRead(
        id="type-residential",
        type_code="residential_sale",
        type_name="Residential Sale",
        color="#3B82F6",
        pipeline_stages=[
            PipelineStage(code="lead", name="Lead", order=1),
            PipelineStage(code="showing", name="Showing", order=2),
            PipelineStage(code="offer", name="Offer", order=3),
            PipelineStage(code="contract", name="Under Contract", order=4),
            PipelineStage(code="closing", name="Closing", order=5),
            PipelineStage(code="closed", name="Closed", order=6, type=StageType.WON),
            PipelineStage(code="lost", name="Lost", order=7, type=StageType.LOST),
        ],
        default_milestones=default_milestones or [],
    )


def make_mortgage_type() -> DealTypeRead:
    return DealTypeRead(
        id="type-mortgage",
        type_code="mortgage",
        type_name="Mortgage Loan",
        color="#10B981",
        pipeline_stages=[
            PipelineStage(code="lead", name="Lead", order=1),
            PipelineStage(code="prequalification", name="Prequalification", order=2),
            PipelineStage(code="application", name="Application", order=3),
            PipelineStage(code="processing", name="Processing", order=4),
            PipelineStage(code="funded", name="Funded", order=5, type=StageType.WON),
            PipelineStage(code="lost", name="Lost", order=6, type=StageType.LOST),
        ],
    )


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryClientRepository:
    def __init__(self) -> None:
        self.clients: dict[str, ClientRead] = {}
        self.deleted: set[str] = set()
        self.notes: dict[str, NoteRead] = {}
        self.client_tags: dict[str, ClientTagRead] = {}
        self.user_tags: dict[str, UserTagRead] = {}
        self.statuses: dict[str, ClientStatusRead] = {}

    def add(
        self,
        name: str,
        user_id: str = USER_ID,
        client_id: str | None = None,
        **fields: Any,
    ) -> ClientRead:
        client = ClientRead(
            id=client_id or _new_id(),
            name=name,
            created_by=user_id,
            assigned_to=user_id,
            created_at=fields.pop("created_at", None) or _now(),
            **fields,
        )
        self.clients[client.id] = client
        return client

    def add_note(
        self, client_id: str, content: str, created_at: datetime | None = None, user_id: str = USER_ID
    ) -> NoteRead:
        note = NoteRead(
            id=_new_id(),
            client_id=client_id,
            content=content,
            created_by=user_id,
            created_at=created_at or _now(),
        )
        self.notes[note.id] = note
        return note

    def seed_defaults(self, user_id: str = USER_ID) -> None:
        """Mirror of the catalogue UserRepository.create inserts."""
        for position, (name, color) in enumerate(DEFAULT_CLIENT_STATUSES):
            status = ClientStatusRead(
                id=_new_id(), user_id=user_id, name=name, color=color,
                position=position, is_default=True, created_at=_now(),
            )
            self.statuses[status.id] = status
        for name, color in DEFAULT_USER_TAGS:
            tag = UserTagRead(id=_new_id(), user_id=user_id, name=name, color=color, created_at=_now())
            self.user_tags[tag.id] = tag

    def status_named(self, name: str, user_id: str = USER_ID) -> ClientStatusRead:
        return next(s for s in self.statuses.values() if s.user_id == user_id and s.name == name)

    def _visible(self, client_id: str, user_id: str) -> ClientRead | None:
        client = self.clients.get(client_id)
        if client is None or client.id in self.deleted or client.assigned_to != user_id:
            return None
        return client

    def _owned(self, user_id: str) -> list[ClientRead]:
        return [c for c in self.clients.values() if self._visible(c.id, user_id)]

    async def create_client(self, user_id: str, data: ClientCreate) -> ClientRead:
        client = ClientRead(
            id=_new_id(),
            created_by=user_id,
            assigned_to=user_id,
            created_at=_now(),
            **data.model_dump(),
        )
        self.clients[client.id] = client
        return client

    async def get_client(self, client_id: str, user_id: str) -> ClientRead | None:
        return self._visible(client_id, user_id)

    async def get_clients_by_ids(self, client_ids: list[str]) -> dict[str, ClientRead]:
        return {cid: self.clients[cid] for cid in client_ids if cid in self.clients}

    async def list_clients(
        self, user_id: str, search: str | None = None, limit: int = 50, offset: int = 0
    ) -> list[ClientRead]:
        clients = self._owned(user_id)
        if search:
            clients = [c for c in clients if search.lower() in c.name.lower()]
        return clients[offset:offset + limit]

    async def count_clients(self, user_id: str) -> int:
        return len(self._owned(user_id))

    async def update_client(self, client_id: str, user_id: str, values: dict[str, Any]) -> ClientRead | None:
        client = self._visible(client_id, user_id)
        if client is None:
            return None
        updated = client.model_copy(update={**values, "updated_at": _now()})
        self.clients[client_id] = updated
        return updated

    async def soft_delete_client(self, client_id: str, user_id: str) -> bool:
        if self._visible(client_id, user_id) is None:
            return False
        self.deleted.add(client_id)
        return True

    async def list_all_clients(self, user_id: str) -> list[ClientRead]:
        return sorted(self._owned(user_id), key=lambda c: c.created_at)

    async def count_clients_created_since(self, user_id: str, since: datetime) -> int:
        return len([c for c in self._owned(user_id) if c.created_at >= since])

    # Notes

    async def list_notes(self, client_id: str) -> list[NoteRead]:
        notes = [n for n in self.notes.values() if n.client_id == client_id]
        return sorted(notes, key=lambda n: n.created_at, reverse=True)

    async def create_note(self, client_id: str, user_id: str, data: NoteCreate) -> NoteRead:
        note = NoteRead(
            id=_new_id(), client_id=client_id, created_by=user_id, created_at=_now(), **data.model_dump()
        )
        self.notes[note.id] = note
        return note

    async def update_note(self, note_id: str, client_id: str, values: dict[str, Any]) -> NoteRead | None:
        note = self.notes.get(note_id)
        if note is None or note.client_id != client_id:
            return None
        updated = note.model_copy(update={**values, "updated_at": _now()})
        self.notes[note_id] = updated
        return updated

    async def delete_note(self, note_id: str, client_id: str) -> bool:
        note = self.notes.get(note_id)
        if note is None or note.client_id != client_id:
            return False
        del self.notes[note_id]
        return True

    async def list_recent_notes(self, user_id: str, limit: int = 10) -> list[NoteRead]:
        notes = [
            n.model_copy(update={"client_name": self.clients[n.client_id].name})
            for n in self.notes.values()
            if n.created_by == user_id and n.client_id in self.clients and n.client_id not in self.deleted
        ]
        notes.sort(key=lambda n: n.created_at, reverse=True)
        return notes[:limit]

    async def last_note_dates(self, user_id: str) -> dict[str, datetime]:
        owned = {c.id for c in self._owned(user_id)}
        latest: dict[str, datetime] = {}
        for note in self.notes.values():
            if note.client_id in owned:
                latest[note.client_id] = max(latest.get(note.client_id, note.created_at), note.created_at)
        return latest

    # Client tags

    async def list_client_tags(self, client_id: str) -> list[ClientTagRead]:
        return [t for t in self.client_tags.values() if t.client_id == client_id]

    async def add_client_tag(
        self, client_id: str, user_id: str, tag_name: str, tag_id: str | None = None
    ) -> ClientTagRead:
        if any(t.client_id == client_id and t.tag_name == tag_name for t in self.client_tags.values()):
            raise DuplicateNameError(tag_name)
        tag = ClientTagRead(
            id=_new_id(), client_id=client_id, tag_id=tag_id, tag_name=tag_name,
            created_by=user_id, created_at=_now(),
        )
        self.client_tags[tag.id] = tag
        return tag

    async def delete_client_tag(self, tag_id: str, client_id: str) -> bool:
        tag = self.client_tags.get(tag_id)
        if tag is None or tag.client_id != client_id:
            return False
        del self.client_tags[tag_id]
        return True

    async def autocomplete_tags(self, user_id: str, prefix: str, limit: int = 10) -> list[str]:
        owned = {c.id for c in self._owned(user_id)}
        prefix = prefix.strip().lower()
        names = {t.name for t in self.user_tags.values() if t.user_id == user_id}
        names |= {t.tag_name for t in self.client_tags.values() if t.client_id in owned}
        return sorted(n for n in names if n.lower().startswith(prefix))[:limit]

    # User tags

    async def list_user_tags(self, user_id: str) -> list[UserTagRead]:
        return sorted((t for t in self.user_tags.values() if t.user_id == user_id), key=lambda t: t.name)

    async def get_user_tag(self, tag_id: str, user_id: str) -> UserTagRead | None:
        tag = self.user_tags.get(tag_id)
        return tag if tag is not None and tag.user_id == user_id else None

    async def find_user_tag(self, user_id: str, name: str) -> UserTagRead | None:
        name = name.strip().lower()
        return next(
            (t for t in self.user_tags.values() if t.user_id == user_id and t.name.lower() == name), None
        )

    def _user_tag_taken(self, user_id: str, name: str, exclude: str | None = None) -> bool:
        return any(
            t.user_id == user_id and t.name == name and t.id != exclude for t in self.user_tags.values()
        )

    async def create_user_tag(self, user_id: str, name: str, color: str) -> UserTagRead:
        if self._user_tag_taken(user_id, name):
            raise DuplicateNameError(name)
        tag = UserTagRead(id=_new_id(), user_id=user_id, name=name, color=color, created_at=_now())
        self.user_tags[tag.id] = tag
        return tag

    async def update_user_tag(self, tag_id: str, user_id: str, values: dict[str, Any]) -> UserTagRead | None:
        tag = await self.get_user_tag(tag_id, user_id)
        if tag is None:
            return None
        if "name" in values and self._user_tag_taken(user_id, values["name"], exclude=tag_id):
            raise DuplicateNameError(values["name"])
        updated = tag.model_copy(update=values)
        self.user_tags[tag_id] = updated
        if "name" in values:
            for applied in list(self.client_tags.values()):
                if applied.tag_id == tag_id:
                    self.client_tags[applied.id] = applied.model_copy(update={"tag_name": values["name"]})
        return updated

    async def delete_user_tag(self, tag_id: str, user_id: str) -> bool:
        if await self.get_user_tag(tag_id, user_id) is None:
            return False
        del self.user_tags[tag_id]
        self.client_tags = {k: t for k, t in self.client_tags.items() if t.tag_id != tag_id}
        return True

    # Statuses

    async def list_statuses(self, user_id: str) -> list[ClientStatusRead]:
        owned = [s for s in self.statuses.values() if s.user_id == user_id]
        return sorted(owned, key=lambda s: (s.position, s.name))

    async def get_status(self, status_id: str, user_id: str) -> ClientStatusRead | None:
        status = self.statuses.get(status_id)
        return status if status is not None and status.user_id == user_id else None

    def _status_taken(self, user_id: str, name: str, exclude: str | None = None) -> bool:
        return any(
            s.user_id == user_id and s.name == name and s.id != exclude for s in self.statuses.values()
        )

    async def create_status(
        self, user_id: str, name: str, color: str, position: int | None = None
    ) -> ClientStatusRead:
        if self._status_taken(user_id, name):
            raise DuplicateNameError(name)
        if position is None:
            positions = [s.position for s in self.statuses.values() if s.user_id == user_id]
            position = max(positions) + 1 if positions else 0
        status = ClientStatusRead(
            id=_new_id(), user_id=user_id, name=name, color=color, position=position, created_at=_now()
        )
        self.statuses[status.id] = status
        return status

    async def update_status(
        self, status_id: str, user_id: str, values: dict[str, Any]
    ) -> ClientStatusRead | None:
        status = await self.get_status(status_id, user_id)
        if status is None:
            return None
        if "name" in values and self._status_taken(user_id, values["name"], exclude=status_id):
            raise DuplicateNameError(values["name"])
        updated = status.model_copy(update={**values, "updated_at": _now()})
        self.statuses[status_id] = updated
        return updated

    async def count_clients_with_status(self, status_id: str) -> int:
        return len([
            c for c in self.clients.values() if c.status_id == status_id and c.id not in self.deleted
        ])

    async def delete_status(self, status_id: str, user_id: str) -> bool:
        if await self.get_status(status_id, user_id) is None:
            return False
        del self.statuses[status_id]
        return True

    async def reorder_statuses(self, user_id: str, status_ids: list[str]) -> list[ClientStatusRead]:
        for position, status_id in enumerate(status_ids):
            status = self.statuses[status_id]
            self.statuses[status_id] = status.model_copy(update={"position": position})
        return await self.list_statuses(user_id)


class InMemoryDealRepository:
    """In-memory DealRepository for testing without database."""

    def __init__(self, deal_types: list[DealTypeRead] | None = None) -> None:
        self.deal_types: dict[str, DealTypeRead] = {t.id: t for t in (deal_types or [])}
        self.deals: dict[str, DealRead] = {}
        self.activities: list[ActivityRead] = []
        self.checklist: list[ChecklistItemRead] = []
        self.templates: dict[tuple[str, str], list[ChecklistTemplateItem]] = {}
        self.stage_change_calls = 0

    def add_deal(self, user_id: str = USER_ID, **fields: Any) -> DealRead:
        fields.setdefault("id", _new_id())
        fields.setdefault("deal_name", "123 Main St")
        fields.setdefault("deal_type_id", "type-residential")
        fields.setdefault("client_id", _new_id())
        fields.setdefault("current_stage", "lead")
        fields.setdefault("created_at", _now())
        deal = DealRead(created_by=user_id, assigned_to=user_id, **fields)
        self.deals[deal.id] = deal
        return deal

    def _owned(self, deal_id: str, user_id: str) -> DealRead | None:
        deal = self.deals.get(deal_id)
        if deal is None or deal.is_deleted or deal.assigned_to != user_id:
            return None
        return deal

    def _log(self, deal_id: str, user_id: str, data: ActivityCreate) -> ActivityRead:
        activity = ActivityRead(
            id=_new_id(), deal_id=deal_id, created_by=user_id, created_at=_now(), **data.model_dump()
        )
        self.activities.append(activity)
        return activity

    def _add_item(self, deal_id: str, user_id: str, data: ChecklistItemCreate) -> ChecklistItemRead:
        item = ChecklistItemRead(
            id=_new_id(), deal_id=deal_id, created_by=user_id, created_at=_now(), **data.model_dump()
        )
        self.checklist.append(item)
        return item

    def _replace(self, deal: DealRead, values: dict[str, Any]) -> DealRead:
        updated = DealRead.model_validate({**deal.model_dump(), **values, "updated_at": _now()})
        self.deals[deal.id] = updated
        return updated

    async def list_deal_types(self, active_only: bool = True) -> list[DealTypeRead]:
        return [t for t in self.deal_types.values() if t.is_active or not active_only]

    async def get_deal_type(self, deal_type_id: str) -> DealTypeRead | None:
        return self.deal_types.get(deal_type_id)

    async def get_deal(self, deal_id: str, user_id: str) -> DealRead | None:
        return self._owned(deal_id, user_id)

    async def list_deals(self, user_id: str, filters: DealFilter) -> list[DealRead]:
        deals = [d for d in self.deals.values() if self._owned(d.id, user_id)]
        if filters.client_id:
            deals = [d for d in deals if d.client_id == filters.client_id]
        if filters.status:
            deals = [d for d in deals if d.status == filters.status]
        if filters.deal_type_id:
            deals = [d for d in deals if d.deal_type_id == filters.deal_type_id]
        return list(reversed(deals))[: filters.limit]

    async def list_active_deals(self, user_id: str, deal_type_id: str | None = None) -> list[DealRead]:
        deals = [
            d for d in self.deals.values()
            if self._owned(d.id, user_id) and d.status == "active"
        ]
        if deal_type_id:
            deals = [d for d in deals if d.deal_type_id == deal_type_id]
        return list(reversed(deals))

    async def count_closed_since(self, user_id: str, since: datetime) -> dict[str, int]:
        counts: dict[str, int] = {}
        for deal in self.deals.values():
            if self._owned(deal.id, user_id) and deal.closed_at and deal.closed_at >= since:
                key = deal.status.value
                if key in ("closed_won", "closed_lost"):
                    counts[key] = counts.get(key, 0) + 1
        return counts

    async def create_deal(self, values: dict[str, Any], user_id: str, activity: ActivityCreate) -> DealRead:
        deal = DealRead(id=_new_id(), created_by=user_id, assigned_to=user_id, created_at=_now(), **values)
        self.deals[deal.id] = deal
        self._log(deal.id, user_id, activity)
        return deal

    async def update_deal(
        self, deal_id: str, user_id: str, values: dict[str, Any], activity: ActivityCreate | None = None
    ) -> DealRead | None:
        deal = self._owned(deal_id, user_id)
        if deal is None:
            return None
        updated = self._replace(deal, values)
        if activity is not None:
            self._log(deal_id, user_id, activity)
        return updated

    async def soft_delete_deal(self, deal_id: str, user_id: str, activity: ActivityCreate) -> bool:
        deal = self._owned(deal_id, user_id)
        if deal is None:
            return False
        self._replace(deal, {"is_deleted": True})
        self._log(deal_id, user_id, activity)
        return True

    async def apply_stage_change(self, change: StageChange, user_id: str) -> DealRead | None:
        self.stage_change_calls += 1
        deal = self._owned(change.deal_id, user_id)
        if deal is None:
            return None
        if deal.current_stage != change.from_stage:
            raise ValueError(f"Deal {deal.id} is at stage {deal.current_stage}")
        updated = self._replace(deal, change.deal_updates)
        for item in change.checklist_items:
            self._add_item(deal.id, user_id, item)
        for activity in change.activities:
            self._log(deal.id, user_id, activity)
        return updated

    async def list_activities(self, deal_id: str, limit: int = 50) -> list[ActivityRead]:
        return [a for a in reversed(self.activities) if a.deal_id == deal_id][:limit]

    async def add_activity(self, deal_id: str, user_id: str, data: ActivityCreate) -> ActivityRead:
        return self._log(deal_id, user_id, data)

    async def list_checklist_items(self, deal_id: str) -> list[ChecklistItemRead]:
        return [i for i in self.checklist if i.deal_id == deal_id]

    async def add_checklist_item(
        self,
        deal_id: str,
        user_id: str,
        data: ChecklistItemCreate,
        activity: ActivityCreate | None = None,
    ) -> ChecklistItemRead:
        item = self._add_item(deal_id, user_id, data)
        if activity is not None:
            self._log(deal_id, user_id, activity)
        return item

    async def update_checklist_item(
        self, deal_id: str, item_id: str, values: dict[str, Any]
    ) -> ChecklistItemRead | None:
        for index, item in enumerate(self.checklist):
            if item.id == item_id and item.deal_id == deal_id:
                updated = ChecklistItemRead.model_validate({**item.model_dump(), **values})
                self.checklist[index] = updated
                return updated
        return None

    async def delete_checklist_item(self, deal_id: str, item_id: str) -> bool:
        before = len(self.checklist)
        self.checklist = [i for i in self.checklist if not (i.id == item_id and i.deal_id == deal_id)]
        return len(self.checklist) < before

    async def get_user_checklist_template(
        self, user_id: str, deal_type_id: str
    ) -> list[ChecklistTemplateItem] | None:
        return self.templates.get((user_id, deal_type_id))

    async def list_user_settings(self, user_id: str) -> list[DealTypeSettingsRead]:
        return [
            DealTypeSettingsRead(deal_type_id=type_id, checklist_template=template)
            for (owner, type_id), template in self.templates.items()
            if owner == user_id
        ]

    async def upsert_user_checklist_template(
        self, user_id: str, deal_type_id: str, template: list[ChecklistTemplateItem]
    ) -> DealTypeSettingsRead:
        self.templates[(user_id, deal_type_id)] = list(template)
        return DealTypeSettingsRead(
            deal_type_id=deal_type_id, checklist_template=template, updated_at=_now()
        )


class InMemoryTaskRepository:
    def __init__(self, clients: InMemoryClientRepository) -> None:
        self._clients = clients
        self.tasks: dict[str, TaskRead] = {}
        self.fail_listing = False

    def _decorate(self, task: TaskRead) -> TaskRead:
        client = self._clients.clients.get(task.client_id)
        return task.model_copy(update={"client_name": client.name if client else None})

    def _live(self) -> list[TaskRead]:
        return [
            self._decorate(t) for t in self.tasks.values()
            if t.client_id not in self._clients.deleted
        ]

    def add(
        self,
        client_id: str,
        title: str,
        due_date: date | None,
        status: TaskStatus = TaskStatus.TODO,
        assigned_to: str = USER_ID,
        created_by: str = USER_ID,
        task_id: str | None = None,
    ) -> TaskRead:
        task = TaskRead(
            id=task_id or _new_id(),
            client_id=client_id,
            title=title,
            due_date=due_date,
            priority="medium",
            status=status,
            created_by=created_by,
            assigned_to=assigned_to,
            created_at=_now(),
        )
        self.tasks[task.id] = task
        return task

    async def create_task(self, client_id: str, user_id: str, data: TaskCreate) -> TaskRead:
        task = TaskRead(
            id=_new_id(),
            client_id=client_id,
            title=data.title,
            description=data.description,
            due_date=data.due_date,
            priority=data.priority,
            status=data.status,
            completed_at=_now() if data.status == TaskStatus.CLOSED else None,
            created_by=user_id,
            assigned_to=data.assigned_to or user_id,
            created_at=_now(),
        )
        self.tasks[task.id] = task
        return self._decorate(task)

    async def get_task(self, task_id: str, client_id: str | None = None) -> TaskRead | None:
        task = self.tasks.get(task_id)
        if task is None or (client_id is not None and task.client_id != client_id):
            return None
        return self._decorate(task)

    async def list_client_tasks(self, client_id: str) -> list[TaskRead]:
        return [t for t in self._live() if t.client_id == client_id]

    async def list_tasks_for_user(self, user_id: str, filters: TaskFilter) -> list[TaskRead]:
        tasks = [t for t in self._live() if t.assigned_to == user_id]
        if filters.status is not None:
            tasks = [t for t in tasks if t.status == filters.status]
        if filters.priority is not None:
            tasks = [t for t in tasks if t.priority == filters.priority]
        if filters.due_before is not None:
            tasks = [t for t in tasks if t.due_date and t.due_date <= filters.due_before]
        if filters.due_after is not None:
            tasks = [t for t in tasks if t.due_date and t.due_date >= filters.due_after]
        return tasks[: filters.limit]

    async def update_task(self, task_id: str, values: dict[str, Any]) -> TaskRead | None:
        task = self.tasks.get(task_id)
        if task is None:
            return None
        updated = TaskRead.model_validate({**task.model_dump(), **values, "updated_at": _now()})
        self.tasks[task_id] = updated
        return self._decorate(updated)

    async def delete_task(self, task_id: str) -> bool:
        return self.tasks.pop(task_id, None) is not None

    async def list_due_tasks(self, user_id: str, on_or_before: date) -> list[TaskRead]:
        if self.fail_listing:
            raise RuntimeError("database unavailable")
        return [
            t for t in self._live()
            if t.assigned_to == user_id
            and t.status != TaskStatus.CLOSED
            and t.due_date is not None
            and t.due_date <= on_or_before
        ]

    async def list_upcoming_tasks(self, user_id: str, limit: int = 10) -> list[TaskRead]:
        tasks = [
            t for t in self._live()
            if t.assigned_to == user_id and t.status != TaskStatus.CLOSED and t.due_date is not None
        ]
        return sorted(tasks, key=lambda t: t.due_date)[:limit]

    async def list_recent_tasks(self, user_id: str, limit: int = 10) -> list[TaskRead]:
        tasks = [t for t in self._live() if t.assigned_to == user_id]
        tasks.sort(key=lambda t: t.updated_at or t.created_at, reverse=True)
        return tasks[:limit]

    async def count_due(self, user_id: str, today: date) -> tuple[int, int]:
        open_tasks = [
            t for t in self._live()
            if t.assigned_to == user_id and t.status != TaskStatus.CLOSED and t.due_date
        ]
        return (
            len([t for t in open_tasks if t.due_date == today]),
            len([t for t in open_tasks if t.due_date < today]),
        )


class InMemoryNotificationRepository:
    def __init__(self) -> None:
        self.rows: list[NotificationRead] = []
        self.fail_create = False

    def _matching(
        self, user_id: str, category: NotificationCategory | None, read: bool | None
    ) -> list[NotificationRead]:
        rows = [n for n in self.rows if n.user_id == user_id]
        if category is not None:
            rows = [n for n in rows if n.category == category]
        if read is not None:
            rows = [n for n in rows if n.is_read == read]
        return rows

    async def create(self, data: NotificationCreate) -> NotificationRead:
        if self.fail_create:
            raise RuntimeError("insert failed")
        now = _now()
        notification = NotificationRead(id=_new_id(), created_at=now, updated_at=now, **data.model_dump())
        self.rows.append(notification)
        return notification

    async def list_page(self, user_id: str, query: NotificationQuery) -> list[NotificationRead]:
        rows = self._matching(user_id, query.category, query.read)
        if query.cursor is not None:
            if query.cursor_id is None:
                rows = [n for n in rows if n.created_at < query.cursor]
            else:
                rows = [n for n in rows if (n.created_at, n.id) < (query.cursor, query.cursor_id)]
        rows.sort(key=lambda n: (n.created_at, n.id), reverse=True)
        return rows[: query.clamped_limit]

    async def count(
        self, user_id: str, category: NotificationCategory | None = None, read: bool | None = None
    ) -> int:
        return len(self._matching(user_id, category, read))

    async def mark_read(self, notification_id: str, user_id: str, now: datetime) -> NotificationRead | None:
        for index, row in enumerate(self.rows):
            if row.id == notification_id and row.user_id == user_id:
                if row.read_at is None:
                    row = row.model_copy(update={"read_at": now, "updated_at": now})
                    self.rows[index] = row
                return row
        return None

    async def mark_all_read(self, user_id: str, now: datetime) -> int:
        updated = 0
        for index, row in enumerate(self.rows):
            if row.user_id == user_id and row.read_at is None:
                self.rows[index] = row.model_copy(update={"read_at": now, "updated_at": now})
                updated += 1
        return updated

    async def mark_superseded(
        self, user_id: str, entity_id: str, notification_types: list[str], now: datetime
    ) -> int:
        marked = 0
        for index, row in enumerate(self.rows):
            if (
                row.user_id == user_id
                and row.entity_id == entity_id
                and row.type in notification_types
                and row.read_at is None
            ):
                self.rows[index] = row.model_copy(update={"read_at": now, "updated_at": now})
                marked += 1
        return marked

    async def exists(
        self, user_id: str, notification_type: str, entity_id: str, created_since: datetime
    ) -> bool:
        return any(
            n.user_id == user_id
            and n.type == notification_type
            and n.entity_id == entity_id
            and (n.read_at is None or n.created_at >= created_since)
            for n in self.rows
        )


class InMemoryUserRepository:
    def __init__(self) -> None:
        self.users: dict[str, UserRecord] = {}

    def add(
        self, user_id: str, email: str, full_name: str = "Agent", is_active: bool = True
    ) -> UserRecord:
        user = UserRecord(
            id=user_id,
            email=email,
            password_hash="!",
            full_name=full_name,
            is_active=is_active,
            created_at=_now(),
        )
        self.users[user.id] = user
        return user

    async def get_by_id(self, user_id: str) -> UserRecord | None:
        return self.users.get(user_id)

    async def get_by_email(self, email: str) -> UserRecord | None:
        email = email.strip().lower()
        return next((u for u in self.users.values() if u.email == email), None)

    async def create(
        self, email: str, password_hash: str, full_name: str, phone: str | None = None
    ) -> UserRecord:
        user = UserRecord(
            id=_new_id(),
            email=email.strip().lower(),
            password_hash=password_hash,
            full_name=full_name,
            phone=phone,
            created_at=_now(),
        )
        self.users[user.id] = user
        return user

    async def update(self, user_id: str, values: dict[str, Any]) -> UserRecord | None:
        user = self.users.get(user_id)
        if user is None:
            return None
        known = {k: v for k, v in values.items() if k in UserRecord.model_fields}
        updated = user.model_copy(update=known)
        self.users[user_id] = updated
        return updated


class RecordingEmailService:
    """Stands in for EmailService and records what would have been sent."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict]] = []

    async def send_verification(self, to: str, name: str, token: str) -> bool:
        self.sent.append(("verification", to, {"token": token}))
        return True

    async def send_password_reset(self, to: str, name: str, token: str) -> bool:
        self.sent.append(("password_reset", to, {"token": token}))
        return True

    async def send_password_changed(self, to: str, name: str) -> bool:
        self.sent.append(("password_changed", to, {}))
        return True

    async def send_lockout_alert(self, to: str, name: str, minutes: int) -> bool:
        self.sent.append(("lockout", to, {"minutes": minutes}))
        return True

    def of_kind(self, kind: str) -> list[tuple[str, str, dict]]:
        return [s for s in self.sent if s[0] == kind]
