"""UserRepository.create seeds the default client catalogue in the same session."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from src.crm.clients.models import ClientStatusModel, UserTagModel
from src.crm.clients.repository import default_catalogue
from src.crm.clients.schemas import DEFAULT_CLIENT_STATUSES, DEFAULT_USER_TAGS
from src.crm.models.user import User
from src.crm.services.users import UserRepository


class _RecordingSession:
    def __init__(self) -> None:
        self.added = []
        self.commits = 0

    def add(self, obj) -> None:
        self.added.append(obj)

    def add_all(self, objs) -> None:
        self.added.extend(objs)

    async def commit(self) -> None:
        self.commits += 1

    async def refresh(self, obj) -> None:
        obj.email_verified = False
        obj.failed_login_count = 0
        obj.is_active = True
        obj.created_at = datetime(2026, 3, 2, tzinfo=timezone.utc)


def test_default_catalogue_rows():
    user_id = uuid.uuid4()
    rows = default_catalogue(user_id)

    statuses = [r for r in rows if isinstance(r, ClientStatusModel)]
    tags = [r for r in rows if isinstance(r, UserTagModel)]
    assert [(s.name, s.position) for s in statuses] == [
        (name, i) for i, (name, _) in enumerate(DEFAULT_CLIENT_STATUSES)
    ]
    assert all(s.is_default and s.user_id == user_id for s in statuses)
    assert [t.name for t in tags] == [name for name, _ in DEFAULT_USER_TAGS]


async def test_create_adds_user_and_catalogue_in_one_commit():
    session = _RecordingSession()

    async def session_factory():
        yield session

    record = await UserRepository(session_factory).create("  Agent@Example.com ", "hash", "Agent")

    user = session.added[0]
    assert isinstance(user, User)
    assert record.email == "agent@example.com"
    assert record.id == str(user.id)
    assert session.commits == 1
    catalogue = session.added[1:]
    assert len(catalogue) == len(DEFAULT_CLIENT_STATUSES) + len(DEFAULT_USER_TAGS)
    assert {row.user_id for row in catalogue} == {user.id}
