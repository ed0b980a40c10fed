"""Shared test fixtures.

Repositories are the in-memory doubles from tests/doubles.py; the ``api``
fixture wires the real services over them onto a fresh application.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import fakeredis.aioredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tests.doubles import (
    OTHER_USER_ID,
    USER_ID,
    InMemoryClientRepository,
    InMemoryDealRepository,
    InMemoryNotificationRepository,
    InMemoryTaskRepository,
    InMemoryUserRepository,
    RecordingEmailService,
    make_mortgage_type,
    make_residential_type,
)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def client_repo() -> InMemoryClientRepository:
    return InMemoryClientRepository()


@pytest.fixture
def deal_repo() -> InMemoryDealRepository:
    return InMemoryDealRepository([make_residential_type(), make_mortgage_type()])


@pytest.fixture
def task_repo(client_repo) -> InMemoryTaskRepository:
    return InMemoryTaskRepository(client_repo)


@pytest.fixture
def notification_repo() -> InMemoryNotificationRepository:
    return InMemoryNotificationRepository()


@pytest.fixture
def user_repo() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def email_service() -> RecordingEmailService:
    return RecordingEmailService()


@pytest_asyncio.fixture
async def fake_redis():
    redis = fakeredis.aioredis.FakeRedis(decode_responses=True)
    await redis.flushall()
    yield redis
    await redis.aclose()


@pytest_asyncio.fixture
async def api(
    client_repo, deal_repo, task_repo, notification_repo, user_repo, email_service, fake_redis
) -> AsyncGenerator[tuple[AsyncClient, Any], None]:
    """Full application over in-memory doubles, authenticated as USER_ID.

    Yields ``(client, app)``; tests reach the doubles through the fixtures
    of the same name.
    """
    from src.crm.api.deps import get_current_user
    from src.crm.clients.service import ClientService
    from src.crm.core.background import BackgroundTaskRunner
    from src.crm.core.redis import RateLimiter
    from src.crm.dashboard.service import DashboardService
    from src.crm.deals.service import DealService
    from src.crm.main import create_app
    from src.crm.notifications.evaluator import (
        NotificationEvaluationScheduler,
        TaskNotificationEvaluator,
    )
    from src.crm.notifications.service import NotificationService
    from src.crm.schemas.auth import UserResponse
    from src.crm.services.auth import AuthService
    from src.crm.tasks.service import TaskService

    app = create_app()
    notification_service = NotificationService(notification_repo)
    runner = BackgroundTaskRunner("test")

    app.state.client_service = ClientService(client_repo)
    app.state.deal_service = DealService(deal_repo, client_repo)
    user_repo.add(OTHER_USER_ID, "partner@example.com", "Partner Agent")
    app.state.task_service = TaskService(task_repo, client_repo, notification_service, user_repo)
    app.state.notification_service = notification_service
    app.state.dashboard_service = DashboardService(deal_repo, client_repo, task_repo)
    app.state.background_runner = runner
    app.state.notification_scheduler = NotificationEvaluationScheduler(
        TaskNotificationEvaluator(task_repo, notification_service), runner
    )
    app.state.auth_service = AuthService(user_repo, email_service, RateLimiter(fake_redis))

    app.dependency_overrides[get_current_user] = lambda: UserResponse(
        id=USER_ID, email="agent@example.com", full_name="Test Agent", email_verified=True
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, app

    await runner.shutdown()
