"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, the
error envelope handlers, Sentry, lifespan events for database
initialization and service wiring, and the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.crm.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.crm.api.v1.router import router as v1_router
from src.crm.clients.repository import ClientRepository
from src.crm.clients.service import ClientService
from src.crm.config import get_settings
from src.crm.core.background import BackgroundTaskRunner
from src.crm.core.database import close_db, get_session, init_db
from src.crm.core.errors import register_exception_handlers
from src.crm.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.crm.core.redis import RateLimiter, close_redis, get_redis_pool
from src.crm.dashboard.service import DashboardService
from src.crm.deals.repository import DealRepository
from src.crm.deals.service import DealService
from src.crm.notifications.evaluator import NotificationEvaluationScheduler, TaskNotificationEvaluator
from src.crm.notifications.repository import NotificationRepository
from src.crm.notifications.service import NotificationService
from src.crm.services.auth import AuthService
from src.crm.services.email import EmailService
from src.crm.services.users import UserRepository
from src.crm.tasks.repository import TaskRepository
from src.crm.tasks.service import TaskService


def wire_services(app: FastAPI, session_factory=get_session, redis_client=None) -> None:
    """Build repositories and services and store them on app.state."""
    settings = get_settings()

    client_repository = ClientRepository(session_factory)
    deal_repository = DealRepository(session_factory)
    task_repository = TaskRepository(session_factory)
    user_repository = UserRepository(session_factory)
    notification_service = NotificationService(
        NotificationRepository(session_factory),
        dedup_hours=settings.NOTIFICATION_DEDUP_HOURS,
    )

    runner = BackgroundTaskRunner("notifications")
    evaluator = TaskNotificationEvaluator(task_repository, notification_service)

    app.state.client_service = ClientService(client_repository)
    app.state.deal_service = DealService(deal_repository, client_repository)
    app.state.task_service = TaskService(
        task_repository, client_repository, notification_service, user_repository
    )
    app.state.notification_service = notification_service
    app.state.dashboard_service = DashboardService(deal_repository, client_repository, task_repository)
    app.state.background_runner = runner
    app.state.notification_scheduler = NotificationEvaluationScheduler(evaluator, runner)
    app.state.auth_service = AuthService(
        user_repository,
        EmailService(settings),
        RateLimiter(redis_client or get_redis_pool()),
        settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and services on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    wire_services(app)
    log.info("app.started", environment=settings.ENVIRONMENT.value)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    runner = getattr(app.state, "background_runner", None)
    if runner is not None:
        await runner.shutdown()

    await close_db()
    await close_redis()
    log.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="SolidSeed CRM API",
        version="0.1.0",
        description="Real-estate CRM: clients, deals, tasks and notifications",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    register_exception_handlers(app)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
