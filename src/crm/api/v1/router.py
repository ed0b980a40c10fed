"""V1 API router -- aggregates all v1 endpoint routers under /api/v1."""

from __future__ import annotations

from fastapi import APIRouter

from src.crm.api.v1 import auth, catalogues, clients, dashboard, deals, health, notifications, tasks

router = APIRouter(prefix="/api/v1")

router.include_router(health.router)
router.include_router(auth.router)
router.include_router(clients.router)
router.include_router(catalogues.statuses_router)
router.include_router(catalogues.user_tags_router)
router.include_router(catalogues.tags_router)
router.include_router(tasks.router)
router.include_router(deals.router)
router.include_router(deals.deal_types_router)
router.include_router(deals.settings_router)
router.include_router(notifications.router)
router.include_router(dashboard.router)
