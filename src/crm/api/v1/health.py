"""Liveness and readiness checks.

``/health`` answers as long as the process serves requests. ``/health/ready``
checks PostgreSQL and Redis and reports each one with its round-trip time.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.crm.config import get_settings
from src.crm.core.database import get_engine
from src.crm.core.redis import get_redis_pool

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Liveness: no dependency is contacted."""
    return {"status": "ok", "environment": get_settings().ENVIRONMENT.value}


async def _ping_database() -> None:
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))


async def _ping_redis() -> None:
    if not await get_redis_pool().ping():
        raise ConnectionError("PING did not return PONG")


_CHECKS: dict[str, Callable[[], Awaitable[None]]] = {
    "database": _ping_database,
    "redis": _ping_redis,
}


async def _run_checks() -> tuple[dict[str, str], dict[str, float]]:
    checks: dict[str, str] = {}
    latency_ms: dict[str, float] = {}
    for name, check in _CHECKS.items():
        started = time.perf_counter()
        try:
            await check()
        except Exception as exc:
            checks[name] = "error"
            logger.warning("health.check_failed", dependency=name, error=str(exc))
        else:
            checks[name] = "ok"
        latency_ms[name] = round((time.perf_counter() - started) * 1000, 1)
    return checks, latency_ms


@router.get("/health/ready")
async def readiness_check():
    """200 when every dependency answers, 503 with per-dependency results otherwise."""
    checks, latency_ms = await _run_checks()
    ready = all(result == "ok" for result in checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "degraded",
            "checks": checks,
            "latency_ms": latency_ms,
        },
    )
