"""Tests for the JSON error envelope rendered by register_exception_handlers."""

from __future__ import annotations

import pytest_asyncio
from fastapi import FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

from src.crm.core.errors import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    UnexpectedError,
    ValidationError,
    register_exception_handlers,
)


class Payload(BaseModel):
    count: int


def _make_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/validation")
    async def validation():
        raise ValidationError("Bad input", details=[{"field": "name", "message": "Required"}])

    @app.get("/missing")
    async def missing():
        raise NotFoundError("Deal not found or access denied")

    @app.get("/denied")
    async def denied():
        raise AccessDeniedError("Deal not found or access denied")

    @app.get("/conflict")
    async def conflict():
        raise ConflictError()

    @app.get("/limited")
    async def limited():
        raise RateLimitError("Slow down", retry_after=120)

    @app.get("/unexpected")
    async def unexpected():
        raise UnexpectedError("Upstream failed")

    @app.get("/http")
    async def http_error():
        raise HTTPException(status_code=503, detail="DealService is not available.")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    @app.post("/body")
    async def body(payload: Payload):
        return {"count": payload.count}

    return app


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=_make_app(), raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def test_validation_error_envelope(client):
    resp = await client.get("/validation")
    assert resp.status_code == 400
    assert resp.json() == {
        "error": "Validation failed",
        "message": "Bad input",
        "details": [{"field": "name", "message": "Required"}],
    }


async def test_not_found_and_access_denied_look_the_same(client):
    missing = await client.get("/missing")
    denied = await client.get("/denied")
    assert missing.status_code == denied.status_code == 404
    assert missing.json() == denied.json()


async def test_conflict_without_message(client):
    resp = await client.get("/conflict")
    assert resp.status_code == 409
    assert resp.json() == {"error": "Conflict"}


async def test_rate_limit_sets_retry_after(client):
    resp = await client.get("/limited")
    assert resp.status_code == 429
    assert resp.headers["retry-after"] == "120"


async def test_unexpected_error(client):
    resp = await client.get("/unexpected")
    assert resp.status_code == 500
    assert resp.json()["error"] == "Internal server error"


async def test_http_exception_envelope(client):
    resp = await client.get("/http")
    assert resp.status_code == 503
    assert resp.json() == {"error": "Service Unavailable", "message": "DealService is not available."}


async def test_unknown_route_envelope(client):
    resp = await client.get("/nowhere")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Not Found"}


async def test_request_validation_envelope(client):
    resp = await client.post("/body", json={"count": "many"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Validation failed"
    assert body["details"][0]["field"] == "count"


async def test_unhandled_exception_is_500(client):
    resp = await client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "Internal server error"
    assert body["message"] == "kaboom"
