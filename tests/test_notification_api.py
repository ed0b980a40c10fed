"""Integration tests for the notification feed endpoints.

Runs the full application from the ``api`` fixture: listing the feed
schedules the background evaluation, whose results appear on the next read.
"""

from __future__ import annotations

import asyncio
from datetime import date, timedelta

from src.crm.notifications.schemas import NotificationCategory, NotificationCreate
from tests.doubles import OTHER_USER_ID, USER_ID


async def _notify(notification_repo, user_id: str = USER_ID, title: str = "Hello"):
    return await notification_repo.create(NotificationCreate(
        user_id=user_id,
        type="system.announcement",
        category=NotificationCategory.SYSTEM,
        title=title,
    ))


async def _drain(runner) -> None:
    """Let background evaluations started by a request run to completion."""
    for _ in range(100):
        if runner.pending == 0:
            return
        await asyncio.sleep(0)


async def test_feed_read_triggers_evaluation(api, task_repo, client_repo):
    """An overdue task shows up as a notification once the evaluation finishes."""
    client, app = api
    owner = client_repo.add("Dana Seller")
    task_repo.add(owner.id, "Send CMA", due_date=date.today() - timedelta(days=1))

    first = await client.get("/api/v1/notifications")
    assert first.status_code == 200
    await _drain(app.state.background_runner)

    second = (await client.get("/api/v1/notifications")).json()
    overdue = [n for n in second["data"] if n["type"] == "task.overdue"]
    assert len(overdue) == 1
    assert overdue[0]["title"] == "Task Overdue"
    assert overdue[0]["metadata"]["action_url"] == f"/clients/{owner.id}?tab=tasks"


async def test_feed_shape_and_counts(api, notification_repo):
    client, _ = api
    for i in range(3):
        await _notify(notification_repo, title=f"Note {i}")
    await _notify(notification_repo, user_id=OTHER_USER_ID)

    resp = await client.get("/api/v1/notifications", params={"limit": 2})

    assert resp.status_code == 200
    body = resp.json()
    assert set(body) == {"data", "next_cursor", "total_count", "unread_count"}
    assert len(body["data"]) == 2
    assert body["total_count"] == 3
    assert body["unread_count"] == 3
    assert body["next_cursor"] is not None


async def test_feed_filters_by_read_state(api, notification_repo):
    client, _ = api
    first = await _notify(notification_repo)
    await _notify(notification_repo)
    await client.patch(f"/api/v1/notifications/{first.id}/read")

    body = (await client.get("/api/v1/notifications", params={"read": "false"})).json()

    assert body["total_count"] == 1
    assert body["unread_count"] == 1


async def test_unread_count(api, notification_repo):
    client, _ = api
    await _notify(notification_repo)
    await _notify(notification_repo)

    resp = await client.get("/api/v1/notifications/unread-count")

    assert resp.json() == {"success": True, "data": {"count": 2}}


async def test_mark_read(api, notification_repo):
    client, _ = api
    notification = await _notify(notification_repo)

    resp = await client.patch(f"/api/v1/notifications/{notification.id}/read")

    assert resp.status_code == 200
    assert resp.json()["data"]["read_at"] is not None


async def test_mark_read_other_users_notification_is_404(api, notification_repo):
    client, _ = api
    notification = await _notify(notification_repo, user_id=OTHER_USER_ID)

    resp = await client.patch(f"/api/v1/notifications/{notification.id}/read")

    assert resp.status_code == 404
    assert resp.json()["message"] == "Notification not found"


async def test_mark_all_read(api, notification_repo):
    client, _ = api
    await _notify(notification_repo)
    await _notify(notification_repo)
    await _notify(notification_repo, user_id=OTHER_USER_ID)

    resp = await client.patch("/api/v1/notifications/read-all")

    assert resp.json() == {"success": True, "data": {"updated": 2}}
    assert (await client.get("/api/v1/notifications/unread-count")).json()["data"]["count"] == 0


async def test_feed_works_without_scheduler(api, notification_repo):
    client, app = api
    app.state.notification_scheduler = None
    await _notify(notification_repo)

    resp = await client.get("/api/v1/notifications")

    assert resp.status_code == 200
    assert resp.json()["total_count"] == 1


async def test_feed_503_without_service(api):
    client, app = api
    app.state.notification_service = None

    resp = await client.get("/api/v1/notifications")

    assert resp.status_code == 503


async def test_next_cursor_walks_every_page(api, notification_repo):
    """Rows sharing a created_at straddle a page boundary without loss."""
    client, _ = api
    for i in range(5):
        await _notify(notification_repo, title=f"Note {i}")
    stamp = notification_repo.rows[0].created_at
    notification_repo.rows = [n.model_copy(update={"created_at": stamp}) for n in notification_repo.rows]

    seen: list[str] = []
    params = {"limit": 2}
    for _ in range(5):
        body = (await client.get("/api/v1/notifications", params=params)).json()
        seen.extend(n["id"] for n in body["data"])
        if body["next_cursor"] is None:
            break
        params = {"limit": 2, "cursor": body["next_cursor"]}

    assert sorted(seen) == sorted(n.id for n in notification_repo.rows)
    assert len(seen) == len(set(seen)) == 5


async def test_second_page_follows_first(api, notification_repo):
    client, _ = api
    for i in range(3):
        await _notify(notification_repo, title=f"Note {i}")
    base = notification_repo.rows[0].created_at
    notification_repo.rows = [
        n.model_copy(update={"created_at": base + timedelta(seconds=i)})
        for i, n in enumerate(notification_repo.rows)
    ]

    first = (await client.get("/api/v1/notifications", params={"limit": 2})).json()
    second = (await client.get(
        "/api/v1/notifications", params={"limit": 2, "cursor": first["next_cursor"]}
    )).json()

    assert [n["title"] for n in first["data"] + second["data"]] == ["Note 2", "Note 1", "Note 0"]
    assert second["next_cursor"] is None


async def test_limit_is_clamped(api, notification_repo):
    client, _ = api
    for i in range(105):
        await _notify(notification_repo, title=f"Note {i}")

    smallest = (await client.get("/api/v1/notifications", params={"limit": 0})).json()
    largest = (await client.get("/api/v1/notifications", params={"limit": 500})).json()

    assert len(smallest["data"]) == 1
    assert len(largest["data"]) == 100
    assert largest["total_count"] == 105


async def test_malformed_cursor_is_400(api):
    client, _ = api

    resp = await client.get("/api/v1/notifications", params={"cursor": "yesterday"})

    assert resp.status_code == 400
    assert resp.json()["details"][0]["field"] == "cursor"
