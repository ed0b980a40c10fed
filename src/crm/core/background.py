"""In-process background task runner.

Work that must not block a request (lazy notification evaluation) is
spawned here instead of as an unawaited coroutine. The runner keeps a
reference to every live task, so none is garbage collected mid-flight,
collapses concurrent spawns under the same key into one task, logs
failures, and cancels whatever is still pending at shutdown.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class BackgroundTaskRunner:
    """Owns detached asyncio tasks for the lifetime of the application."""

    def __init__(self, name: str = "background") -> None:
        self._name = name
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def is_running(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def spawn(self, key: str, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task[Any] | None:
        """Start ``factory()`` in the background unless ``key`` is already running.

        Args:
            key: Deduplication key. While a task with this key is in flight,
                further spawns return that same task.
            factory: Zero-argument callable producing the coroutine to run.
                Only called when a new task is actually started.

        Returns:
            The task handle, or None once the runner has been shut down.
        """
        if self._closed:
            logger.warning("background.spawn_after_shutdown", runner=self._name, key=key)
            return None

        existing = self._tasks.get(key)
        if existing is not None and not existing.done():
            logger.debug("background.already_running", runner=self._name, key=key)
            return existing

        task = asyncio.create_task(factory(), name=f"{self._name}:{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._on_done(k, t))
        return task

    def _on_done(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            logger.info("background.task_cancelled", runner=self._name, key=key)
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "background.task_failed",
                runner=self._name,
                key=key,
                exc_info=exc,
            )

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel pending tasks and wait up to ``timeout`` for them to finish."""
        self._closed = True
        tasks = list(self._tasks.values())
        if not tasks:
            return
        for task in tasks:
            task.cancel()
        await asyncio.wait(tasks, timeout=timeout)
        logger.info("background.shutdown", runner=self._name, cancelled=len(tasks))
