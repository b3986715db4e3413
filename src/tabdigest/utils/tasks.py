"""Fire-and-forget task scheduling for event handlers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

__all__ = ["spawn_background", "pending_background_tasks"]

LOGGER = logging.getLogger(__name__)

# The event loop only keeps weak references to tasks.
_BACKGROUND_TASKS: set[asyncio.Task[Any]] = set()


def spawn_background(coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any] | None:
    """Schedule *coro* on the running loop without awaiting it.

    Returns ``None`` (and closes the coroutine) when no loop is running, so
    synchronous callers such as store listeners never fail.
    """

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        LOGGER.debug("No running event loop; dropping background task %s", name or coro)
        coro.close()
        return None
    task = loop.create_task(coro, name=name)
    _BACKGROUND_TASKS.add(task)
    task.add_done_callback(_on_task_done)
    return task


def pending_background_tasks() -> list[asyncio.Task[Any]]:
    """Return background tasks that have not finished yet."""

    return [task for task in _BACKGROUND_TASKS if not task.done()]


def _on_task_done(task: asyncio.Task[Any]) -> None:
    _BACKGROUND_TASKS.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        LOGGER.debug("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)
