"""Clears job entries when their owning context goes away."""

from __future__ import annotations

import logging
from typing import Callable

from ..content.worker import is_post_url
from ..utils.tasks import spawn_background
from .context_events import ContextClosedEvent, ContextEvent, ContextEventBus, ContextNavigatedEvent
from .job_cache import JobCache

__all__ = ["ContextLifecycleManager"]

LOGGER = logging.getLogger(__name__)


class ContextLifecycleManager:
    """Reacts to closed/navigated contexts by deleting their cached job.

    Handlers only schedule the deletion; the publisher of the event is never
    blocked and never sees a cleanup failure.
    """

    def __init__(
        self,
        cache: JobCache,
        bus: ContextEventBus,
        *,
        is_tracked_url: Callable[[str | None], bool] = is_post_url,
    ) -> None:
        self._cache = cache
        self._bus = bus
        self._is_tracked_url = is_tracked_url
        self._attached = False

    def attach(self) -> None:
        if self._attached:
            return
        self._bus.subscribe(ContextClosedEvent, self._handle_closed)
        self._bus.subscribe(ContextNavigatedEvent, self._handle_navigated)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        self._bus.unsubscribe(ContextClosedEvent, self._handle_closed)
        self._bus.unsubscribe(ContextNavigatedEvent, self._handle_navigated)
        self._attached = False

    def _handle_closed(self, event: ContextEvent) -> None:
        if not isinstance(event, ContextClosedEvent):
            return
        self._schedule_clear(event.context_id, reason="closed")

    def _handle_navigated(self, event: ContextEvent) -> None:
        if not isinstance(event, ContextNavigatedEvent):
            return
        left_tracked_page = not self._is_tracked_url(event.url)
        changed_page = event.previous_url is not None and event.url != event.previous_url
        if left_tracked_page or changed_page:
            self._schedule_clear(event.context_id, reason="navigated")

    def _schedule_clear(self, context_id: str, *, reason: str) -> None:
        LOGGER.debug("Clearing job for context %s (%s)", context_id, reason)
        spawn_background(self._clear(context_id), name=f"lifecycle-clear-{context_id}")

    async def _clear(self, context_id: str) -> None:
        try:
            await self._cache.clear_job(context_id)
        except Exception as exc:
            LOGGER.warning("Failed to clear job for context %s: %s", context_id, exc)
