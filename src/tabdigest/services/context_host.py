"""In-process model of browser tabs hosting content workers."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping

from ..content.worker import ContentWorker, PostPage
from .context_bridge import ContextEndpointMissingError
from .context_events import (
    ContextActivatedEvent,
    ContextClosedEvent,
    ContextEventBus,
    ContextNavigatedEvent,
)

__all__ = ["BrowserContext", "LocalContextHost", "UnknownContextError"]

LOGGER = logging.getLogger(__name__)


def _generate_context_id() -> str:
    return uuid.uuid4().hex


class UnknownContextError(KeyError):
    """Raised when a context id does not name an open context."""


@dataclass(slots=True)
class BrowserContext:
    """One open tab: its URL, loaded page and (optional) content worker."""

    id: str
    url: str
    page: PostPage | None = None
    worker: ContentWorker | None = None

    @property
    def has_worker(self) -> bool:
        return self.worker is not None


class LocalContextHost:
    """Owns open contexts, tracks the active one and publishes lifecycle events.

    A freshly opened or navigated context has no worker until
    :meth:`install_worker` runs, mirroring pages loaded before the content
    script was registered.
    """

    def __init__(
        self,
        *,
        bus: ContextEventBus | None = None,
        worker_factory: Callable[[PostPage | None], ContentWorker] | None = None,
    ) -> None:
        self._bus = bus or ContextEventBus()
        self._worker_factory = worker_factory or ContentWorker
        self._contexts: Dict[str, BrowserContext] = {}
        self._order: List[str] = []
        self._active_id: str | None = None

    @property
    def bus(self) -> ContextEventBus:
        return self._bus

    # ------------------------------------------------------------------
    # Context lifecycle
    # ------------------------------------------------------------------
    def open_context(
        self,
        url: str,
        *,
        page: PostPage | None = None,
        context_id: str | None = None,
        make_active: bool = True,
        with_worker: bool = False,
    ) -> BrowserContext:
        context = BrowserContext(id=context_id or _generate_context_id(), url=url, page=page)
        if with_worker:
            context.worker = self._worker_factory(page)
        self._contexts[context.id] = context
        self._order.append(context.id)
        LOGGER.debug("Opened context %s at %s", context.id, url)
        if make_active or self._active_id is None:
            self.activate(context.id)
        return context

    def navigate(self, context_id: str, url: str, *, page: PostPage | None = None) -> BrowserContext:
        context = self.get_context(context_id)
        previous_url = context.url
        context.url = url
        context.page = page
        context.worker = None
        LOGGER.debug("Context %s navigated %s -> %s", context_id, previous_url, url)
        self._bus.publish(ContextNavigatedEvent(context.id, url=url, previous_url=previous_url, source="host"))
        return context

    def activate(self, context_id: str) -> BrowserContext:
        context = self.get_context(context_id)
        if self._active_id == context_id:
            return context
        self._active_id = context_id
        self._bus.publish(ContextActivatedEvent(context.id, url=context.url, source="host"))
        return context

    def close_context(self, context_id: str, *, reason: str | None = None) -> BrowserContext:
        context = self.get_context(context_id)
        self._contexts.pop(context_id)
        index = self._order.index(context_id)
        self._order.pop(index)
        LOGGER.debug("Closed context %s", context_id)
        self._bus.publish(ContextClosedEvent(context_id, reason=reason, source="host"))
        if self._active_id == context_id:
            self._active_id = None
            if self._order:
                fallback_index = index if index < len(self._order) else len(self._order) - 1
                self.activate(self._order[fallback_index])
        return context

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_context(self, context_id: str) -> BrowserContext:
        try:
            return self._contexts[str(context_id)]
        except KeyError:
            raise UnknownContextError(f"Unknown context_id: {context_id}") from None

    async def active_context(self) -> BrowserContext | None:
        if self._active_id is None:
            return None
        return self._contexts.get(self._active_id)

    # ------------------------------------------------------------------
    # Messaging (ContextHost protocol)
    # ------------------------------------------------------------------
    async def send_message(self, context_id: str, message: Mapping[str, Any]) -> Mapping[str, Any]:
        context = self.get_context(context_id)
        if context.worker is None:
            raise ContextEndpointMissingError(
                "Could not establish connection. Receiving end does not exist."
            )
        response = context.worker.handle_message(message)
        if response is None:
            raise ContextEndpointMissingError(f"No handler for action {message.get('action')!r}")
        return response

    async def install_worker(self, context_id: str) -> None:
        context = self.get_context(context_id)
        if context.worker is None:
            context.worker = self._worker_factory(context.page)
            LOGGER.debug("Installed content worker into %s", context_id)
