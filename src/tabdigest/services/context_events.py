"""Context lifecycle events published by the context host."""

from __future__ import annotations

import logging
from threading import RLock
from typing import Callable, List, MutableMapping, Type

__all__ = [
    "ContextEvent",
    "ContextActivatedEvent",
    "ContextNavigatedEvent",
    "ContextClosedEvent",
    "ContextEventBus",
]

_LOGGER = logging.getLogger(__name__)


class ContextEvent:
    """Base class for context lifecycle events."""

    __slots__ = ("context_id", "source")

    def __init__(self, context_id: str, *, source: str | None = None) -> None:
        self.context_id = str(context_id)
        self.source = source


class ContextActivatedEvent(ContextEvent):
    """Published when a context becomes the active one."""

    __slots__ = ("url",)

    def __init__(self, context_id: str, *, url: str | None = None, source: str | None = None) -> None:
        super().__init__(context_id, source=source)
        self.url = url


class ContextNavigatedEvent(ContextEvent):
    """Published after a context finished loading a new URL."""

    __slots__ = ("url", "previous_url")

    def __init__(
        self,
        context_id: str,
        *,
        url: str,
        previous_url: str | None = None,
        source: str | None = None,
    ) -> None:
        super().__init__(context_id, source=source)
        self.url = url
        self.previous_url = previous_url


class ContextClosedEvent(ContextEvent):
    """Published when a context is destroyed."""

    __slots__ = ("reason",)

    def __init__(self, context_id: str, *, reason: str | None = None, source: str | None = None) -> None:
        super().__init__(context_id, source=source)
        self.reason = reason


Subscriber = Callable[[ContextEvent], None]


class ContextEventBus:
    """Synchronous pub/sub bus for context lifecycle events."""

    def __init__(self) -> None:
        self._subscribers: MutableMapping[Type[ContextEvent], List[Subscriber]] = {}
        self._lock = RLock()

    def subscribe(self, event_type: Type[ContextEvent], handler: Subscriber) -> None:
        with self._lock:
            handlers = self._subscribers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)

    def unsubscribe(self, event_type: Type[ContextEvent], handler: Subscriber) -> None:
        with self._lock:
            handlers = self._subscribers.get(event_type)
            if not handlers:
                return
            handlers[:] = [existing for existing in handlers if existing != handler]
            if not handlers:
                self._subscribers.pop(event_type, None)

    def publish(self, event: ContextEvent) -> None:
        to_invoke: list[Subscriber] = []
        with self._lock:
            for event_type, handlers in self._subscribers.items():
                if isinstance(event, event_type):
                    to_invoke.extend(handlers)
        for callback in to_invoke:
            try:
                callback(event)
            except Exception:  # pragma: no cover - subscriber isolation
                _LOGGER.exception("Context event subscriber failed for %s", type(event).__name__)
