"""In-process telemetry for job lifecycle events.

Events are plain dicts carrying an ``event`` name plus the emitter's fields,
e.g. ``{"event": "job.fail", "key": "17", "error": "..."}``. Nothing leaves
the process; listeners decide what to do with them.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from threading import Lock
from typing import Any, Callable, Mapping

__all__ = [
    "EventListener",
    "emit",
    "register_event_listener",
    "unregister_event_listener",
    "InMemoryEventSink",
]

LOGGER = logging.getLogger(__name__)

EventListener = Callable[[dict[str, Any]], None]

_listeners: defaultdict[str, list[EventListener]] = defaultdict(list)


def register_event_listener(event_name: str, callback: EventListener) -> None:
    if event_name and callback not in _listeners[event_name]:
        _listeners[event_name].append(callback)


def unregister_event_listener(event_name: str, callback: EventListener) -> None:
    callbacks = _listeners.get(event_name)
    if callbacks and callback in callbacks:
        callbacks.remove(callback)
    if not callbacks:
        _listeners.pop(event_name, None)


def emit(event_name: str, payload: Mapping[str, Any] | None = None) -> None:
    """Hand ``{"event": event_name, **payload}`` to every listener of *event_name*."""

    if not event_name:
        return
    event = {"event": event_name, **(payload or {})}
    LOGGER.debug("event %s %s", event_name, payload or {})
    for callback in tuple(_listeners.get(event_name, ())):
        try:
            callback(dict(event))
        except Exception:  # pragma: no cover - listener isolation
            LOGGER.debug("Listener %r for %s raised", callback, event_name, exc_info=True)


class InMemoryEventSink:
    """Bounded recorder for the named events, used by tests and diagnostics."""

    def __init__(self, *event_names: str, capacity: int = 200) -> None:
        self._names = event_names
        self._records: deque[dict[str, Any]] = deque(maxlen=max(10, capacity))
        self._guard = Lock()
        for name in event_names:
            register_event_listener(name, self.record)

    def record(self, event: dict[str, Any]) -> None:
        with self._guard:
            self._records.append(event)

    def events(self, name: str | None = None) -> list[dict[str, Any]]:
        with self._guard:
            snapshot = list(self._records)
        return [event for event in snapshot if name is None or event.get("event") == name]

    def close(self) -> None:
        for name in self._names:
            unregister_event_listener(name, self.record)

    def __len__(self) -> int:
        return len(self._records)
