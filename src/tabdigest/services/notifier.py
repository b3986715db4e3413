"""Delivers job cache changes for one context key to the active observer."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from ..utils.tasks import spawn_background
from .job_cache import JobEntry, summary_key
from .store import KeyValueStore, StorageChange

__all__ = ["ChangeNotifier", "Subscription", "EntryHandler"]

LOGGER = logging.getLogger(__name__)

EntryHandler = Callable[[JobEntry | None], Any]


@dataclass(slots=True, eq=False)
class Subscription:
    """Handle returned by :meth:`ChangeNotifier.subscribe`."""

    key: str
    handler: EntryHandler
    _notifier: "ChangeNotifier | None" = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._notifier is not None and self._notifier.current is self

    def cancel(self) -> None:
        notifier = self._notifier
        if notifier is not None and notifier.current is self:
            notifier.unsubscribe()
        self._notifier = None


class ChangeNotifier:
    """Filters the store's change stream down to a single subscribed key.

    Each observer owns one notifier, and subscribing again replaces the
    previous interest instead of stacking. Notifications are best-effort:
    observers still re-read the cache on (re)initialization.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._current: Subscription | None = None
        self._attached = False

    @property
    def current(self) -> Subscription | None:
        return self._current

    @property
    def active_key(self) -> str | None:
        return self._current.key if self._current is not None else None

    def subscribe(self, key: object, handler: EntryHandler) -> Subscription:
        subscription = Subscription(key=str(key), handler=handler, _notifier=self)
        previous = self._current
        self._current = subscription
        if previous is not None:
            previous._notifier = None
        if not self._attached:
            self._store.add_listener(self._on_store_change)
            self._attached = True
        LOGGER.debug("Notifier subscribed to %s", subscription.key)
        return subscription

    def unsubscribe(self) -> None:
        if self._current is not None:
            self._current._notifier = None
        self._current = None

    def close(self) -> None:
        self.unsubscribe()
        if self._attached:
            self._store.remove_listener(self._on_store_change)
            self._attached = False

    def _on_store_change(self, changes: Mapping[str, StorageChange]) -> None:
        subscription = self._current
        if subscription is None:
            return
        change = changes.get(summary_key(subscription.key))
        if change is None:
            return
        entry = JobEntry.from_record(subscription.key, change.new_value)
        try:
            result = subscription.handler(entry)
        except Exception:  # pragma: no cover - handler isolation
            LOGGER.exception("Job change handler for %s failed", subscription.key)
            return
        if inspect.isawaitable(result):
            spawn_background(_await(result), name=f"notify-{subscription.key}")


async def _await(awaitable: Any) -> Any:
    return await awaitable
