"""Key/value persistence shared by every observer and worker in the process."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Protocol

__all__ = [
    "StorageChange",
    "ChangeListener",
    "KeyValueStore",
    "InMemoryStore",
    "JsonFileStore",
    "default_store_path",
]

LOGGER = logging.getLogger(__name__)
_STORE_DIR = Path.home() / ".tabdigest"
_STORE_FILENAME = "storage.json"
_STORE_VERSION = 1


def default_store_path() -> Path:
    return _STORE_DIR / _STORE_FILENAME


@dataclass(slots=True, frozen=True)
class StorageChange:
    """Old and new value of one key; ``new_value is None`` means it was removed."""

    old_value: Any = None
    new_value: Any = None


ChangeListener = Callable[[Mapping[str, StorageChange]], None]


class KeyValueStore(Protocol):
    """Durable key/value storage with a subscribable change stream."""

    async def get(self, keys: str | Iterable[str]) -> dict[str, Any]:  # pragma: no cover - protocol
        ...

    async def set(self, items: Mapping[str, Any]) -> None:  # pragma: no cover - protocol
        ...

    async def remove(self, keys: str | Iterable[str]) -> None:  # pragma: no cover - protocol
        ...

    def add_listener(self, listener: ChangeListener) -> None:  # pragma: no cover - protocol
        ...

    def remove_listener(self, listener: ChangeListener) -> None:  # pragma: no cover - protocol
        ...


class InMemoryStore:
    """Process-local store; values are copied so records are replaced whole."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self._listeners: list[ChangeListener] = []
        self._lock = asyncio.Lock()

    async def get(self, keys: str | Iterable[str]) -> dict[str, Any]:
        names = _coerce_keys(keys)
        async with self._lock:
            return {name: copy.deepcopy(self._data[name]) for name in names if name in self._data}

    async def set(self, items: Mapping[str, Any]) -> None:
        changes: dict[str, StorageChange] = {}
        async with self._lock:
            for key, value in items.items():
                if value is None:
                    raise ValueError(f"Cannot store None for {key!r}; use remove() instead")
                old_value = self._data.get(key)
                new_value = copy.deepcopy(value)
                if old_value == new_value:
                    continue
                self._data[key] = new_value
                changes[key] = StorageChange(old_value=old_value, new_value=copy.deepcopy(new_value))
            if changes:
                self._persist()
        self._dispatch(changes)

    async def remove(self, keys: str | Iterable[str]) -> None:
        changes: dict[str, StorageChange] = {}
        async with self._lock:
            for key in _coerce_keys(keys):
                if key not in self._data:
                    continue
                old_value = self._data.pop(key)
                changes[key] = StorageChange(old_value=old_value, new_value=None)
            if changes:
                self._persist()
        self._dispatch(changes)

    def add_listener(self, listener: ChangeListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def snapshot(self) -> dict[str, Any]:
        """Return a deep copy of every stored value."""

        return copy.deepcopy(self._data)

    def _persist(self) -> None:
        """Hook for durable subclasses; called with the write lock held."""

    def _dispatch(self, changes: Mapping[str, StorageChange]) -> None:
        if not changes:
            return
        for listener in list(self._listeners):
            try:
                listener(dict(changes))
            except Exception:  # pragma: no cover - listener isolation
                LOGGER.exception("Storage change listener failed")


class JsonFileStore(InMemoryStore):
    """Store persisted as a single JSON document with atomic replacement."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or default_store_path()
        super().__init__(self._read_payload())

    @property
    def path(self) -> Path:
        return self._path

    def _persist(self) -> None:
        payload = {"version": _STORE_VERSION, "items": self._data}
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)

    def _read_payload(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Storage file %s is not valid JSON: %s", self._path, exc)
            return {}
        items = data.get("items") if isinstance(data, Mapping) else None
        if not isinstance(items, Mapping):
            return {}
        return {key: value for key, value in items.items() if isinstance(key, str)}


def _coerce_keys(keys: str | Iterable[str]) -> list[str]:
    if isinstance(keys, str):
        return [keys]
    return [key for key in keys if isinstance(key, str)]
