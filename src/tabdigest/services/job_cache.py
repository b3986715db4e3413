"""Tab-scoped job cache persisted in the shared key/value store.

Each context key owns at most one :class:`JobEntry`, stored under
``summary_<key>``. Writes replace the whole record. Readers treat entries older
than :data:`SUMMARY_TTL_SECONDS` as absent and schedule their deletion.

Every ``begin_job`` stamps the entry with a fresh generation token. Terminal
writes that carry a generation are dropped once a newer job has replaced the
entry (or the entry was cleared), so a superseded summary can never clobber the
result of the job that replaced it.

Mutations of one key are serialized by a per-key lock held across the
read-check-write sequence, so a fence check and the write it guards cannot
interleave with another job's begin or clear.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from ..utils.tasks import spawn_background
from . import telemetry
from .store import KeyValueStore

__all__ = [
    "JobStatus",
    "JobEntry",
    "JobCache",
    "SUMMARY_TTL_SECONDS",
    "summary_key",
]

LOGGER = logging.getLogger(__name__)

SUMMARY_TTL_SECONDS = 10 * 60
_KEY_PREFIX = "summary_"


def summary_key(key: object) -> str:
    """Return the storage key holding the job entry for context *key*."""

    return f"{_KEY_PREFIX}{key}"


def _now_ms() -> int:
    return int(time.time() * 1000)


class JobStatus(str, Enum):
    LOADING = "loading"
    DONE = "done"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class JobEntry:
    """Snapshot of one context's job as persisted in the store."""

    key: str
    status: JobStatus
    saved_at: int
    generation: str | None = None
    result: str | None = None
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.DONE, JobStatus.ERROR)

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.saved_at

    def is_expired(self, now_ms: int, ttl_ms: int) -> bool:
        return self.age_ms(now_ms) > ttl_ms

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {"status": self.status.value, "savedAt": self.saved_at}
        if self.generation is not None:
            record["generation"] = self.generation
        if self.status is JobStatus.DONE:
            record["summary"] = self.result or ""
        elif self.status is JobStatus.ERROR:
            record["error"] = self.error_message or ""
        return record

    @classmethod
    def from_record(cls, key: object, record: Any) -> "JobEntry | None":
        """Parse a stored record, returning ``None`` for anything malformed."""

        if not isinstance(record, Mapping):
            return None
        try:
            status = JobStatus(record.get("status"))
        except ValueError:
            LOGGER.debug("Ignoring job record for %s with status %r", key, record.get("status"))
            return None
        try:
            saved_at = int(record.get("savedAt") or 0)
        except (TypeError, ValueError):
            saved_at = 0
        generation = record.get("generation")
        return cls(
            key=str(key),
            status=status,
            saved_at=saved_at,
            generation=str(generation) if generation is not None else None,
            result=record.get("summary") if status is JobStatus.DONE else None,
            error_message=record.get("error") if status is JobStatus.ERROR else None,
        )


class JobCache:
    """Owns the lifecycle of per-context job entries."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl_seconds: float = SUMMARY_TTL_SECONDS,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store = store
        self._ttl_ms = int(max(0.0, float(ttl_seconds)) * 1000)
        self._clock = clock or _now_ms
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def store(self) -> KeyValueStore:
        return self._store

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    async def begin_job(self, key: object) -> JobEntry:
        """Overwrite any entry for *key* with a fresh ``loading`` entry."""

        entry = JobEntry(
            key=str(key),
            status=JobStatus.LOADING,
            saved_at=self._clock(),
            generation=uuid.uuid4().hex,
        )
        async with self._lock(key):
            await self._write(entry)
        LOGGER.debug("Job for %s started (generation=%s)", key, entry.generation)
        telemetry.emit("job.begin", {"key": entry.key, "generation": entry.generation})
        return entry

    async def complete_job(self, key: object, result: str, *, generation: str | None = None) -> bool:
        """Record a successful result; returns ``False`` when the write was fenced off."""

        async with self._lock(key):
            if not await self._accepts(key, generation):
                return False
            entry = JobEntry(
                key=str(key),
                status=JobStatus.DONE,
                saved_at=self._clock(),
                generation=generation,
                result=result,
            )
            await self._write(entry)
        LOGGER.debug("Job for %s completed (%s chars)", key, len(result))
        telemetry.emit("job.complete", {"key": entry.key, "generation": generation})
        return True

    async def fail_job(self, key: object, error_message: str, *, generation: str | None = None) -> bool:
        """Record a failure; returns ``False`` when the write was fenced off."""

        async with self._lock(key):
            if not await self._accepts(key, generation):
                return False
            entry = JobEntry(
                key=str(key),
                status=JobStatus.ERROR,
                saved_at=self._clock(),
                generation=generation,
                error_message=error_message,
            )
            await self._write(entry)
        LOGGER.info("Job for %s failed: %s", key, error_message)
        telemetry.emit("job.fail", {"key": entry.key, "generation": generation, "error": error_message})
        return True

    async def read_job(self, key: object) -> JobEntry | None:
        """Return the live entry for *key*, treating expired entries as absent."""

        entry = await self._read_raw(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock(), self._ttl_ms):
            LOGGER.debug("Job entry for %s expired; scheduling removal", key)
            telemetry.emit("job.expired", {"key": entry.key})
            spawn_background(
                self._discard_expired(key, entry.saved_at),
                name=f"expire-{summary_key(key)}",
            )
            return None
        return entry

    async def clear_job(self, key: object) -> None:
        """Delete the entry for *key*; deleting an absent entry is a no-op."""

        async with self._lock(key):
            await self._store.remove(summary_key(key))
        telemetry.emit("job.clear", {"key": str(key)})

    def _lock(self, key: object) -> asyncio.Lock:
        name = str(key)
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    async def _read_raw(self, key: object) -> JobEntry | None:
        storage_key = summary_key(key)
        payload = await self._store.get(storage_key)
        return JobEntry.from_record(key, payload.get(storage_key))

    async def _accepts(self, key: object, generation: str | None) -> bool:
        if generation is None:
            return True
        current = await self._read_raw(key)
        if current is not None and current.generation == generation:
            return True
        LOGGER.info(
            "Dropping stale result for %s (generation %s superseded by %s)",
            key,
            generation,
            current.generation if current else None,
        )
        telemetry.emit(
            "job.stale_write",
            {"key": str(key), "generation": generation, "current": current.generation if current else None},
        )
        return False

    async def _write(self, entry: JobEntry) -> None:
        await self._store.set({summary_key(entry.key): entry.to_record()})

    async def _discard_expired(self, key: object, saved_at: int) -> None:
        try:
            async with self._lock(key):
                current = await self._read_raw(key)
                # A newer write may have landed since the expired read.
                if current is None or current.saved_at != saved_at:
                    return
                await self._store.remove(summary_key(key))
        except Exception as exc:  # pragma: no cover - best-effort cleanup
            LOGGER.debug("Failed to remove expired job entry for %s: %s", key, exc)
