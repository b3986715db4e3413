"""Tests for the shared key/value stores."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Mapping

import pytest

from tabdigest.services.store import InMemoryStore, JsonFileStore, StorageChange


@pytest.mark.asyncio
async def test_get_returns_only_present_keys(store: InMemoryStore) -> None:
    await store.set({"a": 1, "b": {"nested": True}})

    assert await store.get(["a", "missing"]) == {"a": 1}
    assert await store.get("b") == {"b": {"nested": True}}


@pytest.mark.asyncio
async def test_values_are_copied_in_and_out(store: InMemoryStore) -> None:
    record = {"status": "loading"}
    await store.set({"k": record})
    record["status"] = "done"

    fetched = (await store.get("k"))["k"]
    fetched["status"] = "error"

    assert (await store.get("k"))["k"] == {"status": "loading"}


@pytest.mark.asyncio
async def test_listeners_receive_old_and_new_values(store: InMemoryStore) -> None:
    seen: list[Mapping[str, StorageChange]] = []
    store.add_listener(seen.append)

    await store.set({"k": 1})
    await store.set({"k": 2})
    await store.remove("k")

    assert [changes["k"] for changes in seen] == [
        StorageChange(old_value=None, new_value=1),
        StorageChange(old_value=1, new_value=2),
        StorageChange(old_value=2, new_value=None),
    ]


@pytest.mark.asyncio
async def test_unchanged_writes_and_absent_removals_are_silent(store: InMemoryStore) -> None:
    seen: list[Mapping[str, StorageChange]] = []
    await store.set({"k": {"v": 1}})
    store.add_listener(seen.append)

    await store.set({"k": {"v": 1}})
    await store.remove("other")

    assert seen == []


@pytest.mark.asyncio
async def test_removed_listener_is_not_called(store: InMemoryStore) -> None:
    seen: list[Mapping[str, StorageChange]] = []
    store.add_listener(seen.append)
    store.remove_listener(seen.append)
    store.remove_listener(seen.append)

    await store.set({"k": 1})

    assert seen == []


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others(store: InMemoryStore) -> None:
    seen: list[str] = []

    def broken(_changes: Mapping[str, StorageChange]) -> None:
        raise RuntimeError("boom")

    store.add_listener(broken)
    store.add_listener(lambda changes: seen.extend(changes))

    await store.set({"k": 1})

    assert seen == ["k"]


@pytest.mark.asyncio
async def test_setting_none_is_rejected(store: InMemoryStore) -> None:
    with pytest.raises(ValueError):
        await store.set({"k": None})


@pytest.mark.asyncio
async def test_json_file_store_persists_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "storage.json"
    first = JsonFileStore(path)
    await first.set({"summary_1": {"status": "done", "savedAt": 5, "summary": "hi"}})
    await first.set({"lmModel": "qwen"})
    await first.remove("lmModel")

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["version"] == 1
    assert payload["items"] == {"summary_1": {"status": "done", "savedAt": 5, "summary": "hi"}}

    second = JsonFileStore(path)
    assert await second.get("summary_1") == {"summary_1": {"status": "done", "savedAt": 5, "summary": "hi"}}
    assert not path.with_suffix(".tmp").exists()


def test_json_file_store_ignores_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    path.write_text("{not json", encoding="utf-8")

    store = JsonFileStore(path)

    assert store.snapshot() == {}
    assert store.path == path
