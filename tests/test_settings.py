"""Tests for the endpoint settings layer."""

from __future__ import annotations

from pathlib import Path

import pytest

from tabdigest.services.settings import (
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    SecretVault,
    Settings,
    SettingsStore,
    normalize_base_url,
    redact_secret,
)
from tabdigest.services.store import InMemoryStore, JsonFileStore


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("http://localhost:1234", "http://localhost:1234/v1"),
        ("http://localhost:1234/", "http://localhost:1234/v1"),
        ("http://localhost:1234/v1", "http://localhost:1234/v1"),
        ("http://localhost:1234/v1/", "http://localhost:1234/v1"),
        ("  http://10.0.0.2:8080/v1  ", "http://10.0.0.2:8080/v1"),
        ("", "http://localhost:1234/v1"),
        (None, "http://localhost:1234/v1"),
    ],
)
def test_normalize_base_url(raw: str | None, expected: str) -> None:
    assert normalize_base_url(raw) == expected


def test_settings_derive_endpoint() -> None:
    settings = Settings(base_url="http://host:1/v1/", model="  ")

    assert settings.chat_completions_url == "http://host:1/v1/chat/completions"
    assert settings.model_name == DEFAULT_MODEL


@pytest.mark.asyncio
async def test_load_returns_defaults_when_store_empty(settings_store: SettingsStore) -> None:
    assert await settings_store.load() == Settings()
    assert not await settings_store.is_configured()


@pytest.mark.asyncio
async def test_save_and_load_roundtrip(store: InMemoryStore, settings_store: SettingsStore) -> None:
    original = Settings(
        base_url="http://lab:1234/v1",
        model="mistral",
        api_key="super-secret",
        temperature=0.7,
        max_tokens=-1,
        request_timeout=45.0,
    )

    await settings_store.save(original)

    assert await settings_store.load() == original
    assert await settings_store.is_configured()
    raw = store.snapshot()
    assert raw["lmBaseUrl"] == "http://lab:1234/v1"
    assert raw["lmModel"] == "mistral"
    assert raw["lmApiKeyCiphertext"].startswith("fernet:")
    assert "super-secret" not in raw["lmApiKeyCiphertext"]


@pytest.mark.asyncio
async def test_blank_values_fall_back_to_defaults(store: InMemoryStore, settings_store: SettingsStore) -> None:
    await settings_store.save(Settings(base_url="http://a/v1", model="m", api_key="k", request_timeout=5.0))
    await settings_store.save(Settings(base_url="  ", model=""))

    raw = store.snapshot()
    assert raw["lmBaseUrl"] == DEFAULT_BASE_URL
    assert raw["lmModel"] == DEFAULT_MODEL
    assert "lmApiKeyCiphertext" not in raw
    assert "lmRequestTimeout" not in raw


@pytest.mark.asyncio
async def test_settings_are_reread_on_every_load(store: InMemoryStore, settings_store: SettingsStore) -> None:
    await settings_store.save(Settings(base_url="http://one", model="a"))
    assert (await settings_store.load()).model == "a"

    await store.set({"lmModel": "b"})

    assert (await settings_store.load()).model == "b"


@pytest.mark.asyncio
async def test_environment_overrides_win(
    monkeypatch: pytest.MonkeyPatch, store: InMemoryStore, vault: SecretVault
) -> None:
    settings_store = SettingsStore(store, vault=vault, overrides={"model": "from-cli", "max_tokens": 100})
    await settings_store.save(Settings(base_url="http://stored", model="stored"))
    monkeypatch.setenv("TABDIGEST_BASE_URL", "http://env:9/v1")
    monkeypatch.setenv("TABDIGEST_TEMPERATURE", "0.9")
    monkeypatch.setenv("TABDIGEST_MAX_TOKENS", "not-a-number")
    monkeypatch.setenv("TABDIGEST_DEBUG_LOGGING", "yes")

    settings = await settings_store.load()

    assert settings.base_url == "http://env:9/v1"
    assert settings.model == "from-cli"
    assert settings.temperature == 0.9
    assert settings.max_tokens == 100
    assert settings.debug_logging is True


@pytest.mark.asyncio
async def test_is_configured_from_overrides_or_environment(
    monkeypatch: pytest.MonkeyPatch, store: InMemoryStore, vault: SecretVault
) -> None:
    assert await SettingsStore(store, vault=vault, overrides={"base_url": "http://x"}).is_configured()

    plain = SettingsStore(store, vault=vault)
    assert not await plain.is_configured()
    monkeypatch.setenv("TABDIGEST_MODEL", "env-model")
    assert await plain.is_configured()


@pytest.mark.asyncio
async def test_undecryptable_api_key_is_ignored(tmp_path: Path, store: InMemoryStore) -> None:
    writer = SettingsStore(store, vault=SecretVault(key_path=tmp_path / "a.key"))
    await writer.save(Settings(base_url="http://x", model="m", api_key="secret"))

    reader = SettingsStore(store, vault=SecretVault(key_path=tmp_path / "b.key"))
    settings = await reader.load()

    assert settings.api_key == ""
    assert settings.model == "m"


@pytest.mark.asyncio
async def test_settings_persist_in_json_store(tmp_path: Path, vault: SecretVault) -> None:
    path = tmp_path / "storage.json"
    await SettingsStore(JsonFileStore(path), vault=vault).save(Settings(base_url="http://x", model="m", api_key="k"))

    reloaded = await SettingsStore(JsonFileStore(path), vault=vault).load()

    assert reloaded.api_key == "k"
    assert reloaded.base_url == "http://x"


def test_serialize_redacts_api_key(settings_store: SettingsStore) -> None:
    payload = settings_store.serialize(Settings(base_url="http://x", model="m", api_key="abcdefgh"))

    assert payload["api_key"] == "****efgh"
    assert payload["chat_completions_url"] == "http://x/v1/chat/completions"


def test_redact_secret_short_values() -> None:
    assert redact_secret("") == ""
    assert redact_secret("abc") == "***"


def test_vault_rejects_foreign_tokens(vault: SecretVault) -> None:
    token = vault.encrypt("value")

    assert vault.decrypt(token) == "value"
    assert vault.key_path.exists()
    with pytest.raises(ValueError):
        vault.decrypt("plain:abc")
