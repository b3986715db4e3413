"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from tabdigest.services.job_cache import JobCache
from tabdigest.services.settings import SecretVault, SettingsStore
from tabdigest.services.store import InMemoryStore
from tests.helpers import FakeClock

_ENV_NAMES = (
    "TABDIGEST_BASE_URL",
    "TABDIGEST_MODEL",
    "TABDIGEST_API_KEY",
    "TABDIGEST_TEMPERATURE",
    "TABDIGEST_MAX_TOKENS",
    "TABDIGEST_REQUEST_TIMEOUT",
    "TABDIGEST_DEBUG_LOGGING",
    "TABDIGEST_DEBUG",
    "TABDIGEST_STORE_PATH",
)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TABDIGEST_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(store: InMemoryStore, clock: FakeClock) -> JobCache:
    return JobCache(store, clock=clock)


@pytest.fixture
def vault(tmp_path: Path) -> SecretVault:
    return SecretVault(key_path=tmp_path / "settings.key")


@pytest.fixture
def settings_store(store: InMemoryStore, vault: SecretVault) -> SettingsStore:
    return SettingsStore(store, vault=vault)
