"""Endpoint settings persisted in the shared key/value store.

Precedence, lowest first: dataclass defaults, persisted values, overrides
passed to :class:`SettingsStore` (the CLI's ``--set``), ``TABDIGEST_*``
environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from .store import KeyValueStore

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "DEFAULT_BASE_URL",
    "DEFAULT_MODEL",
    "normalize_base_url",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:1234"
DEFAULT_MODEL = "local-model"
_API_ROOT = "/v1"
_CHAT_COMPLETIONS_PATH = "/chat/completions"
_DEFAULT_KEY_PATH = Path.home() / ".tabdigest" / "settings.key"

# Settings field -> storage key. lmBaseUrl/lmModel are the keys the panel
# has always written.
_STORAGE_KEYS: Mapping[str, str] = {
    "base_url": "lmBaseUrl",
    "model": "lmModel",
    "temperature": "lmTemperature",
    "max_tokens": "lmMaxTokens",
    "request_timeout": "lmRequestTimeout",
}
_API_KEY_STORAGE_KEY = "lmApiKeyCiphertext"
_TRUTHY = frozenset({"1", "true", "yes", "on", "debug"})


def _as_flag(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in _TRUTHY


def _as_optional_float(raw: Any) -> float | None:
    return None if raw is None else float(raw)


# Field -> converter applied to persisted values, overrides and environment
# variables alike.
_CONVERTERS: Mapping[str, Callable[[Any], Any]] = {
    "base_url": str,
    "model": str,
    "api_key": str,
    "temperature": float,
    "max_tokens": int,
    "request_timeout": _as_optional_float,
    "debug_logging": _as_flag,
}
_ENVIRONMENT: Mapping[str, str] = {
    "TABDIGEST_BASE_URL": "base_url",
    "TABDIGEST_MODEL": "model",
    "TABDIGEST_API_KEY": "api_key",
    "TABDIGEST_TEMPERATURE": "temperature",
    "TABDIGEST_MAX_TOKENS": "max_tokens",
    "TABDIGEST_REQUEST_TIMEOUT": "request_timeout",
    "TABDIGEST_DEBUG_LOGGING": "debug_logging",
}


def normalize_base_url(raw: str | None) -> str:
    """Return the API root for *raw*, always ending in exactly one ``/v1``.

    Accepts both ``http://host:1234`` and ``http://host:1234/v1`` (with or
    without a trailing slash).
    """

    base = (raw or "").strip() or DEFAULT_BASE_URL
    base = base.removesuffix("/").removesuffix(_API_ROOT)
    return base + _API_ROOT


@dataclass(slots=True)
class Settings:
    """User-configurable endpoint settings."""

    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    api_key: str = ""
    temperature: float = 0.3
    max_tokens: int = 300
    request_timeout: float | None = None
    debug_logging: bool = False

    @property
    def api_base_url(self) -> str:
        return normalize_base_url(self.base_url)

    @property
    def chat_completions_url(self) -> str:
        return self.api_base_url + _CHAT_COMPLETIONS_PATH

    @property
    def model_name(self) -> str:
        return (self.model or "").strip() or DEFAULT_MODEL


class SecretVault:
    """Fernet encryption for the optional API key.

    Ciphertexts are stored as ``fernet:<token>``. The key file is created on
    first use with owner-only permissions.
    """

    prefix = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or _DEFAULT_KEY_PATH
        self._cipher: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.prefix}:{token}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, separator, payload = token.partition(":")
        if prefix != self.prefix or not separator or not payload:
            raise ValueError(f"Unsupported secret token prefix {prefix!r}")
        try:
            return self._fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError(f"API key was encrypted with a different key than {self._key_path}") from exc

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._read_key() or self._write_new_key())
        return self._cipher

    def _read_key(self) -> bytes | None:
        try:
            return self._key_path.read_bytes().strip() or None
        except FileNotFoundError:
            return None

    def _write_new_key(self) -> bytes:
        key = Fernet.generate_key()
        self._key_path.parent.mkdir(parents=True, exist_ok=True)
        staging = self._key_path.with_name(self._key_path.name + ".new")
        staging.write_bytes(key)
        if os.name == "posix":  # pragma: no branch - permissions are POSIX only
            staging.chmod(0o600)
        staging.replace(self._key_path)
        LOGGER.debug("Created settings key at %s", self._key_path)
        return key


class SettingsStore:
    """Reads and writes :class:`Settings` through the shared key/value store.

    Settings are re-read on every :meth:`load`; callers must not cache them
    across jobs because the configuration surface may change them at any time.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        vault: SecretVault | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> None:
        self._store = store
        self._vault = vault or SecretVault()
        self._overrides: Dict[str, Any] = dict(overrides or {})

    @property
    def vault(self) -> SecretVault:
        return self._vault

    async def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load persisted settings, then apply CLI and environment overrides."""

        stored = await self._store.get([*_STORAGE_KEYS.values(), _API_KEY_STORAGE_KEY])
        persisted = {
            name: stored[key] for name, key in _STORAGE_KEYS.items() if stored.get(key) not in (None, "")
        }
        settings = _merge(Settings(), persisted, origin="store")

        ciphertext = stored.get(_API_KEY_STORAGE_KEY)
        if ciphertext:
            try:
                settings.api_key = self._vault.decrypt(ciphertext)
            except ValueError as exc:
                LOGGER.warning("Ignoring stored API key: %s", exc)

        settings = _merge(settings, {**self._overrides, **(overrides or {})}, origin="command line")
        return _merge(settings, _environment_values(), origin="environment")

    async def save(self, settings: Settings) -> None:
        """Persist *settings*; blank URL/model fall back to the defaults."""

        items: Dict[str, Any] = {
            "lmBaseUrl": (settings.base_url or "").strip() or DEFAULT_BASE_URL,
            "lmModel": (settings.model or "").strip() or DEFAULT_MODEL,
            "lmTemperature": float(settings.temperature),
            "lmMaxTokens": int(settings.max_tokens),
        }
        stale: list[str] = []
        if settings.request_timeout is None:
            stale.append("lmRequestTimeout")
        else:
            items["lmRequestTimeout"] = float(settings.request_timeout)
        if settings.api_key:
            items[_API_KEY_STORAGE_KEY] = self._vault.encrypt(settings.api_key)
        else:
            stale.append(_API_KEY_STORAGE_KEY)

        await self._store.set(items)
        await self._store.remove(stale)
        LOGGER.info("Saved endpoint settings (base_url=%s, model=%s)", items["lmBaseUrl"], items["lmModel"])

    async def is_configured(self) -> bool:
        """Return ``True`` once an endpoint URL or model was supplied anywhere."""

        stored = await self._store.get([_STORAGE_KEYS["base_url"], _STORAGE_KEYS["model"]])
        if any(stored.values()):
            return True
        if self._overrides.get("base_url") or self._overrides.get("model"):
            return True
        return any(os.environ.get(name) for name in ("TABDIGEST_BASE_URL", "TABDIGEST_MODEL"))

    def serialize(self, settings: Settings) -> Dict[str, Any]:
        """Return a JSON-friendly view of *settings* with the API key redacted."""

        view = asdict(settings)
        view["api_key"] = redact_secret(settings.api_key)
        view["chat_completions_url"] = settings.chat_completions_url
        return view


def _merge(settings: Settings, values: Mapping[str, Any], *, origin: str) -> Settings:
    known = {field.name for field in fields(Settings)}
    converted: Dict[str, Any] = {}
    for name, raw in values.items():
        if name not in known or raw is None:
            continue
        try:
            converted[name] = _CONVERTERS[name](raw)
        except (TypeError, ValueError):
            LOGGER.warning("Ignoring %s value %r for %s", origin, raw, name)
    if not converted:
        return settings
    LOGGER.debug("Applying %s settings: %s", origin, sorted(converted))
    return replace(settings, **converted)


def _environment_values() -> Dict[str, str]:
    return {field: os.environ[name] for name, field in _ENVIRONMENT.items() if name in os.environ}


def redact_secret(value: str) -> str:
    """Mask all but the last four characters of *value*."""

    secret = (value or "").strip()
    if len(secret) <= 4:
        return "*" * len(secret)
    return "*" * (len(secret) - 4) + secret[-4:]
