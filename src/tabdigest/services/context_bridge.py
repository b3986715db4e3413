"""Delivers requests to per-context workers that may not be installed yet."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

__all__ = ["ContextHost", "ContextBridge", "ContextEndpointMissingError"]

LOGGER = logging.getLogger(__name__)


class ContextEndpointMissingError(RuntimeError):
    """Raised by hosts when no worker answers inside the target context."""


class ContextHost(Protocol):
    """Messaging surface of whatever owns the contexts (browser tabs, etc.)."""

    async def send_message(self, context_id: str, message: Mapping[str, Any]) -> Mapping[str, Any]:  # pragma: no cover - protocol
        ...

    async def install_worker(self, context_id: str) -> None:  # pragma: no cover - protocol
        ...


class ContextBridge:
    """Direct delivery with a single bootstrap-and-retry fallback.

    Contexts opened before the worker was available have no endpoint. The
    first failed delivery installs the worker and retries exactly once; if
    that fails too the caller gets ``{"ok": False, "error": ...}`` instead of
    an exception.
    """

    def __init__(self, host: ContextHost) -> None:
        self._host = host

    async def deliver(self, context_id: str, message: Mapping[str, Any]) -> dict[str, Any]:
        try:
            return dict(await self._host.send_message(context_id, message))
        except Exception as exc:
            LOGGER.debug("Direct delivery to %s failed (%s); installing worker", context_id, exc)

        try:
            await self._host.install_worker(context_id)
            return dict(await self._host.send_message(context_id, message))
        except Exception as exc:
            LOGGER.warning("Worker bootstrap for %s failed: %s", context_id, exc)
            return {"ok": False, "error": f"Could not inject content script: {exc}"}
