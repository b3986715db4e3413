"""Background message handler that starts summarization jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from ..utils.tasks import spawn_background

__all__ = ["SummaryRequest", "MessageRouter", "InvalidRequestError"]

LOGGER = logging.getLogger(__name__)

SUMMARIZE_ACTION = "summarize"
POST_REQUEST_TYPE = "post"


class InvalidRequestError(ValueError):
    """Raised when a summarize message is missing required fields."""


class _Executor(Protocol):
    async def run(self, key: object, text: str, *, generation: str | None = None) -> None:  # pragma: no cover - protocol
        ...


@dataclass(slots=True, frozen=True)
class SummaryRequest:
    """``{action: "summarize", type: "post", text, key}`` as a typed value."""

    key: str
    text: str
    generation: str | None = None

    @classmethod
    def from_message(cls, message: Mapping[str, Any]) -> "SummaryRequest":
        key = message.get("key")
        if key is None or str(key) == "":
            raise InvalidRequestError("Summarize request is missing a key")
        text = message.get("text")
        if not isinstance(text, str) or not text.strip():
            raise InvalidRequestError("Summarize request has no text")
        generation = message.get("generation")
        return cls(
            key=str(key),
            text=text,
            generation=str(generation) if generation is not None else None,
        )

    def to_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {
            "action": SUMMARIZE_ACTION,
            "type": POST_REQUEST_TYPE,
            "text": self.text,
            "key": self.key,
        }
        if self.generation is not None:
            message["generation"] = self.generation
        return message


class MessageRouter:
    """Acknowledges summarize requests and runs the executor out-of-band.

    The acknowledgement never carries the summary; observers read it from the
    job cache under the request's key.
    """

    def __init__(self, executor: _Executor) -> None:
        self._executor = executor

    def handle_message(self, message: Mapping[str, Any]) -> dict[str, Any] | None:
        if message.get("action") != SUMMARIZE_ACTION or message.get("type") != POST_REQUEST_TYPE:
            return None
        try:
            request = SummaryRequest.from_message(message)
        except InvalidRequestError as exc:
            LOGGER.warning("Rejected summarize request: %s", exc)
            return {"ok": False, "error": str(exc)}
        task = spawn_background(
            self._executor.run(request.key, request.text, generation=request.generation),
            name=f"summarize-{request.key}",
        )
        if task is None:
            return {"ok": False, "error": "No running event loop to execute the request"}
        LOGGER.debug("Accepted summarize request for %s", request.key)
        return {"ok": True}
