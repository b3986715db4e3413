"""Shared test helpers and stub classes."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, List, Mapping

import httpx

from tabdigest.utils.tasks import pending_background_tasks

DEFAULT_NOW_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now_ms: int = DEFAULT_NOW_MS) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)


async def settle(rounds: int = 5) -> None:
    """Let fire-and-forget tasks (and the tasks they spawn) run to completion."""

    for _ in range(rounds):
        tasks = pending_background_tasks()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await asyncio.sleep(0)


def chat_completion_payload(content: str | None, *, model: str = "local-model") -> dict[str, Any]:
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 1_700_000_000,
        "model": model,
        "choices": [
            {
                "index": 0,
                "finish_reason": "stop",
                "message": {"role": "assistant", "content": content},
            }
        ],
    }


class RecordingTransport:
    """Collects requests and answers them through *responder*."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self._responder = responder
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    def json_bodies(self) -> List[Mapping[str, Any]]:
        return [json.loads(request.content) for request in self.requests]

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))
