"""Tests for the background message router."""

from __future__ import annotations

import pytest

from tabdigest.services.router import InvalidRequestError, MessageRouter, SummaryRequest
from tests.helpers import settle


class _RecordingExecutor:
    def __init__(self) -> None:
        self.calls: list[tuple[object, str, str | None]] = []

    async def run(self, key: object, text: str, *, generation: str | None = None) -> None:
        self.calls.append((key, text, generation))


@pytest.mark.asyncio
async def test_summarize_request_is_acknowledged_and_run() -> None:
    executor = _RecordingExecutor()
    router = MessageRouter(executor)

    ack = router.handle_message({"action": "summarize", "type": "post", "text": "Body", "key": 7, "generation": "g1"})

    assert ack == {"ok": True}
    assert executor.calls == []
    await settle()
    assert executor.calls == [("7", "Body", "g1")]


@pytest.mark.asyncio
async def test_other_messages_are_ignored() -> None:
    executor = _RecordingExecutor()
    router = MessageRouter(executor)

    assert router.handle_message({"action": "scrapePost"}) is None
    assert router.handle_message({"action": "summarize", "type": "comment", "text": "x", "key": 1}) is None
    await settle()
    assert executor.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "message",
    [
        {"action": "summarize", "type": "post", "text": "Body"},
        {"action": "summarize", "type": "post", "text": "   ", "key": 1},
        {"action": "summarize", "type": "post", "key": 1},
    ],
)
async def test_invalid_requests_are_rejected(message: dict) -> None:
    executor = _RecordingExecutor()

    ack = MessageRouter(executor).handle_message(message)

    assert ack is not None and ack["ok"] is False
    assert ack["error"]
    await settle()
    assert executor.calls == []


def test_router_without_event_loop_reports_failure() -> None:
    ack = MessageRouter(_RecordingExecutor()).handle_message(
        {"action": "summarize", "type": "post", "text": "Body", "key": "t1"}
    )

    assert ack == {"ok": False, "error": "No running event loop to execute the request"}


def test_summary_request_message_shape() -> None:
    request = SummaryRequest(key="t1", text="Body", generation="g")

    assert request.to_message() == {
        "action": "summarize",
        "type": "post",
        "text": "Body",
        "key": "t1",
        "generation": "g",
    }
    assert SummaryRequest.from_message(request.to_message()) == request
    with pytest.raises(InvalidRequestError):
        SummaryRequest.from_message({"text": "Body"})
