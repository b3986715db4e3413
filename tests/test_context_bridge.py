"""Tests for delivery with on-demand worker bootstrap."""

from __future__ import annotations

from typing import Any, Mapping

import pytest

from tabdigest.content.worker import PostPage
from tabdigest.services.context_bridge import ContextBridge, ContextEndpointMissingError
from tabdigest.services.context_host import LocalContextHost


class _FlakyHost:
    def __init__(self, *, install_error: Exception | None = None, fail_sends: int = 1) -> None:
        self.install_error = install_error
        self.fail_sends = fail_sends
        self.sent: list[Mapping[str, Any]] = []
        self.installs = 0

    async def send_message(self, context_id: str, message: Mapping[str, Any]) -> Mapping[str, Any]:
        self.sent.append(message)
        if len(self.sent) <= self.fail_sends:
            raise ContextEndpointMissingError("Receiving end does not exist.")
        return {"ok": True, "title": "T", "body": "B"}

    async def install_worker(self, context_id: str) -> None:
        self.installs += 1
        if self.install_error is not None:
            raise self.install_error


@pytest.mark.asyncio
async def test_direct_delivery_does_not_install() -> None:
    host = _FlakyHost(fail_sends=0)

    response = await ContextBridge(host).deliver("t1", {"action": "scrapePost"})

    assert response == {"ok": True, "title": "T", "body": "B"}
    assert host.installs == 0


@pytest.mark.asyncio
async def test_missing_endpoint_installs_and_retries_once() -> None:
    host = _FlakyHost(fail_sends=1)

    response = await ContextBridge(host).deliver("t1", {"action": "scrapePost"})

    assert response["ok"] is True
    assert host.installs == 1
    assert len(host.sent) == 2


@pytest.mark.asyncio
async def test_failed_retry_returns_error_instead_of_raising() -> None:
    host = _FlakyHost(fail_sends=5)

    response = await ContextBridge(host).deliver("t1", {"action": "scrapePost"})

    assert response == {
        "ok": False,
        "error": "Could not inject content script: Receiving end does not exist.",
    }
    assert len(host.sent) == 2


@pytest.mark.asyncio
async def test_install_failure_is_reported() -> None:
    host = _FlakyHost(install_error=PermissionError("Cannot access contents of the page"))

    response = await ContextBridge(host).deliver("t1", {"action": "scrapePost"})

    assert response == {
        "ok": False,
        "error": "Could not inject content script: Cannot access contents of the page",
    }


@pytest.mark.asyncio
async def test_bridge_bootstraps_local_context_worker() -> None:
    host = LocalContextHost()
    context = host.open_context(
        "https://www.reddit.com/r/python/comments/abc/title/",
        page=PostPage(title="Title", body="Body"),
        context_id="t1",
    )
    assert not context.has_worker

    response = await ContextBridge(host).deliver("t1", {"action": "scrapePost"})

    assert response == {"ok": True, "title": "Title", "body": "Body"}
    assert context.has_worker


@pytest.mark.asyncio
async def test_bridge_relays_worker_scrape_error() -> None:
    host = LocalContextHost()
    host.open_context("https://www.reddit.com/r/python/comments/abc/", page=None, context_id="t1", with_worker=True)

    response = await ContextBridge(host).deliver("t1", {"action": "scrapePost"})

    assert response["ok"] is False
    assert response["error"].startswith("Could not find post content.")


@pytest.mark.asyncio
async def test_unknown_context_yields_injection_error() -> None:
    response = await ContextBridge(LocalContextHost()).deliver("ghost", {"action": "scrapePost"})

    assert response["ok"] is False
    assert response["error"].startswith("Could not inject content script:")
