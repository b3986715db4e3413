"""Content worker answering ``scrapePost`` requests inside one context."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping

__all__ = [
    "POST_URL_PATTERN",
    "SCRAPE_ACTION",
    "PostPage",
    "PostNotFoundError",
    "ContentWorker",
    "is_post_url",
    "scrape_post",
]

LOGGER = logging.getLogger(__name__)

POST_URL_PATTERN = re.compile(r"^https://www\.reddit\.com/r/[^/]+/comments/")
SCRAPE_ACTION = "scrapePost"


def is_post_url(url: str | None) -> bool:
    """Return ``True`` when *url* points at a single post page."""

    return bool(url) and POST_URL_PATTERN.match(url or "") is not None


class PostNotFoundError(LookupError):
    """Raised when a page carries neither a title nor a body."""


@dataclass(slots=True, frozen=True)
class PostPage:
    """Already-extracted text of the page loaded in a context."""

    title: str = ""
    body: str = ""


def scrape_post(page: PostPage | None) -> dict[str, str]:
    title = (page.title if page else "").strip()
    body = (page.body if page else "").strip()
    if not title and not body:
        raise PostNotFoundError("Could not find post content. Make sure you are on a Reddit post page.")
    return {"title": title, "body": body}


class ContentWorker:
    """Message endpoint installed into a context on demand."""

    def __init__(self, page: PostPage | None) -> None:
        self._page = page

    def handle_message(self, message: Mapping[str, Any]) -> dict[str, Any] | None:
        if message.get("action") != SCRAPE_ACTION:
            return None
        try:
            result = scrape_post(self._page)
        except PostNotFoundError as exc:
            LOGGER.debug("Scrape failed: %s", exc)
            return {"ok": False, "error": str(exc)}
        return {"ok": True, **result}
