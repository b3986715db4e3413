"""Per-context content worker that extracts post text."""

from .worker import POST_URL_PATTERN, ContentWorker, PostNotFoundError, PostPage, is_post_url, scrape_post

__all__ = [
    "POST_URL_PATTERN",
    "ContentWorker",
    "PostNotFoundError",
    "PostPage",
    "is_post_url",
    "scrape_post",
]
