"""Job executor that summarizes text through the configured endpoint.

The executor never hands its outcome back to the caller. It writes ``done`` or
``error`` into the :class:`~tabdigest.services.job_cache.JobCache`, which is
the only channel observers read from, so a job keeps running (and its result
stays visible) even after the panel that started it has gone away.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

import httpx
from openai import APIConnectionError, APIStatusError

from ...services.job_cache import JobCache
from ...services.settings import Settings, SettingsStore
from ..client import AIClient, ClientSettings
from ..prompts import build_summary_messages

__all__ = ["SummaryExecutor", "extract_summary", "EMPTY_SUMMARY_MESSAGE"]

LOGGER = logging.getLogger(__name__)

EMPTY_SUMMARY_MESSAGE = "No summary returned from the model."

ClientFactory = Callable[[ClientSettings], AIClient]


def extract_summary(response: Any) -> str:
    """Return the first choice's message content, or ``""`` when missing."""

    choices = _lookup(response, "choices")
    if not choices:
        return ""
    message = _lookup(choices[0], "message")
    content = _lookup(message, "content") if message is not None else None
    if not isinstance(content, str):
        return ""
    return content.strip()


def _lookup(value: Any, name: str) -> Any:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return value.get(name)
    return getattr(value, name, None)


class SummaryExecutor:
    """Runs one summarization per invocation: ``loading -> done | error``."""

    def __init__(
        self,
        cache: JobCache,
        settings_store: SettingsStore,
        *,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._cache = cache
        self._settings_store = settings_store
        self._client_factory = client_factory or AIClient

    async def run(self, key: object, text: str, *, generation: str | None = None) -> None:
        settings = await self._settings_store.load()
        outcome, failed = await self._summarize(settings, text)
        if failed:
            await self._cache.fail_job(key, outcome, generation=generation)
        else:
            await self._cache.complete_job(key, outcome, generation=generation)

    async def _summarize(self, settings: Settings, text: str) -> tuple[str, bool]:
        endpoint = settings.chat_completions_url
        client = self._client_factory(
            ClientSettings(
                base_url=settings.api_base_url,
                model=settings.model_name,
                api_key=settings.api_key,
                request_timeout=settings.request_timeout,
                max_retries=1,
                debug_logging=settings.debug_logging,
            )
        )
        LOGGER.info("Summarizing %s chars via %s (model=%s)", len(text), endpoint, settings.model_name)
        try:
            response = await client.complete_chat(
                build_summary_messages(text),
                temperature=settings.temperature,
                max_tokens=settings.max_tokens,
            )
        except APIStatusError as exc:
            return f"LM Studio error {exc.status_code}: {_response_text(exc)}", True
        except (APIConnectionError, httpx.TransportError) as exc:
            return f"Could not reach LM Studio at {endpoint}: {exc}", True
        except Exception as exc:
            LOGGER.exception("Summary request to %s failed", endpoint)
            return str(exc) or exc.__class__.__name__, True
        finally:
            await client.aclose()

        summary = extract_summary(response)
        if not summary:
            return EMPTY_SUMMARY_MESSAGE, True
        return summary, False


def _response_text(exc: APIStatusError) -> str:
    try:
        return exc.response.text
    except Exception:  # pragma: no cover - body already consumed or undecodable
        return exc.message
