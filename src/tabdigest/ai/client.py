"""Async client for OpenAI-compatible chat completion endpoints (LM Studio)."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, cast

import httpx
from openai import AsyncOpenAI, APIConnectionError, RateLimitError
from openai.types.chat import ChatCompletion, ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

__all__ = ["AIClient", "ClientSettings", "RETRYABLE_ERRORS"]

LOGGER = logging.getLogger(__name__)

# Local servers ignore the key, but the SDK refuses to start without one.
_PLACEHOLDER_API_KEY = "lm-studio"

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)


@dataclass(slots=True)
class ClientSettings:
    """Connection parameters for one endpoint.

    ``base_url`` is the API root (already ending in ``/v1``). ``max_retries``
    counts attempts, so the default of 1 sends each request exactly once.
    """

    base_url: str
    model: str
    api_key: str = ""
    request_timeout: float | None = None
    max_retries: int = 1
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


class AIClient:
    """Issues chat completions through :class:`AsyncOpenAI`.

    The SDK's own retry loop is disabled; transient transport failures are
    retried by tenacity according to :class:`ClientSettings`.
    """

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client if client is not None else _open_sdk_client(settings, http_client)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def complete_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **extra_params: Any,
    ) -> ChatCompletion:
        """Send one non-streaming completion request and return the SDK response."""

        request = self._request_body(messages, temperature=temperature, max_tokens=max_tokens)
        request.update(extra_params)
        LOGGER.debug(
            "Chat completion for model %s at %s (%s message(s))",
            request["model"],
            self._settings.base_url,
            len(request["messages"]),
        )
        if self._settings.debug_logging:
            LOGGER.debug("Chat completion request body:\n%s", _dump(request))

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
        )
        response: ChatCompletion | None = None
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    LOGGER.info("Retrying chat completion (attempt %s)", attempt.retry_state.attempt_number)
                response = await self._client.chat.completions.create(**request)
        return cast(ChatCompletion, response)

    async def list_models(self) -> List[str]:
        """Return the model identifiers advertised under ``/models``."""

        page = await self._client.models.list()
        return [model.id for model in page.data if getattr(model, "id", None)]

    async def aclose(self) -> None:
        """Release the SDK client (and the HTTP connection pool it owns)."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        outcome = close()
        if inspect.isawaitable(outcome):
            await outcome

    def _request_body(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        chat = [cast(ChatCompletionMessageParam, dict(message)) for message in messages]
        if not chat:
            raise ValueError("At least one message is required to start a chat")
        body: dict[str, Any] = {"model": self._settings.model, "messages": chat}
        # -1 is meaningful to LM Studio (no limit) and is sent unchanged.
        for name, value in (("temperature", temperature), ("max_tokens", max_tokens)):
            if value is not None:
                body[name] = value
        return body


def _open_sdk_client(settings: ClientSettings, http_client: httpx.AsyncClient | None) -> AsyncOpenAI:
    options: dict[str, Any] = {}
    if settings.request_timeout is not None:
        options["timeout"] = settings.request_timeout
    if settings.default_headers:
        options["default_headers"] = dict(settings.default_headers)
    if http_client is not None:
        options["http_client"] = http_client
    return AsyncOpenAI(
        api_key=settings.api_key or _PLACEHOLDER_API_KEY,
        base_url=settings.base_url,
        max_retries=0,
        **options,
    )


def _dump(payload: Mapping[str, Any]) -> str:
    try:
        return json.dumps(payload, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        return repr(payload)
