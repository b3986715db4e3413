"""Headless side-panel observer: starts summaries and follows their state.

A panel can be created and destroyed at any time. On every (re)initialization
it re-reads the job cache for the active context and subscribes to changes,
so a result that landed while no panel was open is still shown.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping, Protocol

from ..ai.prompts import join_post_text
from ..content.worker import SCRAPE_ACTION, is_post_url
from ..services.context_bridge import ContextBridge
from ..services.context_events import (
    ContextActivatedEvent,
    ContextEvent,
    ContextEventBus,
    ContextNavigatedEvent,
)
from ..services.job_cache import JobCache, JobEntry, JobStatus
from ..services.notifier import ChangeNotifier
from ..services.router import SummaryRequest
from ..services.settings import SettingsStore
from ..utils.tasks import spawn_background

__all__ = ["PanelState", "SummaryPanel", "CONFIGURE_NOTICE", "NOT_A_POST_NOTICE", "SCRAPE_FAILED_MESSAGE"]

LOGGER = logging.getLogger(__name__)

CONFIGURE_NOTICE = "Please set your LM Studio URL and model first."
NOT_A_POST_NOTICE = "Open a Reddit post to summarize it."
SCRAPE_FAILED_MESSAGE = "Failed to scrape post content."


class _ContextInfo(Protocol):
    id: str
    url: str


class _ActiveContextSource(Protocol):
    async def active_context(self) -> _ContextInfo | None:  # pragma: no cover - protocol
        ...


Dispatch = Callable[[Mapping[str, Any]], Any]
StateListener = Callable[["PanelState"], None]


@dataclass(slots=True)
class PanelState:
    """What the panel would render for the active context."""

    context_id: str | None = None
    on_post_page: bool = False
    output_visible: bool = False
    loading: bool = False
    summary: str | None = None
    error: str | None = None
    button_disabled: bool = False
    notice: str | None = None

    @property
    def error_text(self) -> str | None:
        return f"Error: {self.error}" if self.error is not None else None


class SummaryPanel:
    def __init__(
        self,
        *,
        cache: JobCache,
        notifier: ChangeNotifier,
        bridge: ContextBridge,
        contexts: _ActiveContextSource,
        settings_store: SettingsStore,
        dispatch: Dispatch,
        bus: ContextEventBus | None = None,
        on_change: StateListener | None = None,
    ) -> None:
        self._cache = cache
        self._notifier = notifier
        self._bridge = bridge
        self._contexts = contexts
        self._settings_store = settings_store
        self._dispatch = dispatch
        self._bus = bus
        self._on_change = on_change
        self._state = PanelState()
        self._started = False

    @property
    def state(self) -> PanelState:
        return replace(self._state)

    async def start(self) -> None:
        if not self._started and self._bus is not None:
            self._bus.subscribe(ContextActivatedEvent, self._handle_context_event)
            self._bus.subscribe(ContextNavigatedEvent, self._handle_context_event)
        self._started = True
        await self.refresh()

    def close(self) -> None:
        """Detach from the store and the context bus; running jobs continue."""

        self._notifier.close()
        if self._started and self._bus is not None:
            self._bus.unsubscribe(ContextActivatedEvent, self._handle_context_event)
            self._bus.unsubscribe(ContextNavigatedEvent, self._handle_context_event)
        self._started = False

    async def refresh(self) -> None:
        """Re-resolve the active context and restore its cached job state."""

        context = await self._contexts.active_context()
        is_post = context is not None and is_post_url(context.url)
        self._state = PanelState(
            context_id=context.id if context is not None else None,
            on_post_page=is_post,
        )
        if context is None or not is_post:
            self._notifier.unsubscribe()
            self._emit()
            return

        self._notifier.subscribe(context.id, self.apply_entry)
        entry = await self._cache.read_job(context.id)
        if entry is not None:
            self.apply_entry(entry)
        else:
            self._emit()

    async def request_summary(self) -> bool:
        """Start a summary for the active context; returns whether a job began."""

        context = await self._contexts.active_context()
        if context is None:
            return False
        if not is_post_url(context.url):
            self._state.notice = NOT_A_POST_NOTICE
            self._emit()
            return False
        if not await self._settings_store.is_configured():
            self._state.notice = CONFIGURE_NOTICE
            self._emit()
            return False

        key = context.id
        entry = await self._cache.begin_job(key)
        self.apply_entry(entry)

        scrape = await self._bridge.deliver(key, {"action": SCRAPE_ACTION})
        if not scrape.get("ok"):
            await self._cache.fail_job(key, scrape.get("error") or SCRAPE_FAILED_MESSAGE, generation=entry.generation)
            return True

        text = join_post_text(scrape.get("title"), scrape.get("body"))
        request = SummaryRequest(key=key, text=text, generation=entry.generation)
        ack = self._dispatch(request.to_message())
        if inspect.isawaitable(ack):
            ack = await ack
        if isinstance(ack, Mapping) and not ack.get("ok", False):
            await self._cache.fail_job(key, ack.get("error") or "Summary request was rejected.", generation=entry.generation)
        return True

    def apply_entry(self, entry: JobEntry | None) -> None:
        """Project a cache entry onto the panel state."""

        state = self._state
        if entry is None:
            state.output_visible = False
            state.loading = False
            state.summary = None
            state.error = None
            state.button_disabled = False
            self._emit()
            return
        if entry.key != state.context_id:
            return
        state.output_visible = True
        if entry.status is JobStatus.LOADING:
            state.loading = True
            state.summary = None
            state.error = None
            state.button_disabled = True
        elif entry.status is JobStatus.DONE:
            state.loading = False
            state.summary = entry.result
            state.error = None
            state.button_disabled = False
        elif entry.status is JobStatus.ERROR:
            state.loading = False
            state.summary = None
            state.error = entry.error_message
            state.button_disabled = False
        self._emit()

    def _handle_context_event(self, event: ContextEvent) -> None:
        if isinstance(event, ContextNavigatedEvent) and event.context_id != self._state.context_id:
            return
        spawn_background(self.refresh(), name=f"panel-refresh-{event.context_id}")

    def _emit(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.state)
        except Exception:  # pragma: no cover - listener isolation
            LOGGER.exception("Panel state listener failed")
