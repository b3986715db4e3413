"""Wires the store, cache, workers and observers into one runtime."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from .ai.client import AIClient, ClientSettings
from .ai.services.summarizer import SummaryExecutor
from .services.context_bridge import ContextBridge
from .services.context_host import LocalContextHost
from .services.job_cache import SUMMARY_TTL_SECONDS, JobCache
from .services.lifecycle import ContextLifecycleManager
from .services.notifier import ChangeNotifier
from .services.router import MessageRouter
from .services.settings import SecretVault, SettingsStore
from .services.store import KeyValueStore
from .ui.summary_panel import PanelState, SummaryPanel

__all__ = ["SummaryRuntime", "build_runtime"]


@dataclass(slots=True)
class SummaryRuntime:
    """Process-wide collaborators sharing a single key/value store.

    Panels are not part of the runtime: each call to :meth:`create_panel`
    builds an independent observer with its own notifier, the way a side panel
    is opened and closed independently of the background worker.
    """

    store: KeyValueStore
    cache: JobCache
    settings_store: SettingsStore
    host: LocalContextHost
    bridge: ContextBridge
    executor: SummaryExecutor
    router: MessageRouter
    lifecycle: ContextLifecycleManager

    def create_panel(self, *, on_change: Callable[[PanelState], None] | None = None) -> SummaryPanel:
        return SummaryPanel(
            cache=self.cache,
            notifier=ChangeNotifier(self.store),
            bridge=self.bridge,
            contexts=self.host,
            settings_store=self.settings_store,
            dispatch=self.router.handle_message,
            bus=self.host.bus,
            on_change=on_change,
        )

    def shutdown(self) -> None:
        self.lifecycle.detach()


def build_runtime(
    store: KeyValueStore,
    *,
    host: LocalContextHost | None = None,
    vault: SecretVault | None = None,
    client_factory: Callable[[ClientSettings], Any] | None = None,
    ttl_seconds: float = SUMMARY_TTL_SECONDS,
    settings_overrides: Mapping[str, Any] | None = None,
) -> SummaryRuntime:
    cache = JobCache(store, ttl_seconds=ttl_seconds)
    settings_store = SettingsStore(store, vault=vault, overrides=settings_overrides)
    context_host = host or LocalContextHost()
    executor = SummaryExecutor(cache, settings_store, client_factory=client_factory or AIClient)
    lifecycle = ContextLifecycleManager(cache, context_host.bus)
    lifecycle.attach()
    return SummaryRuntime(
        store=store,
        cache=cache,
        settings_store=settings_store,
        host=context_host,
        bridge=ContextBridge(context_host),
        executor=executor,
        router=MessageRouter(executor),
        lifecycle=lifecycle,
    )
