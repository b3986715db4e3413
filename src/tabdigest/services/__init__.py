"""Service layer: store, job cache, notification, bridging and lifecycle."""

from .context_bridge import ContextBridge, ContextEndpointMissingError, ContextHost
from .job_cache import SUMMARY_TTL_SECONDS, JobCache, JobEntry, JobStatus, summary_key
from .notifier import ChangeNotifier, Subscription
from .store import InMemoryStore, JsonFileStore, KeyValueStore, StorageChange

__all__ = [
    "ChangeNotifier",
    "ContextBridge",
    "ContextEndpointMissingError",
    "ContextHost",
    "InMemoryStore",
    "JobCache",
    "JobEntry",
    "JobStatus",
    "JsonFileStore",
    "KeyValueStore",
    "StorageChange",
    "SUMMARY_TTL_SECONDS",
    "Subscription",
    "summary_key",
]
