"""Error taxonomy shared by cache, feed health, and source adapters."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class StoryCacheError(Exception):
    """Base error with a short, user-presentable message."""

    message: str
    code: str = "story_cache_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class AdapterFetchError(StoryCacheError):
    """Network or parse failure for one source; never fatal to a refresh."""

    code: str = "adapter_fetch_error"
    feed_id: str | None = None


@dataclass(slots=True)
class StorageError(StoryCacheError):
    """Cache read/write failure; aborts the current operation."""

    code: str = "storage_error"


@dataclass(slots=True)
class ConfigurationError(StoryCacheError):
    """Missing or malformed bundle id or source descriptor."""

    code: str = "configuration_error"


@dataclass(slots=True)
class HealthTrackingError(StoryCacheError):
    """Failure to record source health; always swallowed by the tracker."""

    code: str = "health_tracking_error"
