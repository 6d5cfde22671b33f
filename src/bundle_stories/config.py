"""Runtime configuration for the story cache, refresh, and feed health."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

MAX_DELETE_BATCH_SIZE = 100


@dataclass(slots=True)
class CacheSettings:
    """Story cache and reader settings."""

    staleness_window_seconds: int = 3_600
    page_size: int = 50
    top_sources_limit: int = 10


@dataclass(slots=True)
class RefreshSettings:
    """Refresh orchestration settings."""

    adapter_timeout_seconds: float = 20.0
    max_concurrency: int = 8
    auto_refresh_interval_seconds: int = 3_600


@dataclass(slots=True)
class HealthSettings:
    """Dead-feed policy thresholds."""

    error_threshold: int = 5
    dead_after_days: int = 30
    delete_batch_size: int = MAX_DELETE_BATCH_SIZE


@dataclass(slots=True)
class BridgeSettings:
    """JSON bridge used by source adapters."""

    base_url: str = "http://localhost:3000"
    api_token: str | None = None
    max_retries: int = 2


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".bundle_stories.db")
    cache: CacheSettings = field(default_factory=CacheSettings)
    refresh: RefreshSettings = field(default_factory=RefreshSettings)
    health: HealthSettings = field(default_factory=HealthSettings)
    bridge: BridgeSettings = field(default_factory=BridgeSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("BUNDLE_STORIES_DB_PATH", ".bundle_stories.db")),
            cache=CacheSettings(
                staleness_window_seconds=int(
                    os.getenv("BUNDLE_STORIES_STALENESS_WINDOW_SECONDS", "3600"),
                ),
                page_size=int(os.getenv("BUNDLE_STORIES_PAGE_SIZE", "50")),
                top_sources_limit=int(os.getenv("BUNDLE_STORIES_TOP_SOURCES_LIMIT", "10")),
            ),
            refresh=RefreshSettings(
                adapter_timeout_seconds=float(
                    os.getenv("BUNDLE_STORIES_ADAPTER_TIMEOUT_SECONDS", "20.0"),
                ),
                max_concurrency=int(os.getenv("BUNDLE_STORIES_MAX_CONCURRENCY", "8")),
                auto_refresh_interval_seconds=int(
                    os.getenv("BUNDLE_STORIES_AUTO_REFRESH_INTERVAL_SECONDS", "3600"),
                ),
            ),
            health=HealthSettings(
                error_threshold=int(os.getenv("BUNDLE_STORIES_ERROR_THRESHOLD", "5")),
                dead_after_days=int(os.getenv("BUNDLE_STORIES_DEAD_AFTER_DAYS", "30")),
                delete_batch_size=int(
                    os.getenv("BUNDLE_STORIES_DELETE_BATCH_SIZE", str(MAX_DELETE_BATCH_SIZE)),
                ),
            ),
            bridge=BridgeSettings(
                base_url=os.getenv("BUNDLE_STORIES_BRIDGE_BASE_URL", "http://localhost:3000"),
                api_token=os.getenv("BUNDLE_STORIES_BRIDGE_API_TOKEN") or None,
                max_retries=int(os.getenv("BUNDLE_STORIES_BRIDGE_MAX_RETRIES", "2")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any policy value is out of range."""

        if self.cache.staleness_window_seconds <= 0:
            raise ValueError("BUNDLE_STORIES_STALENESS_WINDOW_SECONDS must be > 0.")
        if self.cache.page_size <= 0:
            raise ValueError("BUNDLE_STORIES_PAGE_SIZE must be > 0.")
        if self.cache.top_sources_limit <= 0:
            raise ValueError("BUNDLE_STORIES_TOP_SOURCES_LIMIT must be > 0.")
        if self.refresh.adapter_timeout_seconds <= 0:
            raise ValueError("BUNDLE_STORIES_ADAPTER_TIMEOUT_SECONDS must be > 0.")
        if self.refresh.max_concurrency <= 0:
            raise ValueError("BUNDLE_STORIES_MAX_CONCURRENCY must be > 0.")
        if self.refresh.auto_refresh_interval_seconds <= 0:
            raise ValueError("BUNDLE_STORIES_AUTO_REFRESH_INTERVAL_SECONDS must be > 0.")
        if self.health.error_threshold <= 0:
            raise ValueError("BUNDLE_STORIES_ERROR_THRESHOLD must be > 0.")
        if self.health.dead_after_days <= 0:
            raise ValueError("BUNDLE_STORIES_DEAD_AFTER_DAYS must be > 0.")
        if not 1 <= self.health.delete_batch_size <= MAX_DELETE_BATCH_SIZE:
            raise ValueError(
                "BUNDLE_STORIES_DELETE_BATCH_SIZE must be between 1 and "
                f"{MAX_DELETE_BATCH_SIZE}.",
            )
        if self.bridge.max_retries < 0:
            raise ValueError("BUNDLE_STORIES_BRIDGE_MAX_RETRIES must be >= 0.")
        _validate_base_url(self.bridge.base_url)


def _validate_base_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid bridge base URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
