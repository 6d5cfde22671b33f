"""Controllers for story cache CLI commands."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from bundle_stories.cache.models import (
    BundleStoryCache,
    RefreshConfig,
    RefreshResult,
    RefreshStatus,
    SortBy,
    StoryFilter,
)
from bundle_stories.cache.reader import CacheReader
from bundle_stories.cache.refresh import CacheRefreshOrchestrator, is_stale
from bundle_stories.cache.repository import SQLiteStoryCacheRepository
from bundle_stories.config import BridgeSettings, Settings
from bundle_stories.feeds.health import FeedHealthTracker
from bundle_stories.feeds.repository import SQLiteFeedRepository
from bundle_stories.sources.base import AdapterRegistry
from bundle_stories.sources.bridge import build_bridge_adapters

AdaptersFactory = Callable[[BridgeSettings], AdapterRegistry]


@dataclass(slots=True)
class CacheRefreshCommand:
    """CLI inputs for cache refresh command."""

    db_path: Path | None
    bundle_id: str
    feed_ids: tuple[str, ...]
    search_terms: tuple[str, ...]


@dataclass(slots=True)
class CacheBundleCommand:
    """CLI inputs for commands addressing one bundle cache."""

    db_path: Path | None
    bundle_id: str


@dataclass(slots=True)
class CacheShowCommand:
    """CLI inputs for cache show command."""

    db_path: Path | None
    bundle_id: str
    limit: int | None
    offset: int
    sort_by: SortBy
    source: str | None


@dataclass(slots=True)
class CacheListCommand:
    """CLI inputs for cache list command."""

    db_path: Path | None


@dataclass(slots=True)
class CacheCommandOutput:
    """Printable lines and overall success flag."""

    lines: list[str] = field(default_factory=list)
    success: bool = True


@dataclass(slots=True)
class _CacheRuntime:
    settings: Settings
    store: SQLiteStoryCacheRepository
    tracker: FeedHealthTracker
    orchestrator: CacheRefreshOrchestrator
    reader: CacheReader


class CacheCliController:
    """Coordinates story cache command execution."""

    def __init__(self, adapters_factory: AdaptersFactory = build_bridge_adapters) -> None:
        self._adapters_factory = adapters_factory

    def refresh(self, command: CacheRefreshCommand) -> CacheCommandOutput:
        with self._runtime(command.db_path) as runtime:
            existing = runtime.store.get_or_create(command.bundle_id)
            config = RefreshConfig(
                search_terms=list(command.search_terms or existing.metadata.search_terms),
                selected_feed_ids=list(command.feed_ids or existing.metadata.selected_feed_ids),
            )
            result = runtime.orchestrator.refresh(command.bundle_id, config)
        return _refresh_output(result)

    def refresh_stale(self, command: CacheBundleCommand) -> CacheCommandOutput:
        with self._runtime(command.db_path) as runtime:
            result = runtime.orchestrator.refresh_if_stale(command.bundle_id)
        if result is None:
            return CacheCommandOutput(lines=[f"Cache for bundle {command.bundle_id} is fresh."])
        return _refresh_output(result)

    def show(self, command: CacheShowCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            cache = runtime.store.load(command.bundle_id)
            page = runtime.reader.read(
                command.bundle_id,
                limit=(
                    command.limit
                    if command.limit is not None
                    else runtime.settings.cache.page_size
                ),
                offset=command.offset,
                sort_by=command.sort_by,
                story_filter=StoryFilter(source=command.source) if command.source else None,
            )
            stale = runtime.orchestrator.is_stale(cache) if cache is not None else True

        if cache is None:
            return [f"No cache for bundle {command.bundle_id}."]

        lines = [
            f"Bundle: {cache.bundle_id} stories={cache.metadata.total_story_count} "
            f"last_refresh={cache.last_refresh_time.isoformat()} "
            f"stale={'yes' if stale else 'no'}",
        ]
        if cache.summary.top_sources:
            lines.append(
                "Top sources: "
                + ", ".join(f"{item.name}={item.count}" for item in cache.summary.top_sources),
            )
        lines.append(
            f"Showing {len(page.stories)} of {page.total} "
            f"(offset={command.offset} sort={command.sort_by.value} "
            f"more={'yes' if page.has_more else 'no'})",
        )
        for story in page.stories:
            published = story.published_at.isoformat() if story.published_at else "-"
            lines.append(
                f"  [{story.source_type.value}] {published} {story.source_name}: "
                f"{story.title} <{story.url}>",
            )
        return lines

    def clear(self, command: CacheBundleCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            cache = runtime.store.clear(command.bundle_id)
        return [
            f"Cleared cache for bundle {cache.bundle_id} "
            f"(last_refresh={cache.last_refresh_time.isoformat()})",
        ]

    def invalidate(self, command: CacheBundleCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            cache = runtime.store.invalidate(command.bundle_id)
        invalidated_at = cache.cache_invalidated_at
        return [
            f"Invalidated cache for bundle {cache.bundle_id} at "
            f"{invalidated_at.isoformat() if invalidated_at else '-'}",
        ]

    def list_caches(self, command: CacheListCommand) -> list[str]:
        with self._runtime(command.db_path) as runtime:
            entries = runtime.store.list_caches()
            window = timedelta(seconds=runtime.settings.cache.staleness_window_seconds)
        if not entries:
            return ["No story caches."]
        lines = [f"Story caches: {len(entries)}"]
        for entry in entries:
            stale = is_stale(
                BundleStoryCache(
                    bundle_id=entry.bundle_id,
                    last_refresh_time=entry.last_refresh_time,
                    cache_invalidated_at=entry.cache_invalidated_at,
                ),
                staleness_window=window,
            )
            lines.append(
                f"  {entry.bundle_id} stories={entry.total_story_count} "
                f"last_refresh={entry.last_refresh_time.isoformat()} "
                f"stale={'yes' if stale else 'no'}",
            )
        return lines

    @contextmanager
    def _runtime(self, db_path: Path | None) -> Iterator[_CacheRuntime]:
        settings = Settings.from_env(db_path=db_path)
        settings.validate()
        store = SQLiteStoryCacheRepository(
            settings.db_path,
            top_sources_limit=settings.cache.top_sources_limit,
        )
        feeds = SQLiteFeedRepository(settings.db_path)
        try:
            store.init_schema()
            tracker = FeedHealthTracker(feeds, settings.health)
            yield _CacheRuntime(
                settings=settings,
                store=store,
                tracker=tracker,
                orchestrator=CacheRefreshOrchestrator(
                    store=store,
                    health=tracker,
                    adapters=self._adapters_factory(settings.bridge),
                    settings=settings.refresh,
                    staleness_window=timedelta(seconds=settings.cache.staleness_window_seconds),
                ),
                reader=CacheReader(store),
            )
        finally:
            feeds.close()
            store.close()


def _refresh_output(result: RefreshResult) -> CacheCommandOutput:
    lines = [
        f"Refresh {result.status.value}: bundle={result.bundle_id} "
        f"fetched={result.stories_fetched} total={result.total_story_count}",
        result.message,
    ]
    for outcome in result.outcomes:
        detail = f" error={outcome.error}" if outcome.error else ""
        lines.append(
            f"  {outcome.feed_id} ({outcome.title}) status={outcome.status.value} "
            f"stories={outcome.story_count}{detail}",
        )
    return CacheCommandOutput(lines=lines, success=result.status != RefreshStatus.FAILED)
