"""Stateful view of one bundle's cache for interactive consumers."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from bundle_stories.cache.models import (
    BundleStoryCache,
    CachedStory,
    RefreshConfig,
    RefreshResult,
    RefreshStatus,
    SortBy,
    SourceRefreshOutcome,
    StoryFilter,
)
from bundle_stories.cache.reader import DEFAULT_PAGE_SIZE, CacheReader, filter_stories
from bundle_stories.cache.refresh import CacheRefreshOrchestrator
from bundle_stories.errors import StoryCacheError

logger = logging.getLogger(__name__)

DEFAULT_AUTO_REFRESH_INTERVAL_SECONDS = 3_600.0


@dataclass(slots=True)
class StoryCacheState:
    """Observable state of a session; consumers receive copies."""

    cache: BundleStoryCache | None = None
    stories: list[CachedStory] = field(default_factory=list)
    loading: bool = False
    error: str | None = None
    error_details: list[SourceRefreshOutcome] = field(default_factory=list)
    is_stale: bool = False
    has_more: bool = False


class AutoRefresher:
    """Timer thread that refreshes a bundle when its cache goes stale.

    A tick is skipped while another refresh for the bundle is in flight.
    """

    def __init__(
        self,
        *,
        orchestrator: CacheRefreshOrchestrator,
        bundle_id: str,
        interval_seconds: float = DEFAULT_AUTO_REFRESH_INTERVAL_SECONDS,
        on_refresh: Callable[[RefreshResult], None] | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0.")
        self._orchestrator = orchestrator
        self._bundle_id = bundle_id
        self._interval = interval_seconds
        self._on_refresh = on_refresh or (lambda _result: None)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name=f"auto-refresh-{self._bundle_id}",
        )
        self._thread.start()
        logger.info(
            "Auto-refresh started for bundle %s (interval=%.0fs)",
            self._bundle_id,
            self._interval,
        )

    def cancel(self, *, timeout: float = 15.0) -> None:
        self._stop.set()
        if self._thread is None:
            return
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Auto-refresh stopped for bundle %s", self._bundle_id)

    def tick(self) -> RefreshResult | None:
        if self._orchestrator.is_refreshing(self._bundle_id):
            logger.debug("Refresh already in flight for bundle %s", self._bundle_id)
            return None
        return self._orchestrator.refresh_if_stale(self._bundle_id)

    def _loop(self) -> None:
        while not self._stop.wait(timeout=self._interval):
            try:
                result = self.tick()
                if result is not None and not self._stop.is_set():
                    self._on_refresh(result)
            except Exception:
                logger.exception("Auto-refresh error for bundle %s", self._bundle_id)


class StoryCacheSession:
    """Keeps the loaded pages, loading flag, and last error for one bundle."""

    def __init__(
        self,
        *,
        bundle_id: str,
        orchestrator: CacheRefreshOrchestrator,
        reader: CacheReader,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.bundle_id = bundle_id
        self._orchestrator = orchestrator
        self._reader = reader
        self._page_size = page_size
        self._offset = 0
        self._state = StoryCacheState()
        self._lock = threading.RLock()
        self._auto_refresher: AutoRefresher | None = None

    @property
    def state(self) -> StoryCacheState:
        with self._lock:
            return replace(
                self._state,
                stories=list(self._state.stories),
                error_details=list(self._state.error_details),
            )

    def open(self) -> StoryCacheState:
        """Create the cache if needed and load the first page."""

        with self._lock:
            self._begin()
            try:
                self._reload_first_page()
            except StoryCacheError as error:
                self._state.error = str(error)
            finally:
                self._state.loading = False
        return self.state

    def refresh_cache(self, config: RefreshConfig) -> StoryCacheState:
        with self._lock:
            self._begin()
        try:
            result = self._orchestrator.refresh(self.bundle_id, config)
        except StoryCacheError as error:
            with self._lock:
                self._state.error = str(error)
                self._state.loading = False
            return self.state
        self._apply_refresh_result(result)
        return self.state

    def load_more_stories(self) -> StoryCacheState:
        with self._lock:
            if self._state.loading or not self._state.has_more:
                return self.state
            self._begin()
            try:
                page = self._reader.read(
                    self.bundle_id,
                    limit=self._page_size,
                    offset=self._offset,
                    sort_by=SortBy.DATE,
                )
                self._state.stories.extend(page.stories)
                self._state.has_more = page.has_more
                self._offset += len(page.stories)
            except StoryCacheError as error:
                self._state.error = str(error)
            finally:
                self._state.loading = False
        return self.state

    def clear_cache(self) -> StoryCacheState:
        with self._lock:
            self._begin()
            try:
                cache = self._orchestrator.store.clear(self.bundle_id)
                self._state.cache = cache
                self._state.stories = []
                self._state.has_more = False
                self._state.is_stale = self._orchestrator.is_stale(cache)
                self._offset = 0
            except StoryCacheError as error:
                self._state.error = str(error)
            finally:
                self._state.loading = False
        return self.state

    def get_filtered_stories(self, story_filter: StoryFilter) -> list[CachedStory]:
        with self._lock:
            stories = list(self._state.stories)
        return filter_stories(stories, story_filter)

    def start_auto_refresh(self, interval_seconds: float | None = None) -> AutoRefresher:
        with self._lock:
            if self._auto_refresher is not None:
                self._auto_refresher.cancel()
            self._auto_refresher = AutoRefresher(
                orchestrator=self._orchestrator,
                bundle_id=self.bundle_id,
                interval_seconds=interval_seconds or DEFAULT_AUTO_REFRESH_INTERVAL_SECONDS,
                on_refresh=self._apply_refresh_result,
            )
            self._auto_refresher.start()
            return self._auto_refresher

    def close(self) -> None:
        with self._lock:
            refresher, self._auto_refresher = self._auto_refresher, None
        if refresher is not None:
            refresher.cancel()

    def __enter__(self) -> StoryCacheSession:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _begin(self) -> None:
        self._state.loading = True
        self._state.error = None
        self._state.error_details = []

    def _apply_refresh_result(self, result: RefreshResult) -> None:
        with self._lock:
            try:
                self._reload_first_page()
            except StoryCacheError as error:
                self._state.error = str(error)
            else:
                self._state.error_details = result.failed_outcomes
                if result.status == RefreshStatus.FAILED:
                    self._state.error = result.message
            finally:
                self._state.loading = False

    def _reload_first_page(self) -> None:
        cache = self._orchestrator.store.get_or_create(self.bundle_id)
        page = self._reader.read(self.bundle_id, limit=self._page_size, offset=0)
        self._state.cache = cache
        self._state.stories = list(page.stories)
        self._state.has_more = page.has_more
        self._state.is_stale = self._orchestrator.is_stale(cache)
        self._offset = len(page.stories)
