"""Refresh orchestration: staleness policy, source fan-out, merge, health reporting."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from bundle_stories.cache.models import (
    BundleStoryCache,
    CachedStory,
    RefreshConfig,
    RefreshResult,
    RefreshStatus,
    SourceOutcomeStatus,
    SourceRefreshOutcome,
)
from bundle_stories.cache.repository import SQLiteStoryCacheRepository
from bundle_stories.config import RefreshSettings
from bundle_stories.errors import AdapterFetchError, ConfigurationError
from bundle_stories.feeds.health import FeedHealthTracker
from bundle_stories.sources.base import (
    AdapterRegistry,
    SourceAdapter,
    SourceDescriptor,
    descriptor_for,
    matches_search_terms,
)
from bundle_stories.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_STALENESS_WINDOW = timedelta(hours=1)


def is_stale(
    cache: BundleStoryCache,
    *,
    now: datetime | None = None,
    staleness_window: timedelta = DEFAULT_STALENESS_WINDOW,
) -> bool:
    """Whether the cache is due for a refresh.

    An invalidation newer than the last refresh wins over age. Pure, so it can
    run on a timer without triggering network activity.
    """

    if (
        cache.cache_invalidated_at is not None
        and cache.cache_invalidated_at > cache.last_refresh_time
    ):
        return True
    return (now or utc_now()) - cache.last_refresh_time > staleness_window


@dataclass(slots=True)
class _FetchTask:
    descriptor: SourceDescriptor
    adapter: SourceAdapter


@dataclass(slots=True)
class _FanOutResult:
    stories: dict[str, list[CachedStory]] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


class CacheRefreshOrchestrator:
    """Drives bundle refreshes; the only component that triggers source fetches."""

    def __init__(
        self,
        *,
        store: SQLiteStoryCacheRepository,
        health: FeedHealthTracker,
        adapters: AdapterRegistry,
        settings: RefreshSettings | None = None,
        staleness_window: timedelta = DEFAULT_STALENESS_WINDOW,
    ) -> None:
        self.store = store
        self.health = health
        self.adapters = adapters
        self.settings = settings or RefreshSettings()
        self.staleness_window = staleness_window
        self._inflight: dict[str, Future[RefreshResult]] = {}
        self._inflight_guard = threading.Lock()

    def is_stale(self, cache: BundleStoryCache, *, now: datetime | None = None) -> bool:
        return is_stale(cache, now=now, staleness_window=self.staleness_window)

    def is_refreshing(self, bundle_id: str) -> bool:
        with self._inflight_guard:
            return bundle_id in self._inflight

    def refresh(self, bundle_id: str, config: RefreshConfig) -> RefreshResult:
        """Refresh one bundle; concurrent calls for the same bundle share one run."""

        if not bundle_id or not bundle_id.strip():
            raise ConfigurationError("Bundle id must not be empty.")

        with self._inflight_guard:
            inflight = self._inflight.get(bundle_id)
            if inflight is None:
                owned: Future[RefreshResult] = Future()
                self._inflight[bundle_id] = owned

        if inflight is not None:
            logger.info("Joining in-flight refresh for bundle %s", bundle_id)
            return inflight.result()

        try:
            result = self._run_refresh(bundle_id, config)
        except BaseException as error:
            owned.set_exception(error)
            raise
        else:
            owned.set_result(result)
            return result
        finally:
            with self._inflight_guard:
                self._inflight.pop(bundle_id, None)

    def refresh_if_stale(
        self,
        bundle_id: str,
        *,
        now: datetime | None = None,
    ) -> RefreshResult | None:
        """Refresh with the configuration persisted in the cache, only when stale."""

        cache = self.store.get_or_create(bundle_id)
        if not self.is_stale(cache, now=now):
            return None
        config = RefreshConfig(
            search_terms=list(cache.metadata.search_terms),
            selected_feed_ids=list(cache.metadata.selected_feed_ids),
            deduplication=cache.settings.deduplication_method,
        )
        return self.refresh(bundle_id, config)

    def _run_refresh(self, bundle_id: str, config: RefreshConfig) -> RefreshResult:
        started = time.monotonic()
        selected = list(
            dict.fromkeys(
                feed_id.strip() for feed_id in config.selected_feed_ids if feed_id.strip()
            ),
        )
        feeds = self.health.get_feeds(selected)
        now = utc_now()

        outcomes: dict[str, SourceRefreshOutcome] = {}
        tasks: list[_FetchTask] = []
        for feed_id in selected:
            feed = feeds.get(feed_id)
            if feed is None:
                logger.warning("Skipping unknown source %s for bundle %s", feed_id, bundle_id)
                outcomes[feed_id] = SourceRefreshOutcome(
                    feed_id=feed_id,
                    title=feed_id,
                    status=SourceOutcomeStatus.SKIPPED,
                    error="Source not found",
                )
                continue
            health = self.health.assess(feed, now=now)
            if health.is_dead:
                logger.warning(
                    "Skipping dead source %s for bundle %s (%s)",
                    feed_id,
                    bundle_id,
                    health.reason,
                )
                outcomes[feed_id] = SourceRefreshOutcome(
                    feed_id=feed_id,
                    title=feed.title,
                    status=SourceOutcomeStatus.SKIPPED,
                    error=_dead_source_message(health.reason, feed.last_error),
                )
                continue
            tasks.append(
                _FetchTask(
                    descriptor=descriptor_for(feed, config.search_terms),
                    adapter=self.adapters.get(feed.type),
                ),
            )

        fan_out = self._fan_out(bundle_id, tasks)
        for task in tasks:
            feed_id = task.descriptor.feed_id
            if feed_id in fan_out.stories:
                outcomes[feed_id] = SourceRefreshOutcome(
                    feed_id=feed_id,
                    title=task.descriptor.title,
                    status=SourceOutcomeStatus.SUCCEEDED,
                    story_count=len(fan_out.stories[feed_id]),
                )
            else:
                outcomes[feed_id] = SourceRefreshOutcome(
                    feed_id=feed_id,
                    title=task.descriptor.title,
                    status=SourceOutcomeStatus.FAILED,
                    error=fan_out.errors.get(feed_id, "fetch failed"),
                )

        incoming = [
            story
            for task in tasks
            for story in fan_out.stories.get(task.descriptor.feed_id, [])
        ]
        all_failed = bool(tasks) and not fan_out.stories
        try:
            if all_failed:
                logger.warning(
                    "All sources failed for bundle %s; keeping cached stories",
                    bundle_id,
                )
                cache = self.store.get_or_create(bundle_id)
            else:
                cache = self.store.merge(bundle_id, incoming, config)
        finally:
            self._report_health(tasks, fan_out)

        ordered = [outcomes[feed_id] for feed_id in selected]
        result = RefreshResult(
            bundle_id=bundle_id,
            status=_overall_status(ordered, all_failed=all_failed),
            outcomes=ordered,
            stories_fetched=len(incoming),
            total_story_count=cache.metadata.total_story_count,
            message=_summary_message(ordered, len(incoming)),
        )
        logger.info(
            "Refreshed bundle %s in %.2fs: %s (status=%s)",
            bundle_id,
            time.monotonic() - started,
            result.message,
            result.status.value,
        )
        return result

    def _fan_out(self, bundle_id: str, tasks: list[_FetchTask]) -> _FanOutResult:
        """Run adapters concurrently, at most ``max_concurrency`` live calls at once.

        Every call gets ``adapter_timeout_seconds`` from the moment it is
        dispatched. A call that overruns is reported as timed out and its daemon
        thread is abandoned, which frees its slot for the next queued source.
        """

        result = _FanOutResult()
        timeout = self.settings.adapter_timeout_seconds

        def _fetch(task: _FetchTask) -> list[CachedStory]:
            stories = task.adapter.fetch(task.descriptor, timeout_seconds=timeout)
            if not task.descriptor.supports_server_side_search:
                stories = [
                    story
                    for story in stories
                    if matches_search_terms(story, task.descriptor.search_terms)
                ]
            fetched_at = utc_now()
            return [replace(story, fetched_at=fetched_at) for story in stories]

        queued = deque(tasks)
        live: dict[Future[list[CachedStory]], tuple[str, float]] = {}
        while queued or live:
            while queued and len(live) < self.settings.max_concurrency:
                task = queued.popleft()
                future: Future[list[CachedStory]] = Future()
                threading.Thread(
                    target=_run_fetch,
                    args=(_fetch, task, future),
                    name=f"refresh-{bundle_id}-{task.descriptor.feed_id}",
                    daemon=True,
                ).start()
                live[future] = (task.descriptor.feed_id, time.monotonic() + timeout)

            next_deadline = min(deadline for _, deadline in live.values())
            done, _ = wait(
                list(live),
                timeout=max(0.0, next_deadline - time.monotonic()),
                return_when=FIRST_COMPLETED,
            )
            for future in done:
                feed_id, _ = live.pop(future)
                _collect(feed_id, future, result)

            current = time.monotonic()
            for future, (feed_id, deadline) in list(live.items()):
                if current < deadline:
                    continue
                del live[future]
                logger.warning("Source %s timed out after %.1fs", feed_id, timeout)
                result.errors[feed_id] = f"Timed out after {timeout:g}s"
        return result

    def _report_health(self, tasks: list[_FetchTask], fan_out: _FanOutResult) -> None:
        for task in tasks:
            feed_id = task.descriptor.feed_id
            if feed_id in fan_out.stories:
                self.health.mark_feed_success(feed_id)
            else:
                self.health.mark_feed_error(feed_id, fan_out.errors.get(feed_id, "fetch failed"))


def _run_fetch(
    fetch: Callable[[_FetchTask], list[CachedStory]],
    task: _FetchTask,
    future: Future[list[CachedStory]],
) -> None:
    try:
        future.set_result(fetch(task))
    except Exception as error:  # noqa: BLE001
        future.set_exception(error)


def _collect(feed_id: str, future: Future[list[CachedStory]], result: _FanOutResult) -> None:
    try:
        result.stories[feed_id] = future.result()
    except AdapterFetchError as error:
        logger.warning("Source %s failed: %s", feed_id, error)
        result.errors[feed_id] = str(error)
    except Exception:  # noqa: BLE001
        logger.warning("Source %s raised unexpectedly", feed_id, exc_info=True)
        result.errors[feed_id] = "Unexpected adapter error"


def _dead_source_message(reason: str | None, last_error: str | None) -> str:
    message = f"Source is dead: {reason or 'unknown reason'}"
    if last_error:
        message = f"{message} (last error: {last_error})"
    return message


def _overall_status(outcomes: list[SourceRefreshOutcome], *, all_failed: bool) -> RefreshStatus:
    if all_failed:
        return RefreshStatus.FAILED
    if any(outcome.status != SourceOutcomeStatus.SUCCEEDED for outcome in outcomes):
        return RefreshStatus.PARTIAL
    return RefreshStatus.SUCCEEDED


def _summary_message(outcomes: list[SourceRefreshOutcome], fetched: int) -> str:
    succeeded = sum(1 for outcome in outcomes if outcome.status == SourceOutcomeStatus.SUCCEEDED)
    failed = sum(1 for outcome in outcomes if outcome.status == SourceOutcomeStatus.FAILED)
    skipped = sum(1 for outcome in outcomes if outcome.status == SourceOutcomeStatus.SKIPPED)
    return (
        f"Fetched {fetched} stories from {succeeded} source(s); "
        f"{failed} failed, {skipped} skipped"
    )
