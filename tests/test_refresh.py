from __future__ import annotations

import threading
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest
from fakes import FakeAdapter, make_story

from bundle_stories.cache.models import (
    BundleStoryCache,
    RefreshConfig,
    RefreshStatus,
    SourceOutcomeStatus,
    SourceType,
)
from bundle_stories.cache.refresh import CacheRefreshOrchestrator, is_stale
from bundle_stories.cache.repository import SQLiteStoryCacheRepository
from bundle_stories.config import RefreshSettings
from bundle_stories.errors import AdapterFetchError, ConfigurationError, StorageError
from bundle_stories.feeds.health import FeedHealthTracker
from bundle_stories.feeds.models import FeedRecord
from bundle_stories.feeds.repository import SQLiteFeedRepository
from bundle_stories.sources.base import AdapterRegistry
from bundle_stories.storage.common import utc_now

pytestmark = [
    allure.epic("Story Cache"),
    allure.feature("Refresh Orchestration"),
]

_NOW = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)


def _orchestrator(
    store: SQLiteStoryCacheRepository,
    tracker: FeedHealthTracker,
    *,
    rss: FakeAdapter,
    twitter: FakeAdapter | None = None,
    timeout_seconds: float = 5.0,
) -> CacheRefreshOrchestrator:
    return CacheRefreshOrchestrator(
        store=store,
        health=tracker,
        adapters=AdapterRegistry(
            {SourceType.RSS: rss, SourceType.TWITTER: twitter or FakeAdapter()},
        ),
        settings=RefreshSettings(adapter_timeout_seconds=timeout_seconds, max_concurrency=4),
    )


def _add_rss(tracker: FeedHealthTracker, feed_id: str, title: str | None = None) -> None:
    tracker.add_feed(
        title=title or feed_id,
        source_type=SourceType.RSS,
        url=f"https://{feed_id}.example.com/feed.xml",
        feed_id=feed_id,
    )


def test_is_stale_after_window_without_invalidation() -> None:
    cache = BundleStoryCache(bundle_id="b", last_refresh_time=_NOW - timedelta(minutes=61))

    assert is_stale(cache, now=_NOW)
    assert not is_stale(cache, now=_NOW - timedelta(minutes=2))


def test_is_stale_when_invalidated_after_recent_refresh() -> None:
    cache = BundleStoryCache(
        bundle_id="b",
        last_refresh_time=_NOW - timedelta(minutes=1),
        cache_invalidated_at=_NOW - timedelta(seconds=30),
    )

    assert is_stale(cache, now=_NOW)


def test_old_invalidation_does_not_mark_fresh_cache_stale() -> None:
    cache = BundleStoryCache(
        bundle_id="b",
        last_refresh_time=_NOW - timedelta(minutes=1),
        cache_invalidated_at=_NOW - timedelta(hours=2),
    )

    assert not is_stale(cache, now=_NOW)
    assert is_stale(cache, now=_NOW, staleness_window=timedelta(seconds=10))


def test_refresh_merges_stories_and_records_success(
    store: SQLiteStoryCacheRepository,
    tracker: FeedHealthTracker,
    feed_repository: SQLiteFeedRepository,
) -> None:
    _add_rss(tracker, "feed-a")
    _add_rss(tracker, "feed-b")
    rss = FakeAdapter(
        {
            "feed-a": [make_story("https://a.example.com/1"), make_story("https://shared.com/x")],
            "feed-b": [make_story("https://shared.com/x?utm_source=b")],
        },
    )
    orchestrator = _orchestrator(store, tracker, rss=rss)

    result = orchestrator.refresh(
        "bundle-1",
        RefreshConfig(selected_feed_ids=["feed-a", "feed-b"], search_terms=[]),
    )

    assert result.status == RefreshStatus.SUCCEEDED
    assert result.stories_fetched == 3
    assert result.total_story_count == 2
    assert [outcome.story_count for outcome in result.outcomes] == [2, 1]
    cache = store.load("bundle-1")
    assert cache is not None
    assert cache.metadata.selected_feed_ids == ["feed-a", "feed-b"]
    assert all(story.fetched_at is not None for story in cache.stories)

    feed = feed_repository.get_feed("feed-a")
    assert feed is not None
    assert feed.last_successful_fetch is not None
    assert feed.error_count == 0


def test_concurrent_refreshes_share_one_set_of_adapter_calls(
    store: SQLiteStoryCacheRepository,
    tracker: FeedHealthTracker,
) -> None:
    _add_rss(tracker, "feed-a")
    gate = threading.Event()
    rss = FakeAdapter({"feed-a": [make_story("https://a.example.com/1")]}, gate=gate)
    orchestrator = _orchestrator(store, tracker, rss=rss)
    config = RefreshConfig(selected_feed_ids=["feed-a"])
    results = []

    first = threading.Thread(target=lambda: results.append(orchestrator.refresh("b", config)))
    first.start()
    assert rss.started.wait(timeout=5)
    assert orchestrator.is_refreshing("b")

    second = threading.Thread(target=lambda: results.append(orchestrator.refresh("b", config)))
    second.start()
    time.sleep(0.2)
    gate.set()
    first.join(timeout=10)
    second.join(timeout=10)

    assert len(rss.calls) == 1
    assert len(results) == 2
    assert results[0] is results[1]
    assert not orchestrator.is_refreshing("b")


def test_timed_out_source_is_reported_as_failure(
    store: SQLiteStoryCacheRepository,
    tracker: FeedHealthTracker,
    feed_repository: SQLiteFeedRepository,
) -> None:
    _add_rss(tracker, "slow")
    _add_rss(tracker, "fast")
    gate = threading.Event()
    slow = FakeAdapter(gate=gate)
    fast = FakeAdapter({"fast": [make_story("https://fast.example.com/1")]})

    class _Router:
        def fetch(self, descriptor, *, timeout_seconds):
            adapter = slow if descriptor.feed_id == "slow" else fast
            return adapter.fetch(descriptor, timeout_seconds=timeout_seconds)

    orchestrator = CacheRefreshOrchestrator(
        store=store,
        health=tracker,
        adapters=AdapterRegistry({SourceType.RSS: _Router()}),
        settings=RefreshSettings(adapter_timeout_seconds=0.3, max_concurrency=2),
    )

    try:
        result = orchestrator.refresh("b", RefreshConfig(selected_feed_ids=["slow", "fast"]))
    finally:
        gate.set()

    assert result.status == RefreshStatus.PARTIAL
    slow_outcome = result.outcomes[0]
    assert slow_outcome.status == SourceOutcomeStatus.FAILED
    assert slow_outcome.error == "Timed out after 0.3s"
    assert result.total_story_count == 1

    slow_feed = feed_repository.get_feed("slow")
    assert slow_feed is not None
    assert slow_feed.error_count == 1
    assert slow_feed.last_error == "Timed out after 0.3s"


def test_hung_source_does_not_starve_queued_sources(
    store: SQLiteStoryCacheRepository,
    tracker: FeedHealthTracker,
) -> None:
    _add_rss(tracker, "hung")
    _add_rss(tracker, "fast")
    gate = threading.Event()
    hung = FakeAdapter(gate=gate)
    fast = FakeAdapter({"fast": [make_story("https://fast.example.com/1")]})

    class _Router:
        def fetch(self, descriptor, *, timeout_seconds):
            adapter = hung if descriptor.feed_id == "hung" else fast
            return adapter.fetch(descriptor, timeout_seconds=timeout_seconds)

    orchestrator = CacheRefreshOrchestrator(
        store=store,
        health=tracker,
        adapters=AdapterRegistry({SourceType.RSS: _Router()}),
        settings=RefreshSettings(adapter_timeout_seconds=0.3, max_concurrency=1),
    )

    started = time.monotonic()
    try:
        result = orchestrator.refresh("b", RefreshConfig(selected_feed_ids=["hung", "fast"]))
        elapsed = time.monotonic() - started
    finally:
        gate.set()

    assert elapsed < 2.0
    assert [outcome.status for outcome in result.outcomes] == [
        SourceOutcomeStatus.FAILED,
        SourceOutcomeStatus.SUCCEEDED,
    ]
    assert result.outcomes[0].error == "Timed out after 0.3s"
    assert result.total_story_count == 1


class _FailingMergeStore(SQLiteStoryCacheRepository):
    def merge(self, bundle_id, incoming, config):
        raise StorageError("Failed to write cache for bundle b")


def test_storage_error_aborts_refresh_but_records_health(
    store: SQLiteStoryCacheRepository,
    tracker: FeedHealthTracker,
    feed_repository: SQLiteFeedRepository,
    db_path: Path,
) -> None:
    _add_rss(tracker, "ok")
    _add_rss(tracker, "broken")
    store.merge(
        "b",
        [make_story("https://old.example.com/1"), make_story("https://old.example.com/2")],
        RefreshConfig(selected_feed_ids=["ok"]),
    )
    failing_store = _FailingMergeStore(db_path, top_sources_limit=3)
    rss = FakeAdapter(
        {"ok": [make_story("https://ok.example.com/new")]},
        failures={"broken": AdapterFetchError("HTTP 500")},
    )
    orchestrator = _orchestrator(failing_store, tracker, rss=rss)

    try:
        with pytest.raises(StorageError, match="Failed to write cache"):
            orchestrator.refresh("b", RefreshConfig(selected_feed_ids=["ok", "broken"]))
    finally:
        failing_store.close()

    cache = store.load("b")
    assert cache is not None
    assert [story.url for story in cache.stories] == [
        "https://old.example.com/1",
        "https://old.example.com/2",
    ]
    assert cache.metadata.total_story_count == 2
    assert not orchestrator.is_refreshing("b")

    ok_feed = feed_repository.get_feed("ok")
    assert ok_feed is not None
    assert ok_feed.error_count == 0
    assert ok_feed.last_successful_fetch is not None

    broken_feed = feed_repository.get_feed("broken")
    assert broken_feed is not None
    assert broken_feed.error_count == 1
    assert broken_feed.last_error == "HTTP 500"


def test_dead_and_unknown_sources_are_skipped(
    store: SQLiteStoryCacheRepository,
    tracker: FeedHealthTracker,
    feed_repository: SQLiteFeedRepository,
) -> None:
    _add_rss(tracker, "alive")
    feed_repository.add_feed(
        FeedRecord(
            id="dead",
            title="Dead feed",
            type=SourceType.RSS,
            created_at=utc_now(),
            url="https://dead.example.com/rss",
            error_count=5,
            last_error="HTTP 404",
        ),
    )
    rss = FakeAdapter({"alive": [make_story("https://alive.example.com/1")]})
    orchestrator = _orchestrator(store, tracker, rss=rss)

    result = orchestrator.refresh(
        "b",
        RefreshConfig(selected_feed_ids=["dead", "missing", "alive"]),
    )

    assert [descriptor.feed_id for descriptor in rss.calls] == ["alive"]
    assert result.status == RefreshStatus.PARTIAL
    dead, missing, alive = result.outcomes
    assert dead.status == SourceOutcomeStatus.SKIPPED
    assert dead.error == "Source is dead: Failed 5 times (last error: HTTP 404)"
    assert missing.status == SourceOutcomeStatus.SKIPPED
    assert missing.error == "Source not found"
    assert alive.status == SourceOutcomeStatus.SUCCEEDED
    assert result.failed_outcomes == [dead, missing]
    assert result.message == "Fetched 1 stories from 1 source(s); 0 failed, 2 skipped"


def test_all_sources_failing_keeps_cached_stories(
    store: SQLiteStoryCacheRepository,
    tracker: FeedHealthTracker,
) -> None:
    _add_rss(tracker, "feed-a")
    _add_rss(tracker, "feed-b")
    store.merge(
        "b",
        [make_story("https://kept.example.com/1")],
        RefreshConfig(search_terms=["kept"], selected_feed_ids=["feed-a"]),
    )
    rss = FakeAdapter(
        failures={
            "feed-a": AdapterFetchError("feed-a: HTTP 502", feed_id="feed-a"),
            "feed-b": RuntimeError("boom"),
        },
    )
    orchestrator = _orchestrator(store, tracker, rss=rss)

    result = orchestrator.refresh(
        "b",
        RefreshConfig(search_terms=["new"], selected_feed_ids=["feed-a", "feed-b"]),
    )

    assert result.status == RefreshStatus.FAILED
    assert [outcome.error for outcome in result.outcomes] == [
        "feed-a: HTTP 502",
        "Unexpected adapter error",
    ]
    cache = store.load("b")
    assert cache is not None
    assert [story.url for story in cache.stories] == ["https://kept.example.com/1"]
    assert cache.metadata.search_terms == ["kept"]


def test_search_terms_filter_client_side_sources_only(
    store: SQLiteStoryCacheRepository,
    tracker: FeedHealthTracker,
) -> None:
    _add_rss(tracker, "rss-feed")
    tracker.add_feed(
        title="Hashtag",
        source_type=SourceType.TWITTER,
        twitter_username="#python",
        feed_id="tw-search",
    )
    tracker.add_feed(
        title="Handle",
        source_type=SourceType.TWITTER,
        twitter_username="handle",
        feed_id="tw-account",
    )
    rss = FakeAdapter(
        {
            "rss-feed": [
                make_story("https://rss.example.com/1", title="Python 3.14 released"),
                make_story("https://rss.example.com/2", title="Gardening tips"),
            ],
        },
    )
    twitter = FakeAdapter(
        {
            "tw-search": [
                make_story(
                    "https://x.com/someone/status/1",
                    title="Unrelated tweet",
                    source_type=SourceType.TWITTER,
                ),
            ],
            "tw-account": [
                make_story(
                    "https://x.com/handle/status/2",
                    title="Lunch photo",
                    source_type=SourceType.TWITTER,
                ),
            ],
        },
    )
    orchestrator = _orchestrator(store, tracker, rss=rss, twitter=twitter)

    result = orchestrator.refresh(
        "b",
        RefreshConfig(
            search_terms=["python"],
            selected_feed_ids=["rss-feed", "tw-search", "tw-account"],
        ),
    )

    assert result.status == RefreshStatus.SUCCEEDED
    assert sorted(call.target for call in twitter.calls) == ["#python", "handle"]
    assert all(call.search_terms == ["python"] for call in twitter.calls)
    cache = store.load("b")
    assert cache is not None
    assert sorted(story.title for story in cache.stories) == [
        "Python 3.14 released",
        "Unrelated tweet",
    ]


def test_refresh_if_stale_uses_persisted_configuration(
    store: SQLiteStoryCacheRepository,
    tracker: FeedHealthTracker,
) -> None:
    _add_rss(tracker, "feed-a")
    rss = FakeAdapter({"feed-a": [make_story("https://a.example.com/1")]})
    orchestrator = _orchestrator(store, tracker, rss=rss)
    orchestrator.refresh("b", RefreshConfig(selected_feed_ids=["feed-a"]))
    rss.calls.clear()

    assert orchestrator.refresh_if_stale("b") is None
    assert rss.calls == []

    store.invalidate("b")
    result = orchestrator.refresh_if_stale("b")

    assert result is not None
    assert [descriptor.feed_id for descriptor in rss.calls] == ["feed-a"]


def test_refresh_without_sources_merges_nothing(
    store: SQLiteStoryCacheRepository,
    tracker: FeedHealthTracker,
) -> None:
    orchestrator = _orchestrator(store, tracker, rss=FakeAdapter())

    result = orchestrator.refresh("b", RefreshConfig())

    assert result.status == RefreshStatus.SUCCEEDED
    assert result.total_story_count == 0
    assert store.load("b") is not None


def test_refresh_rejects_blank_bundle_id(
    store: SQLiteStoryCacheRepository,
    tracker: FeedHealthTracker,
) -> None:
    orchestrator = _orchestrator(store, tracker, rss=FakeAdapter())

    with pytest.raises(ConfigurationError):
        orchestrator.refresh("", RefreshConfig())
    assert not orchestrator.is_refreshing("")
