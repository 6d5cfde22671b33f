from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest
from fakes import make_story

from bundle_stories.cache.models import DateRange, RefreshConfig, SortBy, StoryFilter
from bundle_stories.cache.reader import CacheReader, filter_stories, sort_stories
from bundle_stories.cache.repository import SQLiteStoryCacheRepository
from bundle_stories.errors import ConfigurationError

pytestmark = [
    allure.epic("Story Cache"),
    allure.feature("Cache Reader"),
]

_NOW = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)


def test_pagination_over_120_stories(store: SQLiteStoryCacheRepository) -> None:
    stories = [
        make_story(f"https://example.com/{index}", published_at=_NOW - timedelta(minutes=index))
        for index in range(120)
    ]
    store.merge("bundle-1", stories, RefreshConfig())
    reader = CacheReader(store)

    first = reader.read("bundle-1", limit=50, offset=0, now=_NOW)
    last = reader.read("bundle-1", limit=50, offset=100, now=_NOW)

    assert len(first.stories) == 50
    assert first.has_more is True
    assert first.total == 120
    assert first.stories[0].url == "https://example.com/0"
    assert len(last.stories) == 20
    assert last.has_more is False
    assert last.stories[-1].url == "https://example.com/119"


def test_read_of_unknown_bundle_does_not_create_cache(store: SQLiteStoryCacheRepository) -> None:
    page = CacheReader(store).read("missing")

    assert page.stories == []
    assert page.has_more is False
    assert store.load("missing") is None


def test_read_rejects_negative_paging(store: SQLiteStoryCacheRepository) -> None:
    with pytest.raises(ConfigurationError):
        CacheReader(store).read("bundle-1", offset=-1)


def test_read_with_source_filter(store: SQLiteStoryCacheRepository) -> None:
    store.merge(
        "bundle-1",
        [
            make_story("https://a.com/1", source_name="Alpha"),
            make_story("https://b.com/1", source_name="Beta"),
            make_story("https://a.com/2", source_name="Alpha"),
        ],
        RefreshConfig(),
    )

    page = CacheReader(store).read("bundle-1", story_filter=StoryFilter(source="Alpha"))

    assert page.total == 2
    assert {story.source_name for story in page.stories} == {"Alpha"}


def test_date_sort_treats_undated_stories_as_now() -> None:
    stories = [
        make_story("https://example.com/old", published_at=_NOW - timedelta(days=1)),
        make_story("https://example.com/undated"),
        make_story("https://example.com/new", published_at=_NOW - timedelta(minutes=1)),
    ]

    ordered = sort_stories(stories, SortBy.DATE, now=_NOW)

    assert [story.url.rsplit("/", 1)[-1] for story in ordered] == ["undated", "new", "old"]


def test_relevance_and_source_sorts() -> None:
    stories = [
        make_story("https://example.com/1", source_name="Charlie", relevance_score=0.2),
        make_story("https://example.com/2", source_name="Alpha"),
        make_story("https://example.com/3", source_name="Bravo", relevance_score=0.9),
    ]

    by_relevance = sort_stories(stories, SortBy.RELEVANCE)
    by_source = sort_stories(stories, SortBy.SOURCE)

    assert [story.relevance_score for story in by_relevance] == [0.9, 0.2, None]
    assert [story.source_name for story in by_source] == ["Alpha", "Bravo", "Charlie"]


def test_date_range_filter_is_inclusive() -> None:
    stories = [
        make_story("https://example.com/start", published_at=_NOW - timedelta(days=2)),
        make_story("https://example.com/before", published_at=_NOW - timedelta(days=3)),
        make_story("https://example.com/undated"),
    ]
    story_filter = StoryFilter(date_range=DateRange(start=_NOW - timedelta(days=2), end=_NOW))

    filtered = filter_stories(stories, story_filter, now=_NOW)

    assert [story.url.rsplit("/", 1)[-1] for story in filtered] == ["start", "undated"]
