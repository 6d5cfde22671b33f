"""Paginated, sorted, and filtered views over a bundle's cached stories."""

from __future__ import annotations

from datetime import datetime

from bundle_stories.cache.models import CachedStory, SortBy, StoryFilter, StoryPage
from bundle_stories.cache.repository import SQLiteStoryCacheRepository
from bundle_stories.errors import ConfigurationError
from bundle_stories.storage.common import utc_now

DEFAULT_PAGE_SIZE = 50


class CacheReader:
    """Read-only access to cached stories; never talks to sources."""

    def __init__(self, store: SQLiteStoryCacheRepository) -> None:
        self.store = store

    def read(
        self,
        bundle_id: str,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        sort_by: SortBy = SortBy.DATE,
        story_filter: StoryFilter | None = None,
        now: datetime | None = None,
    ) -> StoryPage:
        """Return one page from a point-in-time snapshot of the cache.

        A bundle without a cache yields an empty page; it is not created.
        """

        if limit < 0 or offset < 0:
            raise ConfigurationError("limit and offset must be non-negative.")

        cache = self.store.load(bundle_id)
        if cache is None:
            return StoryPage(stories=[], has_more=False, total=0)

        current = now or utc_now()
        stories = cache.stories
        if story_filter is not None:
            stories = filter_stories(stories, story_filter, now=current)
        ordered = sort_stories(stories, sort_by, now=current)
        page = ordered[offset : offset + limit]
        return StoryPage(
            stories=page,
            has_more=offset + len(page) < len(ordered),
            total=len(ordered),
        )


def sort_stories(
    stories: list[CachedStory],
    sort_by: SortBy,
    *,
    now: datetime | None = None,
) -> list[CachedStory]:
    """Serving order; stable, so ties keep cache order."""

    if sort_by == SortBy.RELEVANCE:
        return sorted(stories, key=lambda story: story.relevance_score or 0.0, reverse=True)
    if sort_by == SortBy.SOURCE:
        return sorted(stories, key=lambda story: story.source_name)
    current = now or utc_now()
    return sorted(stories, key=lambda story: story.published_at or current, reverse=True)


def filter_stories(
    stories: list[CachedStory],
    story_filter: StoryFilter,
    *,
    now: datetime | None = None,
) -> list[CachedStory]:
    """Exact source match and inclusive date range; undated stories count as now."""

    current = now or utc_now()
    date_range = story_filter.date_range
    filtered: list[CachedStory] = []
    for story in stories:
        if story_filter.source is not None and story.source_name != story_filter.source:
            continue
        if date_range is not None:
            published_at = story.published_at or current
            if date_range.start is not None and published_at < date_range.start:
                continue
            if date_range.end is not None and published_at > date_range.end:
                continue
        filtered.append(story)
    return filtered
