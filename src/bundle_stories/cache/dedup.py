"""URL-keyed deduplication and merge of cached stories."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime

from bundle_stories.cache.models import CacheSummary, CachedStory, DateRange, SourceCount
from bundle_stories.cache.urls import dedup_key


@dataclass(slots=True)
class MergeOutcome:
    """Merged story list with counters for logging."""

    stories: list[CachedStory]
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0


def story_key(story: CachedStory) -> str:
    """Dedup key of a story; stories without URL fall back to their id."""

    if story.url.strip():
        return dedup_key(story.url)
    return f"id:{story.id}"


def supersedes(candidate: CachedStory, current: CachedStory) -> bool:
    """Whether ``candidate`` replaces ``current`` under the newest-wins rule.

    Only two known and different timestamps decide by date. Any other case
    (equal dates, one or both unknown) is a tie won by the later-supplied
    candidate, which is also the most recently fetched one.
    """

    if candidate.published_at is not None and current.published_at is not None:
        if candidate.published_at != current.published_at:
            return candidate.published_at > current.published_at
    return True


def collapse_candidates(stories: list[CachedStory]) -> dict[str, CachedStory]:
    """Collapse candidates sharing a key, keeping first-seen key order."""

    collapsed: dict[str, CachedStory] = {}
    for story in stories:
        key = story_key(story)
        current = collapsed.get(key)
        if current is None or supersedes(story, current):
            collapsed[key] = story
    return collapsed


def merge_stories(existing: list[CachedStory], incoming: list[CachedStory]) -> MergeOutcome:
    """Merge candidates into existing cache contents using the same key space."""

    merged = list(existing)
    positions = {story_key(story): index for index, story in enumerate(merged)}
    outcome = MergeOutcome(stories=merged)

    for key, candidate in collapse_candidates(incoming).items():
        position = positions.get(key)
        if position is None:
            positions[key] = len(merged)
            merged.append(candidate)
            outcome.inserted += 1
            continue

        current = merged[position]
        if not supersedes(candidate, current):
            outcome.unchanged += 1
            continue
        if candidate.relevance_score is None and current.relevance_score is not None:
            candidate = replace(candidate, relevance_score=current.relevance_score)
        merged[position] = candidate
        outcome.updated += 1

    return outcome


def build_summary(stories: list[CachedStory], *, top_sources_limit: int = 10) -> CacheSummary:
    """Compute source distribution, top sources, type counts, and date range."""

    by_source = Counter(story.source_name for story in stories)
    by_type = Counter(story.source_type.value for story in stories)
    dated: list[datetime] = [
        story.published_at for story in stories if story.published_at is not None
    ]

    top_sources = [
        SourceCount(name=name, count=count)
        for name, count in sorted(by_source.items(), key=lambda item: (-item[1], item[0]))
    ]
    return CacheSummary(
        source_distribution=dict(by_source),
        top_sources=top_sources[:top_sources_limit],
        stories_by_type=dict(by_type),
        date_range=DateRange(
            start=min(dated) if dated else None,
            end=max(dated) if dated else None,
        ),
    )
