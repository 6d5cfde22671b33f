"""Common source adapter contracts."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Protocol

from bundle_stories.cache.models import CachedStory, SourceType
from bundle_stories.errors import ConfigurationError
from bundle_stories.feeds.models import FeedRecord

SERVER_SIDE_SEARCH_TYPES = frozenset({SourceType.GOOGLE_NEWS, SourceType.TWITTER})
TWITTER_SEARCH_PREFIXES = ("#", "@")
YOUTUBE_FEED_TEMPLATE = "https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"
_CHANNEL_PATH_PATTERN = re.compile(r"/channel/([A-Za-z0-9_-]+)")
_CHANNEL_PARAM_PATTERN = re.compile(r"[?&]channel_id=([A-Za-z0-9_-]+)")


@dataclass(slots=True)
class SourceDescriptor:
    """What an adapter needs to fetch one configured source.

    ``target`` is the feed URL for ``rss``/``youtube``, the account handle or a
    ``#``/``@`` search expression for ``twitter`` and the query for
    ``googlenews``. Account timelines are filtered locally by search terms.
    """

    feed_id: str
    title: str
    source_type: SourceType
    target: str
    search_terms: list[str] = field(default_factory=list)

    @property
    def supports_server_side_search(self) -> bool:
        if self.source_type == SourceType.TWITTER:
            return is_twitter_search(self.target)
        return self.source_type in SERVER_SIDE_SEARCH_TYPES


class SourceAdapter(Protocol):
    """Interface for story sources.

    Returns an empty list for zero results and raises ``AdapterFetchError``
    only for fetch or parse failures.
    """

    def fetch(self, descriptor: SourceDescriptor, *, timeout_seconds: float) -> list[CachedStory]:
        """Fetch normalized stories for one source."""
        raise NotImplementedError


class AdapterRegistry:
    """Source type to adapter mapping used by the refresh orchestrator."""

    def __init__(self, adapters: dict[SourceType, SourceAdapter] | None = None) -> None:
        self._adapters: dict[SourceType, SourceAdapter] = dict(adapters or {})

    def register(self, source_type: SourceType, adapter: SourceAdapter) -> None:
        self._adapters[source_type] = adapter

    def get(self, source_type: SourceType) -> SourceAdapter:
        adapter = self._adapters.get(source_type)
        if adapter is None:
            raise ConfigurationError(f"No adapter registered for source type {source_type.value}")
        return adapter


def descriptor_for(feed: FeedRecord, search_terms: list[str] | None = None) -> SourceDescriptor:
    """Build the adapter descriptor of a configured source.

    Raises ``ConfigurationError`` when the record lacks the field its type needs.
    """

    terms = [term.strip() for term in search_terms or [] if term.strip()]
    if feed.type == SourceType.RSS:
        target = feed.url.strip()
    elif feed.type == SourceType.YOUTUBE:
        target = _youtube_feed_url(feed)
    elif feed.type == SourceType.TWITTER:
        target = (feed.twitter_username or "").strip()
    else:
        target = (feed.google_news_query or "").strip()

    if not target:
        raise ConfigurationError(
            f"Feed {feed.id} of type {feed.type.value} has no usable source identifier",
        )
    return SourceDescriptor(
        feed_id=feed.id,
        title=feed.title,
        source_type=feed.type,
        target=target,
        search_terms=terms,
    )


def matches_search_terms(story: CachedStory, search_terms: list[str]) -> bool:
    """Case-insensitive substring match on title or description; no terms match all."""

    if not search_terms:
        return True
    haystack = f"{story.title}\n{story.description}".lower()
    return any(term.lower() in haystack for term in search_terms)


def _youtube_feed_url(feed: FeedRecord) -> str:
    for candidate in (feed.url, feed.youtube_url or ""):
        if "/feeds/videos.xml" in candidate:
            return candidate.strip()
        match = _CHANNEL_PARAM_PATTERN.search(candidate) or _CHANNEL_PATH_PATTERN.search(candidate)
        if match:
            return YOUTUBE_FEED_TEMPLATE.format(channel_id=match.group(1))
    return feed.url.strip()


def is_twitter_search(target: str) -> bool:
    """``#tag`` and ``@mention`` targets are searches; anything else is an account handle."""

    return target.startswith(TWITTER_SEARCH_PREFIXES)
