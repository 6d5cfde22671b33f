"""Domain models for the per-bundle story cache."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SourceType(str, Enum):
    """Configured source platforms."""

    RSS = "rss"
    YOUTUBE = "youtube"
    TWITTER = "twitter"
    GOOGLE_NEWS = "googlenews"


class DeduplicationMethod(str, Enum):
    """Supported cache deduplication strategies."""

    URL = "url"


class SortBy(str, Enum):
    """Serving orders supported by the cache reader."""

    DATE = "date"
    RELEVANCE = "relevance"
    SOURCE = "source"


class RefreshStatus(str, Enum):
    """Overall outcome of one bundle refresh."""

    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


class SourceOutcomeStatus(str, Enum):
    """Per-source outcome inside one refresh."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class CachedStory:
    """One normalized story item."""

    id: str
    url: str
    title: str
    source_name: str
    source_type: SourceType
    description: str = ""
    published_at: datetime | None = None
    thumbnail: str | None = None
    metadata: dict[str, object] = field(default_factory=dict)
    relevance_score: float | None = None
    fetched_at: datetime | None = None


@dataclass(slots=True)
class CacheMetadata:
    """Configuration last used to populate a cache."""

    total_story_count: int = 0
    search_terms: list[str] = field(default_factory=list)
    selected_feed_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CacheSettingsView:
    """Per-cache settings persisted alongside the stories."""

    deduplication_method: DeduplicationMethod = DeduplicationMethod.URL


@dataclass(slots=True)
class SourceCount:
    """Story count for one source name."""

    name: str
    count: int


@dataclass(slots=True)
class DateRange:
    """Inclusive datetime range."""

    start: datetime | None
    end: datetime | None


@dataclass(slots=True)
class CacheSummary:
    """Derived statistics recomputed on every cache write."""

    source_distribution: dict[str, int] = field(default_factory=dict)
    top_sources: list[SourceCount] = field(default_factory=list)
    stories_by_type: dict[str, int] = field(default_factory=dict)
    date_range: DateRange = field(default_factory=lambda: DateRange(start=None, end=None))


@dataclass(slots=True)
class BundleStoryCache:
    """Cached, deduplicated story set for one bundle."""

    bundle_id: str
    last_refresh_time: datetime
    stories: list[CachedStory] = field(default_factory=list)
    metadata: CacheMetadata = field(default_factory=CacheMetadata)
    settings: CacheSettingsView = field(default_factory=CacheSettingsView)
    summary: CacheSummary = field(default_factory=CacheSummary)
    cache_invalidated_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class CacheListEntry:
    """Compact cache view for CLI listings."""

    bundle_id: str
    total_story_count: int
    last_refresh_time: datetime
    cache_invalidated_at: datetime | None


@dataclass(slots=True)
class RefreshConfig:
    """Inputs for one bundle refresh."""

    search_terms: list[str] = field(default_factory=list)
    selected_feed_ids: list[str] = field(default_factory=list)
    deduplication: DeduplicationMethod = DeduplicationMethod.URL


@dataclass(slots=True)
class SourceRefreshOutcome:
    """Result of fetching one source during a refresh."""

    feed_id: str
    title: str
    status: SourceOutcomeStatus
    story_count: int = 0
    error: str | None = None


@dataclass(slots=True)
class RefreshResult:
    """Aggregated result of one bundle refresh."""

    bundle_id: str
    status: RefreshStatus
    outcomes: list[SourceRefreshOutcome] = field(default_factory=list)
    stories_fetched: int = 0
    total_story_count: int = 0
    message: str = ""

    @property
    def failed_outcomes(self) -> list[SourceRefreshOutcome]:
        return [
            outcome for outcome in self.outcomes if outcome.status != SourceOutcomeStatus.SUCCEEDED
        ]


@dataclass(slots=True)
class StoryPage:
    """One page of cached stories."""

    stories: list[CachedStory]
    has_more: bool
    total: int


@dataclass(slots=True)
class StoryFilter:
    """Client-side filter for cached stories."""

    source: str | None = None
    date_range: DateRange | None = None
