"""Domain models for configured sources and their health."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from bundle_stories.cache.models import SourceType


@dataclass(slots=True)
class FeedRecord:
    """Configured source of stories."""

    id: str
    title: str
    type: SourceType
    created_at: datetime
    url: str = ""
    twitter_username: str | None = None
    youtube_url: str | None = None
    google_news_query: str | None = None
    error_count: int = 0
    last_error: str | None = None
    last_fetched: datetime | None = None
    last_successful_fetch: datetime | None = None

    @property
    def identifier(self) -> str:
        """URL, or the provider-specific identifier for URL-less sources."""
        return self.url or self.google_news_query or self.twitter_username or ""


@dataclass(slots=True)
class FeedTypeDetection:
    """Platform guessed from the shape of a source URL."""

    suggested_type: SourceType | None = None
    detected_platform: str | None = None


@dataclass(slots=True)
class FeedHealth:
    """Health classification of one configured source."""

    id: str
    title: str
    url: str
    type: SourceType
    error_count: int
    last_error: str | None = None
    last_fetched: datetime | None = None
    last_successful_fetch: datetime | None = None
    is_dead: bool = False
    reason: str | None = None
    suggested_type: SourceType | None = None
    detected_platform: str | None = None


@dataclass(slots=True)
class HealthReport:
    """Sources partitioned by health."""

    healthy: list[FeedHealth] = field(default_factory=list)
    problematic: list[FeedHealth] = field(default_factory=list)
    dead: list[FeedHealth] = field(default_factory=list)
