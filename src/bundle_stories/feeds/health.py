"""Per-source health bookkeeping and feed type detection."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse
from uuid import uuid4

from bundle_stories.cache.models import SourceType
from bundle_stories.config import HealthSettings
from bundle_stories.errors import ConfigurationError, HealthTrackingError
from bundle_stories.feeds.models import FeedHealth, FeedRecord, FeedTypeDetection, HealthReport
from bundle_stories.feeds.repository import SQLiteFeedRepository
from bundle_stories.storage.common import utc_now

logger = logging.getLogger(__name__)

YOUTUBE_CHANNEL_TEMPLATE = "https://www.youtube.com/channel/{channel_id}"
_CHANNEL_ID_PATTERN = re.compile(r"channel_id=([^&#]+)")
_YOUTUBE_HOSTS = ("youtube.com", "youtu.be")
_TWITTER_HOSTS = ("twitter.com", "x.com")
_GOOGLE_NEWS_HOST = "news.google.com"
_RSS_MARKERS = (".xml", "/feed", "/rss")


def detect_feed_type(url: str) -> FeedTypeDetection:
    """Guess the platform of a source from its URL shape.

    Checks run in a fixed order and the first match wins, so YouTube channel
    feeds are never reported as generic RSS.
    """

    if not url or not url.strip():
        return FeedTypeDetection()

    lowered = url.strip().lower()
    host = _host(lowered)

    if _host_matches(host, _YOUTUBE_HOSTS):
        if "/feeds/videos.xml" in lowered or "channel_id=" in lowered:
            return FeedTypeDetection(SourceType.YOUTUBE, "YouTube Channel RSS")
        return FeedTypeDetection(SourceType.YOUTUBE, "YouTube")
    if _host_matches(host, _TWITTER_HOSTS) or "nitter" in host:
        return FeedTypeDetection(SourceType.TWITTER, "Twitter/X")
    if _host_matches(host, (_GOOGLE_NEWS_HOST,)):
        return FeedTypeDetection(SourceType.GOOGLE_NEWS, "Google News")
    if any(marker in lowered for marker in _RSS_MARKERS):
        return FeedTypeDetection(SourceType.RSS, "RSS Feed")
    return FeedTypeDetection()


class FeedHealthTracker:
    """Records fetch outcomes and classifies configured sources."""

    def __init__(
        self,
        repository: SQLiteFeedRepository,
        settings: HealthSettings | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or HealthSettings()

    def detect_feed_type(self, url: str) -> FeedTypeDetection:
        return detect_feed_type(url)

    def assess(self, feed: FeedRecord, *, now: datetime | None = None) -> FeedHealth:
        """Classify one source; dead rules apply in priority order."""

        current = now or utc_now()
        cutoff = current - timedelta(days=self.settings.dead_after_days)
        detection = detect_feed_type(feed.url)
        disagrees = detection.suggested_type is not None and detection.suggested_type != feed.type

        health = FeedHealth(
            id=feed.id,
            title=feed.title,
            url=feed.identifier,
            type=feed.type,
            error_count=feed.error_count,
            last_error=feed.last_error,
            last_fetched=feed.last_fetched,
            last_successful_fetch=feed.last_successful_fetch,
            suggested_type=detection.suggested_type if disagrees else None,
            detected_platform=detection.detected_platform if disagrees else None,
        )

        if feed.error_count >= self.settings.error_threshold:
            health.is_dead = True
            health.reason = f"Failed {feed.error_count} times"
        elif feed.last_successful_fetch is not None and feed.last_successful_fetch < cutoff:
            health.is_dead = True
            health.reason = f"No successful fetch in {self.settings.dead_after_days}+ days"
        elif feed.last_successful_fetch is None and feed.created_at < cutoff:
            health.is_dead = True
            health.reason = "Never fetched successfully"
        return health

    def check_health(self, *, now: datetime | None = None) -> HealthReport:
        """Partition all configured sources into healthy, problematic and dead."""

        current = now or utc_now()
        report = HealthReport()
        for feed in self.repository.list_feeds():
            health = self.assess(feed, now=current)
            if health.is_dead:
                report.dead.append(health)
            elif health.error_count > 0:
                report.problematic.append(health)
            else:
                report.healthy.append(health)
        return report

    def mark_feed_success(self, feed_id: str) -> None:
        try:
            self.repository.record_success(feed_id)
        except HealthTrackingError as error:
            logger.warning("Skipping success tracking for feed %s: %s", feed_id, error)

    def mark_feed_error(self, feed_id: str, message: str) -> None:
        try:
            self.repository.record_error(feed_id, message)
        except HealthTrackingError as error:
            logger.warning("Skipping error tracking for feed %s: %s", feed_id, error)

    def remove_dead_feeds(self, feed_ids: list[str]) -> int:
        if not feed_ids:
            return 0
        deleted = self.repository.delete_feeds(
            feed_ids,
            batch_size=self.settings.delete_batch_size,
        )
        logger.info("Removed dead feeds (requested=%s deleted=%s)", len(feed_ids), deleted)
        return deleted

    def convert_feed_type(self, feed_id: str, new_type: SourceType) -> FeedRecord:
        """Rewrite the configured type and derive the fields the new type needs."""

        feed = self.repository.get_feed(feed_id)
        if feed is None:
            raise ConfigurationError(f"Feed not found: {feed_id}")

        changes: dict[str, object] = {
            "type": new_type.value,
            "error_count": 0,
            "last_error": None,
        }
        if new_type == SourceType.YOUTUBE and feed.url:
            match = _CHANNEL_ID_PATTERN.search(feed.url)
            changes["youtube_url"] = (
                YOUTUBE_CHANNEL_TEMPLATE.format(channel_id=match.group(1)) if match else feed.url
            )
        elif new_type == SourceType.TWITTER:
            username = _twitter_username_from_url(feed.url) or feed.title.strip().lstrip("@")
            if username:
                changes["twitter_username"] = username
        elif new_type == SourceType.GOOGLE_NEWS:
            query = _query_param(feed.url, "q") or feed.title.strip()
            if query:
                changes["google_news_query"] = query

        converted = self.repository.update_feed(feed_id, changes)
        logger.info("Converted feed %s from %s to %s", feed_id, feed.type.value, new_type.value)
        return converted

    def reset_feed_errors(self, feed_id: str) -> FeedRecord:
        return self.repository.update_feed(feed_id, {"error_count": 0, "last_error": None})

    def add_feed(
        self,
        *,
        title: str,
        source_type: SourceType,
        url: str = "",
        twitter_username: str | None = None,
        youtube_url: str | None = None,
        google_news_query: str | None = None,
        feed_id: str | None = None,
    ) -> FeedRecord:
        if not title.strip():
            raise ConfigurationError("Feed title must not be empty.")
        feed = FeedRecord(
            id=feed_id or str(uuid4()),
            title=title.strip(),
            type=source_type,
            created_at=utc_now(),
            url=url.strip(),
            twitter_username=twitter_username,
            youtube_url=youtube_url,
            google_news_query=google_news_query,
        )
        return self.repository.add_feed(feed)

    def list_feeds(self) -> list[FeedRecord]:
        return self.repository.list_feeds()

    def get_feeds(self, feed_ids: list[str]) -> dict[str, FeedRecord]:
        return self.repository.get_feeds(feed_ids)


def _host(url: str) -> str:
    parsed = urlparse(url if "://" in url else f"https://{url}")
    return (parsed.hostname or "").lower()


def _host_matches(host: str, domains: tuple[str, ...]) -> bool:
    return any(host == domain or host.endswith(f".{domain}") for domain in domains)


def _twitter_username_from_url(url: str) -> str | None:
    if not url:
        return None
    host = _host(url.lower())
    if not (_host_matches(host, _TWITTER_HOSTS) or "nitter" in host):
        return None
    parsed = urlparse(url if "://" in url else f"https://{url}")
    segments = [segment for segment in parsed.path.split("/") if segment]
    return segments[0].lstrip("@") if segments else None


def _query_param(url: str, name: str) -> str | None:
    if not url:
        return None
    values = parse_qs(urlparse(url).query).get(name)
    return values[0].strip() if values and values[0].strip() else None

