"""Controllers for feed source CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from bundle_stories.cache.models import SourceType
from bundle_stories.config import Settings
from bundle_stories.feeds.health import FeedHealthTracker, detect_feed_type
from bundle_stories.feeds.models import FeedHealth, FeedRecord
from bundle_stories.feeds.repository import SQLiteFeedRepository


@dataclass(slots=True)
class FeedAddCommand:
    """CLI inputs for feed add command."""

    db_path: Path | None
    title: str
    source_type: SourceType
    url: str
    twitter_username: str | None
    youtube_url: str | None
    google_news_query: str | None
    feed_id: str | None


@dataclass(slots=True)
class FeedListCommand:
    """CLI inputs for commands over all feeds."""

    db_path: Path | None


@dataclass(slots=True)
class FeedConvertCommand:
    """CLI inputs for feed convert command."""

    db_path: Path | None
    feed_id: str
    new_type: SourceType


@dataclass(slots=True)
class FeedResetCommand:
    """CLI inputs for feed reset command."""

    db_path: Path | None
    feed_id: str


@dataclass(slots=True)
class FeedPruneDeadCommand:
    """CLI inputs for dead feed pruning."""

    db_path: Path | None
    dry_run: bool


class FeedsCliController:
    """Coordinates feed source command execution."""

    def add(self, command: FeedAddCommand) -> list[str]:
        with _tracker(command.db_path) as tracker:
            feed = tracker.add_feed(
                title=command.title,
                source_type=command.source_type,
                url=command.url,
                twitter_username=command.twitter_username,
                youtube_url=command.youtube_url,
                google_news_query=command.google_news_query,
                feed_id=command.feed_id,
            )
        lines = [f"Added feed {feed.id} ({feed.type.value}): {feed.title}"]
        detection = detect_feed_type(feed.url)
        if detection.suggested_type is not None and detection.suggested_type != feed.type:
            lines.append(
                f"Warning: URL looks like {detection.detected_platform}; "
                f"consider `feeds convert {feed.id} {detection.suggested_type.value}`",
            )
        return lines

    def list_feeds(self, command: FeedListCommand) -> list[str]:
        with _tracker(command.db_path) as tracker:
            feeds = tracker.list_feeds()
        if not feeds:
            return ["No feeds configured."]
        return [f"Feeds: {len(feeds)}", *(_feed_line(feed) for feed in feeds)]

    def health(self, command: FeedListCommand) -> list[str]:
        with _tracker(command.db_path) as tracker:
            report = tracker.check_health()

        lines = [
            f"Healthy: {len(report.healthy)} "
            f"problematic: {len(report.problematic)} dead: {len(report.dead)}",
        ]
        for label, items in (("Dead", report.dead), ("Problematic", report.problematic)):
            if not items:
                continue
            lines.append(f"{label}:")
            lines.extend(_health_line(item) for item in items)
        return lines

    def detect(self, url: str) -> list[str]:
        detection = detect_feed_type(url)
        if detection.suggested_type is None:
            return [f"No platform detected for {url}"]
        return [
            f"Detected {detection.detected_platform} "
            f"(suggested type: {detection.suggested_type.value})",
        ]

    def convert(self, command: FeedConvertCommand) -> list[str]:
        with _tracker(command.db_path) as tracker:
            feed = tracker.convert_feed_type(command.feed_id, command.new_type)
        return [f"Converted feed {feed.id} to {feed.type.value}", _feed_line(feed)]

    def reset(self, command: FeedResetCommand) -> list[str]:
        with _tracker(command.db_path) as tracker:
            feed = tracker.reset_feed_errors(command.feed_id)
        return [f"Reset errors for feed {feed.id}"]

    def prune_dead(self, command: FeedPruneDeadCommand) -> list[str]:
        with _tracker(command.db_path) as tracker:
            dead = tracker.check_health().dead
            if command.dry_run or not dead:
                deleted = 0
            else:
                deleted = tracker.remove_dead_feeds([item.id for item in dead])

        lines = [
            f"Dead feeds: {len(dead)} "
            f"{'would be deleted (dry run)' if command.dry_run else f'deleted={deleted}'}",
        ]
        lines.extend(_health_line(item) for item in dead)
        return lines


@contextmanager
def _tracker(db_path: Path | None) -> Iterator[FeedHealthTracker]:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    repository = SQLiteFeedRepository(settings.db_path)
    try:
        repository.init_schema()
        yield FeedHealthTracker(repository, settings.health)
    finally:
        repository.close()


def _feed_line(feed: FeedRecord) -> str:
    last_success = (
        feed.last_successful_fetch.isoformat() if feed.last_successful_fetch else "never"
    )
    return (
        f"  {feed.id} [{feed.type.value}] {feed.title} <{feed.identifier or '-'}> "
        f"errors={feed.error_count} last_success={last_success}"
    )


def _health_line(item: FeedHealth) -> str:
    line = f"  {item.id} [{item.type.value}] {item.title} errors={item.error_count}"
    if item.reason:
        line += f" reason={item.reason}"
    if item.last_error:
        line += f" last_error={item.last_error}"
    if item.suggested_type is not None:
        line += f" suggested={item.suggested_type.value} ({item.detected_platform})"
    return line
