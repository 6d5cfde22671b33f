from __future__ import annotations

from datetime import UTC, datetime

import allure
import pytest

from bundle_stories.cache.models import SourceType
from bundle_stories.errors import ConfigurationError
from bundle_stories.feeds.models import FeedRecord
from bundle_stories.sources.base import AdapterRegistry, descriptor_for

pytestmark = [
    allure.epic("Sources"),
    allure.feature("Source Descriptors"),
]


def _record(source_type: SourceType, **fields) -> FeedRecord:
    return FeedRecord(
        id="feed-1",
        title="Example",
        type=source_type,
        created_at=datetime(2026, 10, 1, tzinfo=UTC),
        **fields,
    )


def test_rss_descriptor_uses_url_and_strips_blank_terms() -> None:
    descriptor = descriptor_for(
        _record(SourceType.RSS, url="https://example.com/feed.xml"),
        [" climate ", "  "],
    )

    assert descriptor.target == "https://example.com/feed.xml"
    assert descriptor.search_terms == ["climate"]
    assert not descriptor.supports_server_side_search


def test_youtube_descriptor_builds_channel_feed_url() -> None:
    descriptor = descriptor_for(
        _record(SourceType.YOUTUBE, youtube_url="https://www.youtube.com/channel/UC123"),
    )

    assert descriptor.target == "https://www.youtube.com/feeds/videos.xml?channel_id=UC123"


def test_twitter_descriptor_keeps_handles_bare_and_expressions_as_given() -> None:
    handle = descriptor_for(_record(SourceType.TWITTER, twitter_username=" someone "))
    hashtag = descriptor_for(_record(SourceType.TWITTER, twitter_username="#climate"))
    mention = descriptor_for(_record(SourceType.TWITTER, twitter_username="@someone"))

    assert handle.target == "someone"
    assert hashtag.target == "#climate"
    assert mention.target == "@someone"
    assert not handle.supports_server_side_search
    assert hashtag.supports_server_side_search
    assert mention.supports_server_side_search


def test_google_news_descriptor_uses_query() -> None:
    descriptor = descriptor_for(_record(SourceType.GOOGLE_NEWS, google_news_query="climate"))

    assert descriptor.target == "climate"


def test_descriptor_without_identifier_raises() -> None:
    with pytest.raises(ConfigurationError, match="no usable source identifier"):
        descriptor_for(_record(SourceType.GOOGLE_NEWS))


def test_registry_rejects_unregistered_type() -> None:
    with pytest.raises(ConfigurationError, match="No adapter registered"):
        AdapterRegistry().get(SourceType.RSS)
