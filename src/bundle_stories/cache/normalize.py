"""Normalization of bridge payload items into ``CachedStory``.

Each source type returns a differently shaped item dictionary. The functions
below map them onto one story shape; type-specific extras go into
``CachedStory.metadata`` untouched.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

from bundle_stories.cache.models import CachedStory, SourceType
from bundle_stories.cache.urls import story_id

YOUTUBE_THUMBNAIL_TEMPLATE = "https://i.ytimg.com/vi/{video_id}/mqdefault.jpg"
TWEET_TITLE_LENGTH = 100
_VIDEO_ID_PATTERN = re.compile(r"[?&]v=([^&#]+)")
_TAG_PATTERN = re.compile(r"<[^>]+>")


def normalize_rss_item(
    item: Mapping[str, object],
    *,
    source_name: str,
    now: datetime | None = None,
) -> CachedStory | None:
    """Map one ``/api/rss`` item; items without a link are dropped."""

    url = _text(item.get("link"))
    if not url:
        return None
    description = _text(item.get("contentSnippet")) or _strip_tags(_text(item.get("content")))
    metadata: dict[str, object] = {}
    if author := _text(item.get("creator")):
        metadata["author"] = author
    categories = item.get("categories")
    if isinstance(categories, list) and categories:
        metadata["categories"] = [str(category) for category in categories]
    if guid := _text(item.get("guid")):
        metadata["guid"] = guid
    return CachedStory(
        id=story_id(SourceType.RSS.value, url),
        url=url,
        title=_text(item.get("title")) or "Untitled",
        description=description,
        source_name=source_name,
        source_type=SourceType.RSS,
        published_at=parse_datetime(_text(item.get("pubDate")), now=now),
        thumbnail=_media_url(item.get("mediaThumbnail")) or _media_url(item.get("mediaContent")),
        metadata=metadata,
    )


def normalize_youtube_item(
    item: Mapping[str, object],
    *,
    source_name: str,
    now: datetime | None = None,
) -> CachedStory | None:
    """Map one channel feed entry fetched through ``/api/rss``."""

    url = _text(item.get("link"))
    if not url:
        return None
    video_id = extract_video_id(url)
    metadata: dict[str, object] = {}
    if video_id:
        metadata["video_id"] = video_id
    if author := _text(item.get("creator")):
        metadata["author"] = author
    thumbnail = _media_url(item.get("mediaThumbnail"))
    if thumbnail is None and video_id:
        thumbnail = YOUTUBE_THUMBNAIL_TEMPLATE.format(video_id=video_id)
    return CachedStory(
        id=story_id(SourceType.YOUTUBE.value, url),
        url=url,
        title=_text(item.get("title")) or "Untitled",
        description=_text(item.get("contentSnippet")),
        source_name=source_name,
        source_type=SourceType.YOUTUBE,
        published_at=parse_datetime(_text(item.get("pubDate")), now=now),
        thumbnail=thumbnail,
        metadata=metadata,
    )


def normalize_tweet(
    item: Mapping[str, object],
    *,
    username: str,
    now: datetime | None = None,
) -> CachedStory | None:
    """Map one ``/api/twitter`` tweet."""

    tweet_id = _text(item.get("id"))
    text = _text(item.get("text"))
    url = _text(item.get("url"))
    handle = username.lstrip("@")
    if not url and tweet_id:
        url = f"https://x.com/{handle}/status/{tweet_id}"
    if not url:
        return None

    metadata: dict[str, object] = {}
    if tweet_id:
        metadata["tweet_id"] = tweet_id
    for key in ("metrics", "entities"):
        value = item.get(key)
        if isinstance(value, Mapping):
            metadata[key] = dict(value)
    media = item.get("media")
    thumbnail = None
    if isinstance(media, list) and media:
        metadata["media"] = [dict(entry) for entry in media if isinstance(entry, Mapping)]
        thumbnail = _first_tweet_image(media)

    return CachedStory(
        id=story_id(SourceType.TWITTER.value, tweet_id or url),
        url=url,
        title=text[:TWEET_TITLE_LENGTH] or "Untitled",
        description=text,
        source_name=f"@{handle}" if not handle.startswith("#") else handle,
        source_type=SourceType.TWITTER,
        published_at=parse_datetime(_text(item.get("createdAt")), now=now),
        thumbnail=thumbnail,
        metadata=metadata,
    )


def normalize_google_news_item(
    item: Mapping[str, object],
    *,
    source_name: str,
    now: datetime | None = None,
) -> CachedStory | None:
    """Map one ``/api/google-news`` item; the publisher name wins over the query title."""

    url = _text(item.get("link"))
    if not url:
        return None
    metadata: dict[str, object] = {"query_source": source_name}
    if guid := _text(item.get("guid")):
        metadata["guid"] = guid
    return CachedStory(
        id=story_id(SourceType.GOOGLE_NEWS.value, url),
        url=url,
        title=_text(item.get("title")) or "Untitled",
        description=_text(item.get("contentSnippet")),
        source_name=_text(item.get("source")) or source_name,
        source_type=SourceType.GOOGLE_NEWS,
        published_at=parse_datetime(_text(item.get("pubDate")), now=now),
        metadata=metadata,
    )


def parse_datetime(raw_value: str | None, *, now: datetime | None = None) -> datetime | None:
    """Parse RFC 2822 or ISO 8601 timestamps into aware UTC.

    Unparseable values become ``None``. Timestamps in the future are clamped
    to ``now`` when it is given.
    """

    if not raw_value:
        return None

    parsed: datetime | None = None
    try:
        parsed = parsedate_to_datetime(raw_value)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
        except ValueError:
            return None

    parsed = parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed.astimezone(UTC)
    if now is not None and parsed > now:
        return now
    return parsed


def extract_video_id(url: str) -> str | None:
    match = _VIDEO_ID_PATTERN.search(url)
    return match.group(1) if match else None


def _first_tweet_image(media: list[object]) -> str | None:
    for entry in media:
        if not isinstance(entry, Mapping):
            continue
        if entry.get("type") == "photo" and entry.get("url"):
            return str(entry["url"])
        if entry.get("preview_image_url"):
            return str(entry["preview_image_url"])
    return None


def _media_url(value: object) -> str | None:
    if isinstance(value, Mapping):
        nested = value.get("$") if isinstance(value.get("$"), Mapping) else value
        url = nested.get("url") if isinstance(nested, Mapping) else None
        return str(url) if url else None
    if isinstance(value, list) and value:
        return _media_url(value[0])
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _strip_tags(value: str) -> str:
    return " ".join(_TAG_PATTERN.sub(" ", value).split())


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()
