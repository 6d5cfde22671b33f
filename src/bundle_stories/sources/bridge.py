"""Source adapters backed by the web app's JSON bridge endpoints."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

import httpx

from bundle_stories.cache.models import CachedStory, SourceType
from bundle_stories.cache.normalize import (
    normalize_google_news_item,
    normalize_rss_item,
    normalize_tweet,
    normalize_youtube_item,
)
from bundle_stories.config import BridgeSettings
from bundle_stories.errors import AdapterFetchError
from bundle_stories.http.fetcher import FetchResult, HttpFetcher
from bundle_stories.sources.base import AdapterRegistry, SourceDescriptor, is_twitter_search
from bundle_stories.storage.common import utc_now

logger = logging.getLogger(__name__)

RSS_PATH = "/api/rss"
TWITTER_PATH = "/api/twitter"
TWITTER_TIMELINE_COUNT = "20"
GOOGLE_NEWS_PATH = "/api/google-news"
DEFAULT_GOOGLE_NEWS_WINDOW = "7d"

ItemNormalizer = Callable[..., CachedStory | None]


class _BridgeAdapter:
    """Shared request and error handling for bridge adapters."""

    def __init__(
        self,
        settings: BridgeSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    def _fetcher(self, timeout_seconds: float) -> HttpFetcher:
        return HttpFetcher(
            base_url=self._settings.base_url,
            timeout_seconds=timeout_seconds,
            max_retries=self._settings.max_retries,
            api_token=self._settings.api_token,
            transport=self._transport,
        )

    def _items(self, descriptor: SourceDescriptor, result: FetchResult, key: str) -> list[object]:
        if not result.is_success:
            raise AdapterFetchError(
                f"{descriptor.title}: {result.error or 'request failed'}",
                feed_id=descriptor.feed_id,
            )
        payload = result.payload
        if not isinstance(payload, Mapping):
            raise AdapterFetchError(
                f"{descriptor.title}: unexpected response shape",
                feed_id=descriptor.feed_id,
            )
        items = payload.get(key)
        if items is None:
            return []
        if not isinstance(items, list):
            raise AdapterFetchError(
                f"{descriptor.title}: unexpected response shape",
                feed_id=descriptor.feed_id,
            )
        return items


class BridgeFeedAdapter(_BridgeAdapter):
    """RSS and YouTube channel feeds via ``POST /api/rss``."""

    def __init__(
        self,
        settings: BridgeSettings,
        *,
        source_type: SourceType = SourceType.RSS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(settings, transport=transport)
        self._normalize: ItemNormalizer = (
            normalize_youtube_item if source_type == SourceType.YOUTUBE else normalize_rss_item
        )

    def fetch(self, descriptor: SourceDescriptor, *, timeout_seconds: float) -> list[CachedStory]:
        with self._fetcher(timeout_seconds) as fetcher:
            result = fetcher.post_json(RSS_PATH, {"url": descriptor.target})
        now = utc_now()
        return _normalize_all(
            self._items(descriptor, result, "items"),
            lambda item: self._normalize(item, source_name=descriptor.title, now=now),
        )


class BridgeTwitterAdapter(_BridgeAdapter):
    """Twitter/X sources via ``/api/twitter``.

    Account handles read the timeline with ``GET ?username=``. ``#tag`` and
    ``@mention`` expressions run a keyword search with ``POST``, extended by the
    bundle's search terms.
    """

    def fetch(self, descriptor: SourceDescriptor, *, timeout_seconds: float) -> list[CachedStory]:
        with self._fetcher(timeout_seconds) as fetcher:
            if is_twitter_search(descriptor.target):
                query = build_twitter_query(descriptor.target, descriptor.search_terms)
                result = fetcher.post_json(TWITTER_PATH, {"username": query})
            else:
                result = fetcher.get_json(
                    TWITTER_PATH,
                    params={"username": descriptor.target, "count": TWITTER_TIMELINE_COUNT},
                )
        now = utc_now()
        return _normalize_all(
            self._items(descriptor, result, "tweets"),
            lambda item: normalize_tweet(item, username=descriptor.target, now=now),
        )


class BridgeGoogleNewsAdapter(_BridgeAdapter):
    """Google News searches via ``GET /api/google-news``."""

    def __init__(
        self,
        settings: BridgeSettings,
        *,
        when: str = DEFAULT_GOOGLE_NEWS_WINDOW,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(settings, transport=transport)
        self._when = when

    def fetch(self, descriptor: SourceDescriptor, *, timeout_seconds: float) -> list[CachedStory]:
        params = {
            "q": build_google_news_query(descriptor.target, descriptor.search_terms),
            "when": self._when,
        }
        with self._fetcher(timeout_seconds) as fetcher:
            result = fetcher.get_json(GOOGLE_NEWS_PATH, params=params)
        now = utc_now()
        return _normalize_all(
            self._items(descriptor, result, "items"),
            lambda item: normalize_google_news_item(item, source_name=descriptor.title, now=now),
        )


def build_bridge_adapters(
    settings: BridgeSettings,
    *,
    transport: httpx.BaseTransport | None = None,
) -> AdapterRegistry:
    """Registry with one bridge adapter per source type."""

    return AdapterRegistry(
        {
            SourceType.RSS: BridgeFeedAdapter(settings, transport=transport),
            SourceType.YOUTUBE: BridgeFeedAdapter(
                settings,
                source_type=SourceType.YOUTUBE,
                transport=transport,
            ),
            SourceType.TWITTER: BridgeTwitterAdapter(settings, transport=transport),
            SourceType.GOOGLE_NEWS: BridgeGoogleNewsAdapter(settings, transport=transport),
        },
    )


def build_twitter_query(target: str, search_terms: list[str]) -> str:
    if not search_terms:
        return target
    return f"{target} ({' OR '.join(_quote(term) for term in search_terms)})"


def build_google_news_query(query: str, search_terms: list[str]) -> str:
    if not search_terms:
        return query
    return f"{query} ({' OR '.join(_quote(term) for term in search_terms)})"


def _quote(term: str) -> str:
    return f'"{term}"' if " " in term else term


def _normalize_all(
    items: list[object],
    normalize: Callable[[Mapping[str, object]], CachedStory | None],
) -> list[CachedStory]:
    stories: list[CachedStory] = []
    skipped = 0
    for item in items:
        story = normalize(item) if isinstance(item, Mapping) else None
        if story is None:
            skipped += 1
            continue
        stories.append(story)
    if skipped:
        logger.debug("Skipped %s bridge items without a usable link", skipped)
    return stories
