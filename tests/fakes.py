"""In-process test doubles for source adapters."""

from __future__ import annotations

import threading
from datetime import datetime

from bundle_stories.cache.models import CachedStory, SourceType
from bundle_stories.cache.urls import story_id
from bundle_stories.sources.base import SourceDescriptor


class FakeAdapter:
    """Returns canned stories per feed id and records every call."""

    def __init__(
        self,
        stories: dict[str, list[CachedStory]] | None = None,
        *,
        failures: dict[str, Exception] | None = None,
        gate: threading.Event | None = None,
    ) -> None:
        self.stories = stories or {}
        self.failures = failures or {}
        self.gate = gate
        self.started = threading.Event()
        self.calls: list[SourceDescriptor] = []
        self._calls_guard = threading.Lock()

    def fetch(self, descriptor: SourceDescriptor, *, timeout_seconds: float) -> list[CachedStory]:
        with self._calls_guard:
            self.calls.append(descriptor)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        failure = self.failures.get(descriptor.feed_id)
        if failure is not None:
            raise failure
        return list(self.stories.get(descriptor.feed_id, []))


def make_story(
    url: str,
    *,
    title: str = "Story",
    description: str = "",
    source_name: str = "Example",
    source_type: SourceType = SourceType.RSS,
    published_at: datetime | None = None,
    relevance_score: float | None = None,
    metadata: dict[str, object] | None = None,
) -> CachedStory:
    return CachedStory(
        id=story_id(source_type.value, url),
        url=url,
        title=title,
        description=description,
        source_name=source_name,
        source_type=source_type,
        published_at=published_at,
        relevance_score=relevance_score,
        metadata=metadata or {},
    )
