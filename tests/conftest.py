"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from bundle_stories.cache.repository import SQLiteStoryCacheRepository
from bundle_stories.feeds.health import FeedHealthTracker
from bundle_stories.feeds.repository import SQLiteFeedRepository


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "stories.db"


@pytest.fixture()
def store(db_path: Path):
    repository = SQLiteStoryCacheRepository(db_path, top_sources_limit=3)
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture()
def feed_repository(db_path: Path, store: SQLiteStoryCacheRepository):
    repository = SQLiteFeedRepository(db_path)
    yield repository
    repository.close()


@pytest.fixture()
def tracker(feed_repository: SQLiteFeedRepository) -> FeedHealthTracker:
    return FeedHealthTracker(feed_repository)
