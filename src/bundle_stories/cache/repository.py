"""SQLModel-backed per-bundle story cache store."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, delete, select

from bundle_stories.cache.dedup import build_summary, merge_stories, story_key
from bundle_stories.cache.models import (
    BundleStoryCache,
    CachedStory,
    CacheListEntry,
    CacheMetadata,
    CacheSettingsView,
    CacheSummary,
    DateRange,
    DeduplicationMethod,
    RefreshConfig,
    SourceCount,
    SourceType,
)
from bundle_stories.errors import ConfigurationError, StorageError
from bundle_stories.storage.alembic_runner import upgrade_head
from bundle_stories.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    to_utc,
    to_utc_or_none,
    utc_now,
    writer_engine,
)
from bundle_stories.storage.sqlmodel_models import BundleStoryCacheRow, CachedStoryRow

logger = logging.getLogger(__name__)


class SQLiteStoryCacheRepository:
    """Durable storage of one deduplicated story cache per bundle.

    Writes for the same bundle are serialized with a process-local lock and
    each write runs in a single ``BEGIN IMMEDIATE`` transaction, so readers
    only ever observe fully committed caches.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        top_sources_limit: int = 10,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self.top_sources_limit = top_sources_limit
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)
        self._writer = writer_engine(self.engine)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def get_or_create(self, bundle_id: str) -> BundleStoryCache:
        """Return the bundle cache, persisting an empty one on first access."""

        _require_bundle_id(bundle_id)
        existing = self.load(bundle_id)
        if existing is not None:
            return existing

        now = utc_now()
        try:
            with Session(self._writer) as session:
                session.add(_empty_cache_row(bundle_id, now))
                session.commit()
        except IntegrityError:
            logger.debug("Cache for bundle %s was created concurrently", bundle_id)
        except SQLAlchemyError as error:
            raise StorageError(f"Failed to create cache for bundle {bundle_id}") from error
        else:
            logger.info("Created empty story cache for bundle %s", bundle_id)

        created = self.load(bundle_id)
        if created is None:
            raise StorageError(f"Cache for bundle {bundle_id} disappeared after creation")
        return created

    def load(self, bundle_id: str) -> BundleStoryCache | None:
        """Point lookup without side effects, read as one snapshot."""

        _require_bundle_id(bundle_id)
        try:
            with Session(self.engine) as session:
                row = session.get(BundleStoryCacheRow, bundle_id)
                if row is None:
                    return None
                story_rows = session.exec(
                    select(CachedStoryRow)
                    .where(col(CachedStoryRow.bundle_id) == bundle_id)
                    .order_by(col(CachedStoryRow.position)),
                ).all()
                return _to_cache(row, [_to_story(story_row) for story_row in story_rows])
        except SQLAlchemyError as error:
            raise StorageError(f"Failed to load cache for bundle {bundle_id}") from error

    def merge(
        self,
        bundle_id: str,
        incoming: list[CachedStory],
        config: RefreshConfig,
    ) -> BundleStoryCache:
        """Deduplicate ``incoming`` into the bundle cache and persist atomically."""

        _require_bundle_id(bundle_id)
        with self._bundle_lock(bundle_id):
            now = utc_now()
            try:
                with Session(self._writer) as session:
                    row = session.get(BundleStoryCacheRow, bundle_id)
                    if row is None:
                        row = _empty_cache_row(bundle_id, now)
                        session.add(row)
                        existing: list[CachedStory] = []
                    else:
                        story_rows = session.exec(
                            select(CachedStoryRow)
                            .where(col(CachedStoryRow.bundle_id) == bundle_id)
                            .order_by(col(CachedStoryRow.position)),
                        ).all()
                        existing = [_to_story(story_row) for story_row in story_rows]
                        for story_row in story_rows:
                            session.expunge(story_row)

                    outcome = merge_stories(existing, incoming)
                    summary = build_summary(
                        outcome.stories,
                        top_sources_limit=self.top_sources_limit,
                    )
                    row.total_story_count = len(outcome.stories)
                    row.search_terms_json = json.dumps(list(config.search_terms))
                    row.selected_feed_ids_json = json.dumps(list(config.selected_feed_ids))
                    row.deduplication_method = config.deduplication.value
                    row.summary_json = json.dumps(_summary_to_dict(summary))
                    row.last_refresh_time = now
                    row.updated_at = now
                    session.add(row)
                    session.flush()

                    session.exec(
                        delete(CachedStoryRow)
                        .where(col(CachedStoryRow.bundle_id) == bundle_id)
                        .execution_options(synchronize_session=False),
                    )
                    session.add_all(
                        _to_story_row(bundle_id, position, story)
                        for position, story in enumerate(outcome.stories)
                    )
                    session.commit()
            except SQLAlchemyError as error:
                raise StorageError(f"Failed to merge stories for bundle {bundle_id}") from error

        logger.info(
            "Merged stories for bundle %s "
            "(incoming=%s inserted=%s updated=%s unchanged=%s total=%s)",
            bundle_id,
            len(incoming),
            outcome.inserted,
            outcome.updated,
            outcome.unchanged,
            len(outcome.stories),
        )
        cache = self.load(bundle_id)
        if cache is None:
            raise StorageError(f"Cache for bundle {bundle_id} disappeared after merge")
        return cache

    def clear(self, bundle_id: str) -> BundleStoryCache:
        """Empty the cache but keep its record."""

        _require_bundle_id(bundle_id)
        with self._bundle_lock(bundle_id):
            now = utc_now()
            try:
                with Session(self._writer) as session:
                    row = session.get(BundleStoryCacheRow, bundle_id)
                    if row is None:
                        row = _empty_cache_row(bundle_id, now)
                    else:
                        session.exec(
                            delete(CachedStoryRow).where(
                                col(CachedStoryRow.bundle_id) == bundle_id,
                            ),
                        )
                        row.total_story_count = 0
                        row.search_terms_json = "[]"
                        row.selected_feed_ids_json = "[]"
                        row.summary_json = json.dumps(_summary_to_dict(CacheSummary()))
                        row.last_refresh_time = now
                        row.updated_at = now
                    session.add(row)
                    session.commit()
            except SQLAlchemyError as error:
                raise StorageError(f"Failed to clear cache for bundle {bundle_id}") from error

        logger.info("Cleared story cache for bundle %s", bundle_id)
        return self.get_or_create(bundle_id)

    def invalidate(self, bundle_id: str, *, at: datetime | None = None) -> BundleStoryCache:
        """Mark the cache stale regardless of its age."""

        cache = self.get_or_create(bundle_id)
        invalidated_at = at or utc_now()
        with self._bundle_lock(bundle_id):
            try:
                with Session(self._writer) as session:
                    row = session.get(BundleStoryCacheRow, bundle_id)
                    if row is None:
                        raise StorageError(f"Cache for bundle {bundle_id} disappeared")
                    row.cache_invalidated_at = to_utc(invalidated_at)
                    row.updated_at = utc_now()
                    session.add(row)
                    session.commit()
            except SQLAlchemyError as error:
                raise StorageError(f"Failed to invalidate cache for bundle {bundle_id}") from error
        cache.cache_invalidated_at = to_utc(invalidated_at)
        return cache

    def list_caches(self) -> list[CacheListEntry]:
        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(BundleStoryCacheRow).order_by(col(BundleStoryCacheRow.bundle_id)),
                ).all()
        except SQLAlchemyError as error:
            raise StorageError("Failed to list story caches") from error
        return [
            CacheListEntry(
                bundle_id=row.bundle_id,
                total_story_count=row.total_story_count,
                last_refresh_time=to_utc(row.last_refresh_time),
                cache_invalidated_at=to_utc_or_none(row.cache_invalidated_at),
            )
            for row in rows
        ]

    def _bundle_lock(self, bundle_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(bundle_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[bundle_id] = lock
            return lock


def _require_bundle_id(bundle_id: str) -> None:
    if not bundle_id or not bundle_id.strip():
        raise ConfigurationError("Bundle id must not be empty.")


def _empty_cache_row(bundle_id: str, now: datetime) -> BundleStoryCacheRow:
    return BundleStoryCacheRow(
        bundle_id=bundle_id,
        total_story_count=0,
        search_terms_json="[]",
        selected_feed_ids_json="[]",
        deduplication_method=DeduplicationMethod.URL.value,
        summary_json=json.dumps(_summary_to_dict(CacheSummary())),
        last_refresh_time=now,
        cache_invalidated_at=None,
        created_at=now,
        updated_at=now,
    )


def _to_cache(row: BundleStoryCacheRow, stories: list[CachedStory]) -> BundleStoryCache:
    return BundleStoryCache(
        bundle_id=row.bundle_id,
        last_refresh_time=to_utc(row.last_refresh_time),
        stories=stories,
        metadata=CacheMetadata(
            total_story_count=row.total_story_count,
            search_terms=list(json.loads(row.search_terms_json or "[]")),
            selected_feed_ids=list(json.loads(row.selected_feed_ids_json or "[]")),
        ),
        settings=CacheSettingsView(
            deduplication_method=DeduplicationMethod(row.deduplication_method),
        ),
        summary=_summary_from_dict(json.loads(row.summary_json or "{}")),
        cache_invalidated_at=to_utc_or_none(row.cache_invalidated_at),
        created_at=to_utc(row.created_at),
    )


def _to_story(row: CachedStoryRow) -> CachedStory:
    return CachedStory(
        id=row.story_id,
        url=row.url,
        title=row.title,
        description=row.description,
        source_name=row.source_name,
        source_type=SourceType(row.source_type),
        published_at=to_utc_or_none(row.published_at),
        thumbnail=row.thumbnail,
        metadata=json.loads(row.metadata_json or "{}"),
        relevance_score=row.relevance_score,
        fetched_at=to_utc_or_none(row.fetched_at),
    )


def _to_story_row(bundle_id: str, position: int, story: CachedStory) -> CachedStoryRow:
    return CachedStoryRow(
        bundle_id=bundle_id,
        dedup_key=story_key(story),
        position=position,
        story_id=story.id,
        url=story.url,
        title=story.title,
        description=story.description,
        source_name=story.source_name,
        source_type=story.source_type.value,
        published_at=to_utc_or_none(story.published_at),
        thumbnail=story.thumbnail,
        metadata_json=json.dumps(story.metadata, ensure_ascii=False, default=str),
        relevance_score=story.relevance_score,
        fetched_at=to_utc_or_none(story.fetched_at),
    )


def _summary_to_dict(summary: CacheSummary) -> dict[str, object]:
    return {
        "source_distribution": summary.source_distribution,
        "top_sources": [{"name": item.name, "count": item.count} for item in summary.top_sources],
        "stories_by_type": summary.stories_by_type,
        "date_range": {
            "start": _isoformat(summary.date_range.start),
            "end": _isoformat(summary.date_range.end),
        },
    }


def _summary_from_dict(raw: dict[str, object]) -> CacheSummary:
    top_sources = raw.get("top_sources")
    date_range = raw.get("date_range")
    date_range = date_range if isinstance(date_range, dict) else {}
    return CacheSummary(
        source_distribution=dict(raw.get("source_distribution") or {}),  # type: ignore[arg-type]
        top_sources=[
            SourceCount(name=str(item["name"]), count=int(item["count"]))
            for item in (top_sources if isinstance(top_sources, list) else [])
        ],
        stories_by_type=dict(raw.get("stories_by_type") or {}),  # type: ignore[arg-type]
        date_range=DateRange(
            start=_parse_iso(date_range.get("start")),
            end=_parse_iso(date_range.get("end")),
        ),
    )


def _isoformat(value: datetime | None) -> str | None:
    return to_utc(value).isoformat() if value is not None else None


def _parse_iso(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    return to_utc(datetime.fromisoformat(value))
