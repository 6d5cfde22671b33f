"""SQLModel-backed storage for configured feed sources."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, delete, select

from bundle_stories.cache.models import SourceType
from bundle_stories.config import MAX_DELETE_BATCH_SIZE
from bundle_stories.errors import ConfigurationError, HealthTrackingError, StorageError
from bundle_stories.feeds.models import FeedRecord
from bundle_stories.storage.alembic_runner import upgrade_head
from bundle_stories.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    to_utc,
    to_utc_or_none,
    utc_now,
    writer_engine,
)
from bundle_stories.storage.sqlmodel_models import FeedSourceRow

logger = logging.getLogger(__name__)


class SQLiteFeedRepository:
    """Persists feed source configuration and health counters."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)
        self._writer = writer_engine(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def add_feed(self, feed: FeedRecord) -> FeedRecord:
        if not feed.id.strip():
            raise ConfigurationError("Feed id must not be empty.")
        try:
            with Session(self.engine) as session:
                session.add(_to_row(feed))
                session.commit()
        except IntegrityError as error:
            raise ConfigurationError(f"Feed already exists: {feed.id}") from error
        except SQLAlchemyError as error:
            raise StorageError(f"Failed to save feed {feed.id}") from error
        return feed

    def get_feed(self, feed_id: str) -> FeedRecord | None:
        try:
            with Session(self.engine) as session:
                row = session.get(FeedSourceRow, feed_id)
                return _to_record(row) if row is not None else None
        except SQLAlchemyError as error:
            raise StorageError(f"Failed to load feed {feed_id}") from error

    def get_feeds(self, feed_ids: list[str]) -> dict[str, FeedRecord]:
        if not feed_ids:
            return {}
        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(FeedSourceRow).where(col(FeedSourceRow.id).in_(feed_ids)),
                ).all()
        except SQLAlchemyError as error:
            raise StorageError("Failed to load feeds") from error
        return {row.id: _to_record(row) for row in rows}

    def list_feeds(self) -> list[FeedRecord]:
        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(FeedSourceRow).order_by(col(FeedSourceRow.title), col(FeedSourceRow.id)),
                ).all()
        except SQLAlchemyError as error:
            raise StorageError("Failed to list feeds") from error
        return [_to_record(row) for row in rows]

    def record_success(self, feed_id: str, *, at: datetime | None = None) -> None:
        fetched_at = at or utc_now()
        self._update_health(
            feed_id,
            {
                "last_fetched": fetched_at,
                "last_successful_fetch": fetched_at,
                "error_count": 0,
                "last_error": None,
            },
        )

    def record_error(self, feed_id: str, message: str, *, at: datetime | None = None) -> None:
        self._update_health(
            feed_id,
            {
                "last_fetched": at or utc_now(),
                "last_error": message,
                "error_count": FeedSourceRow.error_count + 1,
            },
        )

    def update_feed(self, feed_id: str, changes: dict[str, object]) -> FeedRecord:
        try:
            with Session(self._writer) as session:
                row = session.get(FeedSourceRow, feed_id)
                if row is None:
                    raise ConfigurationError(f"Feed not found: {feed_id}")
                for name, value in changes.items():
                    setattr(row, name, value)
                session.add(row)
                session.commit()
                session.refresh(row)
                return _to_record(row)
        except SQLAlchemyError as error:
            raise StorageError(f"Failed to update feed {feed_id}") from error

    def delete_feeds(self, feed_ids: list[str], *, batch_size: int = MAX_DELETE_BATCH_SIZE) -> int:
        """Delete feeds in batches of at most 100 ids per transaction."""

        effective_batch = max(1, min(batch_size, MAX_DELETE_BATCH_SIZE))
        unique_ids = list(dict.fromkeys(feed_ids))
        deleted = 0
        for start in range(0, len(unique_ids), effective_batch):
            batch_ids = unique_ids[start : start + effective_batch]
            try:
                with Session(self.engine) as session:
                    result = session.exec(
                        delete(FeedSourceRow).where(col(FeedSourceRow.id).in_(batch_ids)),
                    )
                    session.commit()
            except SQLAlchemyError as error:
                raise StorageError(
                    f"Failed to delete feeds after {deleted} deletions",
                ) from error
            deleted += int(result.rowcount or 0)
            logger.info(
                "Deleted feed batch (requested=%s deleted_total=%s)",
                len(batch_ids),
                deleted,
            )
        return deleted

    def _update_health(self, feed_id: str, values: dict[str, object]) -> None:
        try:
            with Session(self.engine) as session:
                result = session.exec(
                    sa_update(FeedSourceRow)
                    .where(col(FeedSourceRow.id) == feed_id)
                    .values(**values),
                )
                session.commit()
        except SQLAlchemyError as error:
            raise HealthTrackingError(f"Failed to record health for feed {feed_id}") from error
        if not result.rowcount:
            raise HealthTrackingError(f"Feed not found: {feed_id}")


def _to_row(feed: FeedRecord) -> FeedSourceRow:
    return FeedSourceRow(
        id=feed.id,
        title=feed.title,
        url=feed.url,
        type=feed.type.value,
        twitter_username=feed.twitter_username,
        youtube_url=feed.youtube_url,
        google_news_query=feed.google_news_query,
        error_count=feed.error_count,
        last_error=feed.last_error,
        last_fetched=feed.last_fetched,
        last_successful_fetch=feed.last_successful_fetch,
        created_at=feed.created_at,
    )


def _to_record(row: FeedSourceRow) -> FeedRecord:
    return FeedRecord(
        id=row.id,
        title=row.title,
        type=SourceType(row.type),
        created_at=to_utc(row.created_at),
        url=row.url,
        twitter_username=row.twitter_username,
        youtube_url=row.youtube_url,
        google_news_query=row.google_news_query,
        error_count=row.error_count,
        last_error=row.last_error,
        last_fetched=to_utc_or_none(row.last_fetched),
        last_successful_fetch=to_utc_or_none(row.last_successful_fetch),
    )
