"""SQLModel ORM tables for cache and feed storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, PrimaryKeyConstraint, Text
from sqlmodel import Field, SQLModel


class BundleStoryCacheRow(SQLModel, table=True):
    __tablename__ = "bundle_story_caches"  # type: ignore[bad-override]

    bundle_id: str = Field(primary_key=True)
    total_story_count: int = 0
    search_terms_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    selected_feed_ids_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    deduplication_method: str = "url"
    summary_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    last_refresh_time: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    cache_invalidated_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CachedStoryRow(SQLModel, table=True):
    __tablename__ = "cached_stories"  # type: ignore[bad-override]
    __table_args__ = (
        PrimaryKeyConstraint("bundle_id", "dedup_key", name="pk_cached_stories"),
        Index("ix_cached_stories_bundle_position", "bundle_id", "position"),
    )

    bundle_id: str = Field(
        sa_column=Column(
            ForeignKey("bundle_story_caches.bundle_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    dedup_key: str
    position: int
    story_id: str
    url: str
    title: str
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    source_name: str = Field(index=True)
    source_type: str
    published_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    thumbnail: str | None = None
    metadata_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    relevance_score: float | None = None
    fetched_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class FeedSourceRow(SQLModel, table=True):
    __tablename__ = "feed_sources"  # type: ignore[bad-override]

    id: str = Field(primary_key=True)
    title: str
    url: str = ""
    type: str = Field(index=True)
    twitter_username: str | None = None
    youtube_url: str | None = None
    google_news_query: str | None = None
    error_count: int = 0
    last_error: str | None = None
    last_fetched: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    last_successful_fetch: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
