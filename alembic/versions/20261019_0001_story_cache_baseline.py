"""Story cache and feed source baseline schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "bundle_story_caches",
        sa.Column("bundle_id", sa.String(), nullable=False),
        sa.Column("total_story_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("search_terms_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("selected_feed_ids_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("deduplication_method", sa.String(), nullable=False, server_default="url"),
        sa.Column("summary_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("last_refresh_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cache_invalidated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("bundle_id"),
    )

    op.create_table(
        "cached_stories",
        sa.Column("bundle_id", sa.String(), nullable=False),
        sa.Column("dedup_key", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("story_id", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("source_name", sa.String(), nullable=False),
        sa.Column("source_type", sa.String(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("thumbnail", sa.String(), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("relevance_score", sa.Float(), nullable=True),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["bundle_id"],
            ["bundle_story_caches.bundle_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("bundle_id", "dedup_key", name="pk_cached_stories"),
    )
    op.create_index(
        "ix_cached_stories_bundle_position",
        "cached_stories",
        ["bundle_id", "position"],
    )
    op.create_index("ix_cached_stories_source_name", "cached_stories", ["source_name"])

    op.create_table(
        "feed_sources",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=False, server_default=""),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("twitter_username", sa.String(), nullable=True),
        sa.Column("youtube_url", sa.String(), nullable=True),
        sa.Column("google_news_query", sa.String(), nullable=True),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_fetched", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_successful_fetch", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_feed_sources_type", "feed_sources", ["type"])


def downgrade() -> None:
    op.drop_index("ix_feed_sources_type", table_name="feed_sources")
    op.drop_table("feed_sources")
    op.drop_index("ix_cached_stories_source_name", table_name="cached_stories")
    op.drop_index("ix_cached_stories_bundle_position", table_name="cached_stories")
    op.drop_table("cached_stories")
    op.drop_table("bundle_story_caches")
