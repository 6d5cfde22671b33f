"""CLI entrypoint for bundle-stories."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from bundle_stories import __version__
from bundle_stories.cache.controllers import (
    CacheBundleCommand,
    CacheCliController,
    CacheListCommand,
    CacheRefreshCommand,
    CacheShowCommand,
)
from bundle_stories.cache.models import SortBy, SourceType
from bundle_stories.errors import StoryCacheError
from bundle_stories.feeds.controllers import (
    FeedAddCommand,
    FeedConvertCommand,
    FeedListCommand,
    FeedPruneDeadCommand,
    FeedResetCommand,
    FeedsCliController,
)

click.rich_click.USE_MARKDOWN = True
CACHE_CONTROLLER = CacheCliController()
FEEDS_CONTROLLER = FeedsCliController()
T = TypeVar("T")

SOURCE_TYPE_CHOICE = click.Choice([source_type.value for source_type in SourceType])
DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="bundle-stories")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def bundle_stories(verbose: bool) -> None:
    """Bundle story cache CLI."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@bundle_stories.group()
def cache() -> None:
    """Story cache commands."""


@cache.command("refresh")
@DB_PATH_OPTION
@click.argument("bundle_id")
@click.option(
    "--feed-id",
    "feed_ids",
    multiple=True,
    help="Source id to fetch. Can be repeated; defaults to the cached selection.",
)
@click.option(
    "--search-term",
    "search_terms",
    multiple=True,
    help="Search term filter. Can be repeated; defaults to the cached terms.",
)
def cache_refresh(
    db_path: Path | None,
    bundle_id: str,
    feed_ids: tuple[str, ...],
    search_terms: tuple[str, ...],
) -> None:
    """Fetch the bundle's sources and merge new stories into its cache."""

    result = _invoke(
        lambda: CACHE_CONTROLLER.refresh(
            CacheRefreshCommand(
                db_path=db_path,
                bundle_id=bundle_id,
                feed_ids=feed_ids,
                search_terms=search_terms,
            ),
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("All sources failed; cache left unchanged.")


@cache.command("refresh-stale")
@DB_PATH_OPTION
@click.argument("bundle_id")
def cache_refresh_stale(db_path: Path | None, bundle_id: str) -> None:
    """Refresh with the persisted configuration only if the cache is stale."""

    result = _invoke(
        lambda: CACHE_CONTROLLER.refresh_stale(
            CacheBundleCommand(db_path=db_path, bundle_id=bundle_id),
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("All sources failed; cache left unchanged.")


@cache.command("show")
@DB_PATH_OPTION
@click.argument("bundle_id")
@click.option(
    "--limit",
    type=click.IntRange(min=0),
    default=None,
    help="Page size. Defaults to BUNDLE_STORIES_PAGE_SIZE.",
)
@click.option("--offset", type=click.IntRange(min=0), default=0, show_default=True)
@click.option(
    "--sort-by",
    type=click.Choice([sort_by.value for sort_by in SortBy]),
    default=SortBy.DATE.value,
    show_default=True,
)
@click.option("--source", default=None, help="Only stories from this source name.")
def cache_show(
    db_path: Path | None,
    bundle_id: str,
    limit: int | None,
    offset: int,
    sort_by: str,
    source: str | None,
) -> None:
    """Print one page of cached stories."""

    _emit_lines(
        _invoke(
            lambda: CACHE_CONTROLLER.show(
                CacheShowCommand(
                    db_path=db_path,
                    bundle_id=bundle_id,
                    limit=limit,
                    offset=offset,
                    sort_by=SortBy(sort_by),
                    source=source,
                ),
            ),
        ),
    )


@cache.command("clear")
@DB_PATH_OPTION
@click.argument("bundle_id")
def cache_clear(db_path: Path | None, bundle_id: str) -> None:
    """Remove all cached stories of a bundle, keeping the cache record."""

    _emit_lines(
        _invoke(
            lambda: CACHE_CONTROLLER.clear(
                CacheBundleCommand(db_path=db_path, bundle_id=bundle_id),
            ),
        ),
    )


@cache.command("invalidate")
@DB_PATH_OPTION
@click.argument("bundle_id")
def cache_invalidate(db_path: Path | None, bundle_id: str) -> None:
    """Mark a bundle cache stale so the next check refreshes it."""

    _emit_lines(
        _invoke(
            lambda: CACHE_CONTROLLER.invalidate(
                CacheBundleCommand(db_path=db_path, bundle_id=bundle_id),
            ),
        ),
    )


@cache.command("list")
@DB_PATH_OPTION
def cache_list(db_path: Path | None) -> None:
    """List bundle caches."""

    _emit_lines(_invoke(lambda: CACHE_CONTROLLER.list_caches(CacheListCommand(db_path=db_path))))


@bundle_stories.group()
def feeds() -> None:
    """Feed source commands."""


@feeds.command("add")
@DB_PATH_OPTION
@click.option("--title", required=True, help="Display name of the source.")
@click.option("--type", "source_type", type=SOURCE_TYPE_CHOICE, required=True)
@click.option("--url", default="", help="Feed URL for rss/youtube sources.")
@click.option("--twitter-username", default=None, help="Handle, or #hashtag search.")
@click.option("--youtube-url", default=None, help="YouTube channel URL.")
@click.option("--google-news-query", default=None, help="Google News search query.")
@click.option("--id", "feed_id", default=None, help="Explicit source id (default: random).")
def feeds_add(
    db_path: Path | None,
    title: str,
    source_type: str,
    url: str,
    twitter_username: str | None,
    youtube_url: str | None,
    google_news_query: str | None,
    feed_id: str | None,
) -> None:
    """Configure a new source."""

    _emit_lines(
        _invoke(
            lambda: FEEDS_CONTROLLER.add(
                FeedAddCommand(
                    db_path=db_path,
                    title=title,
                    source_type=SourceType(source_type),
                    url=url,
                    twitter_username=twitter_username,
                    youtube_url=youtube_url,
                    google_news_query=google_news_query,
                    feed_id=feed_id,
                ),
            ),
        ),
    )


@feeds.command("list")
@DB_PATH_OPTION
def feeds_list(db_path: Path | None) -> None:
    """List configured sources."""

    _emit_lines(_invoke(lambda: FEEDS_CONTROLLER.list_feeds(FeedListCommand(db_path=db_path))))


@feeds.command("health")
@DB_PATH_OPTION
def feeds_health(db_path: Path | None) -> None:
    """Partition sources into healthy, problematic, and dead."""

    _emit_lines(_invoke(lambda: FEEDS_CONTROLLER.health(FeedListCommand(db_path=db_path))))


@feeds.command("detect")
@click.argument("url")
def feeds_detect(url: str) -> None:
    """Guess the platform of a source URL."""

    _emit_lines(FEEDS_CONTROLLER.detect(url))


@feeds.command("convert")
@DB_PATH_OPTION
@click.argument("feed_id")
@click.argument("new_type", type=SOURCE_TYPE_CHOICE)
def feeds_convert(db_path: Path | None, feed_id: str, new_type: str) -> None:
    """Change a source's type and derive its type-specific fields."""

    _emit_lines(
        _invoke(
            lambda: FEEDS_CONTROLLER.convert(
                FeedConvertCommand(
                    db_path=db_path,
                    feed_id=feed_id,
                    new_type=SourceType(new_type),
                ),
            ),
        ),
    )


@feeds.command("reset")
@DB_PATH_OPTION
@click.argument("feed_id")
def feeds_reset(db_path: Path | None, feed_id: str) -> None:
    """Reset a source's error counter."""

    _emit_lines(
        _invoke(
            lambda: FEEDS_CONTROLLER.reset(FeedResetCommand(db_path=db_path, feed_id=feed_id)),
        ),
    )


@feeds.command("prune-dead")
@DB_PATH_OPTION
@click.option("--dry-run", is_flag=True, default=False, help="Only list dead sources.")
def feeds_prune_dead(db_path: Path | None, dry_run: bool) -> None:
    """Delete sources classified as dead."""

    _emit_lines(
        _invoke(
            lambda: FEEDS_CONTROLLER.prune_dead(
                FeedPruneDeadCommand(db_path=db_path, dry_run=dry_run),
            ),
        ),
    )


def _invoke(action: Callable[[], T]) -> T:
    try:
        return action()
    except (StoryCacheError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    bundle_stories()
