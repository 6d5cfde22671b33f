from __future__ import annotations

import allure

from bundle_stories.cache.urls import canonicalize_url, dedup_key, story_id, url_hash

pytestmark = [
    allure.epic("Story Cache"),
    allure.feature("Deduplication"),
]


def test_tracking_params_and_trailing_slash_share_one_key() -> None:
    expected = dedup_key("https://x.com/a")

    assert dedup_key("https://x.com/a?utm_source=x") == expected
    assert dedup_key("https://x.com/a/") == expected
    assert dedup_key("https://X.com/a?fbclid=abc&utm_medium=social#comments") == expected


def test_canonicalize_sorts_query_and_drops_default_port() -> None:
    assert (
        canonicalize_url("HTTPS://Example.com:443/News//Item/?b=2&a=1#frag")
        == "https://example.com/News/Item?a=1&b=2"
    )
    assert canonicalize_url("http://example.com:80/x") == "http://example.com/x"


def test_dedup_key_is_case_insensitive_on_path() -> None:
    assert dedup_key("https://example.com/News/Item") == dedup_key("https://example.com/news/item")


def test_non_tracking_params_keep_urls_distinct() -> None:
    assert dedup_key("https://example.com/watch?v=1") != dedup_key("https://example.com/watch?v=2")


def test_story_id_is_stable_across_url_variants() -> None:
    first = story_id("rss", "https://example.com/a?utm_campaign=spring")
    second = story_id("rss", "https://example.com/a/")

    assert first == second
    assert first.startswith("rss-")
    assert len(first) == len("rss-") + 16
    assert story_id("twitter", "12345") != story_id("rss", "12345")


def test_url_hash_matches_for_equivalent_urls() -> None:
    assert url_hash("https://example.com/a?gclid=1") == url_hash("https://example.com/a")
