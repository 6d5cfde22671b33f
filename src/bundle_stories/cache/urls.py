"""URL canonicalization and stable story identifiers."""

from __future__ import annotations

import hashlib
import re
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

TRACKING_PARAM_PREFIXES = ("utm_",)
TRACKING_PARAMS = frozenset(
    {
        "fbclid",
        "gclid",
        "dclid",
        "msclkid",
        "mc_cid",
        "mc_eid",
        "igshid",
        "yclid",
        "_ga",
        "ref_src",
    },
)


def canonicalize_url(url: str) -> str:
    """Normalize URL so that tracking and formatting variants compare equal."""

    parsed = urlparse(url.strip())
    scheme = (parsed.scheme or "https").lower()
    netloc = parsed.netloc.lower()
    if netloc.endswith(":80") and scheme == "http":
        netloc = netloc[:-3]
    if netloc.endswith(":443") and scheme == "https":
        netloc = netloc[:-4]

    path = re.sub(r"/{2,}", "/", parsed.path or "")
    path = path.rstrip("/")
    query_pairs = sorted(
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    )
    cleaned = parsed._replace(
        scheme=scheme,
        netloc=netloc,
        path=path,
        params="",
        query=urlencode(query_pairs),
        fragment="",
    )
    return str(urlunparse(cleaned))


def dedup_key(url: str) -> str:
    """Case-normalized canonical URL used as the cache uniqueness key."""

    return canonicalize_url(url).lower()


def url_hash(url: str) -> str:
    """Stable hash of the dedup key."""

    digest = hashlib.sha1(dedup_key(url).encode("utf-8"), usedforsecurity=False)  # noqa: S324
    return digest.hexdigest()


def story_id(source_type: str, natural_key: str) -> str:
    """Stable story identifier derived from source type and natural key."""

    key = dedup_key(natural_key) if "://" in natural_key else natural_key.strip()
    digest = hashlib.sha1(  # noqa: S324
        f"{source_type}:{key}".encode(),
        usedforsecurity=False,
    ).hexdigest()
    return f"{source_type}-{digest[:16]}"


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PARAM_PREFIXES)
