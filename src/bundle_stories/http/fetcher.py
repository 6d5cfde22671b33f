"""HTTP client for the JSON bridge with retries and timeout."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 20.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; BundleStoriesBot/1.0)"


@dataclass(slots=True)
class FetchResult:
    """Result of one JSON request.

    ``error`` is a short label (``HTTP 502``, ``timeout``, ``transport error``,
    ``invalid JSON``); upstream bodies are never copied into it.
    """

    url: str
    status_code: int
    payload: object = None
    is_success: bool = False
    error: str | None = None


class HttpFetcher:
    """HTTP client wrapper with retry, timeout, and optional bearer token."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        api_token: str | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"User-Agent": user_agent, "Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            headers=headers,
            transport=transport or httpx.HTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    def get_json(self, path: str, *, params: dict[str, str] | None = None) -> FetchResult:
        return self._request("GET", path, params=params)

    def post_json(self, path: str, body: dict[str, object]) -> FetchResult:
        return self._request("POST", path, json=body)

    def _request(self, method: str, path: str, **kwargs: object) -> FetchResult:
        try:
            response = self._client.request(method, path, **kwargs)  # type: ignore[arg-type]
        except httpx.TimeoutException:
            logger.warning("Timeout calling %s %s", method, path)
            return FetchResult(url=path, status_code=0, error="timeout")
        except httpx.HTTPError as exc:
            logger.warning("HTTP error calling %s %s: %s", method, path, type(exc).__name__)
            return FetchResult(url=path, status_code=0, error="transport error")

        if not response.is_success:
            return FetchResult(
                url=path,
                status_code=response.status_code,
                error=f"HTTP {response.status_code}",
            )
        try:
            payload = response.json()
        except ValueError:
            return FetchResult(url=path, status_code=response.status_code, error="invalid JSON")
        return FetchResult(
            url=path,
            status_code=response.status_code,
            payload=payload,
            is_success=True,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
