"""Centralized HTTP client with per-site policies and status-aware error handling."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlsplit

import httpx

from store_ingest.config import settings

logger = logging.getLogger(__name__)

# Retryable exceptions (transport errors)
RETRYABLE_EXC = (
    httpx.ReadTimeout,
    httpx.ConnectTimeout,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.PoolTimeout,
)


def _default_timeout() -> httpx.Timeout:
    return httpx.Timeout(settings.http_timeout_seconds, connect=10.0)


@dataclass(frozen=True)
class SitePolicy:
    """Per-site HTTP request policy configuration."""

    name: str
    max_attempts: int = 2
    timeout: httpx.Timeout = None  # Will be set to default if None
    treat_403_as_blocked: bool = True
    treat_404_as_permanent: bool = True
    treat_401_as_blocked: bool = True

    def __post_init__(self):
        """Set default timeout if not provided."""
        if self.timeout is None:
            object.__setattr__(self, 'timeout', _default_timeout())


class BlockedError(RuntimeError):
    """Raised when access is blocked (403, 401, or /blocked redirect)."""
    pass


class PermanentURLError(RuntimeError):
    """Raised when URL is permanently invalid (404)."""
    pass


class TransientFetchError(RuntimeError):
    """Raised when fetch fails after retries (5xx, timeouts, etc.)."""
    pass


class RateLimitedError(RuntimeError):
    """Raised when rate limited (429)."""

    def __init__(self, retry_after: Optional[int] = None):
        super().__init__("Rate limited")
        self.retry_after = retry_after


FETCH_ERRORS = (BlockedError, PermanentURLError, TransientFetchError, RateLimitedError)


def default_headers() -> dict[str, str]:
    """Get default browser-like headers."""
    return {
        "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        "Accept": "text/html, application/xhtml+xml, application/xml; q=0.9, */*; q=0.8",
        "Accept-Language": "en-US, en; q=0.9",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
    }


def _backoff(attempt: int) -> float:
    return (2 ** attempt) + random.random()


async def fetch_with_policy(
    client: httpx.AsyncClient,
    url: str,
    policy: SitePolicy,
    headers: Optional[dict[str, str]] = None,
) -> httpx.Response:
    """
    Fetch URL with per-site policy and status-aware error handling.

    Args:
        client: httpx AsyncClient instance
        url: URL to fetch
        policy: SitePolicy configuration
        headers: Optional additional headers (merged with defaults)

    Returns:
        httpx.Response on success

    Raises:
        BlockedError: If access is blocked (403, 401, or /blocked redirect)
        PermanentURLError: If URL is permanently invalid (404)
        RateLimitedError: If rate limited (429) on the final attempt
        TransientFetchError: If fetch fails after retries
    """
    hdrs = default_headers()
    if headers:
        hdrs.update(headers)

    last_exc: Exception | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            resp = await client.get(
                url,
                headers=hdrs,
                timeout=policy.timeout,
                follow_redirects=True,
            )

            if "/blocked" in str(resp.url).lower():
                raise BlockedError(f"{policy.name}: blocked redirect: {resp.url}")

            sc = resp.status_code

            if sc == 404 and policy.treat_404_as_permanent:
                raise PermanentURLError(f"{policy.name}: 404 for {url}")

            if (sc == 401 and policy.treat_401_as_blocked) or \
               (sc == 403 and policy.treat_403_as_blocked):
                raise BlockedError(f"{policy.name}: {sc} for {url}")

            if sc == 429:
                retry_after = resp.headers.get("Retry-After")
                retry_seconds = None
                if retry_after:
                    try:
                        retry_seconds = int(retry_after)
                    except (ValueError, TypeError):
                        pass
                raise RateLimitedError(retry_after=retry_seconds)

            if 200 <= sc < 300:
                return resp

            # 5xx and anything unexpected are retried
            last_exc = TransientFetchError(f"{policy.name}: status {sc} for {url}")
            if attempt < policy.max_attempts:
                sleep_s = _backoff(attempt)
                logger.warning(
                    f"{policy.name}: Status {sc}, retrying in {sleep_s:.1f}s "
                    f"(attempt {attempt}/{policy.max_attempts})"
                )
                await asyncio.sleep(sleep_s)
                continue
            raise TransientFetchError(
                f"{policy.name}: status {sc} for {url} after {policy.max_attempts} attempts"
            )

        except RateLimitedError as e:
            if attempt >= policy.max_attempts:
                raise
            sleep_s = float(e.retry_after) if e.retry_after is not None else _backoff(attempt)
            logger.warning(
                f"{policy.name}: Rate limited (429), retrying in {sleep_s:.1f}s "
                f"(attempt {attempt}/{policy.max_attempts})"
            )
            await asyncio.sleep(sleep_s)
            last_exc = e

        except RETRYABLE_EXC as e:
            if attempt >= policy.max_attempts:
                raise TransientFetchError(
                    f"{policy.name}: Transport error after {policy.max_attempts} attempts: {url}"
                ) from e
            sleep_s = _backoff(attempt)
            logger.warning(
                f"{policy.name}: Transport error ({type(e).__name__}), "
                f"retrying in {sleep_s:.1f}s (attempt {attempt}/{policy.max_attempts})"
            )
            await asyncio.sleep(sleep_s)
            last_exc = e

    raise TransientFetchError(
        f"{policy.name}: failed after {policy.max_attempts} attempts: {url}"
    ) from last_exc


# Per-site policy definitions
POLICIES: dict[str, SitePolicy] = {
    "stussy": SitePolicy(name="stussy", max_attempts=3),
    "carhartt-wip": SitePolicy(name="carhartt-wip", max_attempts=1),
    "default": SitePolicy(name="default", max_attempts=settings.http_max_attempts),
}


def get_policy_for_store(store: str) -> SitePolicy:
    """
    Get site policy for a store identifier or host.

    Args:
        store: Store identifier or host (e.g., "stussy", "eu.stussy.com")

    Returns:
        SitePolicy for the store, or default policy if not found
    """
    store_lower = store.lower()

    if store_lower in POLICIES:
        return POLICIES[store_lower]

    for key, policy in POLICIES.items():
        if key != "default" and key in store_lower:
            return policy

    return POLICIES["default"]


def is_valid_http_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    try:
        parts = urlsplit(url)
        # .port raises on out-of-range or non-numeric ports
        return parts.scheme in ("http", "https") and bool(parts.hostname) and parts.port != 0
    except ValueError:
        return False


class PageFetcher:
    """
    Shared async HTTP client for listing pages, detail pages and JSON feeds.

    One httpx.AsyncClient is reused for every request; policies are chosen
    by host.
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=_default_timeout(),
                follow_redirects=True,
                headers=default_headers(),
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    def _policy_for(self, url: str) -> SitePolicy:
        return get_policy_for_store(urlsplit(url).hostname or "default")

    async def fetch(self, url: str, headers: Optional[dict[str, str]] = None) -> httpx.Response:
        client = await self._get_client()
        return await fetch_with_policy(client, url, self._policy_for(url), headers=headers)

    async def fetch_html(self, url: str) -> str:
        """Fetch a page and return its body text."""
        resp = await self.fetch(url)
        return resp.text

    async def fetch_json(self, url: str) -> Any:
        """Fetch a JSON document."""
        resp = await self.fetch(url, headers={"Accept": "application/json"})
        return resp.json()

    async def is_reachable(self, url: str) -> bool:
        """
        Check that a store URL answers.

        Tries HEAD first and falls back to GET for servers that reject HEAD.
        A transport failure is treated as reachable so the listing fetch can
        report the real error; a malformed URL is not reachable.
        """
        if not is_valid_http_url(url):
            return False

        client = await self._get_client()
        try:
            resp = await client.head(url, follow_redirects=True)
            if resp.is_success:
                return True
            resp = await client.get(url, follow_redirects=True)
            return resp.is_success
        except httpx.InvalidURL:
            return False
        except httpx.HTTPError as e:
            logger.warning(f"Reachability check for {url} failed ({type(e).__name__}); assuming reachable")
            return True
