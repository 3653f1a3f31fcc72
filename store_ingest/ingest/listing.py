"""Listing extraction: pick an adapter for a store URL and build candidates."""

import logging
import re
from urllib.parse import urlsplit

import httpx
from selectolax.parser import HTMLParser

from store_ingest.ingest.adapters import AdapterRegistry
from store_ingest.ingest.base import BaseAdapter, ListingResult
from store_ingest.ingest.errors import ListingError, ListingFetchError, NoProductsFoundError
from store_ingest.ingest.http_client import FETCH_ERRORS, PageFetcher
from store_ingest.normalize.processor import normalize_url, url_host
from store_ingest import metrics

logger = logging.getLogger(__name__)

_COLLECTION_PATH = re.compile(r"^/collections/[^/]+$")


class ListingExtractor:
    """Produces the ordered candidate list a job is created from."""

    def __init__(self, registry: AdapterRegistry, fetcher: PageFetcher):
        self.registry = registry
        self.fetcher = fetcher

    async def extract(self, url: str, max_hint: int) -> ListingResult:
        """
        Extract candidates from a store or collection URL.

        Raises:
            ListingFetchError: If the page (or feed) could not be fetched
            NoProductsFoundError: If no strategy found any product
        """
        adapter = self.registry.select(url)
        logger.info(f"Extracting listing from {url} with {adapter.name} (max_hint={max_hint})")

        try:
            result = await adapter.extract_listing(url, max_hint)
        except ListingError:
            metrics.record_listing(adapter.name, 0, success=False)
            raise

        if not result.candidates:
            metrics.record_listing(adapter.name, 0, success=False)
            raise NoProductsFoundError("No products found", url)

        result.adapter = result.adapter or adapter.name
        metrics.record_listing(adapter.name, len(result.candidates))
        return result

    async def discover_collections(self, base_url: str) -> list[str]:
        """
        Collection URLs linked from a storefront page, same host only.

        Raises:
            ListingFetchError: If the page could not be fetched
        """
        try:
            html = await self.fetcher.fetch_html(base_url)
        except FETCH_ERRORS as e:
            raise ListingFetchError(f"Failed to fetch {base_url}: {e}", base_url) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ListingFetchError(f"Failed to fetch {base_url}: {type(e).__name__}: {e}", base_url) from e

        host = url_host(base_url)
        collections: list[str] = []
        for link in HTMLParser(html).css("a[href*='/collections/']"):
            href = BaseAdapter.absolute_url(link.attributes.get("href") or "", base_url)
            canonical = normalize_url(href)
            if url_host(canonical) != host:
                continue
            if not _COLLECTION_PATH.match(urlsplit(canonical).path):
                continue
            if canonical not in collections:
                collections.append(canonical)

        logger.info(f"Discovered {len(collections)} collections on {base_url}")
        return collections
