"""Listing adapter registry."""

from __future__ import annotations

import logging
from typing import Iterable

from store_ingest.ingest.base import BaseAdapter
from store_ingest.ingest.adapters.generic_html import GenericHtmlAdapter
from store_ingest.ingest.adapters.shopify_json import ShopifyJsonAdapter
from store_ingest.ingest.adapters.structured_extract import StructuredExtractAdapter
from store_ingest.ingest.extraction_client import ExtractionClient
from store_ingest.ingest.http_client import PageFetcher

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """
    Priority-ordered list of listing adapters.

    Specialized adapters come first; the generic adapter always matches and
    is always kept last.
    """

    def __init__(self, adapters: Iterable[BaseAdapter]):
        adapters = list(adapters)
        fallbacks = [a for a in adapters if isinstance(a, GenericHtmlAdapter)]
        if not fallbacks:
            raise ValueError("AdapterRegistry requires a GenericHtmlAdapter fallback")
        self._adapters = [a for a in adapters if not isinstance(a, GenericHtmlAdapter)] + fallbacks[:1]

    def select(self, url: str) -> BaseAdapter:
        """Return the first adapter that handles `url`."""
        for adapter in self._adapters:
            if adapter.detect(url):
                logger.debug(f"Selected adapter {adapter.name} for {url}")
                return adapter
        return self._adapters[-1]

    def register(self, adapter: BaseAdapter) -> None:
        """Add a specialized adapter ahead of the generic fallback."""
        self._adapters.insert(len(self._adapters) - 1, adapter)
        logger.info(f"Registered listing adapter: {adapter.name}")

    def list_adapters(self) -> list[str]:
        return [adapter.name for adapter in self._adapters]


def build_registry(fetcher: PageFetcher, extraction_client: ExtractionClient) -> AdapterRegistry:
    """Default registry: Shopify JSON feed, structured extraction, generic HTML."""
    return AdapterRegistry(
        [
            ShopifyJsonAdapter(fetcher),
            StructuredExtractAdapter(extraction_client),
            GenericHtmlAdapter(fetcher),
        ]
    )


__all__ = [
    "AdapterRegistry",
    "GenericHtmlAdapter",
    "ShopifyJsonAdapter",
    "StructuredExtractAdapter",
    "build_registry",
]
