"""Listing adapter backed by the third-party structured extraction service."""

import logging
from typing import Optional

from store_ingest.config import settings
from store_ingest.ingest.base import BaseAdapter, ListingResult, ProductCandidate
from store_ingest.ingest.errors import ExtractionServiceError, ListingFetchError
from store_ingest.ingest.extraction_client import ExtractionClient
from store_ingest.normalize.processor import normalize_url, url_host

logger = logging.getLogger(__name__)


class StructuredExtractAdapter(BaseAdapter):
    """For storefronts rendered client-side, where plain HTML has no product grid."""

    name = "structured_extract"

    def __init__(self, client: ExtractionClient, hosts: Optional[list[str]] = None):
        self.client = client
        self.hosts = [h.lower() for h in (hosts if hosts is not None else settings.structured_extract_hosts)]

    def detect(self, url: str) -> bool:
        if not self.client.enabled:
            return False
        host = url_host(url)
        return bool(host) and any(h in host for h in self.hosts)

    async def extract_listing(self, url: str, max_hint: int) -> ListingResult:
        limit = max(max_hint, settings.listing_candidate_floor)
        try:
            data = await self.client.extract([url])
        except ExtractionServiceError as e:
            raise ListingFetchError(str(e), url) from e

        candidates: list[ProductCandidate] = []
        seen: set[str] = set()
        for product in data.get("products") or []:
            if not isinstance(product, dict):
                continue
            product_url = self.absolute_url(product.get("url") or "", url)
            name = (product.get("name") or "").strip()
            if not product_url or not name:
                continue
            key = normalize_url(product_url)
            if key in seen:
                continue
            seen.add(key)
            candidates.append(
                ProductCandidate(
                    source_url=product_url,
                    display_name=name,
                    raw_price_text=str(product.get("price") or ""),
                    raw_image_url=self.absolute_url(product.get("imageUrl") or "", url),
                    raw_color_guess=str(product.get("color") or ""),
                    raw_categories=tuple(
                        str(c).strip().lower() for c in product.get("categories") or [] if c
                    ),
                )
            )
            if len(candidates) >= limit:
                break

        categories: list[str] = []
        for link in data.get("categoryLinks") or []:
            name = (link.get("name") or "").strip().lower() if isinstance(link, dict) else ""
            if name and name not in categories:
                categories.append(name)

        logger.info(f"Structured extraction for {url}: {len(candidates)} candidates")
        return ListingResult(candidates=candidates, categories=categories, adapter=self.name)
