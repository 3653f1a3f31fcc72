"""Listing adapter for Shopify storefronts that expose products.json."""

import logging
import re
from typing import Any, Optional
from urllib.parse import urlsplit

import httpx

from store_ingest.config import settings
from store_ingest.ingest.base import BaseAdapter, ListingResult, ProductCandidate
from store_ingest.ingest.errors import ListingFetchError
from store_ingest.ingest.http_client import FETCH_ERRORS, PageFetcher, PermanentURLError
from store_ingest.normalize.processor import url_host

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "new-arrivals"
SHOPIFY_PAGE_LIMIT = 250  # products.json hard cap


class ShopifyJsonAdapter(BaseAdapter):
    """
    Reads /collections/<handle>/products.json instead of scraping HTML.

    The feed carries title, handle, variants, images, tags and product_type,
    which covers everything a candidate needs plus the listing categories.
    """

    name = "shopify_json"

    def __init__(self, fetcher: PageFetcher, hosts: Optional[list[str]] = None):
        self.fetcher = fetcher
        self.hosts = [h.lower() for h in (hosts if hosts is not None else settings.shopify_json_hosts)]

    def detect(self, url: str) -> bool:
        host = url_host(url)
        if not host:
            return False
        return host.endswith(".myshopify.com") or any(h in host for h in self.hosts)

    @staticmethod
    def collection_handle(url: str) -> str:
        match = re.search(r"/collections/([^/?#]+)", url)
        return match.group(1) if match else DEFAULT_COLLECTION

    @staticmethod
    def origin(url: str) -> str:
        parts = urlsplit(url if "://" in url else f"https://{url}")
        return f"https://{parts.netloc}"

    async def extract_listing(self, url: str, max_hint: int) -> ListingResult:
        origin = self.origin(url)
        handle = self.collection_handle(url)
        limit = min(SHOPIFY_PAGE_LIMIT, max(max_hint, settings.listing_candidate_floor))
        feed_url = f"{origin}/collections/{handle}/products.json?limit={limit}"

        logger.info(f"Fetching Shopify product feed: {feed_url}")
        try:
            data = await self.fetcher.fetch_json(feed_url)
        except PermanentURLError as e:
            raise ListingFetchError(str(e), url, status_code=404) from e
        except FETCH_ERRORS as e:
            raise ListingFetchError(f"Failed to fetch product feed: {e}", url) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ListingFetchError(f"Failed to fetch product feed: {type(e).__name__}: {e}", url) from e
        except ValueError as e:
            raise ListingFetchError(f"Product feed is not valid JSON: {feed_url}", url) from e

        products = data.get("products") if isinstance(data, dict) else None
        candidates: list[ProductCandidate] = []
        categories: list[str] = []

        for product in (products or [])[:limit]:
            candidate = self._to_candidate(product, origin)
            if candidate is None:
                continue
            candidates.append(candidate)
            for category in self._categories(product):
                if category not in categories:
                    categories.append(category)

        logger.info(f"Shopify feed for {handle}: {len(candidates)} candidates, {len(categories)} categories")
        return ListingResult(candidates=candidates, categories=categories, adapter=self.name)

    def _to_candidate(self, product: dict[str, Any], origin: str) -> Optional[ProductCandidate]:
        handle = product.get("handle")
        title = (product.get("title") or "").strip()
        if not handle or not title:
            return None

        variants = product.get("variants") or []
        price = str(variants[0].get("price") or "") if variants else ""

        images = product.get("images") or []
        image = ""
        if images and isinstance(images[0], dict):
            image = images[0].get("src") or ""
        if image.startswith("//"):
            image = f"https:{image}"

        return ProductCandidate(
            source_url=f"{origin}/products/{handle}",
            display_name=title,
            raw_price_text=price,
            raw_image_url=image,
            raw_color_guess=self._color(product, variants),
            raw_categories=tuple(self._categories(product)),
        )

    @staticmethod
    def _color(product: dict[str, Any], variants: list[dict]) -> str:
        for option in product.get("options") or []:
            if not isinstance(option, dict):
                continue
            if (option.get("name") or "").lower() not in ("color", "colour"):
                continue
            position = option.get("position")
            if variants and position:
                value = variants[0].get(f"option{position}")
                if value:
                    return str(value)
            values = option.get("values") or []
            if values:
                return str(values[0])

        tokens = (product.get("handle") or "").split("-")
        last = tokens[-1] if len(tokens) > 1 else ""
        return "" if last.isdigit() else last

    @staticmethod
    def _categories(product: dict[str, Any]) -> list[str]:
        tags = product.get("tags") or []
        if isinstance(tags, str):
            tags = tags.split(",")

        found = []
        for tag in tags:
            tag = str(tag).strip().lower()
            if tag and len(tag) < 30 and ":" not in tag:
                found.append(tag)

        product_type = (product.get("product_type") or "").strip().lower()
        if product_type:
            found.append(product_type)
        return found
