"""Generic HTML listing adapter: product-card selectors, then an anchor scan."""

import logging
import re
from typing import Optional

import httpx
from selectolax.parser import HTMLParser, Node

from store_ingest.config import settings
from store_ingest.ingest.base import BaseAdapter, ListingResult, ProductCandidate
from store_ingest.ingest.errors import ListingFetchError
from store_ingest.ingest.http_client import FETCH_ERRORS, PageFetcher, PermanentURLError
from store_ingest.normalize.processor import (
    color_from_slug,
    normalize_url,
    slug_from_url,
    title_from_slug,
)

logger = logging.getLogger(__name__)

PRODUCT_PATH = re.compile(r"/products?/|[?&]variant=")

CARD_SELECTORS = [
    ".product-card",
    ".product-grid-item",
    ".product-item",
    ".grid__item",
    ".grid-product",
    "li.grid__item",
    "div[data-product-id]",
]

NAME_SELECTORS = [
    ".product-title",
    ".product-item-title",
    ".product-item__title",
    ".product-card__title",
    ".product-name",
    ".title",
    "h3",
    "h2",
]

PRICE_SELECTORS = [
    ".price",
    ".product-price",
    ".product-item__price",
    ".money",
    "[data-product-price]",
]

FILTER_GROUP_SELECTORS = [
    ".filter-group",
    ".facets__display",
    ".facets__disclosure",
    ".collection-filters",
]

FILTER_HEADING_SELECTORS = [
    ".filter-group__heading",
    ".facets__summary",
    "summary",
    "legend",
    "h2",
    "h3",
    "h4",
]

CATEGORY_LINK_SELECTORS = [
    "nav a",
    ".collection-filters a",
    ".facets__list a",
]

BREADCRUMB_SELECTORS = [
    ".breadcrumb a",
    ".breadcrumbs a",
    "nav[aria-label='breadcrumb'] a",
    "nav[aria-label='Breadcrumb'] a",
]

_IGNORED_LABELS = {"all", "clear", "clear all", "home", "index", "shop", "shop all", "view all", "reset"}


class GenericHtmlAdapter(BaseAdapter):
    """
    Fallback adapter that works on any server-rendered storefront.

    Always matches, so it must be registered last.
    """

    name = "generic_html"

    def __init__(self, fetcher: PageFetcher):
        self.fetcher = fetcher

    def detect(self, url: str) -> bool:
        return True

    async def extract_listing(self, url: str, max_hint: int) -> ListingResult:
        try:
            html = await self.fetcher.fetch_html(url)
        except PermanentURLError as e:
            raise ListingFetchError(str(e), url, status_code=404) from e
        except FETCH_ERRORS as e:
            raise ListingFetchError(f"Failed to fetch listing page: {e}", url) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ListingFetchError(f"Failed to fetch listing page: {type(e).__name__}: {e}", url) from e

        return self.parse_listing(html, url, max_hint)

    def parse_listing(self, html: str, url: str, max_hint: int) -> ListingResult:
        """Parse an already fetched listing page."""
        tree = HTMLParser(html)
        limit = max(max_hint, settings.listing_candidate_floor)

        candidates = self._from_cards(tree, url, limit)
        if not candidates:
            logger.debug(f"No product cards on {url}, scanning anchors")
            candidates = self._from_anchors(tree, url, limit)

        categories = self.discover_categories(tree)
        logger.info(f"Generic listing for {url}: {len(candidates)} candidates, {len(categories)} categories")
        return ListingResult(candidates=candidates, categories=categories, adapter=self.name)

    def _from_cards(self, tree: HTMLParser, base_url: str, limit: int) -> list[ProductCandidate]:
        for selector in CARD_SELECTORS:
            candidates: list[ProductCandidate] = []
            seen: set[str] = set()
            for card in tree.css(selector):
                candidate = self._card_to_candidate(card, base_url)
                if candidate is None:
                    continue
                key = normalize_url(candidate.source_url)
                if key in seen:
                    continue
                seen.add(key)
                candidates.append(candidate)
                if len(candidates) >= limit:
                    break
            if candidates:
                logger.debug(f"Card selector {selector!r} matched {len(candidates)} products")
                return candidates
        return []

    def _card_to_candidate(self, card: Node, base_url: str) -> Optional[ProductCandidate]:
        link = self._product_link(card)
        if link is None:
            return None
        product_url = self.absolute_url(self.node_attr(link, "href"), base_url)
        if not product_url:
            return None

        name = ""
        for selector in NAME_SELECTORS:
            name = self.node_text(card.css_first(selector))
            if name:
                break
        img = card.css_first("img")
        if not name:
            name = self.node_attr(img, "alt") or self.node_text(link)
        if not name:
            name = title_from_slug(slug_from_url(product_url))

        price = ""
        for selector in PRICE_SELECTORS:
            price = self.node_text(card.css_first(selector))
            if price:
                break

        return ProductCandidate(
            source_url=product_url,
            display_name=name,
            raw_price_text=price,
            raw_image_url=self.image_src(img, base_url),
            raw_color_guess=color_from_slug(product_url),
        )

    @staticmethod
    def _product_link(card: Node) -> Optional[Node]:
        if card.tag == "a" and PRODUCT_PATH.search(card.attributes.get("href") or ""):
            return card
        for link in card.css("a[href]"):
            if PRODUCT_PATH.search(link.attributes.get("href") or ""):
                return link
        return None

    def _from_anchors(self, tree: HTMLParser, base_url: str, limit: int) -> list[ProductCandidate]:
        candidates: list[ProductCandidate] = []
        seen: set[str] = set()
        for link in tree.css("a[href]"):
            href = link.attributes.get("href") or ""
            if not PRODUCT_PATH.search(href) or href.endswith(".json"):
                continue
            product_url = self.absolute_url(href, base_url)
            key = normalize_url(product_url)
            if not product_url or key in seen:
                continue
            seen.add(key)

            text = self.node_text(link)
            name = text if 0 < len(text) <= 120 else title_from_slug(slug_from_url(product_url))
            candidates.append(
                ProductCandidate(
                    source_url=product_url,
                    display_name=name,
                    raw_image_url=self.image_src(link.css_first("img"), base_url),
                    raw_color_guess=color_from_slug(product_url),
                )
            )
            if len(candidates) >= limit:
                break
        return candidates

    def discover_categories(self, tree: HTMLParser) -> list[str]:
        """Category names from filter facets, category navigation and breadcrumbs."""
        found: list[str] = []

        def add(label: str):
            label = clean_category_label(label)
            if label and label not in found:
                found.append(label)

        for group_selector in FILTER_GROUP_SELECTORS:
            for group in tree.css(group_selector):
                heading = ""
                for heading_selector in FILTER_HEADING_SELECTORS:
                    heading = self.node_text(group.css_first(heading_selector)).lower()
                    if heading:
                        break
                if "category" not in heading and "product type" not in heading:
                    continue
                for option in group.css("label, a, .facets__label"):
                    add(self.node_text(option))

        for selector in CATEGORY_LINK_SELECTORS:
            for link in tree.css(selector):
                href = (link.attributes.get("href") or "").lower()
                if "category" in href or "/collections/" in href:
                    add(self.node_text(link))

        for selector in BREADCRUMB_SELECTORS:
            for link in tree.css(selector):
                add(self.node_text(link))

        return found


def clean_category_label(label: str) -> str:
    """Lowercase a facet label, dropping counts and non-category entries."""
    label = re.sub(r"\(\s*\d+\s*\)", "", label or "")
    label = " ".join(label.split()).strip().lower()
    if not label or len(label) > 40 or label.isdigit() or label in _IGNORED_LABELS:
        return ""
    return label
