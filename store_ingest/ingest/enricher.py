"""Detail enrichment: fill in a candidate's attributes from its product page.

Every field is resolved by an ordered list of small strategies; the first
one that yields a non-empty value wins. Strategies never raise into the
caller, and a page that cannot be fetched degrades to candidate-only data.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

import httpx
from selectolax.parser import HTMLParser

from store_ingest.ingest.base import BaseAdapter, EnrichedProduct, ProductCandidate
from store_ingest.ingest.errors import ExtractionServiceError
from store_ingest.ingest.extraction_client import ExtractionClient
from store_ingest.ingest.http_client import FETCH_ERRORS, PageFetcher
from store_ingest.ingest.json_extractor import (
    breadcrumb_names,
    extract_json_ld,
    extract_products_from_json_ld,
    product_images,
    product_price,
)
from store_ingest.normalize.processor import (
    PLACEHOLDER_CATEGORIES,
    brand_from_url,
    category_from_url,
    clean_categories,
    color_from_slug,
    normalize_price,
)
from store_ingest import metrics

logger = logging.getLogger(__name__)

PRICE_SELECTORS = [
    ".product-single__price",
    ".product__price",
    ".product-price",
    ".price",
    "[data-product-price]",
    ".money",
]

DESCRIPTION_SELECTORS = [
    ".product-description",
    ".product-single__description",
    ".product-details__description",
    ".product__description",
    "[data-product-description]",
]

SELECTED_COLOR_SELECTORS = [
    ".color-option.selected",
    ".color-swatch.selected",
    ".color-selector.selected",
    ".swatch-selected",
    ".color-swatch.active",
    ".product-option-value",
    "[data-selected-color]",
]

BREADCRUMB_SELECTORS = [
    ".breadcrumb a",
    ".breadcrumbs a",
    "nav[aria-label='breadcrumb'] a",
    "nav[aria-label='Breadcrumb'] a",
]

TAG_SELECTORS = [
    ".product-tags a",
    ".tags a",
    ".product__tags a",
]

MAIN_IMAGE_SELECTORS = [
    ".product-featured-img",
    ".product-single__photo img",
    ".product-image img",
    ".product__media img",
    "[data-zoom-image]",
]

GALLERY_IMAGE_SELECTORS = [
    ".product-single__photos img",
    ".product__media-list img",
    ".product-gallery img",
    ".product-images img",
    ".product__media img",
]

COLOR_KEYWORDS = [
    "black", "white", "red", "blue", "green", "yellow", "purple", "pink",
    "orange", "brown", "grey", "gray", "navy", "olive", "tan", "cream",
    "beige", "khaki", "charcoal",
]

# Checked in order; the first rule that matches the product name wins
NAME_CATEGORY_RULES: list[tuple[tuple[str, ...], str]] = [
    (("t-shirt", "tee"), "t-shirts"),
    (("hoodie", "hooded"), "hoodies"),
    (("sweatshirt", "crew"), "sweats"),
    (("shirt",), "shirts"),
    (("pant", "trouser", "jean"), "trousers"),
    (("short",), "shorts"),
    (("jacket", "coat", "parka"), "outerwear"),
    (("sweater", "knit", "cardigan"), "knitwear"),
    (("cap", "hat", "beanie"), "headwear"),
    (("bag", "tote", "backpack"), "bags"),
]

_IGNORED_BREADCRUMBS = {"home", "index", "shop", "all", "products"}


@dataclass
class DetailPage:
    """Everything the strategies may look at for one product."""

    url: str
    candidate: ProductCandidate
    tree: Optional[HTMLParser] = None
    json_ld: list[dict] = field(default_factory=list)
    product_ld: Optional[dict] = None
    extracted: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(cls, candidate: ProductCandidate, html: Optional[str], extracted: Optional[dict] = None):
        page = cls(url=candidate.source_url, candidate=candidate, extracted=extracted or {})
        if html:
            page.tree = HTMLParser(html)
            page.json_ld = extract_json_ld(page.tree)
            products = extract_products_from_json_ld(page.json_ld)
            page.product_ld = products[0] if products else None
        return page

    def css_text(self, selector: str) -> str:
        if self.tree is None:
            return ""
        return BaseAdapter.node_text(self.tree.css_first(selector))

    def meta(self, *keys: str) -> str:
        if self.tree is None:
            return ""
        for key in keys:
            node = self.tree.css_first(f"meta[property='{key}']") or self.tree.css_first(f"meta[name='{key}']")
            value = BaseAdapter.node_attr(node, "content")
            if value:
                return value
        return ""

    @property
    def title(self) -> str:
        return self.css_text("h1") or self.candidate.display_name


Strategy = Callable[[DetailPage], Any]


def first_result(strategies: Sequence[Strategy], page: DetailPage):
    """Run strategies in order and return the first non-empty result."""
    for strategy in strategies:
        try:
            value = strategy(page)
        except Exception as e:
            logger.debug(f"{strategy.__name__} failed on {page.url}: {e}")
            continue
        if value:
            return value
    return None


def extracted(key: str) -> Strategy:
    """Strategy reading a field from the structured extraction result."""

    def from_extraction(page: DetailPage):
        value = page.extracted.get(key)
        if isinstance(value, str):
            return value.strip()
        return value

    from_extraction.__name__ = f"extracted_{key}"
    return from_extraction


# Price strategies

def price_from_meta(page: DetailPage) -> str:
    return page.meta("product:price:amount", "og:price:amount")


def price_from_containers(page: DetailPage) -> str:
    for selector in PRICE_SELECTORS:
        text = page.css_text(selector)
        if re.search(r"\d", text):
            return text
    return ""


def price_from_json_ld(page: DetailPage) -> str:
    return product_price(page.product_ld) if page.product_ld else ""


def price_from_candidate(page: DetailPage) -> str:
    return page.candidate.raw_price_text


PRICE_STRATEGIES: list[Strategy] = [
    extracted("price"),
    price_from_meta,
    price_from_containers,
    price_from_json_ld,
    price_from_candidate,
]


# Description strategies

def description_from_containers(page: DetailPage) -> str:
    for selector in DESCRIPTION_SELECTORS:
        text = page.css_text(selector)
        if text:
            return text
    return ""


def description_from_json_ld(page: DetailPage) -> str:
    if not page.product_ld:
        return ""
    return " ".join(str(page.product_ld.get("description") or "").split())


def description_from_meta(page: DetailPage) -> str:
    return page.meta("og:description", "description")


DESCRIPTION_STRATEGIES: list[Strategy] = [
    extracted("description"),
    description_from_containers,
    description_from_json_ld,
    description_from_meta,
]


# Color strategies

def color_from_selected_option(page: DetailPage) -> str:
    if page.tree is None:
        return ""
    for selector in SELECTED_COLOR_SELECTORS:
        node = page.tree.css_first(selector)
        value = BaseAdapter.node_attr(node, "data-selected-color", "data-color", "title") or BaseAdapter.node_text(node)
        if value:
            return value
    for node in page.tree.css("input[type='radio']"):
        name = (node.attributes.get("name") or "").lower()
        if ("color" in name or "colour" in name) and "checked" in node.attributes:
            return BaseAdapter.node_attr(node, "value")
    return ""


def color_from_title_keyword(page: DetailPage) -> str:
    title = page.title.lower()
    for keyword in COLOR_KEYWORDS:
        if re.search(rf"\b{keyword}\b", title):
            return keyword
    return ""


def color_from_title_suffix(page: DetailPage) -> str:
    """Text after the last slash in titles like "Basic Tee / Washed Black"."""
    parts = [p.strip() for p in page.title.split("/")]
    return parts[-1] if len(parts) > 1 and len(parts[-1]) <= 30 else ""


def color_from_url_slug(page: DetailPage) -> str:
    return color_from_slug(page.url)


def color_from_candidate(page: DetailPage) -> str:
    return page.candidate.raw_color_guess


COLOR_STRATEGIES: list[Strategy] = [
    extracted("color"),
    color_from_selected_option,
    color_from_title_keyword,
    color_from_title_suffix,
    color_from_url_slug,
    color_from_candidate,
]


# Category strategies

def _usable_crumb(label: str, page: DetailPage) -> bool:
    lowered = label.lower()
    return bool(lowered) and not lowered.isdigit() and lowered not in _IGNORED_BREADCRUMBS \
        and lowered != page.candidate.display_name.lower()


def categories_from_breadcrumbs(page: DetailPage) -> list[str]:
    labels: list[str] = []
    if page.tree is not None:
        for selector in BREADCRUMB_SELECTORS:
            labels.extend(BaseAdapter.node_text(node) for node in page.tree.css(selector))
    labels.extend(breadcrumb_names(page.json_ld))
    return [label for label in labels if _usable_crumb(label, page)]


def categories_from_tags(page: DetailPage) -> list[str]:
    labels: list[str] = []
    if page.tree is not None:
        for selector in TAG_SELECTORS:
            labels.extend(BaseAdapter.node_text(node) for node in page.tree.css(selector))
    meta_category = page.meta("product:category")
    if meta_category:
        labels.append(meta_category)
    if page.product_ld and isinstance(page.product_ld.get("category"), str):
        labels.append(page.product_ld["category"])
    return [label for label in labels if label and ":" not in label and len(label) < 30]


def categories_from_candidate(page: DetailPage) -> list[str]:
    return list(page.candidate.raw_categories)


def categories_from_name(page: DetailPage) -> list[str]:
    name = page.candidate.display_name.lower() or page.title.lower()
    for keywords, category in NAME_CATEGORY_RULES:
        pattern = r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")s?\b"
        if re.search(pattern, name):
            return [category]
    return []


CATEGORY_STRATEGIES: list[Strategy] = [
    extracted("categories"),
    categories_from_breadcrumbs,
    categories_from_tags,
    categories_from_candidate,
    categories_from_name,
]


# Image strategies

def images_from_gallery(page: DetailPage) -> list[str]:
    if page.tree is None:
        return []
    found: list[str] = []
    for selector in MAIN_IMAGE_SELECTORS + GALLERY_IMAGE_SELECTORS:
        for node in page.tree.css(selector):
            src = BaseAdapter.image_src(node, page.url)
            if src and src not in found:
                found.append(src)
    return found


def images_from_json_ld(page: DetailPage) -> list[str]:
    if not page.product_ld:
        return []
    return [BaseAdapter.absolute_url(src, page.url) for src in product_images(page.product_ld)]


def images_from_meta(page: DetailPage) -> list[str]:
    src = page.meta("og:image", "og:image:secure_url")
    return [BaseAdapter.absolute_url(src, page.url)] if src else []


IMAGE_STRATEGIES: list[Strategy] = [
    images_from_gallery,
    images_from_json_ld,
    images_from_meta,
]


class DetailEnricher:
    """
    Fetches a candidate's product page and resolves its missing attributes.

    When the structured extraction service is configured it is asked first;
    its values take precedence and the HTML it returns feeds the selector
    strategies, saving a second fetch.
    """

    def __init__(self, fetcher: PageFetcher, extraction_client: Optional[ExtractionClient] = None):
        self.fetcher = fetcher
        self.extraction_client = extraction_client

    async def _load(self, candidate: ProductCandidate) -> tuple[Optional[str], dict, str]:
        html: Optional[str] = None
        fields: dict = {}
        source = "candidate"

        if self.extraction_client is not None and self.extraction_client.enabled:
            try:
                result = await self.extraction_client.scrape(candidate.source_url)
                fields = result.get("extract") or {}
                html = result.get("html")
                source = "structured"
            except ExtractionServiceError as e:
                logger.warning(f"Structured extraction failed for {candidate.source_url}, using HTML: {e}")

        if not html:
            try:
                html = await self.fetcher.fetch_html(candidate.source_url)
                source = "html" if source == "candidate" else source
            except (*FETCH_ERRORS, httpx.HTTPError, httpx.InvalidURL) as e:
                logger.warning(f"Could not fetch detail page {candidate.source_url}: {e}")

        return html, fields, source

    async def enrich(
        self,
        candidate: ProductCandidate,
        store_url: str,
        listing_categories: Sequence[str] = (),
    ) -> EnrichedProduct:
        """
        Enrich one candidate. Never raises for fetch or parse failures.

        Args:
            candidate: Candidate from the listing
            store_url: Store or collection URL the job was started with
            listing_categories: Categories found on the listing page, used
                only when nothing specific is found for the product itself
        """
        started = time.monotonic()
        html, fields, source = await self._load(candidate)
        page = DetailPage.build(candidate, html, fields)

        price_text = str(first_result(PRICE_STRATEGIES, page) or "")
        description = first_result(DESCRIPTION_STRATEGIES, page)
        color = str(first_result(COLOR_STRATEGIES, page) or "").strip().lower() or "unknown"

        found = first_result(CATEGORY_STRATEGIES, page) or []
        if isinstance(found, str):
            found = [found]
        categories = list(found)
        collection_category = category_from_url(store_url)
        if collection_category:
            categories.append(collection_category)
        cleaned = clean_categories(categories)
        if listing_categories and all(c in PLACEHOLDER_CATEGORIES for c in cleaned):
            cleaned = clean_categories(list(cleaned) + list(listing_categories))

        images = list(first_result(IMAGE_STRATEGIES, page) or [])
        if page.extracted.get("imageUrl"):
            extracted_image = BaseAdapter.absolute_url(str(page.extracted["imageUrl"]), page.url)
            images = [extracted_image] + [i for i in images if i != extracted_image]
        image_url = images[0] if images else candidate.raw_image_url
        secondary = next((i for i in images[1:] if i != image_url), None)

        name = (
            candidate.display_name
            or str(page.extracted.get("name") or "")
            or str((page.product_ld or {}).get("name") or "").strip()
            or page.title
        )

        metrics.record_detail_fetch(source, time.monotonic() - started)
        return EnrichedProduct(
            source_url=candidate.source_url,
            display_name=name,
            brand=brand_from_url(store_url),
            raw_price_text=price_text,
            raw_image_url=candidate.raw_image_url,
            raw_color_guess=candidate.raw_color_guess,
            description=str(description) if description else None,
            color=color,
            categories=cleaned,
            canonical_price=normalize_price(price_text),
            image_url=image_url or "",
            secondary_image_url=secondary,
        )
