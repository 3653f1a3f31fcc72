"""Base adapter interface and the data passed through the scrape pipeline."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional
from urllib.parse import urljoin

from selectolax.parser import Node

from store_ingest.normalize.processor import normalize_url


@dataclass(frozen=True)
class ProductCandidate:
    """A minimally extracted product reference found on a listing page."""

    source_url: str
    display_name: str
    raw_price_text: str = ""
    raw_image_url: str = ""
    raw_color_guess: str = ""
    raw_categories: tuple[str, ...] = ()


@dataclass
class ListingResult:
    """Candidates plus any categories discovered on the listing page."""

    candidates: list[ProductCandidate]
    categories: list[str] = field(default_factory=list)
    adapter: str = ""


@dataclass
class EnrichedProduct:
    """A candidate with its detail-page attributes filled in."""

    source_url: str
    display_name: str
    brand: str
    raw_price_text: str = ""
    raw_image_url: str = ""
    raw_color_guess: str = ""
    description: Optional[str] = None
    color: str = "unknown"
    categories: tuple[str, ...] = ()
    canonical_price: Optional[Decimal] = None
    image_url: str = ""
    secondary_image_url: Optional[str] = None

    @property
    def category(self) -> Optional[str]:
        """Primary category (first specific one)."""
        return self.categories[0] if self.categories else None


class BaseAdapter(ABC):
    """
    Abstract base class for listing adapters.

    Adapters are tried in priority order; the first whose detect() accepts
    the store URL extracts the listing.
    """

    name: str = ""

    @abstractmethod
    def detect(self, url: str) -> bool:
        """Whether this adapter handles the given store URL."""
        pass

    @abstractmethod
    async def extract_listing(self, url: str, max_hint: int) -> ListingResult:
        """
        Extract product candidates from a listing page.

        Args:
            url: Store or collection URL
            max_hint: Number of products the caller wants to save

        Returns:
            ListingResult (candidates may be empty)

        Raises:
            ListingFetchError: If the listing page could not be fetched
        """
        pass

    @staticmethod
    def node_text(node: Optional[Node]) -> str:
        """Stripped text of a node, collapsing inner whitespace."""
        if node is None:
            return ""
        return " ".join((node.text(strip=True, separator=" ") or "").split())

    @staticmethod
    def node_attr(node: Optional[Node], *names: str) -> str:
        """First non-empty attribute among `names`."""
        if node is None:
            return ""
        for name in names:
            value = node.attributes.get(name)
            if value and value.strip():
                return value.strip()
        return ""

    @staticmethod
    def absolute_url(href: str, base_url: str) -> str:
        """
        Resolve a possibly relative or protocol-relative URL.

        Malformed links resolve to "", which callers treat as no URL.
        """
        href = (href or "").strip()
        if not href:
            return ""
        if href.startswith("//"):
            href = f"https:{href}"
        try:
            resolved = urljoin(base_url, href)
        except ValueError:
            return ""
        return resolved if normalize_url(resolved) else ""

    @classmethod
    def image_src(cls, node: Optional[Node], base_url: str) -> str:
        """Image URL from src, lazy-load attributes or srcset."""
        src = cls.node_attr(node, "src", "data-src", "data-original", "data-zoom-image", "content")
        if not src:
            srcset = cls.node_attr(node, "srcset", "data-srcset")
            src = srcset.split(",")[0].strip().split(" ")[0] if srcset else ""
        if not src or src.startswith("data:"):
            return ""
        return cls.absolute_url(src, base_url)
