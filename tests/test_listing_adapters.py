"""Tests for listing adapters and the listing extractor."""

import httpx
import pytest

from store_ingest.ingest.adapters import (
    AdapterRegistry,
    GenericHtmlAdapter,
    ShopifyJsonAdapter,
    StructuredExtractAdapter,
    build_registry,
)
from store_ingest.ingest.adapters.generic_html import clean_category_label
from store_ingest.ingest.errors import ListingFetchError, NoProductsFoundError
from store_ingest.ingest.extraction_client import ExtractionClient
from store_ingest.ingest.listing import ListingExtractor
from store_ingest.ingest import http_client

from factories import html_pages, mock_fetcher

STORE = "https://shop.example.com/collections/tees"

CARD_PAGE = """
<html><body>
  <div class="product-card">
    <a href="/products/basic-tee-black"><img data-src="//cdn.example.com/tee.jpg" alt="Basic Tee"></a>
    <h3 class="product-title">Basic Tee</h3>
    <span class="price">$40.00</span>
  </div>
  <div class="product-card">
    <a href="/products/stock-hoodie-grey">Stock Hoodie</a>
    <span class="money">€120,00</span>
  </div>
  <div class="product-card">
    <a href="/products/basic-tee-black?variant=2">Basic Tee again</a>
  </div>
  <div class="product-card"><p>Gift card banner</p></div>
</body></html>
"""

ANCHOR_PAGE = """
<html><body>
  <a href="/products/stock-logo-tee">Stock Logo Tee</a>
  <a href="/products/stock-logo-tee?variant=123">Stock Logo Tee</a>
  <a href="/products/stock-logo-tee.json">feed</a>
  <a href="/pages/about">About</a>
  <a href="https://shop.example.com/product/stock-fleece"><img src="/img/fleece.jpg"></a>
</body></html>
"""

CATEGORY_PAGE = """
<html><body>
  <nav>
    <a href="/collections/pants">Pants</a>
    <a href="/collections/all">Shop All</a>
    <a href="/pages/about">About</a>
  </nav>
  <div class="filter-group">
    <h3 class="filter-group__heading">Category</h3>
    <label>Tees (12)</label>
    <label>Hoodies</label>
  </div>
  <div class="filter-group">
    <h3 class="filter-group__heading">Size</h3>
    <label>XL</label>
  </div>
  <div class="product-card"><a href="/products/work-pant">Work Pant</a></div>
</body></html>
"""


def many_cards(count: int) -> str:
    cards = "".join(
        f'<div class="product-card"><a href="/products/item-{i}">Item {i}</a></div>' for i in range(count)
    )
    return f"<html><body>{cards}</body></html>"


class TestGenericHtmlAdapter:
    """Card selectors, anchor fallback and category discovery."""

    def setup_method(self):
        self.adapter = GenericHtmlAdapter(fetcher=None)

    def test_cards_in_page_order(self):
        result = self.adapter.parse_listing(CARD_PAGE, STORE, 10)

        assert result.adapter == "generic_html"
        assert [c.source_url for c in result.candidates] == [
            "https://shop.example.com/products/basic-tee-black",
            "https://shop.example.com/products/stock-hoodie-grey",
        ]
        first, second = result.candidates
        assert first.display_name == "Basic Tee"
        assert first.raw_price_text == "$40.00"
        assert first.raw_image_url == "https://cdn.example.com/tee.jpg"
        assert first.raw_color_guess == "black"
        assert second.display_name == "Stock Hoodie"
        assert second.raw_price_text == "€120,00"

    def test_anchor_fallback_dedupes_and_skips_feeds(self):
        result = self.adapter.parse_listing(ANCHOR_PAGE, STORE, 10)

        assert [c.source_url for c in result.candidates] == [
            "https://shop.example.com/products/stock-logo-tee",
            "https://shop.example.com/product/stock-fleece",
        ]
        assert result.candidates[0].display_name == "Stock Logo Tee"
        # image-only link falls back to a title from the slug
        assert result.candidates[1].display_name == "Stock Fleece"
        assert result.candidates[1].raw_image_url == "https://shop.example.com/img/fleece.jpg"

    def test_candidate_floor_applies_to_small_hints(self):
        result = self.adapter.parse_listing(many_cards(60), STORE, 5)
        assert len(result.candidates) == 50

    def test_large_hint_raises_the_cap(self):
        result = self.adapter.parse_listing(many_cards(80), STORE, 70)
        assert len(result.candidates) == 70

    def test_malformed_card_links_are_skipped(self):
        page = """
        <div class="product-card"><a href="https://[broken/products/bad-ipv6">Bad</a></div>
        <div class="product-card"><a href="https://shop.example.com:99999/products/bad-port">Bad</a></div>
        <div class="product-card"><a href="/products/basic-tee-black">Basic Tee</a></div>
        """
        result = self.adapter.parse_listing(page, STORE, 10)

        assert [c.source_url for c in result.candidates] == [
            "https://shop.example.com/products/basic-tee-black",
        ]

    def test_malformed_anchor_links_are_skipped(self):
        page = """
        <a href="/products/stock-logo-tee">Stock Logo Tee</a>
        <a href="https://shop.example.com:99999/products/bad-port">Bad</a>
        <a href="https://[broken/products/bad-ipv6">Bad</a>
        <a href="/products/stock-fleece">Stock Fleece</a>
        """
        result = self.adapter.parse_listing(page, STORE, 10)

        assert [c.display_name for c in result.candidates] == ["Stock Logo Tee", "Stock Fleece"]

    def test_discovers_categories(self):
        result = self.adapter.parse_listing(CATEGORY_PAGE, STORE, 10)
        assert result.categories == ["tees", "hoodies", "pants"]

    @pytest.mark.parametrize(
        "label, expected",
        [
            ("Tees (12)", "tees"),
            ("  Outer   Wear ", "outer wear"),
            ("Shop All", ""),
            ("2024", ""),
            ("x" * 41, ""),
        ],
    )
    def test_clean_category_label(self, label, expected):
        assert clean_category_label(label) == expected


@pytest.mark.asyncio
async def test_extractor_uses_generic_adapter_over_http():
    fetcher = mock_fetcher(html_pages({"/collections/tees": CARD_PAGE}))
    extractor = ListingExtractor(AdapterRegistry([GenericHtmlAdapter(fetcher)]), fetcher)

    result = await extractor.extract(STORE, 10)

    assert len(result.candidates) == 2
    assert result.adapter == "generic_html"
    await fetcher.close()


@pytest.mark.asyncio
async def test_missing_listing_page_is_a_404_listing_error():
    fetcher = mock_fetcher(html_pages({}))
    extractor = ListingExtractor(AdapterRegistry([GenericHtmlAdapter(fetcher)]), fetcher)

    with pytest.raises(ListingFetchError) as exc_info:
        await extractor.extract(STORE, 10)

    assert exc_info.value.status_code == 404
    assert exc_info.value.store_url == STORE


@pytest.mark.asyncio
async def test_server_error_is_a_listing_fetch_error(monkeypatch):
    monkeypatch.setattr(http_client, "_backoff", lambda attempt: 0)
    fetcher = mock_fetcher(lambda request: httpx.Response(503))
    extractor = ListingExtractor(AdapterRegistry([GenericHtmlAdapter(fetcher)]), fetcher)

    with pytest.raises(ListingFetchError) as exc_info:
        await extractor.extract(STORE, 10)

    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_other_transport_errors_are_listing_fetch_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadError("connection reset by peer", request=request)

    fetcher = mock_fetcher(handler)
    extractor = ListingExtractor(AdapterRegistry([GenericHtmlAdapter(fetcher)]), fetcher)

    with pytest.raises(ListingFetchError, match="ReadError") as exc_info:
        await extractor.extract(STORE, 10)

    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_page_without_products_raises_no_products_found():
    page = "<html><body><p>Coming soon</p></body></html>"
    fetcher = mock_fetcher(html_pages({"/collections/tees": page}))
    extractor = ListingExtractor(AdapterRegistry([GenericHtmlAdapter(fetcher)]), fetcher)

    with pytest.raises(NoProductsFoundError, match="No products found"):
        await extractor.extract(STORE, 10)


@pytest.mark.asyncio
async def test_discover_collections_same_host_only():
    page = """
    <a href="/collections/tees">Tees</a>
    <a href="/collections/tees?sort=price">Tees sorted</a>
    <a href="https://www.eu.stussy.com/collections/hoodies/">Hoodies</a>
    <a href="/collections/tees/products/basic-tee">Product</a>
    <a href="https://other.com/collections/tees">Elsewhere</a>
    """
    fetcher = mock_fetcher(html_pages({"/": page}))
    extractor = ListingExtractor(AdapterRegistry([GenericHtmlAdapter(fetcher)]), fetcher)

    found = await extractor.discover_collections("https://eu.stussy.com/")

    assert found == [
        "https://eu.stussy.com/collections/tees",
        "https://eu.stussy.com/collections/hoodies",
    ]


SHOPIFY_FEED = {
    "products": [
        {
            "title": "Basic Stock Tee",
            "handle": "basic-stock-tee-black",
            "product_type": "Tees",
            "tags": ["Mens", "summer:2024", "Tees"],
            "options": [{"name": "Size", "position": 1}, {"name": "Color", "position": 2}],
            "variants": [{"price": "45.00", "option1": "S", "option2": "Black"}],
            "images": [{"src": "//cdn.shopify.com/tee.jpg"}],
        },
        {"title": "", "handle": "untitled"},
        {
            "title": "8 Ball Fleece",
            "handle": "8-ball-fleece-1904953",
            "tags": "Fleece, Outerwear",
            "variants": [{"price": "150.00"}],
            "images": [],
        },
    ]
}


@pytest.mark.asyncio
async def test_shopify_feed_listing():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=SHOPIFY_FEED)

    adapter = ShopifyJsonAdapter(mock_fetcher(handler), hosts=["stussy.com"])
    result = await adapter.extract_listing("https://eu.stussy.com/collections/tees", 20)

    assert requests[0].url.path == "/collections/tees/products.json"
    assert requests[0].url.params["limit"] == "50"
    assert [c.display_name for c in result.candidates] == ["Basic Stock Tee", "8 Ball Fleece"]

    tee, fleece = result.candidates
    assert tee.source_url == "https://eu.stussy.com/products/basic-stock-tee-black"
    assert tee.raw_price_text == "45.00"
    assert tee.raw_image_url == "https://cdn.shopify.com/tee.jpg"
    assert tee.raw_color_guess == "Black"
    assert tee.raw_categories == ("mens", "tees", "tees")
    assert fleece.raw_color_guess == ""
    assert fleece.raw_image_url == ""
    assert result.categories == ["mens", "tees", "fleece", "outerwear"]


@pytest.mark.asyncio
async def test_shopify_store_root_uses_new_arrivals():
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={"products": []})

    adapter = ShopifyJsonAdapter(mock_fetcher(handler), hosts=["stussy.com"])
    result = await adapter.extract_listing("https://eu.stussy.com", 300)

    assert paths == ["/collections/new-arrivals/products.json"]
    assert result.candidates == []


@pytest.mark.asyncio
async def test_shopify_missing_collection_is_404():
    adapter = ShopifyJsonAdapter(mock_fetcher(lambda request: httpx.Response(404)), hosts=["stussy.com"])
    with pytest.raises(ListingFetchError) as exc_info:
        await adapter.extract_listing("https://eu.stussy.com/collections/nope", 10)
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_shopify_redirect_loop_is_a_listing_fetch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.TooManyRedirects("Exceeded maximum allowed redirects.", request=request)

    adapter = ShopifyJsonAdapter(mock_fetcher(handler), hosts=["stussy.com"])
    with pytest.raises(ListingFetchError, match="TooManyRedirects") as exc_info:
        await adapter.extract_listing("https://eu.stussy.com/collections/tees", 10)
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_structured_adapter_reads_extract_result():
    data = {
        "products": [
            {"name": "Chase Jacket", "url": "/en/products/chase-jacket", "price": "€180", "categories": ["Jackets"]},
            {"name": "Chase Jacket", "url": "https://carhartt-wip.com/en/products/chase-jacket/"},
            {"name": "", "url": "/en/products/blank"},
        ],
        "categoryLinks": [{"name": "Jackets", "url": "/en/men/jackets"}, {"name": "jackets"}],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/extract")
        return httpx.Response(200, json={"success": True, "status": "completed", "data": data})

    client = ExtractionClient(
        api_key="fc-test",
        base_url="https://firecrawl.test/v1",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    adapter = StructuredExtractAdapter(client, hosts=["carhartt-wip.com"])
    result = await adapter.extract_listing("https://carhartt-wip.com/en/men/jackets", 10)

    assert [c.source_url for c in result.candidates] == ["https://carhartt-wip.com/en/products/chase-jacket"]
    assert result.candidates[0].raw_categories == ("jackets",)
    assert result.categories == ["jackets"]


class TestAdapterRegistry:
    """Adapter selection order."""

    def setup_method(self):
        self.fetcher = mock_fetcher(html_pages({}))

    def test_default_order_keeps_generic_last(self):
        registry = build_registry(self.fetcher, ExtractionClient(api_key=""))
        assert registry.list_adapters() == ["shopify_json", "structured_extract", "generic_html"]

    def test_selection_by_host(self):
        registry = AdapterRegistry(
            [
                GenericHtmlAdapter(self.fetcher),
                ShopifyJsonAdapter(self.fetcher, hosts=["stussy.com"]),
                StructuredExtractAdapter(ExtractionClient(api_key=""), hosts=["carhartt-wip.com"]),
            ]
        )
        assert registry.list_adapters()[-1] == "generic_html"
        assert registry.select("https://eu.stussy.com/collections/tees").name == "shopify_json"
        assert registry.select("https://acme.myshopify.com").name == "shopify_json"
        # structured extraction without an API key never matches
        assert registry.select("https://carhartt-wip.com/en/men").name == "generic_html"
        assert registry.select("https://shop.example.com").name == "generic_html"

    def test_structured_adapter_selected_when_enabled(self):
        registry = build_registry(self.fetcher, ExtractionClient(api_key="fc-test"))
        assert registry.select("https://www.carhartt-wip.com/en/men").name == "structured_extract"

    def test_register_inserts_before_generic(self):
        registry = AdapterRegistry([GenericHtmlAdapter(self.fetcher)])
        registry.register(ShopifyJsonAdapter(self.fetcher, hosts=["example.com"]))
        assert registry.list_adapters() == ["shopify_json", "generic_html"]

    def test_generic_fallback_required(self):
        with pytest.raises(ValueError):
            AdapterRegistry([ShopifyJsonAdapter(self.fetcher)])
