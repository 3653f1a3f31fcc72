"""Test data factories."""

import httpx

from store_ingest.ingest.base import ProductCandidate
from store_ingest.ingest.http_client import PageFetcher


def make_candidates(count: int, host: str = "https://shop.example.com") -> list[ProductCandidate]:
    return [
        ProductCandidate(
            source_url=f"{host}/products/item-{i}",
            display_name=f"Item {i}",
            raw_price_text=f"${i}0.00",
            raw_image_url=f"{host}/img/{i}.jpg",
        )
        for i in range(1, count + 1)
    ]


def mock_fetcher(handler) -> PageFetcher:
    """PageFetcher whose requests are answered by `handler(request)`."""
    return PageFetcher(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def html_pages(pages: dict[str, str]):
    """Handler serving fixed HTML by URL path; anything else is a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = pages.get(request.url.path)
        if body is None:
            return httpx.Response(404, text="Not Found")
        return httpx.Response(200, text=body, headers={"Content-Type": "text/html"})

    return handler
