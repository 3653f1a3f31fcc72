"""Client for the Firecrawl structured extraction API.

Two endpoints are used:
- scrape: render one page and return its HTML plus a schema-shaped extract
- extract: run an asynchronous multi-page extraction job and poll for its result
"""

import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from store_ingest.config import settings
from store_ingest.ingest.errors import ExtractionServiceError
from store_ingest import metrics

logger = logging.getLogger(__name__)

PRODUCT_DETAIL_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "price": {"type": "string"},
        "description": {"type": "string"},
        "color": {"type": "string"},
        "categories": {"type": "array", "items": {"type": "string"}},
        "imageUrl": {"type": "string"},
    },
}

PRODUCT_DETAIL_PROMPT = (
    "You are a product data extractor. Extract structured data from this product page. "
    "Look for the product name, price, description, color, categories (from breadcrumbs or tags), "
    "and main image URL. For color, look for color names in the product title, variant selectors, "
    "or product details. For price, extract only the numeric value if possible."
)

LISTING_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "products": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "url": {"type": "string"},
                    "price": {"type": "string"},
                    "imageUrl": {"type": "string"},
                    "color": {"type": "string"},
                    "categories": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
        "categoryLinks": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "url": {"type": "string"},
                },
            },
        },
    },
}

LISTING_PROMPT = (
    "Extract all product information from this store page. For each product, extract the "
    "product name, product URL, price, image URL, color (if available) and categories. "
    "Also extract all category links from the page navigation."
)


class ExtractionClient:
    """
    Thin async wrapper over the Firecrawl REST API.

    Callers check `enabled` before use; every failure surfaces as
    ExtractionServiceError.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = 2.0,
    ):
        self.api_key = settings.firecrawl_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.firecrawl_base_url).rstrip("/")
        self.poll_interval = poll_interval
        self._http_client = client
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        return bool(self.api_key) and settings.use_structured_extraction

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=settings.firecrawl_timeout_seconds,
                headers={"Accept": "application/json"},
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, endpoint: str, method: str, path: str, payload: Optional[dict] = None) -> dict:
        if not self.api_key:
            raise ExtractionServiceError("Structured extraction API key is not configured")

        client = await self._get_client()
        try:
            resp = await client.request(method, f"{self.base_url}{path}", json=payload, headers=self._headers())
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            metrics.record_extraction_request(endpoint, success=False)
            raise ExtractionServiceError(f"{endpoint} request failed: {e}") from e

        if not isinstance(body, dict) or body.get("success") is False:
            metrics.record_extraction_request(endpoint, success=False)
            error = body.get("error") if isinstance(body, dict) else None
            raise ExtractionServiceError(f"{endpoint} request unsuccessful: {error or 'no data'}")

        metrics.record_extraction_request(endpoint, success=True)
        return body

    async def scrape(
        self,
        url: str,
        schema: dict[str, Any] = PRODUCT_DETAIL_SCHEMA,
        prompt: str = PRODUCT_DETAIL_PROMPT,
    ) -> dict[str, Any]:
        """
        Render one page and extract structured fields.

        Returns:
            Dict with "extract" (schema-shaped dict) and "html" (str or None)
        """
        body = await self._request(
            "scrape",
            "POST",
            "/scrape",
            {
                "url": url,
                "formats": ["html", "extract"],
                "extract": {"schema": schema, "systemPrompt": prompt},
            },
        )
        data = body.get("data") or {}
        return {
            "extract": data.get("extract") or {},
            "html": data.get("html"),
        }

    async def extract(
        self,
        urls: list[str],
        schema: dict[str, Any] = LISTING_SCHEMA,
        prompt: str = LISTING_PROMPT,
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """
        Run an extraction job over one or more URLs and wait for the result.

        Raises:
            ExtractionServiceError: On request failure, job failure or timeout
        """
        body = await self._request(
            "extract",
            "POST",
            "/extract",
            {"urls": urls, "prompt": prompt, "schema": schema, "allowExternalLinks": True},
        )

        # Some deployments answer synchronously
        if body.get("status") == "completed" or (body.get("data") and not body.get("id")):
            return body.get("data") or {}

        extract_id = body.get("id")
        if not extract_id:
            raise ExtractionServiceError("extract response carried neither data nor a job id")

        deadline = time.monotonic() + (timeout or settings.firecrawl_timeout_seconds)
        while time.monotonic() < deadline:
            await asyncio.sleep(self.poll_interval)
            status_body = await self._request("extract_status", "GET", f"/extract/{extract_id}")
            status = status_body.get("status")
            if status == "completed":
                return status_body.get("data") or {}
            if status in ("failed", "cancelled"):
                raise ExtractionServiceError(f"extract job {extract_id} {status}: {status_body.get('error')}")
            logger.debug(f"Extract job {extract_id} status: {status}")

        raise ExtractionServiceError(f"extract job {extract_id} timed out")
