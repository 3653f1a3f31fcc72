"""API tests for the scrape-store, scrape-auto and scrape-product endpoints.

The real pipeline runs against a mocked storefront and an in-memory catalog.
"""

import asyncio

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from store_ingest.api.deps import get_task_runner
from store_ingest.api.routes import scrape_auto, scrape_product, scrape_store
from store_ingest.config import settings
from store_ingest.ingest import http_client
from store_ingest.ingest.extraction_client import ExtractionClient
from store_ingest.worker.job_registry import JobRegistry
from store_ingest.worker.tasks import ScrapeTaskRunner

from factories import mock_fetcher

STORE = "https://shop.example.com/collections/tees"


def listing(handles: list[str]) -> str:
    cards = "".join(
        f'<div class="product-card"><a href="/products/{h}">{h.replace("-", " ").title()}</a>'
        f'<span class="price">$30.00</span></div>'
        for h in handles
    )
    return f"<html><body>{cards}</body></html>"


PRODUCT_PAGE = """
<html><head>
<script type="application/ld+json">
{"@context": "https://schema.org", "@graph": [
  {"@type": "Product", "name": "Field Jacket",
   "description": "Waxed cotton field jacket.",
   "image": ["https://cdn.example.com/j1.jpg", "https://cdn.example.com/j2.jpg"],
   "offers": {"@type": "Offer", "price": "120.00", "priceCurrency": "USD"}},
  {"@type": "BreadcrumbList", "itemListElement": [
    {"position": 1, "name": "Home"}, {"position": 2, "name": "Outerwear"}]}
]}
</script>
</head><body></body></html>
"""

PAGES = {
    "/collections/tees": listing(["basic-tee-black", "stock-tee-white", "logo-tee-grey"]),
    "/collections/hoodies": listing(["stock-hoodie-grey", "basic-hoodie-navy"]),
    "/collections/empty": "<html><body><p>Nothing here yet</p></body></html>",
    "/products/field-jacket-olive": PRODUCT_PAGE,
}


def storefront(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path in ("/collections/broken", "/collections/gone"):
        if request.method == "HEAD":
            return httpx.Response(200)
        return httpx.Response(503 if path.endswith("broken") else 404)

    body = PAGES.get(path)
    if body is None:
        return httpx.Response(404)
    return httpx.Response(200, text=body)


async def drain(runner: ScrapeTaskRunner) -> None:
    """Wait for every background job, including ones started meanwhile."""
    while runner._tasks:
        await asyncio.gather(*list(runner._tasks), return_exceptions=True)
        await asyncio.sleep(0)


@pytest_asyncio.fixture
async def runner(session_factory, catalog, monkeypatch):
    monkeypatch.setattr(http_client, "_backoff", lambda attempt: 0)
    runner = ScrapeTaskRunner(registry=JobRegistry())
    await runner.initialize(
        session_factory=session_factory,
        fetcher=mock_fetcher(storefront),
        extraction_client=ExtractionClient(api_key=""),
        schema=catalog,
    )
    yield runner
    await runner.close()


@pytest_asyncio.fixture
async def client(runner):
    app = FastAPI()
    app.include_router(scrape_store.router)
    app.include_router(scrape_auto.router)
    app.include_router(scrape_product.router)
    app.dependency_overrides[get_task_runner] = lambda: runner

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


class TestScrapeStore:
    """POST/GET /api/scrape-store and /stop."""

    @pytest.mark.asyncio
    async def test_scrape_runs_to_completion(self, client, runner):
        response = await client.post("/api/scrape-store", json={"storeUrl": STORE, "maxProducts": 2})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "processing"
        assert data["totalCandidates"] == 3
        assert data["targetNewProducts"] == 2

        await drain(runner)

        status = (await client.get("/api/scrape-store", params={"jobId": data["jobId"]})).json()
        assert status["status"] == "completed"
        assert status["savedCount"] == 2
        assert status["skippedCount"] == 0
        assert status["totalProcessed"] == 2
        assert status["progress"] == 100
        assert status["adapter"] == "generic_html"
        assert [item["url"] for item in status["savedItems"]] == [
            "https://shop.example.com/products/basic-tee-black",
            "https://shop.example.com/products/stock-tee-white",
        ]
        assert status["endedAt"] is not None

    @pytest.mark.asyncio
    async def test_second_scrape_skips_saved_products(self, client, runner):
        await client.post("/api/scrape-store", json={"storeUrl": STORE, "maxProducts": 2})
        await drain(runner)

        response = await client.post("/api/scrape-store", json={"storeUrl": STORE, "maxProducts": 2})
        await drain(runner)

        status = (await client.get("/api/scrape-store", params={"jobId": response.json()["jobId"]})).json()
        assert status["status"] == "completed"
        assert status["savedCount"] == 1
        assert status["skippedCount"] == 2
        assert {item["reason"] for item in status["skippedItems"]} == {"already exists"}

    @pytest.mark.asyncio
    async def test_scheme_is_added_to_bare_store_url(self, client, runner):
        response = await client.post("/api/scrape-store", json={"storeUrl": "shop.example.com/collections/tees"})
        assert response.status_code == 200
        assert response.json()["storeUrl"] == STORE
        await drain(runner)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"storeUrl": "   "}])
    async def test_missing_store_url(self, client, payload):
        response = await client.post("/api/scrape-store", json=payload)
        assert response.status_code == 400
        assert response.json()["detail"] == "Store URL is required"

    @pytest.mark.asyncio
    async def test_max_products_is_validated(self, client):
        response = await client.post("/api/scrape-store", json={"storeUrl": STORE, "maxProducts": 0})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unreachable_store(self, client, runner):
        response = await client.post("/api/scrape-store", json={"storeUrl": "https://shop.example.com/nowhere"})
        assert response.status_code == 400
        assert runner.registry.list() == []

    @pytest.mark.asyncio
    async def test_no_products_creates_no_job(self, client, runner):
        response = await client.post(
            "/api/scrape-store", json={"storeUrl": "https://shop.example.com/collections/empty"}
        )
        assert response.status_code == 404
        assert "No products found" in response.json()["detail"]
        assert runner.registry.list() == []

    @pytest.mark.asyncio
    async def test_listing_page_not_found(self, client, runner):
        response = await client.post(
            "/api/scrape-store", json={"storeUrl": "https://shop.example.com/collections/gone"}
        )
        assert response.status_code == 404
        assert runner.registry.list() == []

    @pytest.mark.asyncio
    async def test_listing_server_error_is_bad_gateway(self, client, runner):
        response = await client.post(
            "/api/scrape-store", json={"storeUrl": "https://shop.example.com/collections/broken"}
        )
        assert response.status_code == 502
        assert runner.registry.list() == []

    @pytest.mark.asyncio
    async def test_unknown_job(self, client):
        response = await client.get("/api/scrape-store", params={"jobId": "missing"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_jobs(self, client, runner):
        await client.post("/api/scrape-store", json={"storeUrl": STORE, "maxProducts": 1})
        await drain(runner)

        jobs = (await client.get("/api/scrape-store")).json()["jobs"]
        assert len(jobs) == 1
        assert jobs[0]["storeUrl"] == STORE

    @pytest.mark.asyncio
    async def test_stop_errors(self, client, runner):
        assert (await client.post("/api/scrape-store/stop", json={})).status_code == 400
        assert (await client.post("/api/scrape-store/stop", json={"jobId": "missing"})).status_code == 404

        response = await client.post("/api/scrape-store", json={"storeUrl": STORE, "maxProducts": 1})
        await drain(runner)
        stop = await client.post("/api/scrape-store/stop", json={"jobId": response.json()["jobId"]})
        assert stop.status_code == 400

    @pytest.mark.asyncio
    async def test_stop_pending_job(self, client, runner):
        job_id = runner.registry.create(STORE)

        response = await client.post("/api/scrape-store/stop", json={"jobId": job_id})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["job"]["status"] == "stopped"


class TestScrapeAuto:
    """POST/GET /api/scrape-auto and /stop."""

    @pytest.mark.asyncio
    async def test_auto_scrape_visits_every_collection(self, client, runner, monkeypatch):
        collections = [
            "https://shop.example.com/collections/tees",
            "https://shop.example.com/collections/empty",
            "https://shop.example.com/collections/hoodies",
        ]
        monkeypatch.setattr(settings, "auto_scrape_collections", collections)
        monkeypatch.setattr(settings, "auto_scrape_discover", False)
        monkeypatch.setattr(settings, "auto_scrape_poll_interval", 0.01)

        response = await client.post("/api/scrape-auto")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["totalPages"] == 3
        assert data["collections"] == collections

        await drain(runner)

        status = (await client.get("/api/scrape-auto", params={"jobId": data["jobId"]})).json()
        assert status["status"] == "completed"
        assert status["processedPages"] == 3
        assert status["savedProducts"] == 5
        assert status["progress"] == 100
        assert len(status["childJobIds"]) == 2
        assert [e["url"] for e in status["collectionErrors"]] == [collections[1]]

        store_jobs = (await client.get("/api/scrape-store")).json()["jobs"]
        assert {job["parentJobId"] for job in store_jobs} == {data["jobId"]}

    @pytest.mark.asyncio
    async def test_auto_stop_errors(self, client):
        assert (await client.post("/api/scrape-auto/stop", json={})).status_code == 400
        assert (await client.post("/api/scrape-auto/stop", json={"jobId": "missing"})).status_code == 404
        assert (await client.get("/api/scrape-auto", params={"jobId": "missing"})).status_code == 404


class TestScrapeProduct:
    """POST /api/scrape-product."""

    @pytest.mark.asyncio
    async def test_extracts_product_fields(self, client, runner):
        response = await client.post(
            "/api/scrape-product", json={"url": "shop.example.com/products/field-jacket-olive"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        product = data["product"]
        assert product["name"] == "Field Jacket"
        assert product["brand"] == "example"
        assert product["price"] == 120.0
        assert product["category"] == "outerwear"
        assert product["color"] == "olive"
        assert product["imageUrl"] == "https://cdn.example.com/j1.jpg"
        assert product["secondaryImageUrl"] == "https://cdn.example.com/j2.jpg"
        assert product["description"] == "Waxed cotton field jacket."
        assert product["productUrl"] == "https://shop.example.com/products/field-jacket-olive"
        # extraction alone never creates a job
        assert runner.registry.list() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"url": "  "},
            {"url": "https://shop.example.com:99999/products/field-jacket-olive"},
            {"url": "https://[broken/products/field-jacket-olive"},
        ],
    )
    async def test_missing_or_invalid_url(self, client, payload):
        response = await client.post("/api/scrape-product", json=payload)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unreachable_product_page(self, client):
        response = await client.post(
            "/api/scrape-product", json={"url": "https://shop.example.com/products/nowhere"}
        )
        assert response.status_code == 400
        assert "not accessible" in response.json()["detail"]
