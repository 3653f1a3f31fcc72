"""Background task runner: wires the scrape pipeline and launches detached jobs."""

import asyncio
import logging
from datetime import timedelta
from typing import Coroutine, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from store_ingest.config import settings
from store_ingest.db.catalog import CatalogSchema, catalog_schema
from store_ingest.ingest.adapters import AdapterRegistry, build_registry
from store_ingest.ingest.base import EnrichedProduct, ProductCandidate
from store_ingest.ingest.dedupe import Deduplicator
from store_ingest.ingest.enricher import DetailEnricher
from store_ingest.ingest.errors import StoreUnreachableError
from store_ingest.ingest.extraction_client import ExtractionClient
from store_ingest.ingest.http_client import PageFetcher
from store_ingest.ingest.listing import ListingExtractor
from store_ingest.ingest.persister import Persister
from store_ingest.normalize.processor import color_from_slug, slug_from_url, title_from_slug
from store_ingest.worker.job_registry import Job, JobRegistry, job_registry
from store_ingest.worker.orchestrator import AutoScrapeOrchestrator
from store_ingest.worker.runner import BackgroundRunner

logger = logging.getLogger(__name__)


class ScrapeTaskRunner:
    """
    Owns the shared HTTP clients and pipeline services.

    Jobs run as detached asyncio tasks; references are kept until each task
    finishes so they are not garbage collected mid-run.
    """

    def __init__(self, registry: JobRegistry = job_registry):
        self.registry = registry
        self.fetcher: PageFetcher | None = None
        self.extraction_client: ExtractionClient | None = None
        self.adapters: AdapterRegistry | None = None
        self.listing: ListingExtractor | None = None
        self.enricher: DetailEnricher | None = None
        self.deduplicator: Deduplicator | None = None
        self.persister: Persister | None = None
        self._tasks: set[asyncio.Task] = set()

    async def initialize(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        fetcher: Optional[PageFetcher] = None,
        extraction_client: Optional[ExtractionClient] = None,
        schema: CatalogSchema = catalog_schema,
    ):
        """Initialize task runner."""
        if session_factory is None:
            from store_ingest.db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal

        self.fetcher = fetcher or PageFetcher()
        self.extraction_client = extraction_client or ExtractionClient()
        self.adapters = build_registry(self.fetcher, self.extraction_client)
        self.listing = ListingExtractor(self.adapters, self.fetcher)
        self.enricher = DetailEnricher(self.fetcher, self.extraction_client)
        self.deduplicator = Deduplicator(session_factory, schema)
        self.persister = Persister(session_factory, schema)
        logger.info(f"Task runner initialized (adapters: {', '.join(self.adapters.list_adapters())})")

    async def close(self):
        """Cancel running jobs and close HTTP clients."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self.fetcher:
            await self.fetcher.close()
        if self.extraction_client:
            await self.extraction_client.close()

    def launch(self, coro: Coroutine, name: str) -> asyncio.Task:
        """Run a coroutine detached from the request that started it."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Task {task.get_name()} failed: {exc}", exc_info=exc)

    async def start_store_scrape(
        self,
        store_url: str,
        max_products: Optional[int] = None,
        parent_job_id: Optional[str] = None,
    ) -> Job:
        """
        Check the store, extract its listing, register a job and launch it.

        Raises:
            StoreUnreachableError: The URL is malformed or does not answer
            ListingFetchError: The listing could not be fetched
            NoProductsFoundError: The listing had no products
        """
        target = max_products or settings.default_max_products
        self.prune_jobs()

        if not await self.fetcher.is_reachable(store_url):
            raise StoreUnreachableError(f"Store URL is not accessible: {store_url}", store_url)

        listing = await self.listing.extract(store_url, target)
        job_id = self.registry.create(
            store_url=store_url,
            candidates=listing.candidates,
            target_count=target,
            parent_job_id=parent_job_id,
            adapter=listing.adapter,
            store_categories=listing.categories,
            last_message=f"Found {len(listing.candidates)} products, starting...",
        )

        runner = BackgroundRunner(
            job_id,
            self.registry,
            self.registry.token(job_id),
            self.deduplicator,
            self.enricher,
            self.persister,
        )
        self.launch(runner.run(), name=f"scrape-store-{job_id}")
        return self.registry.get(job_id)

    async def _start_child(self, collection_url: str, max_products: int, parent_job_id: str) -> str:
        job = await self.start_store_scrape(collection_url, max_products, parent_job_id)
        return job.id

    async def scrape_product(self, product_url: str) -> EnrichedProduct:
        """
        Extract a single product page without saving it.

        Raises:
            StoreUnreachableError: The URL is malformed or does not answer
        """
        if not await self.fetcher.is_reachable(product_url):
            raise StoreUnreachableError(f"Product URL is not accessible: {product_url}", product_url)

        candidate = ProductCandidate(
            source_url=product_url,
            display_name="",
            raw_color_guess=color_from_slug(product_url),
        )
        product = await self.enricher.enrich(candidate, product_url)
        if not product.display_name:
            product.display_name = title_from_slug(slug_from_url(product_url)) or "Unknown Product"
        logger.info(f"Extracted product {product.display_name!r} from {product_url}")
        return product

    def orchestrator(self) -> AutoScrapeOrchestrator:
        return AutoScrapeOrchestrator(
            self.registry,
            self._start_child,
            discover=self.listing.discover_collections if settings.auto_scrape_discover else None,
            discover_from=settings.auto_scrape_base_url if settings.auto_scrape_discover else None,
        )

    async def start_auto_scrape(self) -> Job:
        """Register an auto-scrape parent job and launch it."""
        orchestrator = self.orchestrator()
        collections = await orchestrator.resolve_collections()
        job_id = orchestrator.create_job(collections)
        self.launch(orchestrator.run(job_id), name=f"scrape-auto-{job_id}")
        return self.registry.get(job_id)

    def request_stop(self, job_id: str) -> Job:
        """Stop a job (and its children); raises JobNotFoundError / InvalidTransitionError."""
        return self.registry.request_stop(job_id)

    def prune_jobs(self) -> int:
        return self.registry.prune(timedelta(minutes=settings.job_retention_minutes))


task_runner = ScrapeTaskRunner()
