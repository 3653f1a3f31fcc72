"""Auto-scrape: a parent job that runs one store job per known collection."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from store_ingest.config import settings
from store_ingest.ingest.errors import ListingError
from store_ingest.logging_config import get_logger
from store_ingest.worker.job_registry import Job, JobKind, JobRegistry, JobStatus
from store_ingest import metrics

logger = logging.getLogger(__name__)

# (collection_url, max_products, parent_job_id) -> child job id
StartChild = Callable[[str, int, str], Awaitable[str]]
DiscoverCollections = Callable[[str], Awaitable[list[str]]]


class AutoScrapeOrchestrator:
    """
    Visits collections sequentially, never concurrently.

    Each collection gets a child store job; the parent polls it to a
    terminal state and folds its counts in. A failed collection is recorded
    and skipped, and a stop on the parent aborts the remaining collections.
    """

    def __init__(
        self,
        registry: JobRegistry,
        start_child: StartChild,
        collection_urls: Optional[Sequence[str]] = None,
        max_per_collection: Optional[int] = None,
        poll_interval: Optional[float] = None,
        discover: Optional[DiscoverCollections] = None,
        discover_from: Optional[str] = None,
    ):
        self.registry = registry
        self.start_child = start_child
        self.collection_urls = list(collection_urls if collection_urls is not None else settings.auto_scrape_collections)
        self.max_per_collection = max_per_collection or settings.auto_scrape_products_per_collection
        self.poll_interval = settings.auto_scrape_poll_interval if poll_interval is None else poll_interval
        self.discover = discover
        self.discover_from = discover_from

    async def resolve_collections(self) -> list[str]:
        """Discovered collections when discovery is configured, else the fixed list."""
        if self.discover is not None and self.discover_from:
            try:
                found = await self.discover(self.discover_from)
            except ListingError as e:
                logger.warning(f"Collection discovery on {self.discover_from} failed, using fixed list: {e}")
            else:
                if found:
                    return found
                logger.warning(f"No collections discovered on {self.discover_from}, using fixed list")
        return list(self.collection_urls)

    def create_job(self, collections: Sequence[str]) -> str:
        """Register the pending parent job."""
        collections = list(collections)
        return self.registry.create(
            store_url=self.discover_from or (collections[0] if collections else ""),
            kind=JobKind.AUTO,
            collections=collections,
            total_pages=len(collections),
            last_message=f"Queued {len(collections)} collections",
        )

    def _stopped(self, job_id: str) -> bool:
        return self.registry.token(job_id).cancelled or \
            self.registry.get(job_id).status == JobStatus.STOPPED

    async def run(self, job_id: str) -> Job:
        """Drive the parent job to a terminal state and return its final snapshot."""
        log = get_logger(__name__, job_id=job_id)
        started = False
        try:
            job = self.registry.transition(job_id, JobStatus.PROCESSING, message="Starting auto-scrape...")
            if job.status != JobStatus.PROCESSING:
                return job
            started = True
            metrics.record_job_started(JobKind.AUTO.value)

            total = len(job.collections)
            for index, collection_url in enumerate(job.collections, start=1):
                if self._stopped(job_id):
                    log.info(f"Auto-scrape {job_id} stopped before collection {index} of {total}")
                    break
                await self._run_collection(job_id, collection_url, index, total)

            final = self.registry.get(job_id)
            final = self.registry.transition(
                job_id,
                JobStatus.COMPLETED,
                message=(
                    f"Completed {final.processed_pages} of {final.total_pages} collections: "
                    f"saved {final.saved_products}, skipped {final.skipped_products}"
                ),
            )
        except Exception as exc:
            log.error(f"Auto-scrape {job_id} failed: {exc}", exc_info=True)
            final = self.registry.transition(
                job_id, JobStatus.ERROR, message=f"Error: {exc}", error=str(exc) or type(exc).__name__
            )

        if started:
            metrics.record_job_finished(JobKind.AUTO.value, final.status.value)
        log.info(
            f"Auto-scrape {job_id} {final.status.value}: {final.processed_pages}/{final.total_pages} collections, "
            f"saved {final.saved_products}, skipped {final.skipped_products}"
        )
        return final

    async def _run_collection(self, job_id: str, collection_url: str, index: int, total: int) -> None:
        def mark_current(j: Job) -> None:
            j.current_collection = collection_url
            j.last_message = f"Scraping collection {index} of {total}: {collection_url}"

        self.registry.update(job_id, mark_current)

        saved = skipped = 0
        error: Optional[str] = None
        try:
            child_id = await self.start_child(collection_url, self.max_per_collection, job_id)
            child = await self._wait_for(child_id)
            saved, skipped = child.saved_count, child.skipped_count
            if child.status == JobStatus.ERROR:
                error = child.error or "collection job failed"
        except Exception as exc:
            error = str(exc) or type(exc).__name__

        if error:
            logger.warning(f"Collection {collection_url} failed, continuing: {error}")

        def accumulate(j: Job) -> None:
            j.processed_pages += 1
            j.saved_products += saved
            j.skipped_products += skipped
            j.current_collection = None
            if error:
                j.collection_errors.append({"url": collection_url, "error": error})

        self.registry.update(job_id, accumulate)

    async def _wait_for(self, child_id: str) -> Job:
        while True:
            child = self.registry.get(child_id)
            if child.is_terminal:
                return child
            await asyncio.sleep(self.poll_interval)
