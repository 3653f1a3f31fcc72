"""Background runner driving one store job's per-candidate loop."""

import logging

from store_ingest.ingest.dedupe import Deduplicator
from store_ingest.ingest.enricher import DetailEnricher
from store_ingest.ingest.persister import Persister, SaveOutcome
from store_ingest.logging_config import get_logger
from store_ingest.worker.job_registry import (
    CancellationToken,
    Job,
    JobKind,
    JobRegistry,
    JobStatus,
)
from store_ingest import metrics

logger = logging.getLogger(__name__)

DUPLICATE_REASON = "already exists"


class BackgroundRunner:
    """
    Processes a job's candidates strictly in listing order.

    Per candidate: duplicate check, then enrich and persist. Item failures
    become skips with a reason; only failures outside the item boundary end
    the job in error. Cancellation is checked once per iteration.
    """

    def __init__(
        self,
        job_id: str,
        registry: JobRegistry,
        token: CancellationToken,
        deduplicator: Deduplicator,
        enricher: DetailEnricher,
        persister: Persister,
    ):
        self.job_id = job_id
        self.registry = registry
        self.token = token
        self.deduplicator = deduplicator
        self.enricher = enricher
        self.persister = persister
        self.log = get_logger(__name__, job_id=job_id)

    def _stop_requested(self) -> bool:
        if self.token.cancelled:
            return True
        return self.registry.get(self.job_id).status == JobStatus.STOPPED

    async def run(self) -> Job:
        """Run the job to a terminal state and return its final snapshot."""
        started = False
        try:
            job = self.registry.transition(self.job_id, JobStatus.PROCESSING, message="Processing products...")
            if job.status != JobStatus.PROCESSING:
                self.log.info(f"Job {self.job_id} is {job.status.value} before start, not running")
                return job
            started = True
            metrics.record_job_started(JobKind.STORE.value)

            stopped = await self._process(job)

            final = self.registry.get(self.job_id)
            if stopped:
                final = self.registry.transition(self.job_id, JobStatus.STOPPED, message="Stopped by user")
            else:
                final = self.registry.transition(
                    self.job_id,
                    JobStatus.COMPLETED,
                    message=f"Completed: saved {final.saved_count} new products, skipped {final.skipped_count}",
                )
        except Exception as exc:
            self.log.error(f"Job {self.job_id} failed: {exc}", exc_info=True)
            final = self.registry.transition(
                self.job_id, JobStatus.ERROR, message=f"Error: {exc}", error=str(exc) or type(exc).__name__
            )

        if started:
            metrics.record_job_finished(JobKind.STORE.value, final.status.value)
            if final.saved_count:
                try:
                    await self.persister.record_store_scrape(final.store_url, final.saved_count)
                except Exception as exc:
                    self.log.error(f"Failed to record store scrape for {final.store_url}: {exc}", exc_info=True)
            self.log.info(
                f"Job {self.job_id} {final.status.value}: processed {final.processed_count}, "
                f"saved {final.saved_count}, skipped {final.skipped_count}"
            )
        return final

    async def _process(self, job: Job) -> bool:
        """Candidate loop. Returns True if it ended because of a stop request."""
        for candidate in job.candidates:
            if self._stop_requested():
                return True

            current = self.registry.get(self.job_id)
            if current.saved_count >= current.target_count:
                self.log.info(f"Job {self.job_id} reached target of {current.target_count}")
                break

            def begin(j: Job) -> None:
                j.processed_count += 1
                j.last_message = f"Processing {candidate.display_name}..."

            self.registry.update(self.job_id, begin)

            reason = None
            try:
                if await self.deduplicator.exists(candidate.source_url):
                    reason = DUPLICATE_REASON
                else:
                    enriched = await self.enricher.enrich(candidate, job.store_url, job.store_categories)
                    if self._stop_requested():
                        return True
                    outcome = await self.persister.save(enriched, job.store_url)
            except Exception as exc:
                self.log.warning(f"Skipping {candidate.source_url}: {exc}")
                reason = str(exc) or type(exc).__name__

            if reason is None:
                self._record_saved(candidate.source_url, candidate.display_name, outcome)
            else:
                self._record_skipped(candidate.source_url, candidate.display_name, reason)

        return self._stop_requested()

    def _record_saved(self, url: str, name: str, outcome: SaveOutcome) -> None:
        def apply(j: Job) -> None:
            j.saved_count += 1
            j.saved_items.append({"url": url, "name": name, "outcome": outcome.value})
            j.last_message = f"Saved {j.saved_count} of {j.target_count} products..."

        self.registry.update(self.job_id, apply)
        metrics.record_item("saved")

    def _record_skipped(self, url: str, name: str, reason: str) -> None:
        def apply(j: Job) -> None:
            j.skipped_count += 1
            j.skipped_items.append({"url": url, "name": name, "reason": reason})
            j.last_message = f"Skipped {name}: {reason}"

        self.registry.update(self.job_id, apply)
        metrics.record_item("duplicate" if reason == DUPLICATE_REASON else "failed")
