"""In-memory registry of scrape jobs.

Jobs live for the lifetime of the process. Every mutation is an atomic
read-modify-write under the registry lock, and callers only ever receive
snapshots, never the stored records.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from threading import Lock
from typing import Callable, Iterable, Optional

from store_ingest.ingest.base import ProductCandidate

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.STOPPED})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.STOPPED, JobStatus.ERROR}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.STOPPED}),
}


class JobKind(str, Enum):
    STORE = "store"  # one store or collection URL
    AUTO = "auto"  # parent job driving many store jobs


class JobNotFoundError(LookupError):
    """Raised when a job id is unknown."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class InvalidTransitionError(RuntimeError):
    """Raised when a status change is not allowed from the current status."""
    pass


class JobInvariantError(RuntimeError):
    """Raised when a mutation would break the job's counter invariants."""
    pass


class CancellationToken:
    """Cooperative stop flag handed to the task driving a job."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class Job:
    """State of one scrape job."""

    id: str
    kind: JobKind
    status: JobStatus
    store_url: str
    candidates: tuple[ProductCandidate, ...] = ()
    target_count: int = 0
    processed_count: int = 0
    saved_count: int = 0
    skipped_count: int = 0
    started_at: datetime = field(default_factory=datetime.utcnow)
    ended_at: Optional[datetime] = None
    last_message: str = ""
    error: Optional[str] = None
    parent_job_id: Optional[str] = None
    adapter: str = ""
    saved_items: list[dict] = field(default_factory=list)
    skipped_items: list[dict] = field(default_factory=list)
    store_categories: list[str] = field(default_factory=list)

    # Auto-scrape (parent) jobs
    collections: list[str] = field(default_factory=list)
    total_pages: int = 0
    processed_pages: int = 0
    saved_products: int = 0
    skipped_products: int = 0
    current_collection: Optional[str] = None
    child_job_ids: list[str] = field(default_factory=list)
    collection_errors: list[dict] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress_percent(self) -> int:
        """Store jobs: saved vs target. Auto jobs: collections visited vs total."""
        if self.kind == JobKind.AUTO:
            done, total = self.processed_pages, self.total_pages
        else:
            done, total = self.saved_count, self.target_count
        if total <= 0:
            return 0
        # Half-up rounding
        return min(100, math.floor(done * 100 / total + 0.5))

    def snapshot(self) -> "Job":
        """Copy safe to hand out (containers are copied, candidates are immutable)."""
        return replace(
            self,
            saved_items=[dict(i) for i in self.saved_items],
            skipped_items=[dict(i) for i in self.skipped_items],
            store_categories=list(self.store_categories),
            collections=list(self.collections),
            child_job_ids=list(self.child_job_ids),
            collection_errors=[dict(e) for e in self.collection_errors],
        )


Mutation = Callable[[Job], None]


class JobRegistry:
    """
    Process-wide job store.

    The lock only guards synchronous map operations; nothing awaits while
    holding it, so it is safe from any task or thread.
    """

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = Lock()

    def create(
        self,
        store_url: str,
        candidates: Iterable[ProductCandidate] = (),
        target_count: int = 0,
        parent_job_id: Optional[str] = None,
        kind: JobKind = JobKind.STORE,
        **fields,
    ) -> str:
        """Register a pending job and return its id."""
        job = Job(
            id=uuid.uuid4().hex,
            kind=kind,
            status=JobStatus.PENDING,
            store_url=store_url,
            candidates=tuple(candidates),
            target_count=target_count,
            parent_job_id=parent_job_id,
            **fields,
        )
        with self._lock:
            self._jobs[job.id] = job
            self._tokens[job.id] = CancellationToken()
            parent = self._jobs.get(parent_job_id) if parent_job_id else None
            if parent is not None:
                if job.id not in parent.child_job_ids:
                    parent.child_job_ids.append(job.id)
                # a stop that landed before the child existed still applies to it
                if parent.is_terminal:
                    self._stop_locked(job.id, "Stopped with parent job")

        logger.info(
            f"Created {kind.value} job {job.id} for {store_url} "
            f"({len(job.candidates)} candidates, target {target_count})"
        )
        return job.id

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.snapshot()

    def token(self, job_id: str) -> CancellationToken:
        with self._lock:
            token = self._tokens.get(job_id)
            if token is None:
                raise JobNotFoundError(job_id)
            return token

    def update(self, job_id: str, mutation: Mutation) -> Job:
        """
        Apply `mutation` to a draft of the job and store it atomically.

        A terminal job is never changed; the unchanged snapshot is returned.

        Raises:
            JobNotFoundError: Unknown job id
            InvalidTransitionError: The mutation changes status illegally
            JobInvariantError: The mutation breaks counter invariants
        """
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFoundError(job_id)
            if current.is_terminal:
                return current.snapshot()

            draft = current.snapshot()
            mutation(draft)
            self._validate(current, draft)
            if draft.is_terminal and draft.ended_at is None:
                draft.ended_at = datetime.utcnow()
            self._jobs[job_id] = draft
            return draft.snapshot()

    def transition(
        self,
        job_id: str,
        status: JobStatus,
        message: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Job:
        """Change status (no-op on terminal jobs)."""

        def apply(job: Job) -> None:
            job.status = status
            if message is not None:
                job.last_message = message
            if error is not None:
                job.error = error

        return self.update(job_id, apply)

    def request_stop(self, job_id: str) -> Job:
        """
        Stop a pending or processing job and any of its running children.

        Raises:
            JobNotFoundError: Unknown job id
            InvalidTransitionError: The job is already terminal
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.is_terminal:
                raise InvalidTransitionError(f"Job {job_id} is already {job.status.value}")

            self._stop_locked(job_id, "Stopped by user")
            for child in self._jobs.values():
                if child.parent_job_id == job_id and not child.is_terminal:
                    self._stop_locked(child.id, "Stopped with parent job")
            return self._jobs[job_id].snapshot()

    def _stop_locked(self, job_id: str, message: str) -> None:
        self._tokens[job_id].cancel()
        stopped = self._jobs[job_id].snapshot()
        stopped.status = JobStatus.STOPPED
        stopped.last_message = message
        stopped.ended_at = datetime.utcnow()
        self._jobs[job_id] = stopped
        logger.info(f"Job {job_id} stopped")

    def list(self, kind: Optional[JobKind] = None) -> list[Job]:
        """All jobs, newest first."""
        with self._lock:
            jobs = [j.snapshot() for j in self._jobs.values() if kind is None or j.kind == kind]
        return sorted(jobs, key=lambda j: j.started_at, reverse=True)

    def prune(self, max_age: timedelta) -> int:
        """Drop terminal jobs that ended more than `max_age` ago."""
        cutoff = datetime.utcnow() - max_age
        with self._lock:
            expired = [
                job_id for job_id, job in self._jobs.items()
                if job.is_terminal and job.ended_at is not None and job.ended_at < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
                self._tokens.pop(job_id, None)
        if expired:
            logger.info(f"Pruned {len(expired)} finished jobs")
        return len(expired)

    @staticmethod
    def _validate(current: Job, draft: Job) -> None:
        if draft.status != current.status and draft.status not in ALLOWED_TRANSITIONS.get(current.status, ()):
            raise InvalidTransitionError(
                f"Job {current.id}: {current.status.value} -> {draft.status.value} is not allowed"
            )

        if draft.saved_count + draft.skipped_count > draft.processed_count:
            raise JobInvariantError(f"Job {current.id}: saved + skipped exceeds processed")
        if draft.kind == JobKind.STORE and draft.processed_count > len(draft.candidates):
            raise JobInvariantError(f"Job {current.id}: processed exceeds candidate count")

        for counter in ("processed_count", "saved_count", "skipped_count", "processed_pages"):
            if getattr(draft, counter) < getattr(current, counter):
                raise JobInvariantError(f"Job {current.id}: {counter} cannot decrease")


job_registry = JobRegistry()
