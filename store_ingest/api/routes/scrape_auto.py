"""Auto-scrape API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from store_ingest.api.deps import get_task_runner
from store_ingest.api.payloads import auto_job_payload
from store_ingest.api.routes.scrape_store import StopJobRequest
from store_ingest.worker.job_registry import InvalidTransitionError, JobKind, JobNotFoundError
from store_ingest.worker.tasks import ScrapeTaskRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scrape-auto", tags=["scrape-auto"])


@router.post("")
async def start_auto_scrape(runner: ScrapeTaskRunner = Depends(get_task_runner)):
    """Start scraping every known collection in sequence."""
    job = await runner.start_auto_scrape()
    logger.info(f"Auto-scrape {job.id} started over {job.total_pages} collections")
    return {
        "success": True,
        "jobId": job.id,
        "totalPages": job.total_pages,
        "collections": job.collections,
        "message": f"Started auto-scraping {job.total_pages} collections",
    }


@router.get("")
async def get_auto_scrape_status(
    job_id: Optional[str] = Query(None, alias="jobId"),
    runner: ScrapeTaskRunner = Depends(get_task_runner),
):
    """Full parent job snapshot, or all auto-scrape jobs when no id is given."""
    if not job_id:
        return {"jobs": [auto_job_payload(job) for job in runner.registry.list(JobKind.AUTO)]}

    try:
        job = runner.registry.get(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    return auto_job_payload(job)


@router.post("/stop")
async def stop_auto_scrape(
    request: StopJobRequest,
    runner: ScrapeTaskRunner = Depends(get_task_runner),
):
    """Stop the auto-scrape and the collection job it is running."""
    if not request.job_id:
        raise HTTPException(status_code=400, detail="Job ID is required")

    try:
        job = runner.request_stop(request.job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "job": auto_job_payload(job)}
