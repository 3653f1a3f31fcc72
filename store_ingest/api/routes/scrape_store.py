"""Store scrape API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from store_ingest.api.deps import get_task_runner
from store_ingest.api.payloads import store_job_payload
from store_ingest.config import settings
from store_ingest.ingest.errors import (
    ListingFetchError,
    NoProductsFoundError,
    StoreUnreachableError,
)
from store_ingest.worker.job_registry import InvalidTransitionError, JobKind, JobNotFoundError
from store_ingest.worker.tasks import ScrapeTaskRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scrape-store", tags=["scrape-store"])


class ScrapeStoreRequest(BaseModel):
    """Request model for starting a store scrape."""
    model_config = ConfigDict(populate_by_name=True)

    store_url: Optional[str] = Field(None, alias="storeUrl")
    max_products: int = Field(settings.default_max_products, alias="maxProducts", ge=1, le=500)
    parent_job_id: Optional[str] = Field(None, alias="parentJobId")


class StopJobRequest(BaseModel):
    """Request model for stopping a job."""
    model_config = ConfigDict(populate_by_name=True)

    job_id: Optional[str] = Field(None, alias="jobId")


def normalize_store_url(url: str) -> str:
    url = url.strip()
    if url and "://" not in url:
        url = f"https://{url}"
    return url


@router.post("")
async def start_store_scrape(
    request: ScrapeStoreRequest,
    runner: ScrapeTaskRunner = Depends(get_task_runner),
):
    """Extract a store's listing and start a background scrape job."""
    if not request.store_url or not request.store_url.strip():
        raise HTTPException(status_code=400, detail="Store URL is required")

    store_url = normalize_store_url(request.store_url)
    try:
        job = await runner.start_store_scrape(store_url, request.max_products, request.parent_job_id)
    except StoreUnreachableError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NoProductsFoundError:
        raise HTTPException(status_code=404, detail=f"No products found at {store_url}")
    except ListingFetchError as e:
        if e.status_code == 404:
            raise HTTPException(status_code=404, detail=f"Store page not found: {store_url}")
        logger.error(f"Listing fetch failed for {store_url}: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to fetch store listing: {e}")

    return {
        "success": True,
        "jobId": job.id,
        "status": "processing",
        "storeUrl": job.store_url,
        "totalCandidates": len(job.candidates),
        "targetNewProducts": job.target_count,
        "categories": job.store_categories,
        "message": job.last_message,
    }


@router.get("")
async def get_store_scrape_status(
    job_id: Optional[str] = Query(None, alias="jobId"),
    runner: ScrapeTaskRunner = Depends(get_task_runner),
):
    """Status of one job, or all store jobs when no id is given."""
    if not job_id:
        return {"jobs": [store_job_payload(job) for job in runner.registry.list(JobKind.STORE)]}

    try:
        job = runner.registry.get(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    return store_job_payload(job)


@router.post("/stop")
async def stop_store_scrape(
    request: StopJobRequest,
    runner: ScrapeTaskRunner = Depends(get_task_runner),
):
    """Request a cooperative stop of a running job."""
    if not request.job_id:
        raise HTTPException(status_code=400, detail="Job ID is required")

    try:
        job = runner.request_stop(request.job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "job": store_job_payload(job)}
