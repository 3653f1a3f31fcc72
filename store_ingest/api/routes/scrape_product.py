"""Single product extraction endpoint."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from store_ingest.api.deps import get_task_runner
from store_ingest.api.payloads import product_payload
from store_ingest.api.routes.scrape_store import normalize_store_url
from store_ingest.ingest.errors import StoreUnreachableError
from store_ingest.worker.tasks import ScrapeTaskRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scrape-product", tags=["scrape-product"])


class ScrapeProductRequest(BaseModel):
    url: Optional[str] = None


@router.post("")
async def scrape_product(
    request: ScrapeProductRequest,
    runner: ScrapeTaskRunner = Depends(get_task_runner),
):
    """Extract one product page and return its fields. Nothing is saved."""
    if not request.url or not request.url.strip():
        raise HTTPException(status_code=400, detail="URL is required")

    product_url = normalize_store_url(request.url)
    try:
        product = await runner.scrape_product(product_url)
    except StoreUnreachableError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "product": product_payload(product)}
