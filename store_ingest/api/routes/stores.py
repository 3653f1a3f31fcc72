"""Store scrape history and adapter listing."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from store_ingest.api.deps import get_database, get_task_runner
from store_ingest.db.models import ScrapeStore
from store_ingest.worker.tasks import ScrapeTaskRunner

router = APIRouter(prefix="/api/stores", tags=["stores"])


class ScrapeStoreResponse(BaseModel):
    """Response model for a scraped store."""
    id: int
    brand: str
    store_url: str
    last_scraped_at: Optional[datetime]
    items_count: int

    class Config:
        from_attributes = True


class StoresResponse(BaseModel):
    adapters: List[str]
    stores: List[ScrapeStoreResponse]


@router.get("", response_model=StoresResponse)
async def list_stores(
    db: AsyncSession = Depends(get_database),
    runner: ScrapeTaskRunner = Depends(get_task_runner),
):
    """Registered listing adapters and every store scraped so far."""
    result = await db.execute(select(ScrapeStore).order_by(ScrapeStore.last_scraped_at.desc()))
    stores = result.scalars().all()
    adapters = runner.adapters.list_adapters() if runner.adapters else []
    return StoresResponse(
        adapters=adapters,
        stores=[ScrapeStoreResponse.model_validate(store) for store in stores],
    )
