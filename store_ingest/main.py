"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from store_ingest.config import settings
from store_ingest.db.session import engine, AsyncSessionLocal
from store_ingest.db.models import Base
from store_ingest.worker.tasks import task_runner
from store_ingest.api.routes import scrape_auto, scrape_product, scrape_store, stores

# Configure structured logging
from store_ingest.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting store ingest service...")

    # Creates missing tables only; an existing catalog is left as is
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await task_runner.initialize(session_factory=AsyncSessionLocal)

    yield

    logger.info("Shutting down...")
    await task_runner.close()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Store Ingest",
    description="Scrape e-commerce store listings into a product catalog",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

app.include_router(scrape_store.router)
app.include_router(scrape_auto.router)
app.include_router(stores.router)
app.include_router(scrape_product.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run(
        "store_ingest.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
