"""FastAPI dependencies."""

from sqlalchemy.ext.asyncio import AsyncSession

from store_ingest.db.session import get_db
from store_ingest.worker.tasks import ScrapeTaskRunner, task_runner


async def get_database() -> AsyncSession:
    """Dependency for database session."""
    async for session in get_db():
        yield session
        break  # Only yield once, as FastAPI handles the session lifecycle


def get_task_runner() -> ScrapeTaskRunner:
    """Dependency for the process-wide scrape task runner."""
    return task_runner
