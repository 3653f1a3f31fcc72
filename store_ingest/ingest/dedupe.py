"""Catalog deduplication by normalized product URL."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from store_ingest.db.catalog import CatalogSchema, catalog_schema
from store_ingest.ingest.errors import PersistenceError

logger = logging.getLogger(__name__)


class Deduplicator:
    """Answers whether a product URL is already in the catalog."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], schema: CatalogSchema = catalog_schema):
        self.session_factory = session_factory
        self.schema = schema

    async def exists(self, url: str) -> bool:
        """
        True if a catalog row matches `url` after normalization.

        A lookup failure is logged and answered with False so the pipeline
        keeps moving; the persister's own lookup then decides create vs update.
        """
        try:
            async with self.session_factory() as session:
                stored = await self.schema.find_stored_url(session, url)
        except (SQLAlchemyError, PersistenceError) as e:
            logger.warning(f"Duplicate check failed for {url}, assuming new: {e}")
            return False
        return stored is not None
