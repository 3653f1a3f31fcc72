"""Persist enriched products into the catalog and record store scrape history."""

import logging
from datetime import datetime
from enum import Enum

from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from store_ingest.db.catalog import CatalogSchema, catalog_schema
from store_ingest.db.models import ScrapeStore
from store_ingest.ingest.base import EnrichedProduct
from store_ingest.ingest.errors import PersistenceError
from store_ingest.normalize.processor import brand_from_url, normalize_price, normalize_url

logger = logging.getLogger(__name__)


class SaveOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


def default_description(product: EnrichedProduct) -> str:
    """Fallback description when the product page had none."""
    color = product.color if product.color and product.color != "unknown" else "unknown color"
    price = product.canonical_price if product.canonical_price is not None else "unknown"
    return f"{product.display_name} - {color} - {price}"


class Persister:
    """
    Upserts enriched products keyed by normalized URL.

    Writes go through the reflected catalog schema; logical fields with no
    matching column are skipped.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], schema: CatalogSchema = catalog_schema):
        self.session_factory = session_factory
        self.schema = schema

    def _values(self, product: EnrichedProduct, store_url: str, now: datetime) -> dict:
        price = product.canonical_price
        if price is None:
            price = normalize_price(product.raw_price_text)

        logical = {
            "source_url": normalize_url(product.source_url),
            "name": product.display_name,
            "image_url": product.image_url or product.raw_image_url or None,
            "secondary_image_url": product.secondary_image_url,
            "tags": self.schema.tags_value(product.categories),
            "description": product.description or default_description(product),
            "brand": product.brand,
            "category": product.category,
            "color": product.color or "unknown",
            "price": self.schema.price_value(price),
            "store_url": store_url,
            "updated_at": now,
        }

        values = {}
        for field, value in logical.items():
            column = self.schema.column(field)
            if column is not None:
                values[column.name] = value
        return values

    async def save(self, product: EnrichedProduct, store_url: str) -> SaveOutcome:
        """
        Create or update the catalog row for a product.

        Raises:
            PersistenceError: On schema mismatch or database failure
        """
        now = datetime.utcnow()
        try:
            async with self.session_factory() as session:
                table = await self.schema.load(session)
                url_col = self.schema.require("source_url")
                self.schema.require("name")

                stored_url = await self.schema.find_stored_url(session, product.source_url)
                values = self._values(product, store_url, now)

                if stored_url is not None:
                    await session.execute(update(table).where(url_col == stored_url).values(**values))
                    outcome = SaveOutcome.UPDATED
                else:
                    created_col = self.schema.column("created_at")
                    if created_col is not None:
                        values[created_col.name] = now
                    await session.execute(insert(table).values(**values))
                    outcome = SaveOutcome.CREATED

                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save {product.source_url}: {e}") from e

        logger.debug(f"{outcome.value.capitalize()} catalog item {product.source_url}")
        return outcome

    async def record_store_scrape(self, store_url: str, saved_count: int) -> None:
        """Upsert the scrape history row for a store. Failures are only logged."""
        now = datetime.utcnow()
        canonical = normalize_url(store_url)
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(ScrapeStore).where(ScrapeStore.store_url == canonical)
                )
                store = result.scalar_one_or_none()
                if store is None:
                    store = ScrapeStore(
                        brand=brand_from_url(canonical),
                        store_url=canonical,
                        items_count=0,
                        created_at=now,
                    )
                    session.add(store)
                store.items_count = (store.items_count or 0) + saved_count
                store.last_scraped_at = now
                store.updated_at = now
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record scrape history for {store_url}: {e}")
