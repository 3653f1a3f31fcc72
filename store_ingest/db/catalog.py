"""Reflected view of the catalog table with tolerant column mapping.

The catalog may predate this service, so column names are probed at first
use instead of being assumed: each logical field maps to the first existing
column from its candidate list.
"""

import logging
from typing import Any, Optional
from urllib.parse import urlsplit

from sqlalchemy import ARRAY, JSON, Column, Float, Integer, MetaData, Numeric, Table, select
from sqlalchemy.ext.asyncio import AsyncSession

from store_ingest.config import settings
from store_ingest.ingest.errors import PersistenceError
from store_ingest.normalize.processor import normalize_url

logger = logging.getLogger(__name__)

LOGICAL_COLUMNS: dict[str, tuple[str, ...]] = {
    "source_url": ("url", "source_url", "product_url", "link"),
    "name": ("name", "title", "item_name", "product_name"),
    "image_url": ("product_img", "image_url", "image", "img_url"),
    "secondary_image_url": ("secondary_img", "secondary_image_url", "secondary_image"),
    "tags": ("tags", "categories"),
    "description": ("description", "item_description"),
    "brand": ("brand", "brand_name"),
    "category": ("category", "item_category"),
    "color": ("color", "colour", "item_color"),
    "price": ("price", "item_price"),
    "store_url": ("store_url", "source_store"),
    "created_at": ("created_at", "inserted_at"),
    "updated_at": ("updated_at", "modified_at"),
}

REQUIRED_FIELDS = ("source_url", "name")

FUZZY_MATCH_LIMIT = 25


class CatalogSchema:
    """Lazily reflected catalog table plus logical-to-physical column map."""

    def __init__(self, table_name: Optional[str] = None):
        self.table_name = table_name or settings.catalog_table
        self._table: Optional[Table] = None
        self._columns: dict[str, Column] = {}

    async def load(self, session: AsyncSession) -> Table:
        """Reflect the table on first use and resolve the column map."""
        if self._table is None:
            conn = await session.connection()
            table = await conn.run_sync(
                lambda sync_conn: Table(self.table_name, MetaData(), autoload_with=sync_conn)
            )
            available = {c.name.lower(): c for c in table.columns}
            columns = {}
            for logical, names in LOGICAL_COLUMNS.items():
                for name in names:
                    if name in available:
                        columns[logical] = available[name]
                        break
            missing = [f for f in LOGICAL_COLUMNS if f not in columns]
            if missing:
                logger.info(f"Catalog table {self.table_name} has no column for: {', '.join(missing)}")
            self._table = table
            self._columns = columns
        return self._table

    def column(self, logical: str) -> Optional[Column]:
        return self._columns.get(logical)

    def require(self, logical: str) -> Column:
        column = self._columns.get(logical)
        if column is None:
            raise PersistenceError(
                f"Catalog table {self.table_name} has no column for required field '{logical}'"
            )
        return column

    def tags_value(self, categories) -> Any:
        """Tags as a list for ARRAY/JSON columns, comma-joined text otherwise."""
        column = self.column("tags")
        if column is None:
            return None
        if isinstance(column.type, (ARRAY, JSON)):
            return list(categories)
        return ", ".join(categories)

    def price_value(self, price) -> Any:
        column = self.column("price")
        if column is None or price is None:
            return None
        if isinstance(column.type, (Numeric, Float, Integer)):
            return price
        return str(price)

    async def find_stored_url(self, session: AsyncSession, url: str) -> Optional[str]:
        """
        The stored URL of the catalog row matching `url`, if any.

        Exact match on the raw or normalized URL first, then a
        case-insensitive substring match on host+path confirmed by
        normalizing each stored URL.
        """
        await self.load(session)
        url_col = self.require("source_url")
        normalized = normalize_url(url)

        exact = select(url_col).where(url_col.in_(list(dict.fromkeys([url, normalized])))).limit(1)
        stored = (await session.execute(exact)).scalar_one_or_none()
        if stored is not None:
            return stored

        parts = urlsplit(normalized)
        needle = f"{parts.hostname or ''}{parts.path}".lower()
        if not needle:
            return None

        fuzzy = select(url_col).where(url_col.icontains(needle, autoescape=True)).limit(FUZZY_MATCH_LIMIT)
        for stored in (await session.execute(fuzzy)).scalars():
            if stored and normalize_url(stored) == normalized:
                return stored
        return None


catalog_schema = CatalogSchema()
