"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, DateTime, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from store_ingest.config import settings


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# text[] on PostgreSQL, JSON elsewhere
TagList = JSON().with_variant(ARRAY(Text), "postgresql")


class CatalogItem(Base):
    """One ingested product.

    The scrape pipeline writes through a reflected view of this table (see
    db/catalog.py) so it also works against catalogs with different column
    names; this model is what a fresh database gets.
    """

    __tablename__ = settings.catalog_table

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    url: Mapped[str] = mapped_column(Text, unique=True, nullable=False)  # normalized
    name: Mapped[str] = mapped_column(Text, nullable=False)
    product_img: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    secondary_img: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[Optional[list]] = mapped_column(TagList, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    brand: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    store_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class ScrapeStore(Base):
    """Scrape history per store URL."""

    __tablename__ = "scrape_stores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    brand: Mapped[str] = mapped_column(String(128), nullable=False)
    store_url: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    last_scraped_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    items_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
