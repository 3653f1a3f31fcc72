"""JSON payloads for job status responses (camelCase keys)."""

from datetime import datetime
from typing import Any, Optional

from store_ingest.ingest.base import EnrichedProduct
from store_ingest.worker.job_registry import Job


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + "Z" if value else None


def store_job_payload(job: Job) -> dict[str, Any]:
    return {
        "jobId": job.id,
        "status": job.status.value,
        "progress": job.progress_percent,
        "message": job.last_message,
        "savedCount": job.saved_count,
        "skippedCount": job.skipped_count,
        "totalProcessed": job.processed_count,
        "totalCandidates": len(job.candidates),
        "targetCount": job.target_count,
        "storeUrl": job.store_url,
        "parentJobId": job.parent_job_id,
        "adapter": job.adapter,
        "categories": job.store_categories,
        "savedItems": job.saved_items,
        "skippedItems": job.skipped_items,
        "error": job.error,
        "startedAt": _iso(job.started_at),
        "endedAt": _iso(job.ended_at),
    }


def auto_job_payload(job: Job) -> dict[str, Any]:
    return {
        "jobId": job.id,
        "status": job.status.value,
        "progress": job.progress_percent,
        "message": job.last_message,
        "collections": job.collections,
        "currentCollection": job.current_collection,
        "totalPages": job.total_pages,
        "processedPages": job.processed_pages,
        "savedProducts": job.saved_products,
        "skippedProducts": job.skipped_products,
        "childJobIds": job.child_job_ids,
        "collectionErrors": job.collection_errors,
        "error": job.error,
        "startTime": _iso(job.started_at),
        "endTime": _iso(job.ended_at),
    }


def product_payload(product: EnrichedProduct) -> dict[str, Any]:
    price = product.canonical_price
    return {
        "name": product.display_name,
        "brand": product.brand,
        "price": float(price) if price is not None else None,
        "priceText": product.raw_price_text or None,
        "category": product.category,
        "categories": list(product.categories),
        "color": product.color,
        "imageUrl": product.image_url or None,
        "secondaryImageUrl": product.secondary_image_url,
        "description": product.description,
        "productUrl": product.source_url,
    }
