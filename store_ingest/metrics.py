"""Prometheus metrics for the store ingest service."""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("store_ingest", "Store ingest application info")
app_info.info({"version": "0.1.0", "name": "store-ingest"})

# Job metrics
scrape_jobs_total = Counter(
    "scrape_jobs_total",
    "Total number of scrape jobs finished, by final status",
    ["kind", "status"],
)

scrape_jobs_active = Gauge(
    "scrape_jobs_active",
    "Number of scrape jobs currently running",
    ["kind"],
)

# Item metrics
scrape_items_total = Counter(
    "scrape_items_total",
    "Total number of candidates processed, by outcome",
    ["outcome"],
)

# Listing metrics
listing_extractions_total = Counter(
    "listing_extractions_total",
    "Total number of listing extractions",
    ["adapter", "status"],
)

listing_candidates = Histogram(
    "listing_candidates",
    "Number of candidates produced per listing extraction",
    ["adapter"],
    buckets=[0, 5, 10, 20, 50, 100, 200, 500],
)

# Detail fetch metrics
detail_fetch_duration_seconds = Histogram(
    "detail_fetch_duration_seconds",
    "Time spent enriching one candidate",
    ["source"],
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

extraction_requests_total = Counter(
    "extraction_requests_total",
    "Total number of third-party structured extraction calls",
    ["endpoint", "status"],
)


def record_job_started(kind: str):
    """Record a job entering processing."""
    scrape_jobs_active.labels(kind=kind).inc()


def record_job_finished(kind: str, status: str):
    """Record a job reaching a terminal status."""
    scrape_jobs_active.labels(kind=kind).dec()
    scrape_jobs_total.labels(kind=kind, status=status).inc()


def record_item(outcome: str):
    """Record one processed candidate (saved, duplicate, failed)."""
    scrape_items_total.labels(outcome=outcome).inc()


def record_listing(adapter: str, candidate_count: int, success: bool = True):
    """Record a listing extraction."""
    status = "success" if success else "error"
    listing_extractions_total.labels(adapter=adapter, status=status).inc()
    if success:
        listing_candidates.labels(adapter=adapter).observe(candidate_count)


def record_detail_fetch(source: str, duration: float):
    """Record a detail enrichment."""
    detail_fetch_duration_seconds.labels(source=source).observe(duration)


def record_extraction_request(endpoint: str, success: bool):
    """Record a structured extraction call."""
    status = "success" if success else "error"
    extraction_requests_total.labels(endpoint=endpoint, status=status).inc()
