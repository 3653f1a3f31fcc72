"""Exceptions raised by the scrape pipeline."""


class ScrapeError(RuntimeError):
    """Base class for scrape pipeline failures."""
    pass


class ListingError(ScrapeError):
    """Raised when a listing page cannot produce candidates.

    Aborts job creation; no job record exists when this is raised.
    """

    def __init__(self, message: str, store_url: str | None = None):
        super().__init__(message)
        self.store_url = store_url


class ListingFetchError(ListingError):
    """Raised when the listing page itself could not be fetched."""

    def __init__(self, message: str, store_url: str | None = None, status_code: int | None = None):
        super().__init__(message, store_url)
        self.status_code = status_code


class StoreUnreachableError(ListingError):
    """Raised when the store URL is malformed or does not answer."""
    pass


class NoProductsFoundError(ListingError):
    """Raised when no extraction strategy found any product."""
    pass


class PersistenceError(ScrapeError):
    """Raised when a product could not be written to the catalog."""
    pass


class ExtractionServiceError(ScrapeError):
    """Raised when the structured extraction service call fails."""
    pass
