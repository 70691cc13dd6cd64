"""Abstract interface of the remote listing catalog.

This module defines the CatalogQueryService abstract base class that every
catalog backend must implement, plus the error taxonomy catalog calls raise.
The pagination layer only talks to this interface, so the HTTP client can be
swapped for an in-memory fake in tests.

Example usage:
    class MyCatalog(CatalogQueryService):
        name = "my_catalog"

        async def fetch_page(self, category, page_index, page_size, filters=None):
            # Implementation here
            pass

        async def fetch_single(self, listing_id):
            # Implementation here
            pass
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..errors import DomgoError
from ..models.listing import Listing, ListingFilters, ListingPage


def compute_has_more(page_index: int, page_size: int, total_count: int) -> bool:
    """Whether pages beyond ``page_index`` exist for ``total_count`` items."""
    return page_index * page_size < total_count


class CatalogQueryService(ABC):
    """Abstract base class for listing catalog backends.

    Attributes:
        name: Identifier used in error messages and logs
    """

    name: str = "catalog"

    @abstractmethod
    async def fetch_page(
        self,
        category: str,
        page_index: int,
        page_size: int,
        filters: Optional[ListingFilters] = None,
    ) -> ListingPage:
        """Fetch one page of listings, newest first.

        Args:
            category: Category key (e.g., "sale", "rent", "all")
            page_index: 1-based page number
            page_size: Listings per page
            filters: Optional search filters

        Returns:
            ListingPage whose has_more equals page_index * page_size < total_count

        Raises:
            NetworkError: If the catalog cannot be reached
        """
        pass

    @abstractmethod
    async def fetch_single(self, listing_id: str) -> Listing:
        """Fetch one listing by id.

        Raises:
            NotFoundError: If no listing has this id
            NetworkError: If the catalog cannot be reached
        """
        pass

    async def close(self) -> None:
        """Release resources held by the backend."""
        pass


class CatalogError(DomgoError):
    """Base exception for catalog errors.

    Attributes:
        source: Name of the catalog backend that raised the error
        message: Error description
    """

    def __init__(self, source: str, message: str):
        self.source = source
        self.message = message
        super().__init__(f"[{source}] {message}")


class NetworkError(CatalogError):
    """Transient failure reaching the catalog; safe to retry."""


class RateLimitError(NetworkError):
    """Raised when the catalog rate limit is exceeded."""

    def __init__(self, source: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        message = "Rate limit exceeded"
        if retry_after:
            message += f" (retry after {retry_after:g}s)"
        super().__init__(source, message)


class NotFoundError(CatalogError):
    """Raised when a single listing does not exist. Not retryable."""

    def __init__(self, source: str, listing_id: str):
        self.listing_id = listing_id
        super().__init__(source, f"Listing {listing_id} not found")
