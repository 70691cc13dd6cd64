"""Listing catalog access.

This module provides the interface the data layer uses to reach the remote
listing catalog, an HTTP implementation of it, and the catalog error
taxonomy.

Main Components:
    - CatalogQueryService: Abstract base class for catalog backends
    - HttpCatalogService: httpx-based client with timeouts and retries

Example usage:
    from domgo.collectors import HttpCatalogService

    async with HttpCatalogService() as catalog:
        page = await catalog.fetch_page("sale", page_index=1, page_size=10)
"""

from .base import (
    CatalogError,
    CatalogQueryService,
    NetworkError,
    NotFoundError,
    RateLimitError,
    compute_has_more,
)
from .catalog import HttpCatalogService

__all__ = [
    "CatalogError",
    "CatalogQueryService",
    "HttpCatalogService",
    "NetworkError",
    "NotFoundError",
    "RateLimitError",
    "compute_has_more",
]
