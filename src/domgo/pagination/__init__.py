"""Pagination, request coordination and load-more debouncing.

This package turns the page-oriented catalog into per-category incremental
lists that never duplicate or lose listings, while keeping the number of
catalog calls down.
"""

from .coordinator import FetchOutcome, RequestCoordinator
from .loader import DebouncedLoader, LoaderState
from .store import CategoryPaginationStore

__all__ = [
    "CategoryPaginationStore",
    "DebouncedLoader",
    "FetchOutcome",
    "LoaderState",
    "RequestCoordinator",
]
