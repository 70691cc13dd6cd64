"""Data models for domgo."""

from domgo.models.listing import (
    CategoryState,
    Listing,
    ListingCategory,
    ListingFilters,
    ListingPage,
    category_key,
)
from domgo.models.version import RuntimeIdentity, VersionFingerprint

__all__ = [
    "CategoryState",
    "Listing",
    "ListingCategory",
    "ListingFilters",
    "ListingPage",
    "RuntimeIdentity",
    "VersionFingerprint",
    "category_key",
]
