"""Listing, page and per-category state models."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ListingCategory(str, Enum):
    """Listing categories browsable in the client."""

    ALL = "all"
    SALE = "sale"
    RENT = "rent"
    NEW_BUILDS = "new-builds"


def category_key(category: "ListingCategory | str") -> str:
    """Normalize a category enum or raw string into its state key."""
    key = category.value if isinstance(category, ListingCategory) else str(category)
    key = key.strip()
    if not key:
        raise ValueError("Category key must be a non-empty string")
    return key


class Listing(BaseModel):
    """Property listing as returned by the catalog service.

    The data layer only relies on ``id`` (deduplication) and ``created_at``
    (ordering). Everything else is passed through to the application,
    including fields this model does not declare.
    """

    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    # Identification
    id: str = Field(..., min_length=1, description="Unique listing identifier")
    category_tags: set[str] = Field(
        default_factory=set, description="Categories the listing belongs to"
    )
    created_at: datetime = Field(..., description="Publication timestamp")

    # Pass-through details
    title: str | None = Field(default=None, description="Listing headline")
    description: str | None = Field(default=None, description="Free-text description")
    price: float | None = Field(default=None, ge=0, description="Asking price or rent")
    currency: str | None = Field(default=None, description="Price currency code")
    area: float | None = Field(default=None, ge=0, description="Living area in m2")
    rooms: int | None = Field(default=None, ge=0, description="Number of rooms")
    bathrooms: float | None = Field(default=None, ge=0, description="Number of bathrooms")
    property_type: str | None = Field(
        default=None, description="apartment, house, commercial or land"
    )
    status: str | None = Field(default=None, description="active, sold or rented")
    city_id: str | None = Field(default=None, description="City reference")
    address: str | None = Field(default=None, description="Street address")
    features: list[str] = Field(default_factory=list, description="Amenities")
    images: list[str] = Field(default_factory=list, description="Photo URLs")
    user_id: str | None = Field(default=None, description="Owner of the listing")


class ListingPage(BaseModel):
    """One page of listings returned by the catalog. Immutable."""

    model_config = ConfigDict(frozen=True)

    items: list[Listing] = Field(default_factory=list)
    total_count: int = Field(default=0, ge=0)
    has_more: bool = False
    fetched_at: datetime = Field(default_factory=datetime.now)
    page_index: int = Field(default=1, ge=1)

    @property
    def ids(self) -> list[str]:
        """Listing ids in page order."""
        return [item.id for item in self.items]

    @property
    def is_empty(self) -> bool:
        return not self.items


class ListingFilters(BaseModel):
    """Search filters applied to a category.

    Example:
        filters = ListingFilters(
            city_id="3",
            property_types=["apartment"],
            min_price=50000,
            max_price=0,  # no upper bound
        )
    """

    model_config = ConfigDict(frozen=True)

    city_id: Optional[str] = None
    property_types: list[str] = Field(default_factory=list)
    rooms: list[int] = Field(default_factory=list)
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    min_area: Optional[float] = Field(default=None, ge=0)
    max_area: Optional[float] = Field(default=None, ge=0)
    features: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self == ListingFilters()

    def fingerprint(self) -> str:
        """Stable string identifying this filter combination."""
        data = self.model_dump(mode="json", exclude_defaults=True)
        if not data:
            return "none"
        return json.dumps(data, sort_keys=True, separators=(",", ":"))

    def to_query_params(self) -> dict[str, str]:
        """Render filters as catalog query parameters (unset values omitted)."""
        params: dict[str, str] = {}
        if self.city_id:
            params["city_id"] = self.city_id
        if self.property_types:
            params["property_type"] = ",".join(self.property_types)
        if self.rooms:
            params["rooms"] = ",".join(str(r) for r in self.rooms)
        for name in ("min_price", "max_price", "min_area", "max_area"):
            value = getattr(self, name)
            if value is not None:
                params[name] = f"{value:g}"
        if self.features:
            params["features"] = ",".join(self.features)
        return params

    def matches(self, listing: Listing) -> bool:
        """Check whether a listing satisfies these filters locally.

        An upper bound of 0 means "no upper bound". Listings missing a
        filtered attribute never match that filter.
        """
        if self.city_id and listing.city_id != self.city_id:
            return False

        if self.property_types and listing.property_type not in self.property_types:
            return False

        if self.rooms and (listing.rooms is None or listing.rooms not in self.rooms):
            return False

        if not _in_range(listing.area, self.min_area, self.max_area):
            return False

        if not _in_range(listing.price, self.min_price, self.max_price):
            return False

        if self.features and not all(f in listing.features for f in self.features):
            return False

        return True


def _in_range(
    value: Optional[float],
    minimum: Optional[float],
    maximum: Optional[float],
) -> bool:
    if minimum is None and not maximum:
        return True
    if value is None:
        return False
    if minimum is not None and value < minimum:
        return False
    if maximum and value > maximum:
        return False
    return True


@dataclass
class CategoryState:
    """Pagination bookkeeping for one category.

    ``accumulated_ids`` only grows until the state is reset; it is what keeps
    appended pages free of duplicates.
    """

    current_page_index: int = 1
    has_more: bool = True
    total_count: int = 0
    last_fetch_at: Optional[float] = None
    in_flight: bool = False
    accumulated_ids: set[str] = field(default_factory=set)
    items: list[Listing] = field(default_factory=list)
    epoch: int = 0
    page_size: int = 10
    filters: ListingFilters = field(default_factory=ListingFilters)

    def snapshot(self) -> dict[str, Any]:
        """Plain-dict view for logging and diagnostics."""
        return {
            "current_page_index": self.current_page_index,
            "has_more": self.has_more,
            "total_count": self.total_count,
            "last_fetch_at": self.last_fetch_at,
            "in_flight": self.in_flight,
            "accumulated": len(self.accumulated_ids),
            "epoch": self.epoch,
            "filters": self.filters.fingerprint(),
        }
