"""Pytest fixtures and test utilities."""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

import pytest

from domgo.collectors.base import CatalogError, CatalogQueryService, NotFoundError, compute_has_more
from domgo.models.listing import Listing, ListingFilters, ListingPage
from domgo.pagination.coordinator import RequestCoordinator
from domgo.pagination.store import CategoryPaginationStore
from domgo.storage.cache import CacheConfig, LRUCacheStore
from domgo.storage.kvstore import MemoryKeyValueStore

BASE_TIME = datetime(2024, 3, 1, 12, 0, 0)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualTimer:
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose timers only fire when advance() moves the clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.timers: list[ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.clock() + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in order."""
        target = self.clock() + seconds
        while True:
            due = [t for t in self.pending if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.clock.now = max(self.clock.now, timer.due)
            timer.fired = True
            timer.callback()
        self.clock.now = target


def make_listing(n: int, category: str = "rent", **kwargs) -> Listing:
    """Listing with id ``listing-<n>``; higher n means newer."""
    data = {
        "id": f"listing-{n}",
        "category_tags": {category},
        "created_at": BASE_TIME + timedelta(minutes=n),
        "title": f"Listing {n}",
        "price": 1000 + n,
    }
    data.update(kwargs)
    return Listing(**data)


class FakeCatalog(CatalogQueryService):
    """In-memory catalog that records every call.

    Pages are sliced from ``listings[category]`` unless ``pages`` holds an
    explicit (category, page_index) override. Setting ``gate`` blocks every
    call until the event is set; setting ``fail_with`` makes calls raise.
    """

    name = "fake"

    def __init__(self, listings: Optional[dict[str, list[Listing]]] = None):
        self.listings = listings or {}
        self.pages: dict[tuple[str, int], list[Listing]] = {}
        self.total_counts: dict[str, int] = {}
        self.calls: list[tuple[str, int, int]] = []
        self.filters_seen: list[Optional[ListingFilters]] = []
        self.detail_calls: list[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.fail_with: Optional[CatalogError] = None

    async def fetch_page(self, category, page_index, page_size, filters=None) -> ListingPage:
        self.calls.append((category, page_index, page_size))
        self.filters_seen.append(filters)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with

        all_items = self.listings.get(category, [])
        if (category, page_index) in self.pages:
            items = self.pages[(category, page_index)]
        else:
            start = (page_index - 1) * page_size
            items = all_items[start:start + page_size]
        total = self.total_counts.get(category, len(all_items))

        return ListingPage(
            items=items,
            total_count=total,
            has_more=compute_has_more(page_index, page_size, total),
            page_index=page_index,
        )

    async def fetch_single(self, listing_id) -> Listing:
        self.detail_calls.append(listing_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with

        for items in self.listings.values():
            for listing in items:
                if listing.id == listing_id:
                    return listing
        raise NotFoundError(self.name, listing_id)


@pytest.fixture
def clock() -> FakeClock:
    """Fake monotonic clock."""
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> ManualScheduler:
    """Scheduler driven by the fake clock."""
    return ManualScheduler(clock)


@pytest.fixture
def rent_listings() -> list[Listing]:
    """25 rent listings, newest first."""
    return [make_listing(n) for n in range(25, 0, -1)]


@pytest.fixture
def catalog(rent_listings: list[Listing]) -> FakeCatalog:
    """Fake catalog with 25 rent listings."""
    return FakeCatalog({"rent": rent_listings})


@pytest.fixture
def page_cache(clock: FakeClock) -> LRUCacheStore[ListingPage]:
    """Page cache whose TTL outlives the first-page refetch interval."""
    return LRUCacheStore(CacheConfig(max_entries=50, ttl_seconds=600), clock=clock, name="pages")


@pytest.fixture
def pagination(
    catalog: FakeCatalog,
    page_cache: LRUCacheStore[ListingPage],
    clock: FakeClock,
) -> CategoryPaginationStore:
    """Pagination store over the fake catalog with page size 10."""
    return CategoryPaginationStore(
        catalog,
        page_cache,
        coordinator=RequestCoordinator(clock=clock),
        detail_cache=LRUCacheStore(
            CacheConfig(max_entries=20, ttl_seconds=3600), clock=clock, name="details"
        ),
        page_size=10,
        first_page_min_interval=300,
        detail_min_interval=900,
        clock=clock,
    )


@pytest.fixture
def kv_store() -> MemoryKeyValueStore:
    """Empty in-memory key-value store."""
    return MemoryKeyValueStore()
