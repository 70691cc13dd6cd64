"""Per-category pagination over the listing catalog.

The store keeps one CategoryState per category key (created lazily) and
serves pages through the LRU cache and the request coordinator:

    Idle -> Fetching -> Idle                  (success)
    Idle -> Fetching -> Failed -> Idle        (error, state untouched)

Every category carries a request epoch. Changing filters or invalidating the
category bumps it, and a response that arrives for an older epoch is never
written into state or cache.
"""

import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from ..collectors.base import CatalogError, CatalogQueryService, NetworkError, compute_has_more
from ..config import Settings, config
from ..errors import ThrottledError
from ..models.listing import (
    CategoryState,
    Listing,
    ListingCategory,
    ListingFilters,
    ListingPage,
    category_key,
)
from ..storage.cache import CacheConfig, LRUCacheStore, make_cache_key
from .coordinator import RequestCoordinator

logger = logging.getLogger(__name__)

T = TypeVar("T")

ErrorListener = Callable[[str, CatalogError], None]

PAGE_CACHE_PREFIX = "listings"
DETAIL_CACHE_PREFIX = "listing"


class CategoryPaginationStore:
    """Incremental, deduplicated pagination per listing category.

    Example:
        store = CategoryPaginationStore(catalog, cache)

        first = await store.get_first_page("rent", page_size=10)
        more = await store.load_next_page("rent")   # only unseen listings
        visible = store.items("rent")

        store.invalidate("rent")   # next read goes to the network
    """

    def __init__(
        self,
        catalog: CatalogQueryService,
        cache: LRUCacheStore[ListingPage],
        coordinator: Optional[RequestCoordinator] = None,
        detail_cache: Optional[LRUCacheStore[Listing]] = None,
        page_size: Optional[int] = None,
        first_page_min_interval: Optional[float] = None,
        detail_min_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        settings: Optional[Settings] = None,
    ):
        """Initialize the store.

        Args:
            catalog: Backend that serves listing pages
            cache: LRU store shared for page snapshots
            coordinator: In-flight/throttle tracker (created if not given)
            detail_cache: LRU store for single listings (created if not given)
            page_size: Default listings per page
            first_page_min_interval: Seconds a cached first page is served
                                     before refetching
            detail_min_interval: Seconds a cached listing is served before
                                 refetching
            clock: Monotonic time source in seconds
            settings: Settings to read defaults from
        """
        settings = settings or config
        self._catalog = catalog
        self._cache = cache
        self._clock = clock
        self._coordinator = coordinator or RequestCoordinator(clock=clock)
        self.page_size = page_size or settings.page_size
        self.first_page_min_interval = (
            first_page_min_interval
            if first_page_min_interval is not None
            else settings.first_page_min_interval
        )
        self.detail_min_interval = (
            detail_min_interval
            if detail_min_interval is not None
            else settings.detail_min_interval
        )
        self._detail_cache = detail_cache or LRUCacheStore(
            CacheConfig(
                max_entries=settings.cache_max_entries,
                ttl_seconds=max(self.detail_min_interval, 1.0),
            ),
            clock=clock,
            name="listing-details",
        )

        self._states: dict[str, CategoryState] = {}
        self._epochs: dict[str, int] = {}
        self._filters: dict[str, ListingFilters] = {}
        self._error_listeners: list[ErrorListener] = []
        # Invalidations seen by each single-listing fetch still in flight.
        self._detail_fetches: dict[str, int] = {}
        self._history_max_age = max(self.first_page_min_interval, self.detail_min_interval)

    @property
    def coordinator(self) -> RequestCoordinator:
        return self._coordinator

    # =========================================================================
    # State access
    # =========================================================================

    def _state(self, key: str) -> CategoryState:
        """Get or lazily create the state of a category."""
        state = self._states.get(key)
        if state is None:
            state = CategoryState(
                epoch=self._epochs.get(key, 0),
                page_size=self.page_size,
                filters=self._filters.get(key, ListingFilters()),
            )
            self._states[key] = state
        return state

    def state(self, category: ListingCategory | str) -> Optional[CategoryState]:
        """Current state of a category, or None if never queried.

        The returned object is owned by the store and must not be mutated.
        """
        return self._states.get(category_key(category))

    def categories(self) -> list[str]:
        return list(self._states)

    def filters(self, category: ListingCategory | str) -> ListingFilters:
        return self._filters.get(category_key(category), ListingFilters())

    def items(self, category: ListingCategory | str) -> list[Listing]:
        """Visible merged listings of a category, newest first."""
        state = self._states.get(category_key(category))
        if state is None:
            return []
        return sorted(state.items, key=lambda listing: listing.created_at, reverse=True)

    def _is_current(self, key: str, state: CategoryState, epoch: int) -> bool:
        return self._states.get(key) is state and state.epoch == epoch

    def _request_key(self, key: str, epoch: int) -> str:
        return f"{key}#{epoch}"

    def _cache_key(self, key: str, filters: ListingFilters, page_index: int, page_size: int) -> str:
        return make_cache_key(
            f"{PAGE_CACHE_PREFIX}:{key}",
            {"filters": filters.fingerprint(), "page": page_index, "size": page_size},
        )

    # =========================================================================
    # Error notices
    # =========================================================================

    def add_error_listener(self, listener: ErrorListener) -> Callable[[], None]:
        """Register a callback receiving (category, error) for failed fetches.

        Returns:
            Function that unregisters the listener
        """
        self._error_listeners.append(listener)

        def remove() -> None:
            if listener in self._error_listeners:
                self._error_listeners.remove(listener)

        return remove

    def _notify_error(self, key: str, error: CatalogError) -> None:
        for listener in list(self._error_listeners):
            try:
                listener(key, error)
            except Exception as e:
                logger.error(f"Error listener failed for {key}: {e}")

    # =========================================================================
    # First page
    # =========================================================================

    async def get_first_page(
        self,
        category: ListingCategory | str,
        page_size: Optional[int] = None,
        force: bool = False,
    ) -> ListingPage:
        """Get the first page of a category, fetching only when needed.

        A recent cached page is served without a network call unless
        ``force`` is set. A concurrent caller never triggers a second fetch:
        it gets the cached page or waits for the outstanding one.

        Args:
            category: Category key
            page_size: Listings per page (store default if None)
            force: Bypass the refetch throttle (in-flight dedup still applies)

        Returns:
            The first page; the previously cached page if the fetch failed

        Raises:
            CatalogError: If the fetch failed and nothing was cached
        """
        key = category_key(category)
        size = page_size or self.page_size

        while True:
            state = self._state(key)
            request_key = self._request_key(key, state.epoch)
            cache_key = self._cache_key(key, state.filters, 1, size)
            cached = self._cache.get(cache_key)

            try:
                self._coordinator.guard(
                    request_key,
                    self.first_page_min_interval,
                    force=force,
                    has_cached=cached is not None and not cached.is_empty,
                )
            except ThrottledError as e:
                logger.debug(f"Serving cached {key} first page: {e}")
                return cached  # type: ignore[return-value]

            if self._coordinator.try_acquire(request_key):
                return await self._fetch_first_page(key, state, request_key, cache_key, size, cached)

            if cached is not None:
                logger.debug(f"Fetch of {key} in flight, serving cached first page")
                return cached

            logger.debug(f"Fetch of {key} in flight, waiting for it")
            outcome = await self._coordinator.wait_for(request_key)
            result = outcome.result
            if isinstance(result, ListingPage) and result.page_index == 1:
                return result
            if outcome.error is not None and isinstance(outcome.error, CatalogError):
                raise NetworkError(
                    outcome.error.source, f"Shared request failed: {outcome.error.message}"
                ) from outcome.error
            # The outstanding fetch was for a later page; try again.

    async def _fetch_first_page(
        self,
        key: str,
        state: CategoryState,
        request_key: str,
        cache_key: str,
        size: int,
        cached: Optional[ListingPage],
    ) -> ListingPage:
        epoch = state.epoch
        try:
            page = await self._fetch_tracked(
                request_key, self._catalog.fetch_page(key, 1, size, state.filters), state
            )
        except CatalogError as e:
            self._notify_error(key, e)
            if cached is not None:
                logger.warning(f"Serving cached {key} first page after failure: {e}")
                return cached
            logger.warning(f"Failed to load {key} first page: {e}")
            raise

        if self._is_current(key, state, epoch):
            self._apply_first_page(state, page, size)
            self._cache.set(cache_key, page)
            logger.info(f"Loaded {key} first page: {len(page.items)} of {page.total_count}")
        else:
            logger.debug(f"Discarding stale {key} first page (epoch {epoch})")
        return page

    async def _fetch_tracked(
        self,
        request_key: str,
        fetch: Awaitable[T],
        state: Optional[CategoryState] = None,
    ) -> T:
        """Await a catalog call holding ``request_key``.

        The key is released on every path; waiters receive the result or
        the error.
        """
        if state is not None:
            state.in_flight = True
        try:
            result = await fetch
        except BaseException as e:
            self._coordinator.release(request_key, error=e)
            raise
        finally:
            if state is not None:
                state.in_flight = False
        self._coordinator.release(request_key, result=result)
        return result

    def _apply_first_page(self, state: CategoryState, page: ListingPage, size: int) -> None:
        state.accumulated_ids = set()
        state.items = []
        self._merge(state, page.items)
        state.current_page_index = 1
        state.page_size = size
        state.total_count = page.total_count
        state.has_more = compute_has_more(1, size, page.total_count)
        state.last_fetch_at = self._clock()

    def _merge(self, state: CategoryState, items: list[Listing]) -> list[Listing]:
        """Append listings whose ids were not seen yet.

        Returns:
            The listings actually appended
        """
        fresh = []
        for item in items:
            if item.id in state.accumulated_ids:
                continue
            state.accumulated_ids.add(item.id)
            fresh.append(item)
        state.items.extend(fresh)
        return fresh

    # =========================================================================
    # Incremental loading
    # =========================================================================

    async def load_next_page(
        self,
        category: ListingCategory | str,
        page_size: Optional[int] = None,
    ) -> list[Listing]:
        """Fetch the next page of a category and append unseen listings.

        No-op (returns []) when the first page was never loaded, when there
        is nothing more, or when a fetch for the category is in flight.
        Listings already seen are dropped, since the backend may return
        overlapping pages under concurrent writes.

        Returns:
            Newly appended listings
        """
        key = category_key(category)
        state = self._states.get(key)
        if state is None or state.last_fetch_at is None:
            logger.debug(f"Load more for {key} ignored: first page not loaded")
            return []
        if not state.has_more:
            return []

        request_key = self._request_key(key, state.epoch)
        if not self._coordinator.try_acquire(request_key):
            return []

        size = page_size or state.page_size
        epoch = state.epoch
        next_index = state.current_page_index + 1
        try:
            page = await self._fetch_tracked(
                request_key,
                self._catalog.fetch_page(key, next_index, size, state.filters),
                state,
            )
        except CatalogError as e:
            logger.warning(f"Could not load more {key} listings: {e}")
            self._notify_error(key, e)
            return []

        if not self._is_current(key, state, epoch):
            logger.debug(f"Discarding stale {key} page {next_index} (epoch {epoch})")
            return []

        appended = self._apply_next_page(state, page, next_index, size)
        self._cache.set(self._cache_key(key, state.filters, next_index, size), page)
        dropped = len(page.items) - len(appended)
        logger.info(
            f"Loaded {key} page {next_index}: {len(appended)} new"
            + (f", {dropped} duplicates dropped" if dropped else "")
        )
        return appended

    def _apply_next_page(
        self,
        state: CategoryState,
        page: ListingPage,
        page_index: int,
        size: int,
    ) -> list[Listing]:
        appended = self._merge(state, page.items)
        state.current_page_index = page_index
        state.page_size = size
        state.total_count = page.total_count
        # Derived, never sticky: a shrinking total ends pagination.
        state.has_more = compute_has_more(page_index, size, page.total_count)
        state.last_fetch_at = self._clock()
        return appended

    # =========================================================================
    # Direct page access
    # =========================================================================

    async def get_page(
        self,
        category: ListingCategory | str,
        page_index: int,
        page_size: Optional[int] = None,
    ) -> ListingPage:
        """Get an arbitrary page without touching the accumulated list.

        Page 1 is delegated to get_first_page.

        Raises:
            CatalogError: If the page could not be fetched
        """
        if page_index < 1:
            raise ValueError("page_index must be >= 1")
        if page_index == 1:
            return await self.get_first_page(category, page_size)

        key = category_key(category)
        size = page_size or self.page_size

        while True:
            state = self._state(key)
            request_key = f"{self._request_key(key, state.epoch)}/page={page_index}"
            cache_key = self._cache_key(key, state.filters, page_index, size)
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

            if not self._coordinator.try_acquire(request_key):
                outcome = await self._coordinator.wait_for(request_key)
                if isinstance(outcome.result, ListingPage):
                    return outcome.result
                if isinstance(outcome.error, CatalogError):
                    raise NetworkError(
                        outcome.error.source, f"Shared request failed: {outcome.error.message}"
                    ) from outcome.error
                continue

            epoch = state.epoch
            try:
                page = await self._fetch_tracked(
                    request_key, self._catalog.fetch_page(key, page_index, size, state.filters)
                )
            except CatalogError as e:
                self._notify_error(key, e)
                raise

            if self._is_current(key, state, epoch):
                self._cache.set(cache_key, page)
            return page

    # =========================================================================
    # Single listings
    # =========================================================================

    async def get_listing(self, listing_id: str) -> Listing:
        """Get one listing, served from the detail cache when recent.

        Raises:
            NotFoundError: If the listing does not exist
            CatalogError: If the fetch failed and nothing was cached
        """
        cache_key = f"{DETAIL_CACHE_PREFIX}:{listing_id}"
        request_key = cache_key

        while True:
            cached = self._detail_cache.get(cache_key)
            try:
                self._coordinator.guard(
                    request_key, self.detail_min_interval, has_cached=cached is not None
                )
            except ThrottledError:
                return cached  # type: ignore[return-value]

            if self._coordinator.try_acquire(request_key):
                break
            if cached is not None:
                return cached
            outcome = await self._coordinator.wait_for(request_key)
            if isinstance(outcome.result, Listing):
                return outcome.result
            if isinstance(outcome.error, CatalogError):
                raise outcome.error

        self._coordinator.prune(self._history_max_age)
        self._detail_fetches[listing_id] = 0
        try:
            listing = await self._fetch_tracked(
                request_key, self._catalog.fetch_single(listing_id)
            )
        except CatalogError as e:
            invalidated = self._detail_fetches.get(listing_id, 0) > 0
            if isinstance(e, NetworkError) and cached is not None and not invalidated:
                logger.warning(f"Serving cached listing {listing_id} after failure: {e}")
                return cached
            self._detail_cache.delete(cache_key)
            raise
        finally:
            invalidations = self._detail_fetches.pop(listing_id, 0)

        if invalidations:
            logger.debug(f"Discarding listing {listing_id} fetched before invalidation")
            self._coordinator.reset(request_key)
        else:
            self._detail_cache.set(cache_key, listing)
        return listing

    # =========================================================================
    # Invalidation
    # =========================================================================

    def set_filters(self, category: ListingCategory | str, filters: ListingFilters) -> bool:
        """Change the filters of a category.

        Resets the category: accumulated listings are dropped and any
        response still in flight for the old filters will be discarded.

        Returns:
            True if the filters changed
        """
        key = category_key(category)
        if self._filters.get(key, ListingFilters()) == filters:
            return False
        self._filters[key] = filters
        self.invalidate(key)
        logger.info(f"Filters for {key} changed to {filters.fingerprint()}")
        return True

    def invalidate(self, category: ListingCategory | str) -> None:
        """Reset a category and drop its cached pages.

        The next get_first_page performs a network round trip.
        """
        key = category_key(category)
        self._states.pop(key, None)
        self._epochs[key] = self._epochs.get(key, 0) + 1
        # Request keys of retired epochs are never used again.
        self._coordinator.reset_prefix(f"{key}#")
        removed = self._cache.delete_prefix(f"{PAGE_CACHE_PREFIX}:{key}:")
        logger.debug(f"Invalidated {key} ({removed} cached pages dropped)")

    def invalidate_listing(self, listing_id: str) -> bool:
        """Drop a single listing from the detail cache.

        A fetch of the listing still in flight will not repopulate the cache.
        """
        key = f"{DETAIL_CACHE_PREFIX}:{listing_id}"
        if listing_id in self._detail_fetches:
            self._detail_fetches[listing_id] += 1
        self._coordinator.reset(key)
        return self._detail_cache.delete(key)

    def invalidate_all(self) -> None:
        """Reset every category and drop all cached pages and listings."""
        for key in set(self._states) | set(self._epochs):
            self.invalidate(key)
        for listing_id in self._detail_fetches:
            self._detail_fetches[listing_id] += 1
        self._cache.delete_prefix(f"{PAGE_CACHE_PREFIX}:")
        self._detail_cache.clear()
        self._coordinator.reset()
        logger.info("Listing caches invalidated")
