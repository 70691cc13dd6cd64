"""Property data service.

PropertyService is the composition root of the data layer: it builds and
owns the caches, the request coordinator, the pagination store, the
load-more debouncer and the version invalidator, and exposes the operations
the application calls.

Example:
    async with PropertyService() as service:
        await service.run_startup_version_check()

        page = await service.get_properties_by_type("rent")
        service.load_more_properties("rent")   # debounced
        listings = service.visible_properties("rent")
"""

import logging
import time
from typing import Callable, Optional

from .collectors.base import CatalogQueryService
from .collectors.catalog import HttpCatalogService
from .config import Settings, config
from .diagnostics import CacheDiagnostics
from .models.listing import Listing, ListingCategory, ListingFilters, ListingPage
from .models.version import RuntimeIdentity
from .pagination.coordinator import RequestCoordinator
from .pagination.loader import DebouncedLoader
from .pagination.store import CategoryPaginationStore, ErrorListener
from .scheduling import AsyncioScheduler, Scheduler
from .storage.cache import CacheConfig, LRUCacheStore
from .storage.favorites import FavoritesStore
from .storage.kvstore import JsonFileKeyValueStore, KeyValueStore
from .versioning.invalidator import RestartHook, VersionInvalidator, reexec_process
from .versioning.updates import UpdateChecker

logger = logging.getLogger(__name__)


class PropertyService:
    """Listing access for the application.

    Must be created inside a running event loop when no scheduler is given,
    because the cache sweeps are armed on the loop's timers.
    """

    def __init__(
        self,
        catalog: Optional[CatalogQueryService] = None,
        store: Optional[KeyValueStore] = None,
        identity: Optional[RuntimeIdentity] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.monotonic,
        restart_hook: Optional[RestartHook] = reexec_process,
        settings: Optional[Settings] = None,
    ):
        """Initialize the service and everything it owns.

        Args:
            catalog: Catalog backend (HttpCatalogService from settings if None)
            store: Persistent key-value store (JSON file from settings if None)
            identity: Running build identity (from settings if None)
            scheduler: Timer source for cache sweeps and debouncing
            clock: Monotonic time source in seconds
            restart_hook: Process restart used after a full clear
            settings: Settings to read defaults from
        """
        settings = settings or config
        self.settings = settings
        self.identity = identity or RuntimeIdentity.from_settings(settings)

        self.catalog = catalog or HttpCatalogService(settings=settings)
        self._owns_catalog = catalog is None
        self.kv_store = store or JsonFileKeyValueStore(settings.storage_path)
        self.scheduler = scheduler or AsyncioScheduler()

        self.page_cache: LRUCacheStore[ListingPage] = LRUCacheStore(
            CacheConfig(
                max_entries=settings.cache_max_entries,
                ttl_seconds=settings.cache_ttl,
                cleanup_interval_seconds=settings.cache_cleanup_interval,
            ),
            clock=clock,
            scheduler=self.scheduler,
            name="listing-pages",
        )
        self.detail_cache: LRUCacheStore[Listing] = LRUCacheStore(
            CacheConfig(
                max_entries=settings.cache_max_entries,
                ttl_seconds=max(settings.detail_min_interval, 1.0),
                cleanup_interval_seconds=settings.cache_cleanup_interval,
            ),
            clock=clock,
            scheduler=self.scheduler,
            name="listing-details",
        )

        self.coordinator = RequestCoordinator(clock=clock)
        self.pagination = CategoryPaginationStore(
            self.catalog,
            self.page_cache,
            coordinator=self.coordinator,
            detail_cache=self.detail_cache,
            clock=clock,
            settings=settings,
        )
        self.loader = DebouncedLoader(
            self.pagination.load_next_page,
            scheduler=self.scheduler,
            clock=clock,
            settings=settings,
        )

        self.invalidator = VersionInvalidator(
            self.kv_store,
            identity=self.identity,
            caches=[self.page_cache, self.detail_cache],
            scratch_dir=settings.scratch_cache_dir,
            restart_hook=restart_hook,
        )
        self.invalidator.register_cache(self.pagination.invalidate_all)

        self.favorites = FavoritesStore(self.kv_store)
        self.updates = UpdateChecker(
            self.kv_store,
            current_version=self.identity.app_version,
            settings=settings,
        )
        self.diagnostics = CacheDiagnostics(
            self.kv_store,
            self.invalidator,
            caches=[self.page_cache, self.detail_cache],
        )

    async def run_startup_version_check(self) -> bool:
        """Clear every cache if the build changed since the last run.

        Returns:
            True if caches were cleared
        """
        cleared = await self.invalidator.check_and_clear_if_needed()
        if cleared:
            logger.info("Caches cleared by startup version check")
        return cleared

    async def get_properties_by_type(
        self,
        category: ListingCategory | str,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> ListingPage:
        """Get a page of listings of one category.

        Page 1 also (re)starts the incremental list of the category.
        """
        if page == 1:
            return await self.pagination.get_first_page(category, page_size)
        return await self.pagination.get_page(category, page, page_size)

    def load_more_properties(self, category: ListingCategory | str) -> None:
        """Request the next page of a category (debounced and throttled)."""
        self.loader.trigger(category)

    async def refresh_properties(self, category: ListingCategory | str) -> ListingPage:
        """Refetch the first page now, ignoring the refetch interval."""
        return await self.pagination.get_first_page(category, force=True)

    async def get_property(self, listing_id: str) -> Listing:
        return await self.pagination.get_listing(listing_id)

    def visible_properties(self, category: ListingCategory | str) -> list[Listing]:
        """Accumulated listings of a category, newest first.

        The category's filters are applied again locally, so listings the
        catalog returned despite a filter are not shown.
        """
        filters = self.pagination.filters(category)
        listings = self.pagination.items(category)
        if filters.is_empty:
            return listings
        return [listing for listing in listings if filters.matches(listing)]

    def set_filters(self, category: ListingCategory | str, filters: ListingFilters) -> bool:
        """Change the filters of a category; its list restarts from page 1."""
        changed = self.pagination.set_filters(category, filters)
        if changed:
            self.loader.cancel()
        return changed

    def invalidate_cache(
        self,
        category: Optional[ListingCategory | str] = None,
        listing_id: Optional[str] = None,
    ) -> None:
        """Drop cached data after a mutation.

        With no arguments every category and listing is dropped.
        """
        if listing_id is not None:
            self.pagination.invalidate_listing(listing_id)
        if category is not None:
            self.pagination.invalidate(category)
        if category is None and listing_id is None:
            self.pagination.invalidate_all()

    def add_error_listener(self, listener: ErrorListener) -> Callable[[], None]:
        """Register a callback for failed fetches (user-visible notices)."""
        return self.pagination.add_error_listener(listener)

    async def close(self) -> None:
        """Cancel pending loads, stop cache sweeps and close the catalog."""
        self.loader.cancel()
        await self.loader.drain()
        self.page_cache.destroy()
        self.detail_cache.destroy()
        if self._owns_catalog:
            await self.catalog.close()

    async def __aenter__(self) -> "PropertyService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
