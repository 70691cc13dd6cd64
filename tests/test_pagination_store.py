"""Tests for CategoryPaginationStore."""

import asyncio

import pytest

from conftest import FakeCatalog, make_listing
from domgo.collectors.base import NetworkError, NotFoundError
from domgo.models.listing import ListingCategory, ListingFilters
from domgo.pagination.store import CategoryPaginationStore


class TestFirstPage:
    """Test first-page loading."""

    @pytest.mark.asyncio
    async def test_loads_first_page(self, pagination: CategoryPaginationStore, catalog: FakeCatalog):
        page = await pagination.get_first_page("rent")

        assert len(page.items) == 10
        assert page.total_count == 25
        assert catalog.calls == [("rent", 1, 10)]

        state = pagination.state("rent")
        assert state.current_page_index == 1
        assert state.has_more is True
        assert len(state.accumulated_ids) == 10

    @pytest.mark.asyncio
    async def test_enum_and_string_share_state(self, pagination: CategoryPaginationStore):
        await pagination.get_first_page(ListingCategory.RENT)
        assert pagination.state("rent") is not None

    @pytest.mark.asyncio
    async def test_recent_page_served_from_cache(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
        clock,
    ):
        """A second call inside the refetch interval makes no network call."""
        first = await pagination.get_first_page("rent")
        clock.advance(120)
        second = await pagination.get_first_page("rent")

        assert len(catalog.calls) == 1
        assert second.ids == first.ids

    @pytest.mark.asyncio
    async def test_refetch_after_interval(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
        clock,
    ):
        await pagination.get_first_page("rent")
        clock.advance(301)
        await pagination.get_first_page("rent")

        assert len(catalog.calls) == 2

    @pytest.mark.asyncio
    async def test_force_bypasses_throttle(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        await pagination.get_first_page("rent")
        await pagination.get_first_page("rent", force=True)

        assert len(catalog.calls) == 2

    @pytest.mark.asyncio
    async def test_empty_page_is_not_throttled(self, pagination: CategoryPaginationStore, catalog):
        """An empty cached result never suppresses a refetch."""
        await pagination.get_first_page("sale")
        await pagination.get_first_page("sale")

        assert len(catalog.calls) == 2

    @pytest.mark.asyncio
    async def test_refetch_replaces_accumulation(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        await pagination.get_first_page("rent")
        await pagination.load_next_page("rent")
        await pagination.get_first_page("rent", force=True)

        state = pagination.state("rent")
        assert state.current_page_index == 1
        assert len(state.items) == 10


class TestDeduplication:
    """Test that concurrent callers share one fetch."""

    @pytest.mark.asyncio
    async def test_concurrent_first_page_single_call(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        catalog.gate = asyncio.Event()
        first = asyncio.create_task(pagination.get_first_page("rent", 10))
        second = asyncio.create_task(pagination.get_first_page("rent", 10))
        await asyncio.sleep(0)

        catalog.gate.set()
        page1, page2 = await asyncio.gather(first, second)

        assert len(catalog.calls) == 1
        assert page1.ids == page2.ids

    @pytest.mark.asyncio
    async def test_waiting_caller_sees_failure(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        catalog.gate = asyncio.Event()
        catalog.fail_with = NetworkError("fake", "down")
        first = asyncio.create_task(pagination.get_first_page("rent"))
        second = asyncio.create_task(pagination.get_first_page("rent"))
        await asyncio.sleep(0)

        catalog.gate.set()
        results = await asyncio.gather(first, second, return_exceptions=True)

        assert len(catalog.calls) == 1
        assert all(isinstance(r, NetworkError) for r in results)

    @pytest.mark.asyncio
    async def test_categories_independent(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        catalog.gate = asyncio.Event()
        rent = asyncio.create_task(pagination.get_first_page("rent"))
        sale = asyncio.create_task(pagination.get_first_page("sale"))
        await asyncio.sleep(0)

        catalog.gate.set()
        await asyncio.gather(rent, sale)

        assert sorted(c[0] for c in catalog.calls) == ["rent", "sale"]


class TestLoadNextPage:
    """Test incremental loading."""

    @pytest.mark.asyncio
    async def test_rent_scenario(self, pagination: CategoryPaginationStore):
        """25 listings, page size 10: pages 2 and 3 then nothing."""
        await pagination.get_first_page("rent", 10)

        appended = await pagination.load_next_page("rent")
        state = pagination.state("rent")
        assert len(appended) == 10
        assert state.current_page_index == 2
        assert len(state.items) == 20
        assert state.has_more is True

        appended = await pagination.load_next_page("rent")
        assert len(appended) == 5
        assert state.current_page_index == 3
        assert len(state.items) == 25
        assert state.has_more is False

        assert await pagination.load_next_page("rent") == []

    @pytest.mark.asyncio
    async def test_overlapping_pages_not_duplicated(self, pagination: CategoryPaginationStore):
        """First page {1,2,3}, second page {3,4,5} appends only {4,5}."""
        catalog = FakeCatalog()
        catalog.pages[("sale", 1)] = [make_listing(1, "sale"), make_listing(2, "sale"), make_listing(3, "sale")]
        catalog.pages[("sale", 2)] = [make_listing(3, "sale"), make_listing(4, "sale"), make_listing(5, "sale")]
        catalog.total_counts["sale"] = 9
        pagination._catalog = catalog

        await pagination.get_first_page("sale", 3)
        appended = await pagination.load_next_page("sale")

        assert [l.id for l in appended] == ["listing-4", "listing-5"]
        state = pagination.state("sale")
        assert state.accumulated_ids == {f"listing-{n}" for n in range(1, 6)}
        assert len(state.items) == 5

    @pytest.mark.asyncio
    async def test_intra_page_duplicates_dropped(self, pagination: CategoryPaginationStore):
        catalog = FakeCatalog()
        catalog.pages[("sale", 1)] = [make_listing(1, "sale"), make_listing(1, "sale")]
        catalog.total_counts["sale"] = 2
        pagination._catalog = catalog

        await pagination.get_first_page("sale", 2)

        assert len(pagination.state("sale").items) == 1

    @pytest.mark.asyncio
    async def test_shrinking_total_ends_pagination(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        await pagination.get_first_page("rent")
        catalog.total_counts["rent"] = 15
        await pagination.load_next_page("rent")

        state = pagination.state("rent")
        assert state.total_count == 15
        assert state.has_more is False

    @pytest.mark.asyncio
    async def test_without_first_page_is_noop(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        assert await pagination.load_next_page("rent") == []
        assert catalog.calls == []

    @pytest.mark.asyncio
    async def test_in_flight_is_noop(self, pagination: CategoryPaginationStore, catalog: FakeCatalog):
        await pagination.get_first_page("rent")
        catalog.gate = asyncio.Event()
        pending = asyncio.create_task(pagination.load_next_page("rent"))
        await asyncio.sleep(0)

        assert await pagination.load_next_page("rent") == []

        catalog.gate.set()
        assert len(await pending) == 10
        assert len(catalog.calls) == 2

    @pytest.mark.asyncio
    async def test_failure_leaves_state_unchanged(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        errors = []
        pagination.add_error_listener(lambda category, error: errors.append((category, error)))
        await pagination.get_first_page("rent")
        catalog.fail_with = NetworkError("fake", "down")

        assert await pagination.load_next_page("rent") == []

        state = pagination.state("rent")
        assert state.current_page_index == 1
        assert state.has_more is True
        assert len(state.items) == 10
        assert errors and errors[0][0] == "rent"

        catalog.fail_with = None
        assert len(await pagination.load_next_page("rent")) == 10

    @pytest.mark.asyncio
    async def test_items_newest_first(self, pagination: CategoryPaginationStore):
        await pagination.get_first_page("rent")
        await pagination.load_next_page("rent")

        created = [l.created_at for l in pagination.items("rent")]
        assert created == sorted(created, reverse=True)


class TestFailures:
    """Test degraded results on first-page failures."""

    @pytest.mark.asyncio
    async def test_cached_page_served_on_failure(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        errors = []
        pagination.add_error_listener(lambda category, error: errors.append(error))
        first = await pagination.get_first_page("rent")
        catalog.fail_with = NetworkError("fake", "down")

        page = await pagination.get_first_page("rent", force=True)

        assert page.ids == first.ids
        assert len(errors) == 1
        assert isinstance(errors[0], NetworkError)

    @pytest.mark.asyncio
    async def test_failure_without_cache_raises(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        catalog.fail_with = NetworkError("fake", "down")

        with pytest.raises(NetworkError):
            await pagination.get_first_page("rent")

        state = pagination.state("rent")
        assert state.last_fetch_at is None
        assert state.in_flight is False

    @pytest.mark.asyncio
    async def test_removed_listener_not_called(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        errors = []
        remove = pagination.add_error_listener(lambda category, error: errors.append(error))
        remove()
        catalog.fail_with = NetworkError("fake", "down")

        with pytest.raises(NetworkError):
            await pagination.get_first_page("rent")
        assert errors == []


class TestStaleResponses:
    """Test that responses for superseded queries are discarded."""

    @pytest.mark.asyncio
    async def test_filter_change_discards_in_flight_response(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
        page_cache,
    ):
        catalog.gate = asyncio.Event()
        stale = asyncio.create_task(pagination.get_first_page("rent"))
        await asyncio.sleep(0)

        new_filters = ListingFilters(min_price=1010)
        assert pagination.set_filters("rent", new_filters) is True
        catalog.gate.set()
        page = await stale

        # The superseded caller still gets its page, but nothing is stored.
        assert len(page.items) == 10
        assert pagination.state("rent") is None
        assert len(page_cache) == 0

        catalog.gate = None
        await pagination.get_first_page("rent")
        assert len(catalog.calls) == 2
        assert catalog.filters_seen[-1] == new_filters
        assert pagination.state("rent").filters == new_filters

    @pytest.mark.asyncio
    async def test_same_filters_no_reset(self, pagination: CategoryPaginationStore):
        await pagination.get_first_page("rent")
        assert pagination.set_filters("rent", ListingFilters()) is False
        assert pagination.state("rent") is not None

    @pytest.mark.asyncio
    async def test_invalidate_discards_in_flight_next_page(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        await pagination.get_first_page("rent")
        catalog.gate = asyncio.Event()
        pending = asyncio.create_task(pagination.load_next_page("rent"))
        await asyncio.sleep(0)

        pagination.invalidate("rent")
        catalog.gate.set()
        await pending

        assert pagination.state("rent") is None


class TestInvalidation:
    """Test cache invalidation."""

    @pytest.mark.asyncio
    async def test_invalidate_forces_network(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
        page_cache,
    ):
        await pagination.get_first_page("rent")
        pagination.invalidate("rent")

        assert pagination.state("rent") is None
        assert len(page_cache) == 0

        await pagination.get_first_page("rent")
        assert len(catalog.calls) == 2

    @pytest.mark.asyncio
    async def test_invalidate_keeps_other_categories(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        catalog.listings["sale"] = [make_listing(100, "sale")]
        await pagination.get_first_page("rent")
        await pagination.get_first_page("sale")
        pagination.invalidate("rent")

        assert pagination.state("sale") is not None
        assert pagination.categories() == ["sale"]

    @pytest.mark.asyncio
    async def test_invalidate_all(self, pagination: CategoryPaginationStore, page_cache):
        await pagination.get_first_page("rent")
        await pagination.get_listing("listing-3")
        pagination.invalidate_all()

        assert pagination.categories() == []
        assert len(page_cache) == 0


class TestGetPage:
    """Test direct page access."""

    @pytest.mark.asyncio
    async def test_page_cached(self, pagination: CategoryPaginationStore, catalog: FakeCatalog):
        page = await pagination.get_page("rent", 3)
        again = await pagination.get_page("rent", 3)

        assert page.page_index == 3
        assert len(page.items) == 5
        assert again.ids == page.ids
        assert catalog.calls == [("rent", 3, 10)]

    @pytest.mark.asyncio
    async def test_does_not_touch_accumulation(self, pagination: CategoryPaginationStore):
        await pagination.get_first_page("rent")
        await pagination.get_page("rent", 2)

        state = pagination.state("rent")
        assert state.current_page_index == 1
        assert len(state.items) == 10

    @pytest.mark.asyncio
    async def test_page_one_delegates(self, pagination: CategoryPaginationStore):
        await pagination.get_page("rent", 1)
        assert pagination.state("rent").last_fetch_at is not None

    @pytest.mark.asyncio
    async def test_invalid_index(self, pagination: CategoryPaginationStore):
        with pytest.raises(ValueError):
            await pagination.get_page("rent", 0)

    @pytest.mark.asyncio
    async def test_failure_raises(self, pagination: CategoryPaginationStore, catalog: FakeCatalog):
        catalog.fail_with = NetworkError("fake", "down")
        with pytest.raises(NetworkError):
            await pagination.get_page("rent", 2)


class TestGetListing:
    """Test single-listing access."""

    @pytest.mark.asyncio
    async def test_fetch_and_cache(self, pagination: CategoryPaginationStore, catalog: FakeCatalog):
        listing = await pagination.get_listing("listing-7")
        again = await pagination.get_listing("listing-7")

        assert listing.id == "listing-7"
        assert again.id == "listing-7"
        assert catalog.detail_calls == ["listing-7"]

    @pytest.mark.asyncio
    async def test_refetch_after_interval(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
        clock,
    ):
        await pagination.get_listing("listing-7")
        clock.advance(901)
        await pagination.get_listing("listing-7")

        assert len(catalog.detail_calls) == 2

    @pytest.mark.asyncio
    async def test_not_found(self, pagination: CategoryPaginationStore):
        with pytest.raises(NotFoundError):
            await pagination.get_listing("missing")

    @pytest.mark.asyncio
    async def test_cached_listing_served_on_network_error(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
        clock,
    ):
        await pagination.get_listing("listing-7")
        clock.advance(901)
        catalog.fail_with = NetworkError("fake", "down")

        listing = await pagination.get_listing("listing-7")
        assert listing.id == "listing-7"

    @pytest.mark.asyncio
    async def test_invalidate_listing(self, pagination: CategoryPaginationStore, catalog: FakeCatalog):
        await pagination.get_listing("listing-7")
        assert pagination.invalidate_listing("listing-7") is True

        await pagination.get_listing("listing-7")
        assert len(catalog.detail_calls) == 2


class TestInvalidationDuringFetch:
    """Test that a listing fetched across an invalidation is not cached."""

    @pytest.mark.asyncio
    async def test_invalidate_listing_while_fetching(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        catalog.gate = asyncio.Event()
        pending = asyncio.create_task(pagination.get_listing("listing-1"))
        await asyncio.sleep(0)

        pagination.invalidate_listing("listing-1")
        catalog.gate.set()
        listing = await pending
        assert listing.id == "listing-1"

        await pagination.get_listing("listing-1")
        assert catalog.detail_calls == ["listing-1", "listing-1"]

    @pytest.mark.asyncio
    async def test_invalidate_all_while_fetching(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        catalog.gate = asyncio.Event()
        pending = asyncio.create_task(pagination.get_listing("listing-1"))
        await asyncio.sleep(0)

        pagination.invalidate_all()
        catalog.gate.set()
        await pending

        await pagination.get_listing("listing-1")
        assert catalog.detail_calls == ["listing-1", "listing-1"]

    @pytest.mark.asyncio
    async def test_unrelated_invalidation_keeps_result(
        self,
        pagination: CategoryPaginationStore,
        catalog: FakeCatalog,
    ):
        catalog.gate = asyncio.Event()
        pending = asyncio.create_task(pagination.get_listing("listing-1"))
        await asyncio.sleep(0)

        pagination.invalidate_listing("listing-2")
        catalog.gate.set()
        await pending

        await pagination.get_listing("listing-1")
        assert catalog.detail_calls == ["listing-1"]


class TestRequestHistory:
    """Test that throttle history does not grow without bound."""

    @pytest.mark.asyncio
    async def test_bounded_across_filter_changes(self, pagination: CategoryPaginationStore):
        for i in range(200):
            pagination.set_filters("rent", ListingFilters(min_price=1000 + i))
            await pagination.get_first_page("rent")
            await pagination.load_next_page("rent")
            await pagination.get_page("rent", 3)

        assert len(pagination.coordinator.tracked_keys()) <= 2

    @pytest.mark.asyncio
    async def test_invalidate_forgets_retired_epochs(self, pagination: CategoryPaginationStore):
        await pagination.get_first_page("rent")
        await pagination.get_page("rent", 2)
        pagination.invalidate("rent")

        assert pagination.coordinator.tracked_keys() == []

    @pytest.mark.asyncio
    async def test_old_listing_history_pruned(
        self,
        pagination: CategoryPaginationStore,
        clock,
    ):
        for n in range(1, 21):
            await pagination.get_listing(f"listing-{n}")
        assert len(pagination.coordinator.tracked_keys()) == 20

        clock.advance(901)
        await pagination.get_listing("listing-21")

        assert pagination.coordinator.tracked_keys() == ["listing:listing-21"]
