"""HTTP client for the remote listing catalog.

Talks to the catalog's JSON API:

    GET {base}/listings?category=sale&page=2&page_size=10[&filters...]
        -> {"items": [...], "total_count": 25}
    GET {base}/listings/{id}
        -> {...listing...}   (404 if unknown)

Requests have a bounded timeout and are retried with increasing backoff.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from ..config import Settings, config
from ..models.listing import Listing, ListingCategory, ListingFilters, ListingPage
from .base import (
    CatalogError,
    CatalogQueryService,
    NetworkError,
    NotFoundError,
    RateLimitError,
    compute_has_more,
)

logger = logging.getLogger(__name__)


class HttpCatalogService(CatalogQueryService):
    """Catalog backend reached over HTTP.

    Example:
        async with HttpCatalogService("https://catalog.example.com/api") as catalog:
            page = await catalog.fetch_page("rent", page_index=1, page_size=10)
    """

    name = "http_catalog"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        backoff_factor: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the catalog client.

        Unset arguments fall back to settings.

        Args:
            base_url: Catalog API root
            timeout: Per-request timeout in seconds
            max_retries: Attempts per request
            retry_delay: Delay before the first retry in seconds
            backoff_factor: Multiplier applied to the delay after each retry
            client: Pre-built httpx client (its base_url is used as-is)
            settings: Settings to read defaults from
        """
        settings = settings or config
        self.base_url = (base_url or settings.catalog_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.catalog_timeout
        self.max_retries = max_retries or settings.catalog_max_retries
        self.retry_delay = (
            retry_delay if retry_delay is not None else settings.catalog_retry_delay
        )
        self.backoff_factor = backoff_factor or settings.catalog_backoff_factor
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Accept": "application/json"},
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    async def _make_request(self, path: str, **kwargs: Any) -> httpx.Response:
        """Make a GET request with retry logic.

        Timeouts, transport errors, 5xx and 429 responses are retried with
        increasing delays. 404 is returned to the caller untouched.

        Raises:
            RateLimitError: If still rate limited after the last attempt
            NetworkError: For timeouts, transport errors and 5xx responses
            CatalogError: For other 4xx responses, which are not retried
        """
        client = await self._get_client()
        delay = self.retry_delay
        last_error = "Max retries exceeded"

        for attempt in range(self.max_retries):
            is_last = attempt == self.max_retries - 1

            try:
                response = await client.get(path, **kwargs)
            except httpx.TimeoutException:
                last_error = "Request timeout"
                logger.debug(f"Timeout on {path} (attempt {attempt + 1}/{self.max_retries})")
            except httpx.TransportError as e:
                last_error = f"Transport error: {e}"
                logger.debug(f"Transport error on {path}: {e}")
            else:
                if response.status_code == 404:
                    return response

                if response.status_code == 429:
                    retry_after = _parse_retry_after(response)
                    if is_last:
                        raise RateLimitError(self.name, retry_after)
                    await asyncio.sleep(retry_after if retry_after is not None else delay)
                    delay *= self.backoff_factor
                    continue

                if response.status_code >= 500:
                    last_error = f"HTTP error: {response.status_code}"
                else:
                    try:
                        response.raise_for_status()
                    except httpx.HTTPStatusError as e:
                        raise CatalogError(
                            self.name, f"Client error: {e.response.status_code}"
                        ) from e
                    return response

            if not is_last:
                await asyncio.sleep(delay)
                delay *= self.backoff_factor

        raise NetworkError(self.name, f"{last_error} after {self.max_retries} attempts")

    async def fetch_page(
        self,
        category: str,
        page_index: int,
        page_size: int,
        filters: Optional[ListingFilters] = None,
    ) -> ListingPage:
        params: dict[str, Any] = {"page": page_index, "page_size": page_size}
        if category != ListingCategory.ALL.value:
            params["category"] = category
        if filters is not None:
            params.update(filters.to_query_params())

        logger.debug(f"Fetching {category} page {page_index} (size {page_size})")
        response = await self._make_request("/listings", params=params)
        if response.status_code == 404:
            raise NetworkError(self.name, "Listings endpoint not found")

        payload = self._json(response)
        if not isinstance(payload, dict):
            raise CatalogError(self.name, "Malformed page response")

        try:
            items = [Listing.model_validate(raw) for raw in payload.get("items") or []]
            total_count = int(payload.get("total_count") or 0)
        except (ValidationError, TypeError, ValueError) as e:
            raise CatalogError(self.name, f"Malformed page response: {e}")

        return ListingPage(
            items=items,
            total_count=total_count,
            has_more=compute_has_more(page_index, page_size, total_count),
            fetched_at=datetime.now(),
            page_index=page_index,
        )

    async def fetch_single(self, listing_id: str) -> Listing:
        response = await self._make_request(f"/listings/{listing_id}")
        if response.status_code == 404:
            raise NotFoundError(self.name, listing_id)

        try:
            return Listing.model_validate(self._json(response))
        except ValidationError as e:
            raise CatalogError(self.name, f"Malformed listing {listing_id}: {e}")

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise CatalogError(self.name, f"Invalid JSON from catalog: {e}")

    async def close(self) -> None:
        """Close the HTTP client if this service created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "HttpCatalogService":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None
