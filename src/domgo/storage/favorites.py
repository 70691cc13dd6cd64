"""Locally persisted favorite listings."""

import json
import logging

from .kvstore import KeyValueStore

logger = logging.getLogger(__name__)

FAVORITES_KEY = "favorites"


class FavoritesStore:
    """Set of favorite listing ids kept in the key-value store.

    Listing ids are opaque strings. Entries read back from storage that
    are not non-empty strings are discarded.

    Example:
        favorites = FavoritesStore(store)
        await favorites.load()
        added = await favorites.toggle(listing.id)
    """

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._ids: list[str] = []
        self._loaded = False

    async def load(self) -> list[str]:
        """Load favorites from storage, dropping malformed entries."""
        raw = await self._store.get(FAVORITES_KEY)
        ids: list[str] = []
        if raw:
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.error(f"Error parsing local favorites: {e}")
                parsed = []
            if isinstance(parsed, list):
                ids = [i for i in parsed if isinstance(i, str) and i]
                if len(ids) != len(parsed):
                    logger.warning(
                        f"Dropped {len(parsed) - len(ids)} malformed favorite ids"
                    )

        self._ids = list(dict.fromkeys(ids))
        self._loaded = True
        return list(self._ids)

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    async def _persist(self) -> None:
        await self._store.set(FAVORITES_KEY, json.dumps(self._ids))

    async def toggle(self, listing_id: str) -> bool:
        """Add or remove a listing from favorites.

        Returns:
            True if the listing is now a favorite, False if it was removed

        Raises:
            ValueError: If listing_id is empty
        """
        if not listing_id:
            raise ValueError("listing_id must be a non-empty string")
        await self._ensure_loaded()
        if listing_id in self._ids:
            self._ids.remove(listing_id)
            added = False
        else:
            self._ids.append(listing_id)
            added = True
        await self._persist()
        return added

    async def is_favorite(self, listing_id: str) -> bool:
        await self._ensure_loaded()
        return listing_id in self._ids

    async def ids(self) -> list[str]:
        """Favorite ids in the order they were added."""
        await self._ensure_loaded()
        return list(self._ids)

    async def clear(self) -> None:
        self._ids = []
        self._loaded = True
        await self._store.remove(FAVORITES_KEY)
