"""Persistent string key-value storage.

The data layer persists a handful of small values (version fingerprint,
force-clear flag, favorites, last update check). ``KeyValueStore`` is the
interface; ``JsonFileKeyValueStore`` keeps everything in one JSON file.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Asynchronous string key-value store."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get a stored value, or None if absent."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove a key. Removing a missing key is not an error."""
        pass

    @abstractmethod
    async def list_keys(self) -> list[str]:
        """List all stored keys."""
        pass


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store, used in tests and when persistence is disabled."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self) -> list[str]:
        return list(self._data)


class JsonFileKeyValueStore(KeyValueStore):
    """Key-value store persisted as a single JSON object on disk.

    Reads and writes are synchronous file operations run on the event loop.
    The file holds a handful of small values, so each access is a short
    blocking call rather than a hop to a worker thread.

    Example:
        store = JsonFileKeyValueStore()
        await store.set("favorites", '["..."]')
        keys = await store.list_keys()
    """

    def __init__(self, path: Optional[Path] = None):
        """Initialize the store.

        Args:
            path: JSON file path. Defaults to ~/.domgo/storage.json
        """
        if path is None:
            path = Path.home() / ".domgo" / "storage.json"
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _load_all_data(self) -> dict[str, str]:
        """Load all values from the JSON file."""
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load key-value store {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed key-value store {self.path}")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _save_all_data(self, data: dict[str, str]) -> None:
        """Write all values to the JSON file."""
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
        except IOError as e:
            logger.error(f"Failed to save key-value store {self.path}: {e}")
            raise

    async def get(self, key: str) -> Optional[str]:
        return self._load_all_data().get(key)

    async def set(self, key: str, value: str) -> None:
        data = self._load_all_data()
        data[key] = value
        self._save_all_data(data)

    async def remove(self, key: str) -> None:
        data = self._load_all_data()
        if key in data:
            del data[key]
            self._save_all_data(data)

    async def list_keys(self) -> list[str]:
        return sorted(self._load_all_data())
