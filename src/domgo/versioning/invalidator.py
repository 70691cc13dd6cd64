"""Version-triggered cache invalidation.

Cached listings must never survive a build change. At startup (and on
explicit user action) the invalidator compares the version fingerprint stored
after the last clear with the identity of the running build and wipes every
cache when they differ. Anything unexpected while checking is treated like a
mismatch: clearing is always the safe answer.
"""

import asyncio
import inspect
import json
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from pydantic import ValidationError

from ..errors import CorruptedStateError
from ..models.version import RuntimeIdentity, VersionFingerprint
from ..storage.cache import LRUCacheStore
from ..storage.kvstore import KeyValueStore

logger = logging.getLogger(__name__)

APP_VERSION_KEY = "app_version_info"
FORCE_CLEAR_KEY = "force_clear_flag"

RestartHook = Callable[[], Union[None, Awaitable[None]]]


def reexec_process() -> None:
    """Replace the current process with a fresh copy of itself."""
    os.execv(sys.executable, [sys.executable, *sys.argv])


class VersionInvalidator:
    """Clears all derived state when the running build changes.

    Example:
        invalidator = VersionInvalidator(store, caches=[page_cache])
        invalidator.register_cache(pagination.invalidate_all)

        if await invalidator.check_and_clear_if_needed():
            print("Caches cleared for new version")
    """

    def __init__(
        self,
        store: KeyValueStore,
        identity: Optional[RuntimeIdentity] = None,
        caches: Iterable[LRUCacheStore[Any]] = (),
        scratch_dir: Optional[Path] = None,
        restart_hook: Optional[RestartHook] = reexec_process,
    ):
        """Initialize the invalidator.

        Args:
            store: Persistent store holding the fingerprint and force flag
            identity: Identity of the running build (read from settings if None)
            caches: LRU stores cleared on every full clear
            scratch_dir: On-disk scratch cache whose contents are deleted
            restart_hook: Called by force_restart (re-executes the process by
                          default); None means restarting is not supported
        """
        self._store = store
        self.identity = identity or RuntimeIdentity.from_settings()
        self._caches: list[LRUCacheStore[Any]] = list(caches)
        self._callbacks: list[Callable[[], None]] = []
        self.scratch_dir = Path(scratch_dir) if scratch_dir is not None else None
        self._restart_hook = restart_hook

    def register_cache(self, cache: Union[LRUCacheStore[Any], Callable[[], None]]) -> None:
        """Register an LRU store or a clear callback to wipe on full clears."""
        if isinstance(cache, LRUCacheStore):
            self._caches.append(cache)
        else:
            self._callbacks.append(cache)

    async def _read_fingerprint(self) -> Optional[VersionFingerprint]:
        """Load the stored fingerprint.

        Returns:
            The fingerprint, or None if nothing is stored

        Raises:
            CorruptedStateError: If the stored value is unreadable or incomplete
        """
        raw = await self._store.get(APP_VERSION_KEY)
        if raw is None:
            return None
        try:
            return VersionFingerprint.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            raise CorruptedStateError(f"Stored version info is unreadable: {e}") from e

    async def check_and_clear_if_needed(self) -> bool:
        """Clear everything if the stored version does not match this build.

        Clears on: a pending force-clear flag, first launch, corrupted
        version info, or a changed app version, build version or update id.

        Returns:
            True if caches were cleared
        """
        try:
            if await self._store.get(FORCE_CLEAR_KEY) == "true":
                await self.force_clear_all("Force clear flag detected")
                return True

            try:
                stored = await self._read_fingerprint()
            except CorruptedStateError as e:
                logger.info(f"Version info corrupted, clearing caches: {e}")
                await self.force_clear_all("Corrupted version info")
                return True

            if stored is None:
                logger.info("First launch, clearing caches")
                await self.force_clear_all("First app launch")
                return True

            reason = stored.mismatch_reason(self.identity)
            if reason:
                logger.info(f"Version change detected: {reason}")
                await self.force_clear_all(reason)
                return True

            logger.debug("Versions match, no cache clear needed")
            return False

        except Exception as e:
            logger.error(f"Error during version check: {e}")
            try:
                await self.force_clear_all(f"Error during version check: {e}")
                return True
            except Exception as clear_error:
                logger.error(f"Critical error while clearing caches: {clear_error}")
                return False

    async def force_clear_all(self, reason: str = "Manual clear") -> VersionFingerprint:
        """Wipe every cache and record a fresh fingerprint.

        Removes the stored fingerprint and force flag, deletes the scratch
        directory contents, runs registered clear callbacks, empties the LRU
        stores, then stores the current identity with ``reason``.

        Returns:
            The fingerprint that was written
        """
        logger.info(f"Clearing all caches: {reason}")

        await self._store.remove(APP_VERSION_KEY)
        await self._store.remove(FORCE_CLEAR_KEY)

        removed = self._clear_scratch_dir()
        if removed:
            logger.debug(f"Removed {removed} scratch cache entries")

        for callback in self._callbacks:
            callback()
        for cache in self._caches:
            cache.clear()

        fingerprint = VersionFingerprint.for_runtime(self.identity, reason)
        await self._store.set(APP_VERSION_KEY, fingerprint.model_dump_json())
        logger.info(
            f"Caches cleared; now at {fingerprint.app_version} "
            f"(build {fingerprint.build_version})"
        )
        return fingerprint

    def _clear_scratch_dir(self) -> int:
        """Delete everything inside the scratch cache directory.

        Entries that cannot be deleted are logged and skipped.
        """
        if self.scratch_dir is None or not self.scratch_dir.is_dir():
            return 0

        removed = 0
        for item in self.scratch_dir.iterdir():
            try:
                if item.is_dir() and not item.is_symlink():
                    shutil.rmtree(item)
                else:
                    item.unlink(missing_ok=True)
                removed += 1
            except OSError as e:
                logger.warning(f"Could not delete scratch entry {item}: {e}")
        return removed

    async def force_restart(self, reason: str = "Cache cleared") -> bool:
        """Reload the process so no stale module state survives.

        Returns:
            False if restarting is not supported (no restart hook)
        """
        if self._restart_hook is None:
            logger.warning(f"Restart requested ({reason}) but no restart hook is configured")
            return False

        logger.info(f"Restarting: {reason}")
        result = self._restart_hook()
        if inspect.isawaitable(result):
            await result
        return True

    async def clear_and_restart(
        self,
        reason: str = "Manual clear and restart",
        settle_delay: float = 1.0,
    ) -> bool:
        """Clear everything, give pending writes a moment, then restart."""
        await self.force_clear_all(reason)
        if settle_delay > 0:
            await asyncio.sleep(settle_delay)
        return await self.force_restart("After cache clear")

    async def set_force_clear_flag(self) -> None:
        """Defer a full clear to the next check_and_clear_if_needed call."""
        try:
            await self._store.set(FORCE_CLEAR_KEY, "true")
            logger.debug("Force clear flag set for next start")
        except OSError as e:
            logger.error(f"Failed to set force clear flag: {e}")

    async def get_version_info(self) -> Optional[VersionFingerprint]:
        """Stored fingerprint, or None if absent or unreadable."""
        try:
            return await self._read_fingerprint()
        except CorruptedStateError as e:
            logger.warning(f"Ignoring unreadable version info: {e}")
            return None

    async def get_diagnostic_info(self) -> dict[str, Any]:
        """Current identity, stored fingerprint and force flag, for debugging."""
        stored = await self.get_version_info()
        return {
            "current": self.identity.model_dump(),
            "stored": stored.model_dump(mode="json") if stored else None,
            "force_clear_flag": await self._store.get(FORCE_CLEAR_KEY) == "true",
        }
