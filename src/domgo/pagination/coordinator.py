"""Per-key in-flight tracking and refetch throttling.

The coordinator is what guarantees at most one outstanding catalog call per
logical query. Callers follow this protocol:

    if not coordinator.try_acquire(key):
        outcome = await coordinator.wait_for(key)   # or serve a cached value
    else:
        try:
            result = await fetch()
        except Exception as e:
            coordinator.release(key, error=e)
            raise
        coordinator.release(key, result=result)

``release`` must run on every path, success or failure.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..errors import ThrottledError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchOutcome:
    """Result of a completed fetch, handed to callers that waited on it."""

    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RequestCoordinator:
    """Deduplicates concurrent fetches and rate-limits refetching per key.

    Example:
        coordinator = RequestCoordinator()

        coordinator.guard("sale#0", min_interval=300, has_cached=True)
        if coordinator.try_acquire("sale#0"):
            ...
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._in_flight: set[str] = set()
        self._last_fetch_at: dict[str, float] = {}
        self._waiters: dict[str, list[asyncio.Future]] = {}

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def last_fetch_at(self, key: str) -> Optional[float]:
        """Completion time of the last fetch for ``key``, if any."""
        return self._last_fetch_at.get(key)

    def try_acquire(self, key: str) -> bool:
        """Mark ``key`` as in flight.

        Returns:
            False if a fetch for ``key`` is already outstanding
        """
        if key in self._in_flight:
            logger.debug(f"Request already in flight: {key}")
            return False
        self._in_flight.add(key)
        return True

    def release(
        self,
        key: str,
        result: Any = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Mark the fetch for ``key`` as completed and wake its waiters.

        Records the completion time used for throttling, whether the fetch
        succeeded or failed.
        """
        if key not in self._in_flight:
            logger.warning(f"Release of request that was not in flight: {key}")
            return

        self._in_flight.discard(key)
        self._last_fetch_at[key] = self._clock()

        outcome = FetchOutcome(result=result, error=error)
        for waiter in self._waiters.pop(key, []):
            if not waiter.done():
                waiter.set_result(outcome)

    async def wait_for(self, key: str) -> FetchOutcome:
        """Wait for the outstanding fetch of ``key`` to complete.

        Returns immediately with an empty outcome if nothing is in flight.
        """
        if key not in self._in_flight:
            return FetchOutcome()

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(key, []).append(waiter)
        return await waiter

    def should_throttle(
        self,
        key: str,
        min_interval: float,
        force: bool = False,
        has_cached: bool = False,
    ) -> bool:
        """Decide whether a refetch of ``key`` should be skipped.

        True only when not forced, a non-empty cached result exists, and the
        last completed fetch is younger than ``min_interval``.
        """
        return self._retry_in(key, min_interval, force, has_cached) > 0

    def guard(
        self,
        key: str,
        min_interval: float,
        force: bool = False,
        has_cached: bool = False,
    ) -> None:
        """Raise ThrottledError if a refetch of ``key`` should be skipped."""
        retry_in = self._retry_in(key, min_interval, force, has_cached)
        if retry_in > 0:
            raise ThrottledError(key, retry_in)

    def _retry_in(
        self,
        key: str,
        min_interval: float,
        force: bool,
        has_cached: bool,
    ) -> float:
        if force or not has_cached:
            return 0.0
        last = self._last_fetch_at.get(key)
        if last is None:
            return 0.0
        return max(0.0, min_interval - (self._clock() - last))

    def reset(self, key: Optional[str] = None) -> None:
        """Forget completion times so the next fetch is never throttled.

        In-flight markers are left alone: an outstanding fetch still has to
        release its key.
        """
        if key is None:
            self._last_fetch_at.clear()
        else:
            self._last_fetch_at.pop(key, None)

    def reset_prefix(self, prefix: str) -> int:
        """Forget completion times of every key starting with ``prefix``.

        Returns:
            Number of keys forgotten
        """
        keys = [key for key in self._last_fetch_at if key.startswith(prefix)]
        for key in keys:
            del self._last_fetch_at[key]
        return len(keys)

    def prune(self, max_age: float) -> int:
        """Forget completion times older than ``max_age`` seconds.

        Such entries can no longer throttle a fetch whose interval is at
        most ``max_age``.

        Returns:
            Number of keys forgotten
        """
        now = self._clock()
        keys = [key for key, at in self._last_fetch_at.items() if now - at >= max_age]
        for key in keys:
            del self._last_fetch_at[key]
        return len(keys)

    def tracked_keys(self) -> list[str]:
        """Keys with a recorded completion time."""
        return list(self._last_fetch_at)
