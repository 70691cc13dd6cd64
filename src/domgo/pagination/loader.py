"""Debounce + throttle wrapper for "load more" triggers.

Scroll-proximity events arrive in bursts. The loader collapses each burst
into one call (trailing-edge debounce, last arguments win) and additionally
drops calls that come sooner than the throttle interval after the previous
executed call.

States:
    IDLE     no call pending
    PENDING  a call with ``pending_args`` is due at ``due_at``
"""

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional

from ..config import Settings, config
from ..scheduling import AsyncioScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class LoaderState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"


class DebouncedLoader:
    """Forward at most one call per burst and per throttle window.

    The wrapped callable may be synchronous or return an awaitable; awaitable
    results are run as tasks, which ``drain()`` waits for.

    Example:
        loader = DebouncedLoader(store.load_next_page)
        loader.trigger("rent")
        loader.trigger("rent")   # supersedes the first trigger
        await loader.drain()
    """

    def __init__(
        self,
        func: Callable[..., Any],
        debounce: Optional[float] = None,
        throttle: Optional[float] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.monotonic,
        settings: Optional[Settings] = None,
    ):
        """Initialize the loader.

        Args:
            func: Callable invoked with the arguments of the last trigger
            debounce: Quiet period in seconds before a burst fires
            throttle: Minimum seconds between executed calls
            scheduler: Timer source (asyncio loop timers by default)
            clock: Monotonic time source in seconds
            settings: Settings to read defaults from
        """
        settings = settings or config
        self._func = func
        self.debounce = debounce if debounce is not None else settings.load_more_debounce
        self.throttle = throttle if throttle is not None else settings.load_more_throttle
        self._scheduler = scheduler or AsyncioScheduler()
        self._clock = clock

        self._timer: Optional[TimerHandle] = None
        self._pending: Optional[tuple[tuple[Any, ...], dict[str, Any]]] = None
        self._due_at: Optional[float] = None
        self._last_executed_at: Optional[float] = None
        self._tasks: set[asyncio.Future] = set()

    @property
    def state(self) -> LoaderState:
        return LoaderState.PENDING if self._pending is not None else LoaderState.IDLE

    @property
    def pending_args(self) -> Optional[tuple[Any, ...]]:
        return self._pending[0] if self._pending is not None else None

    @property
    def due_at(self) -> Optional[float]:
        return self._due_at

    @property
    def last_executed_at(self) -> Optional[float]:
        return self._last_executed_at

    def trigger(self, *args: Any, **kwargs: Any) -> None:
        """Request a call; re-arms the debounce timer with these arguments."""
        if self._timer is not None:
            self._timer.cancel()

        self._pending = (args, kwargs)
        self._due_at = self._clock() + self.debounce
        self._timer = self._scheduler.call_later(self.debounce, self._on_timer)

    def flush(self) -> bool:
        """Run the pending call now instead of waiting for the timer.

        Returns:
            True if a call was executed
        """
        call = self._pending
        if call is None:
            return False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return self._execute(call)

    def cancel(self) -> None:
        """Drop the pending call, if any."""
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._pending = None
        self._due_at = None

    async def drain(self) -> None:
        """Wait for every call already started to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_timer(self) -> None:
        self._timer = None
        if self._pending is not None:
            self._execute(self._pending)

    def _execute(self, call: tuple[tuple[Any, ...], dict[str, Any]]) -> bool:
        args, kwargs = call
        self._pending = None
        self._due_at = None

        now = self._clock()
        if self._last_executed_at is not None and now - self._last_executed_at < self.throttle:
            logger.debug(
                f"Load more throttled ({now - self._last_executed_at:.2f}s since last call)"
            )
            return False

        self._last_executed_at = now
        result = self._func(*args, **kwargs)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)
        return True

    def _on_task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Load more call failed: {error}")
