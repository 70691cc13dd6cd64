"""Timer abstraction used by the cache sweep and the load-more debouncer.

Components never touch the event loop's timers directly; they receive a
``Scheduler`` so tests can drive time by hand.
"""

import asyncio
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    """Handle of a scheduled callback."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Something that can run a callback after a delay."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """Scheduler backed by the asyncio event loop.

    Args:
        loop: Loop to schedule on. Defaults to the running loop at the time
              of each ``call_later`` call.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(delay, 0.0), callback)
