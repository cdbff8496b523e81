"""Timer scheduling for the sync engine.

The engine never touches the event loop directly: debouncing, periodic
polls and background tasks all go through a ``Scheduler``, so tests can
drive time with ``dashsync.testing.clock.ManualScheduler``.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional, Protocol, Set, runtime_checkable

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


@runtime_checkable
class TimerHandle(Protocol):
    def cancel(self) -> None: ...


@runtime_checkable
class Scheduler(Protocol):
    """Where the engine schedules callbacks and background tasks."""

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` after ``delay`` seconds."""
        ...

    def call_soon(self, callback: Callback) -> TimerHandle:
        """Run ``callback`` on the next scheduling tick."""
        ...

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> "asyncio.Task[Any]":
        """Run ``coro`` in the background."""
        ...


def log_task_exception(task: "asyncio.Task[Any]") -> None:
    """Done-callback that logs exceptions of fire-and-forget tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background sync task failed: {exc}", exc_info=exc)


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set["asyncio.Task[Any]"] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callback) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback)

    def call_soon(self, callback: Callback) -> asyncio.Handle:
        return self.loop.call_soon(callback)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> "asyncio.Task[Any]":
        task = self.loop.create_task(coro)
        # The loop only keeps weak references to tasks
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(log_task_exception)
        return task


class Debouncer:
    """Coalesce bursts of ``mark()`` calls into one ``callback``.

    A single pending timer plus a dirty flag: every mark restarts the
    timer, and the callback runs once the marks stop for ``delay`` seconds.
    """

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callback):
        self._scheduler = scheduler
        self._delay = delay
        self._callback = callback
        self._handle: Optional[TimerHandle] = None
        self._pending = False

    @property
    def pending(self) -> bool:
        return self._pending

    def mark(self) -> None:
        self._pending = True
        if self._handle is not None:
            self._handle.cancel()
        self._handle = self._scheduler.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        self._pending = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        if self._pending:
            self._pending = False
            self._callback()


class PeriodicTimer:
    """Run ``callback`` every ``interval`` seconds until stopped."""

    def __init__(self, scheduler: Scheduler, interval: float, callback: Callback):
        self._scheduler = scheduler
        self._interval = interval
        self._callback = callback
        self._handle: Optional[TimerHandle] = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        self.stop()
        self._handle = self._scheduler.call_later(self._interval, self._tick)

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _tick(self) -> None:
        self._handle = self._scheduler.call_later(self._interval, self._tick)
        self._callback()
