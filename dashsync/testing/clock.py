"""Deterministic scheduler for tests.

``ManualScheduler`` keeps its own clock: timers only fire when a test calls
``advance()``, and ``call_soon`` callbacks wait for the next ``run_ready()``.
Background tasks still run on the real event loop so engine coroutines can
await gateways normally.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from typing import Any, Callable, Coroutine, List, Tuple

from dashsync.scheduler import log_task_exception


class ManualTimer:
    """Handle returned by ``ManualScheduler``."""

    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler with a fake clock, driven explicitly by tests."""

    def __init__(self) -> None:
        self.time = 0.0
        self._queue: List[Tuple[float, int, ManualTimer]] = []
        self._seq = itertools.count()
        self.tasks: List[asyncio.Task[Any]] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.time + delay, callback)
        heapq.heappush(self._queue, (timer.when, next(self._seq), timer))
        return timer

    def call_soon(self, callback: Callable[[], None]) -> ManualTimer:
        return self.call_later(0.0, callback)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        task.add_done_callback(log_task_exception)
        self.tasks.append(task)
        return task

    @property
    def pending_timers(self) -> int:
        return sum(1 for _, _, timer in self._queue if not timer.cancelled)

    def run_ready(self) -> int:
        """Run every callback due at the current time. Returns how many ran."""
        return self.advance(0.0)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing due timers in order."""
        deadline = self.time + seconds
        fired = 0
        while self._queue and self._queue[0][0] <= deadline:
            when, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self.time = max(self.time, when)
            timer.callback()
            fired += 1
        self.time = deadline
        return fired

    async def settle(self, rounds: int = 50, quiet_turns: int = 3) -> None:
        """Let spawned tasks and ready callbacks run until nothing is left.

        Returns after ``quiet_turns`` consecutive loop turns in which no
        timer fired and no task was pending, so plain loop callbacks (such
        as gateway notifications) queued by finished tasks get delivered.
        """
        quiet = 0
        for _ in range(rounds):
            await asyncio.sleep(0)
            ran = self.run_ready()
            pending = [t for t in self.tasks if not t.done()]
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                quiet = 0
            elif ran:
                quiet = 0
            else:
                quiet += 1
                if quiet >= quiet_turns:
                    return
