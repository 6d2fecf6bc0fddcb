"""
Serializing rate limiter for arbitrary async work.

Tasks submitted through `execute()` run one at a time in submission order,
and consecutive task *starts* are at least `min_interval` seconds apart.
A task that runs longer than the interval lets the next one start right
away. Nothing here knows about geocoding.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestThrottle:
    """
    FIFO queue drained by a single worker task.

    `clock` and `sleep` default to the running loop's clock and
    `asyncio.sleep`; tests substitute a fake clock.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Optional[Callable[[], float]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._queue: deque[tuple[Callable[[], Awaitable], asyncio.Future]] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._last_start: Optional[float] = None

    @property
    def queue_length(self) -> int:
        """Tasks submitted but not yet started."""
        return len(self._queue)

    async def execute(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run `task()` when its turn comes; returns or raises what it does."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._queue.append((task, future))
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain())
        return await future

    def clear(self) -> None:
        """
        Drop every task that has not started yet. Their callers are never
        settled; this is only used when the whole operation is abandoned.
        """
        dropped = len(self._queue)
        self._queue.clear()
        if dropped:
            logger.debug("Throttle cleared %d pending task(s)", dropped)

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    async def _wait_turn(self) -> None:
        if self._last_start is None:
            return
        remaining = self.min_interval - (self._now() - self._last_start)
        while remaining > 0:
            await self._sleep(remaining)
            remaining = self.min_interval - (self._now() - self._last_start)

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while self._queue:
            await self._wait_turn()
            if not self._queue:
                break

            task, future = self._queue.popleft()
            if future.done():
                # Caller stopped waiting before the task started
                continue

            self._last_start = self._now()
            job = loop.create_task(task())
            # Abandoning the call aborts the running task (and its I/O)
            future.add_done_callback(lambda f, job=job: job.cancel() if f.cancelled() else None)
            try:
                await asyncio.wait({job})
            except asyncio.CancelledError:
                job.cancel()
                raise

            if future.done():
                if not job.cancelled():
                    job.exception()  # mark retrieved
                continue
            if job.cancelled():
                future.cancel()
            elif job.exception() is not None:
                future.set_exception(job.exception())
            else:
                future.set_result(job.result())
