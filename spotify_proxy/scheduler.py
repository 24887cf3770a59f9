"""
Periodic background tasks.

Each task runs on its own fixed-rate loop with a bounded per-run timeout,
so a hung upstream call in one task cannot delay the others.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_TASK_TIMEOUT_SECONDS = 30.0

TaskFunc = Callable[[], Awaitable[Any]]


class PeriodicTask:
    """A coroutine function run at a fixed rate."""

    def __init__(
        self,
        name: str,
        interval: float,
        func: TaskFunc,
        timeout: float = DEFAULT_TASK_TIMEOUT_SECONDS,
        initial_delay: float = 0.0,
    ):
        """
        Initialize periodic task.

        Args:
            name: Name used in logs
            interval: Seconds between run starts
            func: Coroutine function to run
            timeout: Max seconds a single run may take
            initial_delay: Seconds to wait before the first run
        """
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self.name = name
        self.interval = interval
        self.timeout = timeout
        self.initial_delay = initial_delay
        self._func = func

        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self.run_count = 0
        self.failure_count = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop. No-op if already running."""
        if self.is_running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name=f"periodic-{self.name}")
        logger.debug(f"Periodic task '{self.name}' started (every {self.interval}s)")

    async def stop(self) -> None:
        """Signal the loop to exit, cancel any run in flight, and wait for it."""
        if self._task is None:
            return
        # A cancel can be absorbed by wait_for when the run has just finished
        self._stopping.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug(f"Periodic task '{self.name}' stopped")

    async def run_once(self) -> None:
        """Run the function once, logging and swallowing failures."""
        self.run_count += 1
        try:
            await asyncio.wait_for(self._func(), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.failure_count += 1
            logger.warning(f"Periodic task '{self.name}' timed out after {self.timeout}s")
        except Exception as e:
            self.failure_count += 1
            logger.error(f"Periodic task '{self.name}' failed: {e}", exc_info=True)

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        if self.initial_delay > 0 and await self._wait_for_stop(self.initial_delay):
            return

        next_run = loop.time()
        while not self._stopping.is_set():
            await self.run_once()
            # Fixed rate: schedule from the previous start, never drift
            next_run += self.interval
            now = loop.time()
            if next_run < now:
                # Overran one or more ticks; skip them rather than burst
                next_run = now
            if await self._wait_for_stop(next_run - now):
                return

    async def _wait_for_stop(self, delay: float) -> bool:
        """Sleep for up to delay seconds. Returns True if stop was requested."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True


class Scheduler:
    """
    Owns the process-wide periodic tasks.

    Usage:
        scheduler = Scheduler()
        scheduler.add("playback-poll", 3.0, cache.poll_playback)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(self) -> None:
        self._tasks: dict[str, PeriodicTask] = {}
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def task_names(self) -> list[str]:
        return list(self._tasks)

    def get(self, name: str) -> Optional[PeriodicTask]:
        return self._tasks.get(name)

    def add(
        self,
        name: str,
        interval: float,
        func: TaskFunc,
        timeout: float = DEFAULT_TASK_TIMEOUT_SECONDS,
        initial_delay: float = 0.0,
    ) -> PeriodicTask:
        """Register a task. Started immediately if the scheduler is running."""
        if name in self._tasks:
            raise ValueError(f"Periodic task already registered: {name}")
        task = PeriodicTask(name, interval, func, timeout=timeout, initial_delay=initial_delay)
        self._tasks[name] = task
        if self._is_running:
            task.start()
        return task

    def start(self) -> None:
        """Start every registered task."""
        if self._is_running:
            return
        self._is_running = True
        for task in self._tasks.values():
            task.start()
        logger.info(f"Scheduler started with {len(self._tasks)} task(s)")

    async def stop(self) -> None:
        """Stop every task and wait for them to exit."""
        if not self._is_running:
            return
        self._is_running = False
        await asyncio.gather(*(task.stop() for task in self._tasks.values()))
        logger.info("Scheduler stopped")
