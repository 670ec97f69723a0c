from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Ticker:
    """Runs ``callback`` periodically without overlapping runs.

    The next wait only starts after the previous run returned, so a slow run
    (including its backoff sleeps) delays the schedule instead of stacking.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[object]],
        *,
        interval: float = 30.0,
        run_immediately: bool = True,
        task_factory: Optional[Callable[[Awaitable], asyncio.Task]] = None,
    ):
        self.callback = callback
        self.interval = interval
        self.run_immediately = run_immediately
        self._create_task = task_factory or asyncio.create_task
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = self._create_task(self.run())

    async def stop(self) -> None:
        """Stop after the in-flight run, if any, has completed."""
        self._stopping.set()
        task = self._task
        if task is None:
            return
        if isinstance(task, asyncio.Task):
            await task
        self._task = None

    async def run_once(self) -> None:
        self.runs += 1
        try:
            await self.callback()
        except Exception:
            logger.exception('Scheduled run %d failed', self.runs)

    async def run(self) -> None:
        if self.run_immediately and not self._stopping.is_set():
            await self.run_once()
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                await self.run_once()
