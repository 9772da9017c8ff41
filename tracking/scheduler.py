"""
Purpose: The one timer abstraction for background work.
What it does:
- PeriodicJob: runs an async callback every `interval_ms` on the running event loop.
  A failing tick is logged and dropped; the next tick runs on schedule.
- ErrandScheduler: groups the jobs that belong to one active errand (status refresh,
  ETA refresh, ...) behind a single start/stop lifecycle, so leaving the errand's
  active window stops all of them at once.

Rule: Jobs never queue missed ticks. Only the latest tick matters.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[object]]


class PeriodicJob:
    def __init__(self, name: str, interval_ms: int, callback: TickCallback):
        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        self.name = name
        self.interval_ms = interval_ms
        self.callback = callback
        self.ticks = 0
        self.failures = 0
        self._task: Optional[asyncio.Task] = None
        self._stopped: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """
        Must be called from inside a running event loop.
        """
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._stopped = asyncio.Event()
        self._task = loop.create_task(self._run(), name=f"periodic:{self.name}")

    def stop(self) -> None:
        # the flag ends the loop even if a tick swallows the cancel
        if self._stopped is not None:
            self._stopped.set()
        if self._task is not None:
            self._task.cancel()

    async def aclose(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        if self._stopped is not None:
            self._stopped.set()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        interval_s = self.interval_ms / 1000
        stopped = self._stopped
        while not stopped.is_set():
            self.ticks += 1
            try:
                await self.callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failures += 1
                logger.exception("Tick %d of job %s failed, dropping it", self.ticks, self.name)
            try:
                await asyncio.wait_for(stopped.wait(), timeout=interval_s)
            except asyncio.TimeoutError:
                pass


class ErrandScheduler:
    """
    All periodic work for one errand, started when it enters its active window
    and stopped when it leaves it.
    """

    def __init__(self, errand_id: str):
        self.errand_id = errand_id
        self._jobs: Dict[str, PeriodicJob] = {}
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    @property
    def job_names(self):
        return sorted(self._jobs)

    def every(self, name: str, interval_ms: int, callback: TickCallback) -> PeriodicJob:
        """
        Register (or replace) a job. If the scheduler is already running the job starts now.
        """
        previous = self._jobs.pop(name, None)
        if previous is not None:
            previous.stop()
        job = PeriodicJob(f"{self.errand_id}:{name}", interval_ms, callback)
        self._jobs[name] = job
        if self._started:
            job.start()
        return job

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        for job in self._jobs.values():
            job.start()
        logger.debug("Scheduler for errand %s started with %s", self.errand_id, self.job_names)

    def stop(self) -> None:
        self._started = False
        for job in self._jobs.values():
            job.stop()

    async def aclose(self) -> None:
        self._started = False
        for job in list(self._jobs.values()):
            await job.aclose()
        logger.debug("Scheduler for errand %s closed", self.errand_id)
