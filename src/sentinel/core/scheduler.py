"""Periodic job scheduler with a shared cancellation token."""
import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from loguru import logger

from src.sentinel.core.clock import Clock, SystemClock

Job = Callable[[], Awaitable[None]]


@dataclass
class ScheduledJob:
    """A named job ticking at a fixed interval."""
    name: str
    interval: float
    job: Job
    initial_delay: float = 0.0
    runs: int = 0
    failures: int = 0
    last_error: Optional[str] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class Scheduler:
    """Runs independent tickers, one asyncio task per job.

    A failing job is logged and keeps ticking. All tickers observe the
    same stop event, so ``stop()`` cancels every loop at its next sleep.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._jobs: Dict[str, ScheduledJob] = {}
        self._stopped = asyncio.Event()
        self._started = False

    def every(self, name: str, interval: float, job: Job, initial_delay: float = 0.0) -> ScheduledJob:
        if interval <= 0:
            raise ValueError("Interval must be positive")
        if name in self._jobs:
            raise ValueError(f"Job {name} already registered")
        scheduled = ScheduledJob(name=name, interval=interval, job=job, initial_delay=initial_delay)
        self._jobs[name] = scheduled
        if self._started:
            scheduled.task = asyncio.create_task(self._run(scheduled), name=f"tick:{name}")
        return scheduled

    @property
    def jobs(self) -> List[ScheduledJob]:
        return list(self._jobs.values())

    @property
    def running(self) -> bool:
        return self._started and not self._stopped.is_set()

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._stopped.clear()
        for scheduled in self._jobs.values():
            scheduled.task = asyncio.create_task(self._run(scheduled), name=f"tick:{scheduled.name}")
        logger.info(f"🔄 Scheduler started with {len(self._jobs)} jobs")

    async def stop(self) -> None:
        self._stopped.set()
        tasks = [j.task for j in self._jobs.values() if j.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for scheduled in self._jobs.values():
            scheduled.task = None
        self._started = False
        logger.info("🛑 Scheduler stopped")

    async def run_job_once(self, name: str) -> None:
        """Run a registered job immediately, outside its ticker."""
        await self._execute(self._jobs[name])

    async def _run(self, scheduled: ScheduledJob) -> None:
        if scheduled.initial_delay:
            await self.clock.sleep(scheduled.initial_delay)
        while not self._stopped.is_set():
            await self._execute(scheduled)
            if self._stopped.is_set():
                break
            await self.clock.sleep(scheduled.interval)

    async def _execute(self, scheduled: ScheduledJob) -> None:
        try:
            await scheduled.job()
            scheduled.runs += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            scheduled.failures += 1
            scheduled.last_error = str(e)
            logger.exception(f"Scheduled job {scheduled.name} failed: {e}")

    def describe(self) -> List[Dict[str, object]]:
        return [
            {
                "name": j.name,
                "interval_seconds": j.interval,
                "runs": j.runs,
                "failures": j.failures,
                "last_error": j.last_error,
            }
            for j in self._jobs.values()
        ]
