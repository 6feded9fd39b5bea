"""Unit tests for the periodic job scheduler."""
import asyncio

import pytest

from src.sentinel.core.clock import FakeClock
from src.sentinel.core.scheduler import Scheduler


class TestScheduler:
    """Test job registration and ticking."""

    @pytest.fixture
    def scheduler(self):
        return Scheduler(FakeClock())

    def test_rejects_non_positive_interval(self, scheduler):
        """Test that a zero interval is refused."""
        async def job():
            pass

        with pytest.raises(ValueError, match="positive"):
            scheduler.every("bad", 0, job)

    def test_rejects_duplicate_names(self, scheduler):
        """Test that job names are unique."""
        async def job():
            pass

        scheduler.every("health", 30, job)
        with pytest.raises(ValueError, match="already registered"):
            scheduler.every("health", 60, job)

    @pytest.mark.asyncio
    async def test_run_job_once(self, scheduler):
        """Test running a job outside its ticker."""
        calls = []

        async def job():
            calls.append(1)

        scheduler.every("dashboard", 30, job)
        await scheduler.run_job_once("dashboard")

        assert calls == [1]
        assert scheduler.describe()[0]["runs"] == 1

    @pytest.mark.asyncio
    async def test_failing_job_is_recorded_not_raised(self, scheduler):
        """Test that a job failure is counted and the error kept."""
        async def job():
            raise RuntimeError("check exploded")

        scheduler.every("health", 30, job)
        await scheduler.run_job_once("health")

        info = scheduler.describe()[0]
        assert info["failures"] == 1
        assert info["runs"] == 0
        assert info["last_error"] == "check exploded"

    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler):
        """Test that started tickers run and stop cancels them."""
        calls = []

        async def job():
            calls.append(scheduler.clock.now())

        scheduler.every("resources", 30, job)
        scheduler.start()
        assert scheduler.running

        for _ in range(5):
            await asyncio.sleep(0)
        await scheduler.stop()

        assert not scheduler.running
        assert len(calls) >= 2
        # Consecutive ticks are one interval apart on the fake clock
        assert (calls[1] - calls[0]).total_seconds() == 30

        count = len(calls)
        for _ in range(3):
            await asyncio.sleep(0)
        assert len(calls) == count
