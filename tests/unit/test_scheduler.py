"""
Unit tests for the FLEETWATCH scheduler.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from fleetwatch.scheduler import RecurringTask, Scheduler, next_hour_boundary
from tests.conftest import SANTIAGO, FakeClock, SleepRecorder, local


class TestHourBoundary:
    """Tests for hour alignment."""

    def test_next_boundary_local(self):
        boundary = next_hour_boundary(local(2024, 6, 12, 9, 59, 30), SANTIAGO)
        assert boundary == local(2024, 6, 12, 10, 0)

    def test_exact_boundary_moves_forward(self):
        boundary = next_hour_boundary(local(2024, 6, 12, 10, 0), SANTIAGO)
        assert boundary == local(2024, 6, 12, 11, 0)

    def test_utc_input(self):
        now = datetime(2024, 6, 12, 13, 30, tzinfo=timezone.utc)
        assert next_hour_boundary(now, SANTIAGO) == local(2024, 6, 12, 10, 0)

    def test_seconds_until_aligned_task(self):
        clock = FakeClock(local(2024, 6, 12, 9, 59, 0))
        scheduler = Scheduler("America/Santiago", clock=clock)
        task = scheduler.add_task("hourly", MagicMock(), align_to_hour=True)
        assert scheduler.seconds_until_next(task) == 61.0

    def test_seconds_until_interval_task(self):
        scheduler = Scheduler()
        task = scheduler.add_task("cleanup", MagicMock(), interval_sec=600)
        assert scheduler.seconds_until_next(task) == 600.0


class TestRegistration:
    """Tests for task registration."""

    def test_duplicate_name_rejected(self):
        scheduler = Scheduler()
        scheduler.add_task("cleanup", MagicMock(), interval_sec=60)
        with pytest.raises(ValueError):
            scheduler.add_task("cleanup", MagicMock(), interval_sec=60)

    def test_task_needs_interval_or_alignment(self):
        with pytest.raises(ValueError):
            RecurringTask(name="bad", callback=MagicMock())

    def test_unknown_task(self):
        with pytest.raises(KeyError):
            Scheduler().get_task("missing")


class TestRunNow:
    """Tests for immediate execution."""

    @pytest.mark.asyncio
    async def test_sync_callback(self):
        scheduler = Scheduler()
        callback = MagicMock(return_value={"counters": 1})
        scheduler.add_task("cleanup", callback, interval_sec=60)

        assert await scheduler.run_now("cleanup") == {"counters": 1}
        assert scheduler.get_task("cleanup").run_count == 1

    @pytest.mark.asyncio
    async def test_async_callback(self):
        scheduler = Scheduler()
        callback = AsyncMock(return_value="done")
        scheduler.add_task("hourly", callback, align_to_hour=True)

        assert await scheduler.run_now("hourly") == "done"
        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_logged_not_raised(self):
        scheduler = Scheduler()
        scheduler.add_task("hourly", AsyncMock(side_effect=RuntimeError("smtp down")), align_to_hour=True)

        assert await scheduler.run_now("hourly") is None
        assert scheduler.get_task("hourly").last_error == "smtp down"


class TestLifecycle:
    """Tests for start and stop."""

    @pytest.mark.asyncio
    async def test_loop_runs_until_stopped(self):
        sleep = SleepRecorder()
        scheduler = Scheduler(sleep=sleep)
        callback = MagicMock(return_value=None)
        scheduler.add_task("cleanup", callback, interval_sec=720)

        await scheduler.start()
        assert scheduler.is_running is True
        for _ in range(10):
            await asyncio.sleep(0)
        await scheduler.stop()

        assert callback.call_count >= 1
        assert set(sleep.delays) == {720.0}
        assert scheduler.is_running is False
        assert scheduler.next_run_at("cleanup") is None

    @pytest.mark.asyncio
    async def test_disabled_task_not_started(self):
        scheduler = Scheduler(sleep=SleepRecorder())
        callback = MagicMock(return_value=None)
        scheduler.add_task("hourly", callback, align_to_hour=True, enabled=False)

        await scheduler.start()
        for _ in range(5):
            await asyncio.sleep(0)
        await scheduler.stop()

        callback.assert_not_called()

    def test_to_dict(self):
        scheduler = Scheduler()
        scheduler.add_task("cleanup", MagicMock(), interval_sec=60)
        data = scheduler.to_dict()
        assert data["running"] is False
        assert data["tasks"]["cleanup"]["interval_sec"] == 60
