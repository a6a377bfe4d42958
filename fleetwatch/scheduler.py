"""
FLEETWATCH Scheduler

Runs the engine's periodic work (the hourly drain, the cleanup sweep) as
asyncio tasks. Clock and sleep are injectable so tests can fire a tick with
run_now() instead of waiting for the wall clock.

Key Features:
- Fixed-interval tasks and tasks aligned to the top of the local hour
- Sync or async callbacks
- A failing callback is logged and the cycle continues
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

from fleetwatch.types import Clock, SleepFunc, default_sleep, utc_now

logger = logging.getLogger("FLEETWATCH.Scheduler")

# Fire slightly after the boundary so the clock reads the new hour
DEFAULT_ALIGN_OFFSET_SEC = 1.0


def next_hour_boundary(now: datetime, tz: ZoneInfo) -> datetime:
    """First top-of-hour in tz strictly after now."""
    local = now.astimezone(tz)
    start = local.replace(minute=0, second=0, microsecond=0)
    return (start.astimezone(timezone.utc) + timedelta(hours=1)).astimezone(tz)


@dataclass
class RecurringTask:
    """A periodic callback."""
    name: str
    callback: Callable[..., Any]
    interval_sec: Optional[float] = None
    align_to_hour: bool = False
    enabled: bool = True
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    run_count: int = 0
    last_error: Optional[str] = None
    _task: Optional[asyncio.Task] = field(default=None, repr=False)

    def __post_init__(self):
        if not self.align_to_hour and (self.interval_sec is None or self.interval_sec <= 0):
            raise ValueError(f"Task {self.name} needs a positive interval or align_to_hour")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "interval_sec": self.interval_sec,
            "align_to_hour": self.align_to_hour,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "run_count": self.run_count,
            "last_error": self.last_error,
        }


class Scheduler:
    """Owns the engine's periodic tasks."""

    def __init__(
        self,
        tz: str | ZoneInfo = "UTC",
        clock: Optional[Clock] = None,
        sleep: Optional[SleepFunc] = None,
        align_offset_sec: float = DEFAULT_ALIGN_OFFSET_SEC,
    ):
        self.timezone = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)
        self._clock = clock or utc_now
        self._sleep = sleep or default_sleep
        self.align_offset_sec = align_offset_sec
        self._tasks: Dict[str, RecurringTask] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def add_task(
        self,
        name: str,
        callback: Callable[..., Any],
        interval_sec: Optional[float] = None,
        align_to_hour: bool = False,
        enabled: bool = True,
    ) -> RecurringTask:
        if name in self._tasks:
            raise ValueError(f"Task {name} already registered")
        task = RecurringTask(
            name=name,
            callback=callback,
            interval_sec=interval_sec,
            align_to_hour=align_to_hour,
            enabled=enabled,
        )
        self._tasks[name] = task
        return task

    def get_task(self, name: str) -> RecurringTask:
        try:
            return self._tasks[name]
        except KeyError:
            raise KeyError(f"Unknown scheduled task: {name}") from None

    def seconds_until_next(self, task: RecurringTask, now: Optional[datetime] = None) -> float:
        now = now or self._clock()
        if task.align_to_hour:
            boundary = next_hour_boundary(now, self.timezone)
            return max((boundary - now).total_seconds(), 0.0) + self.align_offset_sec
        return float(task.interval_sec)

    def next_run_at(self, name: str) -> Optional[datetime]:
        return self.get_task(name).next_run

    async def _call_async(self, callback: Callable, *args):
        """Call a callback that may be sync or async."""
        result = callback(*args)
        if inspect.isawaitable(result):
            return await result
        return result

    async def run_now(self, name: str) -> Any:
        """Execute a task immediately; errors are logged, not raised."""
        task = self.get_task(name)
        task.last_run = self._clock()
        task.run_count += 1
        try:
            result = await self._call_async(task.callback)
            task.last_error = None
            return result
        except Exception as e:
            task.last_error = str(e)
            logger.error(f"Scheduled task {name} failed: {e}")
            return None

    async def _loop(self, task: RecurringTask):
        while self._running:
            delay = self.seconds_until_next(task)
            task.next_run = self._clock() + timedelta(seconds=delay)
            await self._sleep(delay)
            if not self._running:
                break
            await self.run_now(task.name)

    async def start(self):
        """Start a loop for every enabled task."""
        if self._running:
            return

        self._running = True
        for task in self._tasks.values():
            if task.enabled:
                task._task = asyncio.create_task(self._loop(task))
        logger.info(
            f"Scheduler started with {sum(1 for t in self._tasks.values() if t.enabled)} tasks"
        )

    async def stop(self):
        """Cancel all task loops."""
        self._running = False
        for task in self._tasks.values():
            if task._task:
                task._task.cancel()
                try:
                    await task._task
                except asyncio.CancelledError:
                    pass
                task._task = None
            task.next_run = None
        logger.info("Scheduler stopped")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "tasks": {name: task.to_dict() for name, task in self._tasks.items()},
        }
