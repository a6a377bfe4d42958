"""
FLEETWATCH Working-Hours Gate

Single source of truth for "are we inside business hours". Temperature
batches are held while the gate is open; connectivity alerts ignore it.

Windows are decimal hours compared inclusively at both ends, so with the
defaults Saturday 14:30 is inside and 14:31 is outside. Sunday is always
outside.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from fleetwatch.config import WorkingHoursConfig
from fleetwatch.types import DecimalHour

SATURDAY = 5
SUNDAY = 6


@dataclass(frozen=True)
class WorkingHoursSchedule:
    """Weekday and Saturday windows in decimal hours."""
    weekday_start: float = 8.5
    weekday_end: float = 18.5
    saturday_start: float = 8.5
    saturday_end: float = 14.5

    @classmethod
    def from_config(cls, config: WorkingHoursConfig) -> "WorkingHoursSchedule":
        return cls(
            weekday_start=config.weekday_start,
            weekday_end=config.weekday_end,
            saturday_start=config.saturday_start,
            saturday_end=config.saturday_end,
        )


DEFAULT_SCHEDULE = WorkingHoursSchedule()


def to_local(timestamp: datetime, tz: str | ZoneInfo) -> datetime:
    """Convert a timestamp to the given zone; naive values are taken as UTC."""
    zone = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(zone)


def decimal_hour(local: datetime) -> DecimalHour:
    """Hour of day with minutes as a fraction; seconds are ignored."""
    return local.hour + local.minute / 60


def is_within_working_hours(
    timestamp: datetime,
    tz: str | ZoneInfo,
    schedule: Optional[WorkingHoursSchedule] = None,
) -> bool:
    """Return True if the instant falls inside business hours in tz."""
    schedule = schedule or DEFAULT_SCHEDULE
    local = to_local(timestamp, tz)
    weekday = local.weekday()

    if weekday == SUNDAY:
        return False

    hour = decimal_hour(local)
    if weekday == SATURDAY:
        return schedule.saturday_start <= hour <= schedule.saturday_end
    return schedule.weekday_start <= hour <= schedule.weekday_end


class WorkingHoursGate:
    """Gate bound to the configured timezone and schedule."""

    def __init__(self, tz: str, schedule: Optional[WorkingHoursSchedule] = None):
        self.timezone = ZoneInfo(tz)
        self.schedule = schedule or DEFAULT_SCHEDULE

    def is_open(self, timestamp: datetime) -> bool:
        return is_within_working_hours(timestamp, self.timezone, self.schedule)

    __call__ = is_open
