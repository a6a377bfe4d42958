"""
FLEETWATCH Hourly Alert Buckets

Alert events are grouped by the hour they occurred in (local to the
configured timezone) and then by channel. Windows are keyed by the UTC
instant the local hour starts, so the repeated hour at a DST fall-back
yields two distinct windows; local time is only used for display.

The processor drains windows that have closed; held temperature events are
carried into a later window and are never dropped in the process.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from fleetwatch.types import QueueStats
from services.alerts.models import AlertEvent, AlertKind
from services.alerts.working_hours import to_local

logger = logging.getLogger("FLEETWATCH.Buckets")

HOUR_KEY_FORMAT = "%Y-%m-%d-%H"

ChannelEvents = Dict[str, List[AlertEvent]]


class HourlyAlertBuckets:
    """Hour window -> channel_id -> ordered events."""

    def __init__(self, tz: str | ZoneInfo = "UTC"):
        self.timezone = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)
        self._buckets: Dict[datetime, ChannelEvents] = {}

    # -------------------------------------------------------------------------
    # Window arithmetic
    # -------------------------------------------------------------------------

    def window_for(self, timestamp: datetime) -> datetime:
        """Start of the local hour containing timestamp, as a UTC datetime."""
        local = to_local(timestamp, self.timezone)
        # replace() keeps fold, so the repeated hour maps to its own instant
        start = local.replace(minute=0, second=0, microsecond=0)
        return start.astimezone(timezone.utc)

    def next_window(self, window: datetime) -> datetime:
        return self.window_for(window.astimezone(timezone.utc) + timedelta(hours=1))

    def hour_key(self, window: datetime) -> str:
        """Human-readable local key, e.g. 2024-03-14-09."""
        return to_local(window, self.timezone).strftime(HOUR_KEY_FORMAT)

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def append(self, event: AlertEvent, window: Optional[datetime] = None) -> datetime:
        """Add an event to the window of its timestamp (or an explicit one)."""
        window = window or self.window_for(event.timestamp)
        bucket = self._buckets.setdefault(window, {})
        bucket.setdefault(event.channel_id, []).append(event)
        return window

    def carry_forward(
        self,
        source: datetime,
        target: datetime,
        kind: AlertKind = AlertKind.TEMPERATURE,
    ) -> int:
        """
        Move every event of the given kind from source into target.

        Target entries are written before anything is removed from source.

        Returns:
            Number of events moved.
        """
        bucket = self._buckets.get(source)
        if not bucket or source == target:
            return 0

        moving = {
            channel_id: [e for e in events if e.kind is kind]
            for channel_id, events in bucket.items()
        }
        moving = {c: events for c, events in moving.items() if events}
        if not moving:
            return 0

        destination = self._buckets.setdefault(target, {})
        for channel_id, events in moving.items():
            destination.setdefault(channel_id, []).extend(e.forwarded() for e in events)

        moved = 0
        for channel_id, events in moving.items():
            remaining = [e for e in bucket[channel_id] if e.kind is not kind]
            if remaining:
                bucket[channel_id] = remaining
            else:
                del bucket[channel_id]
            moved += len(events)
        if not bucket:
            del self._buckets[source]

        logger.debug(
            f"Carried {moved} {kind.value} events from {self.hour_key(source)} "
            f"to {self.hour_key(target)}"
        )
        return moved

    def drain(self, window: datetime) -> ChannelEvents:
        """Remove a window and return its events as a snapshot."""
        bucket = self._buckets.pop(window, {})
        return {channel_id: list(events) for channel_id, events in bucket.items()}

    def drop_before(self, cutoff: datetime) -> int:
        """Discard windows that started before cutoff; returns events lost."""
        stale = [w for w in self._buckets if w < cutoff]
        lost = 0
        for window in stale:
            bucket = self._buckets.pop(window)
            lost += sum(len(events) for events in bucket.values())
            logger.warning(f"Discarding stale window {self.hour_key(window)}")
        return lost

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def windows(self) -> List[datetime]:
        return sorted(self._buckets)

    def windows_before(self, now: datetime) -> List[datetime]:
        """Closed windows, oldest first."""
        current = self.window_for(now)
        return [w for w in self.windows() if w < current]

    def events(self, window: datetime, channel_id: Optional[str] = None) -> List[AlertEvent]:
        bucket = self._buckets.get(window, {})
        if channel_id is not None:
            return list(bucket.get(channel_id, []))
        return [e for events in bucket.values() for e in events]

    def iter_events(self) -> Iterable[AlertEvent]:
        for bucket in self._buckets.values():
            for events in bucket.values():
                yield from events

    def stats(self) -> QueueStats:
        temperature = 0
        connection = 0
        for event in self.iter_events():
            if event.kind is AlertKind.TEMPERATURE:
                temperature += 1
            else:
                connection += 1
        return QueueStats(
            windows=len(self._buckets),
            temperature_events=temperature,
            connection_events=connection,
        )

    def __len__(self) -> int:
        return len(self._buckets)

    def __contains__(self, window: datetime) -> bool:
        return window in self._buckets
