"""
FLEETWATCH Hourly Processor

Drains every closed hour window, oldest first:

- Temperature events are held while the working-hours gate is open and
  carried into the current window; outside working hours they are sent.
- Connection events are always sent, except a disconnection whose incident
  was already reported (last_alert_sent >= that incident's start).
  last_alert_sent is only set for the incident still in progress, so a
  catch-up run over several windows reports each incident once.
- Connection buckets are always cleared.

All closed windows are snapshotted before any network I/O, so events that
arrive while messages go out land in the current window untouched.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from fleetwatch.types import ChannelCatalog
from services.alerts.buckets import ChannelEvents, HourlyAlertBuckets
from services.alerts.connection_state import ConnectionStateStore
from services.alerts.dispatcher import Dispatcher, DispatchOutcome
from services.alerts.models import (
    AlertEvent,
    AlertKind,
    BatchType,
    ConnectionBatchEntry,
    FinalStatus,
    TemperatureBatchEntry,
)
from services.alerts.working_hours import WorkingHoursGate

logger = logging.getLogger("FLEETWATCH.Processor")


@dataclass
class ProcessReport:
    """What one processor run did."""
    started_at: datetime
    forced: bool = False
    windows: List[str] = field(default_factory=list)
    held_windows: List[str] = field(default_factory=list)
    forwarded_events: int = 0
    suppressed_channels: List[str] = field(default_factory=list)
    dropped_channels: List[str] = field(default_factory=list)
    outcomes: List[DispatchOutcome] = field(default_factory=list)
    held_outcomes: List[DispatchOutcome] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    @property
    def dispatched_batches(self) -> int:
        return len(self.outcomes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "forced": self.forced,
            "windows": list(self.windows),
            "held_windows": list(self.held_windows),
            "forwarded_events": self.forwarded_events,
            "suppressed_channels": list(self.suppressed_channels),
            "dropped_channels": list(self.dropped_channels),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "held_outcomes": [o.to_dict() for o in self.held_outcomes],
        }


def build_temperature_entry(events: List[AlertEvent], name: Optional[str] = None) -> TemperatureBatchEntry:
    """Summarise one channel's temperature alerts; the latest alert leads."""
    ordered = sorted(events, key=lambda e: e.timestamp)
    last = ordered[-1]
    readings = [v for e in ordered for v in e.values]
    return TemperatureBatchEntry(
        channel_id=last.channel_id,
        name=name or last.channel_name,
        temperature=last.temperature,
        timestamp=last.timestamp,
        min_threshold=last.min_threshold,
        max_threshold=last.max_threshold,
        readings=readings,
        alert_count=len(ordered),
        postponed=any(e.postponed for e in ordered),
    )


def build_connection_entry(events: List[AlertEvent], name: Optional[str] = None) -> ConnectionBatchEntry:
    """Summarise one channel's connectivity events within a window."""
    ordered = sorted(events, key=lambda e: e.timestamp)
    last = ordered[-1]

    disconnect_time = None
    reconnect_time = None
    for event in ordered:
        if event.kind is AlertKind.DISCONNECTED and disconnect_time is None:
            disconnect_time = event.timestamp
        elif event.kind is AlertKind.CONNECTED and reconnect_time is None:
            if disconnect_time is not None or event is ordered[0]:
                reconnect_time = event.timestamp
    if disconnect_time is None:
        disconnect_time = ordered[0].incident_started_at

    return ConnectionBatchEntry(
        channel_id=last.channel_id,
        name=name or last.channel_name,
        final_status=(
            FinalStatus.CONNECTED if last.kind is AlertKind.CONNECTED else FinalStatus.DISCONNECTED
        ),
        last_event=last,
        events=ordered,
        disconnect_time=disconnect_time,
        reconnect_time=reconnect_time,
    )


class HourlyProcessor:
    """Drains closed windows and dispatches consolidated batches."""

    def __init__(
        self,
        buckets: HourlyAlertBuckets,
        states: ConnectionStateStore,
        dispatcher: Dispatcher,
        gate: WorkingHoursGate,
        catalog: Optional[ChannelCatalog] = None,
    ):
        self.buckets = buckets
        self.states = states
        self.dispatcher = dispatcher
        self.gate = gate
        self.catalog = catalog
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run(self, now: datetime, forced: bool = False) -> ProcessReport:
        """Process every window that closed before now."""
        async with self._lock:
            report = ProcessReport(started_at=now, forced=forced)
            snapshots = self._snapshot(now, report)

            for window, snapshot in snapshots:
                await self._process_window(window, snapshot, now, report)

            report.finished_at = now
            if report.windows:
                logger.info(
                    f"Processed {len(report.windows)} windows: "
                    f"{report.dispatched_batches} batches sent, "
                    f"{report.forwarded_events} temperature events held, "
                    f"{len(report.suppressed_channels)} duplicates suppressed"
                )
            return report

    def _snapshot(self, now: datetime, report: ProcessReport) -> List[Tuple[datetime, ChannelEvents]]:
        gate_open = self.gate.is_open(now)
        current = self.buckets.window_for(now)
        snapshots = []

        for window in self.buckets.windows_before(now):
            key = self.buckets.hour_key(window)
            report.windows.append(key)
            if gate_open:
                held_ids = sorted({
                    e.channel_id
                    for e in self.buckets.events(window)
                    if e.kind is AlertKind.TEMPERATURE
                })
                moved = self.buckets.carry_forward(window, current)
                if moved:
                    report.held_windows.append(key)
                    report.forwarded_events += moved
                    report.held_outcomes.append(
                        self.dispatcher.held(BatchType.TEMPERATURE, held_ids)
                    )
                    logger.info(
                        f"Working hours: {moved} temperature events from {key} "
                        f"held until {self.buckets.hour_key(current)}"
                    )
            snapshots.append((window, self.buckets.drain(window)))

        return snapshots

    def _channel_name(self, channel_id: str, report: ProcessReport) -> Tuple[bool, Optional[str]]:
        """(include, name) for a channel according to the catalog."""
        if self.catalog is None:
            return True, None
        meta = self.catalog.get_channel_meta(channel_id)
        if meta is None:
            return True, None
        if not meta.is_operational:
            report.dropped_channels.append(channel_id)
            logger.info(f"Channel {channel_id} is not operational, events dropped")
            return False, None
        return True, meta.name

    async def _process_window(
        self,
        window: datetime,
        snapshot: ChannelEvents,
        now: datetime,
        report: ProcessReport,
    ):
        temperature_entries: List[TemperatureBatchEntry] = []
        connection_entries: List[ConnectionBatchEntry] = []

        for channel_id, events in snapshot.items():
            include, name = self._channel_name(channel_id, report)
            if not include:
                continue

            temperature = [e for e in events if e.kind is AlertKind.TEMPERATURE]
            connection = [e for e in events if e.kind.is_connection]

            if temperature:
                temperature_entries.append(build_temperature_entry(temperature, name))

            if connection:
                entry = build_connection_entry(connection, name)
                if self._already_reported(entry):
                    report.suppressed_channels.append(channel_id)
                    logger.debug(
                        f"Channel {channel_id} disconnection already reported, skipping"
                    )
                    continue
                connection_entries.append(entry)

        if temperature_entries:
            outcome = await self.dispatcher.dispatch_temperature(temperature_entries, now)
            report.outcomes.append(outcome)

        if connection_entries:
            outcome = await self.dispatcher.dispatch_connection(connection_entries, now)
            report.outcomes.append(outcome)
            self._record_connection_outcome(connection_entries, outcome, now)

    def _already_reported(self, entry: ConnectionBatchEntry) -> bool:
        if entry.final_status is not FinalStatus.DISCONNECTED:
            return False
        state = self.states.peek(entry.channel_id)
        if state is None:
            return False
        return state.alert_already_sent(entry.last_event.incident_started_at)

    def _is_current_incident(self, entry: ConnectionBatchEntry) -> bool:
        state = self.states.peek(entry.channel_id)
        if state is None or not state.is_currently_out_of_range:
            return False
        return state.out_of_range_since == entry.last_event.incident_started_at

    def _record_connection_outcome(
        self,
        entries: List[ConnectionBatchEntry],
        outcome: DispatchOutcome,
        now: datetime,
    ):
        for entry in entries:
            if entry.final_status is FinalStatus.CONNECTED:
                self.states.clear_alert_sent(entry.channel_id)
            elif outcome.delivered:
                if self._is_current_incident(entry):
                    self.states.mark_alert_sent(entry.channel_id, now)
                else:
                    logger.debug(
                        f"Channel {entry.channel_id} incident from "
                        f"{entry.last_event.incident_started_at} has ended, not marking"
                    )
            else:
                logger.warning(
                    f"Disconnection alert for channel {entry.channel_id} was not delivered"
                )
