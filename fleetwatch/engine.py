"""
FLEETWATCH Alert Engine

Owns every piece of alerting state (threshold counters, connection state,
hour buckets, delivery metrics) and the collaborators that act on it. One
engine is built per process with create_engine(config); collectors call
record_reading() / on_connection_report(), and the scheduler drives the
hourly drain and the cleanup sweep.

State mutation methods are synchronous, so on a single event loop they never
interleave; processor runs are serialized by the processor's own lock.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from fleetwatch.config import FleetwatchConfig
from fleetwatch.exceptions import ConfigurationError, StateStoreError
from fleetwatch.logging_config import get_logger
from fleetwatch.scheduler import Scheduler
from fleetwatch.types import ChannelMeta, Clock, SleepFunc, utc_now
from services.alerts.buckets import HourlyAlertBuckets
from services.alerts.connection_state import ConnectionStateStore
from services.alerts.dispatcher import Dispatcher, DispatchOutcome
from services.alerts.models import AlertEvent
from services.alerts.processor import HourlyProcessor, ProcessReport
from services.alerts.threshold_counter import ThresholdTracker
from services.alerts.working_hours import WorkingHoursGate, WorkingHoursSchedule
from services.notify.base import DeliveryChannel, NotificationChannel
from services.notify.email_channel import EmailChannel
from services.notify.sms_modem import SmsChannel
from services.persistence.state_db import StateDatabase

logger = get_logger("engine")

HOURLY_TASK = "hourly"
CLEANUP_TASK = "cleanup"


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


@dataclass
class EngineMetrics:
    """Delivery counters exposed through get_status()."""
    sent: Dict[str, int] = field(default_factory=lambda: {c.value: 0 for c in DeliveryChannel})
    failed: Dict[str, int] = field(default_factory=lambda: {c.value: 0 for c in DeliveryChannel})
    batches: int = 0
    readings: int = 0
    connection_reports: int = 0
    events_queued: int = 0
    process_runs: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None
    last_processed: Optional[datetime] = None

    def record_outcome(self, outcome: DispatchOutcome, now: datetime):
        self.batches += 1
        for result in outcome.results:
            key = result.channel.value
            self.sent[key] = self.sent.get(key, 0) + result.sent_count
            self.failed[key] = self.failed.get(key, 0) + result.failed_count
            if result.error:
                self.record_error(f"{key}: {result.error}", now)
        if outcome.delivered:
            self.last_success_time = now

    def record_error(self, message: str, now: datetime):
        self.last_error = message
        self.last_error_time = now

    @property
    def success_rate(self) -> Optional[float]:
        sent = sum(self.sent.values())
        total = sent + sum(self.failed.values())
        if total == 0:
            return None
        return round(sent / total * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sent": dict(self.sent),
            "failed": dict(self.failed),
            "success_rate": self.success_rate,
            "batches": self.batches,
            "readings": self.readings,
            "connection_reports": self.connection_reports,
            "events_queued": self.events_queued,
            "process_runs": self.process_runs,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "last_success_time": (
                self.last_success_time.isoformat() if self.last_success_time else None
            ),
            "last_processed": self.last_processed.isoformat() if self.last_processed else None,
        }


class AlertEngine:
    """Alert notification engine."""

    def __init__(
        self,
        config: FleetwatchConfig,
        channels: Sequence[NotificationChannel],
        db: Optional[StateDatabase] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        self.config = config
        self.db = db
        self._clock = clock or utc_now
        self._initialized = False

        self.gate = WorkingHoursGate(
            config.site.timezone, WorkingHoursSchedule.from_config(config.working_hours)
        )
        self.buckets = HourlyAlertBuckets(config.site.timezone)
        self.thresholds = ThresholdTracker(
            config.thresholds.escalation_streak, on_error=self._record_error
        )
        self.states = ConnectionStateStore(db, on_error=self._record_error)
        self.dispatcher = Dispatcher.from_config(config, channels)
        self.processor = HourlyProcessor(
            self.buckets, self.states, self.dispatcher, self.gate, catalog=db
        )
        self.scheduler = Scheduler(config.site.timezone, clock=self._clock, sleep=sleep)
        self.metrics = EngineMetrics()

        self.scheduler.add_task(
            HOURLY_TASK,
            self.process_hourly,
            align_to_hour=True,
            enabled=config.scheduler.hourly_enabled,
        )
        self.scheduler.add_task(
            CLEANUP_TASK,
            self.cleanup,
            interval_sec=config.scheduler.cleanup_interval_minutes * 60,
        )

    def now(self) -> datetime:
        return _aware(self._clock())

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self):
        """
        Open persistence and verify transports.

        Raises:
            StateStoreError: State database cannot be opened
            ConfigurationError: SMS enabled without a modem URL
        """
        if self._initialized:
            return
        if self.config.sms.enabled and not self.config.sms.modem_url:
            raise ConfigurationError(
                "SMS is enabled but no modem URL is configured",
                config_key="sms.modem_url",
            )
        if self.db is not None and not self.db.is_connected:
            self.db.connect()
        self.states.load()

        for channel in self.dispatcher.channels:
            if not channel.is_configured:
                logger.warning(f"{channel.channel.value} transport is not configured")
        self._initialized = True
        logger.info(
            f"Alert engine initialized (timezone {self.config.site.timezone}, "
            f"{len(self.states)} channels with connection state)"
        )

    async def start(self):
        self.initialize()
        await self.scheduler.start()
        logger.info("Alert engine started")

    async def stop(self):
        await self.scheduler.stop()
        if self.db is not None:
            self.db.close()
        self._initialized = False
        logger.info("Alert engine stopped")

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    def get_channel_meta(self, channel_id: str) -> Optional[ChannelMeta]:
        if self.db is None or not self.db.is_connected:
            return None
        try:
            return self.db.get_channel_meta(channel_id)
        except StateStoreError as e:
            self._record_error("catalog", str(e))
            return None

    def register_channel(
        self,
        channel_id: str,
        name: str,
        min_threshold: Optional[float] = None,
        max_threshold: Optional[float] = None,
        is_operational: Optional[bool] = None,
    ):
        """Create or refresh a catalog entry."""
        if self.db is None:
            raise ConfigurationError("No state database configured", config_key="state.db_path")
        self.db.upsert_channel(
            channel_id, name, min_threshold, max_threshold, is_operational, now=self.now()
        )

    def set_operational(self, channel_id: str, is_operational: bool):
        if self.db is None:
            raise ConfigurationError("No state database configured", config_key="state.db_path")
        self.db.set_operational(channel_id, is_operational)
        logger.info(f"Channel {channel_id} marked {'operational' if is_operational else 'not operational'}")

    # -------------------------------------------------------------------------
    # Collector entry points
    # -------------------------------------------------------------------------

    def record_reading(
        self,
        channel_id: str,
        value: Any,
        timestamp: Optional[datetime] = None,
        min_threshold: Optional[float] = None,
        max_threshold: Optional[float] = None,
        is_operational: Optional[bool] = None,
    ) -> Optional[AlertEvent]:
        """Feed a temperature reading; thresholds default to the catalog's."""
        timestamp = _aware(timestamp) if timestamp else self.now()
        meta = self.get_channel_meta(channel_id)

        if meta is not None:
            if min_threshold is None:
                min_threshold = meta.min_threshold
            if max_threshold is None:
                max_threshold = meta.max_threshold
            if is_operational is None:
                is_operational = meta.is_operational
        if is_operational is None:
            is_operational = True

        self.metrics.readings += 1
        event = self.thresholds.record_reading(
            channel_id,
            value,
            timestamp,
            min_threshold,
            max_threshold,
            is_operational=is_operational,
            channel_name=meta.name if meta else None,
        )
        if event is not None:
            self._enqueue(event)
        return event

    def on_connection_report(
        self,
        channel_id: str,
        is_online: bool,
        is_operational: Optional[bool] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[AlertEvent]:
        """Feed a connectivity observation."""
        now = _aware(timestamp) if timestamp else self.now()
        meta = self.get_channel_meta(channel_id)
        if is_operational is None:
            is_operational = meta.is_operational if meta else True

        self.metrics.connection_reports += 1
        event = self.states.on_connection_report(
            channel_id,
            is_online,
            is_operational,
            now,
            channel_name=meta.name if meta else None,
        )
        if event is not None:
            self._enqueue(event)
        return event

    def _enqueue(self, event: AlertEvent):
        window = self.buckets.append(event)
        self.metrics.events_queued += 1
        logger.debug(
            f"Queued {event.kind.value} event for channel {event.channel_id} "
            f"in window {self.buckets.hour_key(window)}"
        )

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def process_hourly(self, forced: bool = False) -> ProcessReport:
        now = self.now()
        try:
            report = await self.processor.run(now, forced=forced)
        except Exception as e:
            self._record_error("processor", f"Hourly processing failed: {e}")
            raise

        self.metrics.process_runs += 1
        self.metrics.last_processed = now
        for outcome in report.outcomes:
            self.metrics.record_outcome(outcome, now)
            self._log_outcome(outcome, now)
        for outcome in report.held_outcomes:
            self._log_outcome(outcome, now)
        return report

    async def force_process(self) -> ProcessReport:
        """Drain closed windows now instead of waiting for the next hour."""
        logger.info("Forced processing requested")
        return await self.process_hourly(forced=True)

    def cleanup(self) -> Dict[str, int]:
        """Purge stale counters, stale windows and old audit rows."""
        now = self.now()
        removed_counters = self.thresholds.cleanup(
            now, timedelta(hours=self.config.thresholds.counter_max_age_hours)
        )
        cutoff = self.buckets.window_for(
            now - timedelta(hours=self.config.scheduler.bucket_retention_hours)
        )
        lost_events = self.buckets.drop_before(cutoff)
        if lost_events:
            self._record_error("cleanup", f"Discarded {lost_events} undelivered events from stale windows")

        removed_rows = 0
        if self.db is not None and self.db.is_connected:
            try:
                removed_rows = self.db.cleanup_logs(now, self.config.state.dispatch_log_retention_days)
            except StateStoreError as e:
                self._record_error("cleanup", str(e))

        return {
            "counters": removed_counters,
            "events": lost_events,
            "audit_rows": removed_rows,
        }

    def _log_outcome(self, outcome: DispatchOutcome, now: datetime):
        if self.db is None or not self.db.is_connected:
            return
        try:
            for result in outcome.results:
                self.db.insert_dispatch(
                    timestamp=now,
                    batch_type=outcome.batch_type.value,
                    transport=result.channel.value,
                    recipient_count=result.recipient_count,
                    sent_count=result.sent_count,
                    failed_count=result.failed_count,
                    reason=result.reason.value if result.reason else None,
                    error=result.error,
                    channel_ids=outcome.channel_ids,
                )
        except StateStoreError as e:
            logger.error(f"Failed to write dispatch log: {e}")

    def _record_error(self, source: str, message: str):
        now = self.now()
        logger.error(f"[{source}] {message}")
        self.metrics.record_error(message, now)
        if self.db is not None and self.db.is_connected:
            try:
                self.db.insert_error(now, source, message)
            except StateStoreError as e:
                logger.error(f"Failed to write error log: {e}")

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        now = self.now()
        next_run = self.scheduler.next_run_at(HOURLY_TASK)
        return {
            "timestamp": now.isoformat(),
            "initialized": self._initialized,
            "timezone": self.config.site.timezone,
            "working_hours": self.gate.is_open(now),
            "queues": dict(self.buckets.stats()),
            "counters": {
                "tracked": len(self.thresholds),
                "active": self.thresholds.active_count,
            },
            "connections": {
                "tracked": len(self.states),
                "offline": self.states.offline_count,
            },
            "transports": {
                channel.channel.value: channel.is_configured
                for channel in self.dispatcher.channels
            },
            "processing": self.processor.is_running,
            "next_processing": next_run.isoformat() if next_run else None,
            "scheduler": self.scheduler.to_dict(),
            "metrics": self.metrics.to_dict(),
        }

    def get_recent_dispatches(self, limit: int = 50) -> List[Dict[str, Any]]:
        if self.db is None or not self.db.is_connected:
            return []
        return self.db.get_recent_dispatches(limit)


def create_engine(
    config: FleetwatchConfig,
    clock: Optional[Clock] = None,
    sleep: Optional[SleepFunc] = None,
) -> AlertEngine:
    """Build the engine with the SQLite store and the email + SMS transports."""
    channels: List[NotificationChannel] = [
        EmailChannel(config.email, sleep=sleep),
        SmsChannel(config.sms, sleep=sleep),
    ]
    return AlertEngine(
        config,
        channels,
        db=StateDatabase(config.state.db_path),
        clock=clock,
        sleep=sleep,
    )
