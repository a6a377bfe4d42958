"""
FLEETWATCH Alert Data Model

Events produced by the detectors, per-channel connection state, and the
batch entries the processor hands to the dispatcher.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class AlertKind(Enum):
    """Kinds of events that can land in an hour bucket."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    TEMPERATURE = "temperature"

    @property
    def is_connection(self) -> bool:
        return self in (AlertKind.CONNECTED, AlertKind.DISCONNECTED)


class BatchType(Enum):
    """Consolidated message families, each with its own recipient list."""
    DISCONNECTION = "disconnection"
    TEMPERATURE = "temperature"


class FinalStatus(Enum):
    """Status of a channel at the end of a drained window."""
    DISCONNECTED = "DESCONECTADO"
    CONNECTED = "CONECTADO"


@dataclass(frozen=True)
class AlertEvent:
    """Immutable record appended to an hour bucket.

    Connection events carry incident_started_at, the moment the channel went
    offline. Temperature events carry the reading that completed the streak,
    the thresholds it violated and every reading of the streak.
    """
    kind: AlertKind
    channel_id: str
    channel_name: str
    timestamp: datetime
    incident_started_at: Optional[datetime] = None
    temperature: Optional[float] = None
    min_threshold: Optional[float] = None
    max_threshold: Optional[float] = None
    values: Tuple[float, ...] = ()
    postponed: bool = False

    def forwarded(self) -> "AlertEvent":
        """Copy of this event flagged as held over from an earlier window."""
        return AlertEvent(
            kind=self.kind,
            channel_id=self.channel_id,
            channel_name=self.channel_name,
            timestamp=self.timestamp,
            incident_started_at=self.incident_started_at,
            temperature=self.temperature,
            min_threshold=self.min_threshold,
            max_threshold=self.max_threshold,
            values=self.values,
            postponed=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "channel_id": self.channel_id,
            "channel_name": self.channel_name,
            "timestamp": self.timestamp.isoformat(),
            "incident_started_at": (
                self.incident_started_at.isoformat() if self.incident_started_at else None
            ),
            "temperature": self.temperature,
            "min_threshold": self.min_threshold,
            "max_threshold": self.max_threshold,
            "values": list(self.values),
            "postponed": self.postponed,
        }


@dataclass
class ConnectionState:
    """Persisted connectivity state of one channel.

    out_of_range_since is set exactly while is_currently_out_of_range is True.
    last_alert_sent records when the disconnection alert for the current
    incident was delivered, and is cleared once the reconnection is reported.
    """
    channel_id: str
    is_currently_out_of_range: bool = False
    out_of_range_since: Optional[datetime] = None
    last_alert_sent: Optional[datetime] = None

    def alert_already_sent(self, incident_started_at: Optional[datetime] = None) -> bool:
        """True if the incident that started at incident_started_at (default:
        the current one) has already been reported to operators."""
        anchor = incident_started_at or self.out_of_range_since
        if self.last_alert_sent is None or anchor is None:
            return False
        return self.last_alert_sent >= anchor

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "is_currently_out_of_range": self.is_currently_out_of_range,
            "out_of_range_since": (
                self.out_of_range_since.isoformat() if self.out_of_range_since else None
            ),
            "last_alert_sent": (
                self.last_alert_sent.isoformat() if self.last_alert_sent else None
            ),
        }


@dataclass
class ConnectionBatchEntry:
    """One channel's connectivity summary for a drained window."""
    channel_id: str
    name: str
    final_status: FinalStatus
    last_event: AlertEvent
    events: List[AlertEvent] = field(default_factory=list)
    disconnect_time: Optional[datetime] = None
    reconnect_time: Optional[datetime] = None

    @property
    def last_connection_time(self) -> datetime:
        return self.last_event.timestamp


@dataclass
class TemperatureBatchEntry:
    """One channel's out-of-range summary for a drained window."""
    channel_id: str
    name: str
    temperature: float
    timestamp: datetime
    min_threshold: Optional[float]
    max_threshold: Optional[float]
    readings: List[float] = field(default_factory=list)
    alert_count: int = 1
    postponed: bool = False

    @property
    def below_range(self) -> bool:
        return self.min_threshold is not None and self.temperature < self.min_threshold
