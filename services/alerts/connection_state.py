"""
FLEETWATCH Connection State Store

Tracks whether each channel is currently offline and turns online/offline
transitions into alert events. State is kept in memory and written through
to the state database so dedup survives restarts.
"""

import logging
from datetime import datetime
from typing import Dict, Iterator, Optional

from fleetwatch.exceptions import StateStoreError
from fleetwatch.types import ErrorHook
from services.alerts.models import AlertEvent, AlertKind, ConnectionState
from services.persistence.state_db import StateDatabase

logger = logging.getLogger("FLEETWATCH.Connection")


class ConnectionStateStore:
    """Per-channel connection state with write-through persistence."""

    def __init__(
        self,
        db: Optional[StateDatabase] = None,
        on_error: Optional[ErrorHook] = None,
    ):
        self._db = db
        self._on_error = on_error
        self._states: Dict[str, ConnectionState] = {}

    def load(self) -> int:
        """Load persisted state; returns the number of channels loaded."""
        if self._db is None:
            return 0
        self._states = self._db.load_connection_states()
        offline = sum(1 for s in self._states.values() if s.is_currently_out_of_range)
        logger.info(f"Loaded connection state for {len(self._states)} channels ({offline} offline)")
        return len(self._states)

    def get(self, channel_id: str) -> ConnectionState:
        state = self._states.get(channel_id)
        if state is None:
            state = ConnectionState(channel_id=channel_id)
            self._states[channel_id] = state
        return state

    def peek(self, channel_id: str) -> Optional[ConnectionState]:
        return self._states.get(channel_id)

    def __iter__(self) -> Iterator[ConnectionState]:
        return iter(list(self._states.values()))

    def __len__(self) -> int:
        return len(self._states)

    @property
    def offline_count(self) -> int:
        return sum(1 for s in self._states.values() if s.is_currently_out_of_range)

    def _persist(self, state: ConnectionState):
        if self._db is None:
            return
        try:
            self._db.save_connection_state(state)
        except StateStoreError as e:
            # In-memory state stays authoritative until the next successful write
            logger.error(f"Failed to persist state for channel {state.channel_id}: {e}")
            if self._on_error is not None:
                self._on_error(
                    "state", f"Failed to persist state for channel {state.channel_id}: {e}"
                )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def on_connection_report(
        self,
        channel_id: str,
        is_online_now: bool,
        is_operational: bool,
        now: datetime,
        channel_name: Optional[str] = None,
    ) -> Optional[AlertEvent]:
        """
        Apply a connectivity report.

        Returns:
            A connected/disconnected AlertEvent on a transition of an
            operational channel, otherwise None.
        """
        state = self.get(channel_id)
        was_offline = state.is_currently_out_of_range
        name = channel_name or f"Channel {channel_id}"

        if not is_operational:
            if is_online_now and was_offline:
                state.is_currently_out_of_range = False
                state.out_of_range_since = None
                self._persist(state)
            elif not is_online_now and not was_offline:
                state.is_currently_out_of_range = True
                state.out_of_range_since = now
                self._persist(state)
            return None

        if is_online_now and was_offline:
            started = state.out_of_range_since
            state.is_currently_out_of_range = False
            state.out_of_range_since = None
            self._persist(state)
            logger.info(f"Channel {channel_id} ({name}) reconnected")
            return AlertEvent(
                kind=AlertKind.CONNECTED,
                channel_id=channel_id,
                channel_name=name,
                timestamp=now,
                incident_started_at=started,
            )

        if not is_online_now and not was_offline:
            state.is_currently_out_of_range = True
            state.out_of_range_since = now
            self._persist(state)
            logger.warning(f"Channel {channel_id} ({name}) disconnected")
            return AlertEvent(
                kind=AlertKind.DISCONNECTED,
                channel_id=channel_id,
                channel_name=name,
                timestamp=now,
                incident_started_at=now,
            )

        return None

    # -------------------------------------------------------------------------
    # Dedup bookkeeping
    # -------------------------------------------------------------------------

    def mark_alert_sent(self, channel_id: str, when: datetime):
        state = self.get(channel_id)
        state.last_alert_sent = when
        self._persist(state)

    def clear_alert_sent(self, channel_id: str):
        state = self.get(channel_id)
        if state.last_alert_sent is None:
            return
        state.last_alert_sent = None
        self._persist(state)
