"""
FLEETWATCH Threshold Counter

Debounces temperature readings per channel. A single out-of-range reading is
noise; only a streak of consecutive out-of-range readings escalates into an
alert event, and an in-range reading resets the streak.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fleetwatch.exceptions import ConfigurationError, DataError
from fleetwatch.types import ErrorHook
from services.alerts.models import AlertEvent, AlertKind

logger = logging.getLogger("FLEETWATCH.Thresholds")

DEFAULT_ESCALATION_STREAK = 3


@dataclass
class ThresholdCounter:
    """Streak of consecutive out-of-range readings for one channel."""
    channel_id: str
    count: int = 0
    values: List[float] = field(default_factory=list)
    last_update: Optional[datetime] = None

    def reset(self) -> None:
        self.count = 0
        self.values = []


def parse_temperature(value: Any, channel_id: str) -> float:
    """Coerce a raw reading to float, rejecting missing and NaN values."""
    if value is None or isinstance(value, bool):
        raise DataError("Missing temperature reading", channel_id=channel_id, value=value)
    try:
        reading = float(value)
    except (TypeError, ValueError) as e:
        raise DataError(
            "Non-numeric temperature reading", channel_id=channel_id, value=value
        ) from e
    if math.isnan(reading) or math.isinf(reading):
        raise DataError("Temperature reading is not finite", channel_id=channel_id, value=value)
    return reading


def validate_thresholds(
    channel_id: str,
    min_threshold: Optional[float],
    max_threshold: Optional[float],
) -> None:
    if min_threshold is None or max_threshold is None:
        raise ConfigurationError(
            f"Channel {channel_id} has no temperature thresholds",
            config_key="min_threshold/max_threshold",
        )
    if min_threshold > max_threshold:
        raise ConfigurationError(
            f"Channel {channel_id} min threshold {min_threshold} exceeds max {max_threshold}",
            config_key="min_threshold/max_threshold",
        )


class ThresholdTracker:
    """
    Owns every channel's ThresholdCounter.

    record_reading() is synchronous and never raises: malformed input is
    logged, reported through on_error, and the counter is left exactly as
    it was.
    """

    def __init__(
        self,
        escalation_streak: int = DEFAULT_ESCALATION_STREAK,
        on_error: Optional[ErrorHook] = None,
    ):
        if escalation_streak < 1:
            raise ValueError("escalation_streak must be at least 1")
        self.escalation_streak = escalation_streak
        self._on_error = on_error
        self._counters: Dict[str, ThresholdCounter] = {}

    def record_reading(
        self,
        channel_id: str,
        temperature: Any,
        timestamp: datetime,
        min_threshold: Optional[float],
        max_threshold: Optional[float],
        is_operational: bool = True,
        channel_name: Optional[str] = None,
    ) -> Optional[AlertEvent]:
        """
        Feed one reading into the channel's streak.

        Returns:
            A temperature AlertEvent when this reading completes the streak,
            otherwise None.
        """
        if not is_operational:
            logger.debug(f"Channel {channel_id} not operational, reading ignored")
            return None

        try:
            validate_thresholds(channel_id, min_threshold, max_threshold)
        except ConfigurationError as e:
            self._discard(e)
            return None

        try:
            reading = parse_temperature(temperature, channel_id)
        except DataError as e:
            self._discard(e)
            return None

        counter = self._counters.get(channel_id)
        if counter is None:
            counter = ThresholdCounter(channel_id=channel_id)
            self._counters[channel_id] = counter
        counter.last_update = timestamp

        if min_threshold <= reading <= max_threshold:
            if counter.count:
                logger.debug(
                    f"Channel {channel_id} back in range at {reading}, "
                    f"streak of {counter.count} cleared"
                )
            counter.reset()
            return None

        counter.count += 1
        counter.values.append(reading)
        logger.debug(
            f"Channel {channel_id} out of range ({reading} not in "
            f"[{min_threshold}, {max_threshold}]), streak {counter.count}/"
            f"{self.escalation_streak}"
        )

        if counter.count < self.escalation_streak:
            return None

        event = AlertEvent(
            kind=AlertKind.TEMPERATURE,
            channel_id=channel_id,
            channel_name=channel_name or f"Channel {channel_id}",
            timestamp=timestamp,
            temperature=reading,
            min_threshold=min_threshold,
            max_threshold=max_threshold,
            values=tuple(counter.values),
        )
        counter.reset()
        logger.info(
            f"Temperature alert for channel {channel_id}: {reading} "
            f"after {len(event.values)} consecutive readings"
        )
        return event

    def _discard(self, error: Exception):
        logger.warning(f"Reading discarded: {error}")
        if self._on_error is not None:
            self._on_error("reading", f"Reading discarded: {error}")

    def get_counter(self, channel_id: str) -> Optional[ThresholdCounter]:
        return self._counters.get(channel_id)

    @property
    def active_count(self) -> int:
        """Channels with a streak in progress."""
        return sum(1 for c in self._counters.values() if c.count > 0)

    def __len__(self) -> int:
        return len(self._counters)

    def cleanup(self, now: datetime, max_age: timedelta) -> int:
        """Drop counters that have not seen a reading within max_age."""
        stale = [
            channel_id
            for channel_id, counter in self._counters.items()
            if counter.last_update is None or now - counter.last_update > max_age
        ]
        for channel_id in stale:
            del self._counters[channel_id]
        if stale:
            logger.info(f"Removed {len(stale)} stale threshold counters")
        return len(stale)
