"""
FLEETWATCH - Sensor Alert Notification Engine

Watches a fleet of remote IoT channels (temperature probes, power meters)
and tells operators about connectivity loss/recovery and sustained
out-of-range temperatures, batched per hour, gated by business hours and
deduplicated per incident, over email and an SMS modem.
"""

__version__ = "0.1.0"

VERSION_INFO = (0, 1, 0)

from fleetwatch.exceptions import FleetwatchError
