"""
FLEETWATCH Alert Services
Detection, hourly batching, working-hours gating and dispatch
"""

from .models import AlertEvent, AlertKind, BatchType, ConnectionState, FinalStatus
from .working_hours import WorkingHoursGate, is_within_working_hours

__all__ = [
    "AlertEvent",
    "AlertKind",
    "BatchType",
    "ConnectionState",
    "FinalStatus",
    "WorkingHoursGate",
    "is_within_working_hours",
]
