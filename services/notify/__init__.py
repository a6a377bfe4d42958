"""
FLEETWATCH Notification Transports
"""

from .base import (
    DeliveryChannel,
    DispatchReason,
    DispatchResult,
    NotificationChannel,
    RecordingChannel,
    RenderedMessage,
)

__all__ = [
    "DeliveryChannel",
    "DispatchReason",
    "DispatchResult",
    "NotificationChannel",
    "RecordingChannel",
    "RenderedMessage",
]
