"""
FLEETWATCH Shared Type Definitions

Type aliases, protocols and small data structures shared between the engine
core and the alert/notification services.

Usage:
    from fleetwatch.types import ChannelMeta, ChannelCatalog, Clock
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import (
    Awaitable,
    Callable,
    Optional,
    Protocol,
    TypeAlias,
    TypedDict,
    runtime_checkable,
)


# =============================================================================
# Basic Type Aliases
# =============================================================================

ChannelId: TypeAlias = str
Celsius: TypeAlias = float
DecimalHour: TypeAlias = float

# Returns the current instant as a timezone-aware datetime
Clock: TypeAlias = Callable[[], datetime]

# asyncio.sleep compatible coroutine function
SleepFunc: TypeAlias = Callable[[float], Awaitable[None]]

# Receives (source, message) for errors that are handled locally
ErrorHook: TypeAlias = Callable[[str, str], None]


def utc_now() -> datetime:
    """Default engine clock."""
    return datetime.now(timezone.utc)


async def default_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


# =============================================================================
# Channel Catalog
# =============================================================================

@dataclass(frozen=True)
class ChannelMeta:
    """Read-only view of one sensor channel from the catalog."""
    channel_id: ChannelId
    name: str
    is_operational: bool = True
    min_threshold: Optional[Celsius] = None
    max_threshold: Optional[Celsius] = None

    @property
    def has_thresholds(self) -> bool:
        return self.min_threshold is not None and self.max_threshold is not None


@runtime_checkable
class ChannelCatalog(Protocol):
    """Protocol for the channel lookup the engine consults."""

    def get_channel_meta(self, channel_id: ChannelId) -> Optional[ChannelMeta]:
        """Return channel metadata, or None if the channel is unknown."""
        ...


# =============================================================================
# Status Payloads
# =============================================================================

class QueueStats(TypedDict):
    windows: int
    temperature_events: int
    connection_events: int

