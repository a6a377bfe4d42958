"""
Pytest Fixtures for FLEETWATCH Testing.

Shared configuration, a controllable clock, and an engine wired to recording
transports and an in-memory state database.
"""

import asyncio
from datetime import datetime, timedelta
from typing import List
from zoneinfo import ZoneInfo

import pytest

from fleetwatch.config import FleetwatchConfig
from fleetwatch.engine import AlertEngine
from services.notify.base import DeliveryChannel, RecordingChannel
from services.persistence.state_db import StateDatabase

SANTIAGO = ZoneInfo("America/Santiago")


def local(*args) -> datetime:
    """Build an aware datetime in America/Santiago."""
    return datetime(*args, tzinfo=SANTIAGO)


class FakeClock:
    """Settable clock for deterministic engine tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime):
        self.now = now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class SleepRecorder:
    """asyncio.sleep replacement that records delays and only yields once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def config() -> FleetwatchConfig:
    return FleetwatchConfig(
        site={"name": "Test Plant", "timezone": "America/Santiago"},
        email={
            "smtp_host": "smtp.test.local",
            "recipients_default": ["ops@test.local"],
        },
        sms={
            "enabled": True,
            "modem_url": "http://192.168.8.1",
            "recipients_default": ["+56911111111"],
        },
        state={"db_path": ":memory:"},
    )


# =============================================================================
# Engine
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    # Wednesday 2024-06-12 09:00 local
    return FakeClock(local(2024, 6, 12, 9, 0))


@pytest.fixture
def email_channel() -> RecordingChannel:
    return RecordingChannel(DeliveryChannel.EMAIL)


@pytest.fixture
def sms_channel() -> RecordingChannel:
    return RecordingChannel(DeliveryChannel.SMS)


@pytest.fixture
def engine(config, clock, email_channel, sms_channel) -> AlertEngine:
    engine = AlertEngine(
        config,
        [email_channel, sms_channel],
        db=StateDatabase(":memory:"),
        clock=clock,
        sleep=SleepRecorder(),
    )
    engine.initialize()
    yield engine
    if engine.db is not None:
        engine.db.close()
