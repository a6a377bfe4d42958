"""
FLEETWATCH Dispatcher

Renders a batch once and hands it to every configured transport. Each
transport runs inside its own error boundary so an SMTP outage never stops
the SMS from going out (and vice versa); nothing raises past dispatch().
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from fleetwatch.config import FleetwatchConfig
from fleetwatch.exceptions import ConfigurationError
from services.alerts.formatting import render_connection_batch, render_temperature_batch
from services.alerts.models import BatchType, ConnectionBatchEntry, TemperatureBatchEntry
from services.notify.base import (
    DeliveryChannel,
    DispatchReason,
    DispatchResult,
    NotificationChannel,
    RenderedMessage,
)

logger = logging.getLogger("FLEETWATCH.Dispatcher")


@dataclass
class RecipientBook:
    """Recipient lists for one transport."""
    default: List[str] = field(default_factory=list)
    disconnection: List[str] = field(default_factory=list)
    temperature: List[str] = field(default_factory=list)

    def for_batch(self, batch_type: BatchType) -> List[str]:
        specific = self.disconnection if batch_type is BatchType.DISCONNECTION else self.temperature
        return list(specific or self.default)


@dataclass
class DispatchOutcome:
    """Results of every transport for one batch."""
    batch_type: BatchType
    channel_ids: List[str]
    results: List[DispatchResult] = field(default_factory=list)

    def result_for(self, channel: DeliveryChannel) -> Optional[DispatchResult]:
        for result in self.results:
            if result.channel is channel:
                return result
        return None

    @property
    def success(self) -> bool:
        """Every transport reported no reason and no failures."""
        return bool(self.results) and all(
            r.reason is None and r.failed_count == 0 for r in self.results
        )

    @property
    def delivered(self) -> bool:
        """At least one recipient was reached on some transport."""
        return any(r.delivered for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_type": self.batch_type.value,
            "channel_ids": list(self.channel_ids),
            "success": self.success,
            "delivered": self.delivered,
            "results": [r.to_dict() for r in self.results],
        }


class Dispatcher:
    """Composes the configured NotificationChannel implementations."""

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        recipients: Dict[DeliveryChannel, RecipientBook],
        tz: str | ZoneInfo = "UTC",
        max_detailed: int = 3,
        sms_max_chars: int = 160,
    ):
        self.channels = list(channels)
        self.recipients = recipients
        self.timezone = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)
        self.max_detailed = max_detailed
        self.sms_max_chars = sms_max_chars

    @classmethod
    def from_config(
        cls, config: FleetwatchConfig, channels: Sequence[NotificationChannel]
    ) -> "Dispatcher":
        recipients = {
            DeliveryChannel.EMAIL: RecipientBook(
                default=config.email.recipients_default,
                disconnection=config.email.recipients_disconnection,
                temperature=config.email.recipients_temperature,
            ),
            DeliveryChannel.SMS: RecipientBook(
                default=config.sms.recipients_default,
                disconnection=config.sms.recipients_disconnection,
                temperature=config.sms.recipients_temperature,
            ),
        }
        return cls(
            channels,
            recipients,
            tz=config.site.timezone,
            max_detailed=config.batching.max_detailed_entries,
            sms_max_chars=config.batching.sms_max_chars,
        )

    def recipients_for(self, channel: DeliveryChannel, batch_type: BatchType) -> List[str]:
        book = self.recipients.get(channel)
        return book.for_batch(batch_type) if book else []

    async def dispatch(
        self,
        batch_type: BatchType,
        message: RenderedMessage,
        channel_ids: Sequence[str] = (),
    ) -> DispatchOutcome:
        outcome = DispatchOutcome(batch_type=batch_type, channel_ids=list(channel_ids))

        for channel in self.channels:
            recipients = self.recipients_for(channel.channel, batch_type)
            try:
                result = await channel.send(recipients, message)
            except ConfigurationError as e:
                logger.error(f"{channel.channel.value} not configured: {e}")
                result = DispatchResult.skipped(
                    channel.channel, DispatchReason.NOT_CONFIGURED, len(recipients), str(e)
                )
            except Exception as e:
                logger.exception(f"{channel.channel.value} dispatch failed: {e}")
                result = DispatchResult(
                    channel=channel.channel,
                    recipient_count=len(recipients),
                    failed_count=len(recipients),
                    error=str(e),
                )
            outcome.results.append(result)

        logger.info(
            f"{batch_type.value} batch for {len(outcome.channel_ids)} channels: "
            + ", ".join(
                f"{r.channel.value}={r.sent_count}/{r.recipient_count}"
                + (f" ({r.reason.value})" if r.reason else "")
                for r in outcome.results
            )
        )
        return outcome

    def held(self, batch_type: BatchType, channel_ids: Sequence[str] = ()) -> DispatchOutcome:
        """Outcome for a batch the working-hours gate kept back; nothing is sent."""
        outcome = DispatchOutcome(batch_type=batch_type, channel_ids=list(channel_ids))
        for channel in self.channels:
            outcome.results.append(DispatchResult.skipped(
                channel.channel,
                DispatchReason.WORKING_HOURS,
                len(self.recipients_for(channel.channel, batch_type)),
            ))
        return outcome

    async def dispatch_temperature(
        self, entries: Sequence[TemperatureBatchEntry], now: datetime
    ) -> DispatchOutcome:
        message = render_temperature_batch(
            entries, now, self.timezone, self.max_detailed, self.sms_max_chars
        )
        return await self.dispatch(BatchType.TEMPERATURE, message, [e.channel_id for e in entries])

    async def dispatch_connection(
        self, entries: Sequence[ConnectionBatchEntry], now: datetime
    ) -> DispatchOutcome:
        message = render_connection_batch(
            entries, now, self.timezone, self.max_detailed, self.sms_max_chars
        )
        return await self.dispatch(BatchType.DISCONNECTION, message, [e.channel_id for e in entries])
