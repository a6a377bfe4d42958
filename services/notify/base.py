"""
FLEETWATCH Notification Channel Interface

Every transport implements send(recipients, message) -> DispatchResult and
never raises; failures are reported through the result. The dispatcher
composes one implementation per transport.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

logger = logging.getLogger("FLEETWATCH.Notify")


class DeliveryChannel(Enum):
    """Supported transports."""
    EMAIL = "email"
    SMS = "sms"


class DispatchReason(Enum):
    """Why a transport did not deliver anything."""
    WORKING_HOURS = "working_hours"
    NO_RECIPIENTS = "no_recipients"
    INVALID_MESSAGE = "invalid_message"
    NOT_CONFIGURED = "not_configured"


@dataclass(frozen=True)
class RenderedMessage:
    """A batch rendered for every transport.

    Email uses subject/text/html; SMS uses short_text.
    """
    subject: str
    text: str
    html: str
    short_text: str

    def body_for(self, channel: DeliveryChannel) -> str:
        return self.short_text if channel is DeliveryChannel.SMS else self.text


@dataclass
class DispatchResult:
    """Outcome of one transport handling one batch."""
    channel: DeliveryChannel
    recipient_count: int = 0
    sent_count: int = 0
    failed_count: int = 0
    reason: Optional[DispatchReason] = None
    recipients: Dict[str, bool] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.reason is None and self.failed_count == 0 and self.sent_count > 0

    @property
    def delivered(self) -> bool:
        return self.sent_count > 0

    @classmethod
    def skipped(
        cls,
        channel: DeliveryChannel,
        reason: DispatchReason,
        recipient_count: int = 0,
        error: Optional[str] = None,
    ) -> "DispatchResult":
        return cls(channel=channel, recipient_count=recipient_count, reason=reason, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel.value,
            "recipient_count": self.recipient_count,
            "sent_count": self.sent_count,
            "failed_count": self.failed_count,
            "reason": self.reason.value if self.reason else None,
            "recipients": dict(self.recipients),
            "error": self.error,
        }


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol implemented by every transport."""

    channel: DeliveryChannel

    @property
    def is_configured(self) -> bool:
        ...

    async def send(self, recipients: Sequence[str], message: RenderedMessage) -> DispatchResult:
        ...


def precheck(
    channel: DeliveryChannel,
    configured: bool,
    recipients: Sequence[str],
    message: RenderedMessage,
) -> Optional[DispatchResult]:
    """Common short-circuits every transport applies before doing I/O."""
    if not configured:
        return DispatchResult.skipped(channel, DispatchReason.NOT_CONFIGURED, len(recipients))
    if not recipients:
        return DispatchResult.skipped(channel, DispatchReason.NO_RECIPIENTS)
    if not message.body_for(channel).strip():
        return DispatchResult.skipped(channel, DispatchReason.INVALID_MESSAGE, len(recipients))
    return None


# =============================================================================
# RECORDING CHANNEL FOR TESTING
# =============================================================================

class RecordingChannel:
    """
    Transport double that records sends without delivering anything.

    Useful for unit tests and --dry-run style wiring. Set fail_recipients to
    simulate per-recipient failures.
    """

    def __init__(
        self,
        channel: DeliveryChannel,
        configured: bool = True,
        fail_recipients: Optional[Sequence[str]] = None,
    ):
        self.channel = channel
        self._configured = configured
        self.fail_recipients = set(fail_recipients or [])
        self.sends: List[Dict[str, Any]] = []

    @property
    def is_configured(self) -> bool:
        return self._configured

    async def send(self, recipients: Sequence[str], message: RenderedMessage) -> DispatchResult:
        skipped = precheck(self.channel, self._configured, recipients, message)
        if skipped:
            return skipped

        result = DispatchResult(channel=self.channel, recipient_count=len(recipients))
        for recipient in recipients:
            ok = recipient not in self.fail_recipients
            result.recipients[recipient] = ok
            if ok:
                result.sent_count += 1
            else:
                result.failed_count += 1
        self.sends.append({
            "recipients": list(recipients),
            "subject": message.subject,
            "body": message.body_for(self.channel),
        })
        logger.debug(f"[MOCK] {self.channel.value} recorded for {len(recipients)} recipients")
        return result

    def clear_records(self):
        self.sends.clear()
