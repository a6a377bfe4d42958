"""
FLEETWATCH Email Channel

SMTP transport. One message per recipient with plain-text and HTML parts;
the blocking smtplib session runs in the default executor. Connection level
failures are retried with a fixed delay, refusals are not.
"""

import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Sequence

from fleetwatch.config import EmailConfig
from fleetwatch.exceptions import DeliveryTimeoutError, TransientNetworkError
from fleetwatch.types import SleepFunc, default_sleep
from services.notify.base import (
    DeliveryChannel,
    DispatchResult,
    RenderedMessage,
    precheck,
)

logger = logging.getLogger("FLEETWATCH.Email")

# Refusals that will not change on retry
PERMANENT_SMTP_ERRORS = (
    smtplib.SMTPAuthenticationError,
    smtplib.SMTPRecipientsRefused,
    smtplib.SMTPSenderRefused,
    smtplib.SMTPDataError,
    smtplib.SMTPNotSupportedError,
)


class EmailChannel:
    """SMTP implementation of NotificationChannel."""

    channel = DeliveryChannel.EMAIL

    def __init__(self, config: EmailConfig, sleep: Optional[SleepFunc] = None):
        self.config = config
        self._sleep = sleep or default_sleep

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    async def send(self, recipients: Sequence[str], message: RenderedMessage) -> DispatchResult:
        skipped = precheck(self.channel, self.is_configured, recipients, message)
        if skipped:
            logger.warning(f"Email skipped: {skipped.reason.value}")
            return skipped

        result = DispatchResult(channel=self.channel, recipient_count=len(recipients))

        for recipient in recipients:
            try:
                await self._send_with_retry(recipient, message)
                result.recipients[recipient] = True
                result.sent_count += 1
                logger.debug(f"Email sent to {recipient}")
            except (TransientNetworkError, smtplib.SMTPException, OSError) as e:
                result.recipients[recipient] = False
                result.failed_count += 1
                result.error = str(e)
                logger.error(f"Failed to send email to {recipient}: {e}")

        logger.info(
            f"Email batch '{message.subject}': {result.sent_count} sent, "
            f"{result.failed_count} failed"
        )
        return result

    async def _send_with_retry(self, recipient: str, message: RenderedMessage):
        attempts = self.config.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                await self._send_smtp_email(recipient, message)
                return
            except PERMANENT_SMTP_ERRORS:
                raise
            except (smtplib.SMTPException, OSError) as e:
                transient = self._classify(e)
                if attempt >= attempts:
                    raise transient from e
                logger.warning(
                    f"Email to {recipient} failed (attempt {attempt}/{attempts}): {e}. "
                    f"Retrying in {self.config.retry_delay}s"
                )
                await self._sleep(self.config.retry_delay)

    def _classify(self, error: Exception) -> TransientNetworkError:
        endpoint = f"{self.config.smtp_host}:{self.config.smtp_port}"
        if isinstance(error, TimeoutError):
            return DeliveryTimeoutError(
                "SMTP timed out", endpoint=endpoint, timeout_seconds=self.config.timeout
            )
        return TransientNetworkError(f"SMTP delivery failed: {error}", endpoint=endpoint)

    async def _send_smtp_email(self, recipient: str, message: RenderedMessage):
        """Send email via SMTP (runs in executor to avoid blocking)."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._send_smtp_email_sync, recipient, message)

    def build_mime(self, recipient: str, message: RenderedMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = f"{self.config.from_name} <{self.config.from_address}>"
        msg["To"] = recipient
        msg.attach(MIMEText(message.text, "plain", "utf-8"))
        msg.attach(MIMEText(message.html, "html", "utf-8"))
        return msg

    def _send_smtp_email_sync(self, recipient: str, message: RenderedMessage):
        """Synchronous SMTP send (called from executor)."""
        msg = self.build_mime(recipient, message)

        with smtplib.SMTP(
            self.config.smtp_host,
            self.config.smtp_port,
            timeout=self.config.timeout,
        ) as server:
            if self.config.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.config.smtp_user:
                server.login(self.config.smtp_user, self.config.smtp_password)
            server.sendmail(self.config.from_address, recipient, msg.as_string())
