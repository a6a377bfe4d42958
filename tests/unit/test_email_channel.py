"""
Unit tests for the FLEETWATCH email channel.
"""

import smtplib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fleetwatch.config import EmailConfig
from services.notify.base import DeliveryChannel, DispatchReason, RenderedMessage
from services.notify.email_channel import EmailChannel
from tests.conftest import SleepRecorder

MESSAGE = RenderedMessage(
    subject="Alerta de Conexión - 1 dispositivos con eventos",
    text="Medidor 5\nEstado final: DESCONECTADO",
    html="<p>Medidor 5</p>",
    short_text="ALERTA DESCONEXION",
)


@pytest.fixture
def email_config():
    return EmailConfig(
        smtp_host="smtp.test.local",
        smtp_user="alerts",
        smtp_password="secret",
        retry_delay=5.0,
        max_retries=2,
    )


class TestEmailChannel:
    """Tests for per-recipient delivery and retry."""

    @pytest.mark.asyncio
    async def test_sends_each_recipient(self, email_config):
        channel = EmailChannel(email_config, sleep=SleepRecorder())
        with patch.object(channel, "_send_smtp_email", new=AsyncMock()) as send:
            result = await channel.send(["a@test.local", "b@test.local"], MESSAGE)

        assert result.channel is DeliveryChannel.EMAIL
        assert result.sent_count == 2
        assert send.await_count == 2

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, email_config):
        sleep = SleepRecorder()
        channel = EmailChannel(email_config, sleep=sleep)
        side_effect = [smtplib.SMTPServerDisconnected("gone"), None]
        with patch.object(channel, "_send_smtp_email", new=AsyncMock(side_effect=side_effect)):
            result = await channel.send(["a@test.local"], MESSAGE)

        assert result.sent_count == 1
        assert sleep.delays == [5.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, email_config):
        sleep = SleepRecorder()
        channel = EmailChannel(email_config, sleep=sleep)
        with patch.object(
            channel, "_send_smtp_email", new=AsyncMock(side_effect=ConnectionRefusedError("refused"))
        ) as send:
            result = await channel.send(["a@test.local"], MESSAGE)

        assert send.await_count == 3
        assert sleep.delays == [5.0, 5.0]
        assert result.failed_count == 1
        assert "SMTP delivery failed" in result.error

    @pytest.mark.asyncio
    async def test_authentication_error_not_retried(self, email_config):
        sleep = SleepRecorder()
        channel = EmailChannel(email_config, sleep=sleep)
        error = smtplib.SMTPAuthenticationError(535, b"bad credentials")
        with patch.object(channel, "_send_smtp_email", new=AsyncMock(side_effect=error)) as send:
            result = await channel.send(["a@test.local"], MESSAGE)

        assert send.await_count == 1
        assert sleep.delays == []
        assert result.recipients == {"a@test.local": False}

    @pytest.mark.asyncio
    async def test_not_configured(self):
        channel = EmailChannel(EmailConfig())
        result = await channel.send(["a@test.local"], MESSAGE)
        assert result.reason is DispatchReason.NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_disabled(self, email_config):
        email_config.enabled = False
        channel = EmailChannel(email_config)
        result = await channel.send(["a@test.local"], MESSAGE)
        assert result.reason is DispatchReason.NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_no_recipients(self, email_config):
        channel = EmailChannel(email_config)
        result = await channel.send([], MESSAGE)
        assert result.reason is DispatchReason.NO_RECIPIENTS


class TestSmtpSession:
    """Tests for the blocking SMTP conversation."""

    def test_mime_has_both_parts(self, email_config):
        channel = EmailChannel(email_config)
        msg = channel.build_mime("a@test.local", MESSAGE)

        assert msg["To"] == "a@test.local"
        assert msg["From"] == "FLEETWATCH Alerts <alerts@fleetwatch.local>"
        types = [part.get_content_type() for part in msg.get_payload()]
        assert types == ["text/plain", "text/html"]

    def test_starttls_login_sendmail(self, email_config):
        channel = EmailChannel(email_config)
        server = MagicMock()
        with patch("services.notify.email_channel.smtplib.SMTP") as smtp:
            smtp.return_value.__enter__.return_value = server
            channel._send_smtp_email_sync("a@test.local", MESSAGE)

        smtp.assert_called_once_with("smtp.test.local", 587, timeout=30.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("alerts", "secret")
        from_addr, to_addr, _ = server.sendmail.call_args.args
        assert (from_addr, to_addr) == ("alerts@fleetwatch.local", "a@test.local")

    def test_no_tls_no_login(self):
        channel = EmailChannel(EmailConfig(smtp_host="relay.local", use_tls=False))
        server = MagicMock()
        with patch("services.notify.email_channel.smtplib.SMTP") as smtp:
            smtp.return_value.__enter__.return_value = server
            channel._send_smtp_email_sync("a@test.local", MESSAGE)

        server.starttls.assert_not_called()
        server.login.assert_not_called()
        server.sendmail.assert_called_once()
