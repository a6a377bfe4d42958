"""
FLEETWATCH SMS Modem Channel

Sends SMS through the HTTP/XML API of a cellular modem (Huawei HiLink style
web interface).

Per message:
1. GET {url}{api_path}/webserver/SesTokInfo for a session cookie and a
   request verification token.
2. POST an XML <request> envelope to {url}{api_path}/sms/send-sms.
3. <response>OK</response> means accepted. Session errors (113018 and
   friends) wait briefly, then re-authenticate and retry.
4. Other failures retry on a descending schedule (10s, then 7s); timeouts and
   connection resets use a shorter network delay.

Recipients are sent strictly one after the other with a pause between them
so the modem is never asked to handle two messages at once.
"""

import asyncio
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence, Tuple
from xml.sax.saxutils import escape

import aiohttp

from fleetwatch.config import SmsConfig
from fleetwatch.exceptions import (
    DeliveryTimeoutError,
    ModemResponseError,
    ModemSessionExpiredError,
    TransientNetworkError,
)
from fleetwatch.types import Clock, SleepFunc, default_sleep, utc_now
from services.notify.base import (
    DeliveryChannel,
    DispatchResult,
    RenderedMessage,
    precheck,
)

logger = logging.getLogger("FLEETWATCH.SMS")

TOKEN_ENDPOINT = "/webserver/SesTokInfo"
SEND_ENDPOINT = "/sms/send-sms"
OK_RESPONSE = "<response>OK</response>"
FALLBACK_RETRY_DELAY = 5.0


@dataclass(frozen=True)
class ModemSession:
    """Session cookie and CSRF token issued by the modem."""
    session_id: str
    token: str


def format_phone(phone: str) -> str:
    """Normalise a number to +<digits> with no whitespace."""
    formatted = "".join(str(phone).split())
    if not formatted.startswith("+"):
        formatted = "+" + formatted
    return formatted


def parse_token_response(text: str) -> ModemSession:
    """Extract SesInfo/TokInfo from the SesTokInfo payload."""
    try:
        root = ET.fromstring(text.strip())
    except ET.ParseError as e:
        raise ModemResponseError(f"Malformed token response: {e}") from e

    ses_info = root.findtext("SesInfo")
    tok_info = root.findtext("TokInfo")
    if not ses_info or not tok_info:
        code, message = extract_error(text)
        raise ModemResponseError(
            "Token response missing SesInfo/TokInfo",
            error_code=code,
            error_message=message,
        )
    return ModemSession(
        session_id=ses_info.strip().replace("SessionID=", ""),
        token=tok_info.strip(),
    )


def extract_error(text: str) -> Tuple[Optional[str], Optional[str]]:
    """Return (code, message) from an <error> payload, if any."""
    try:
        root = ET.fromstring(text.strip())
    except ET.ParseError:
        return None, None
    code = root.findtext("code")
    message = root.findtext("message")
    return (code.strip() if code else None), (message.strip() if message else None)


def is_ok_response(text: str) -> bool:
    try:
        root = ET.fromstring(text.strip())
    except ET.ParseError:
        return OK_RESPONSE in text
    return root.tag == "response" and (root.text or "").strip() == "OK"


def build_envelope(phone: str, message: str, now: datetime) -> str:
    """XML body accepted by the send-sms endpoint."""
    stamp = now.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<request>"
        "<Index>-1</Index>"
        f"<Phones><Phone>{escape(phone)}</Phone></Phones>"
        "<Sca></Sca>"
        f"<Content>{escape(message)}</Content>"
        f"<Length>{len(message)}</Length>"
        "<Reserved>1</Reserved>"
        f"<Date>{stamp}</Date>"
        "</request>"
    )


class ModemClient:
    """Low-level HTTP client for the modem web API."""

    def __init__(self, config: SmsConfig, clock: Optional[Clock] = None):
        self.config = config
        self._clock = clock or utc_now

    @property
    def api_url(self) -> str:
        return f"{self.config.modem_url}{self.config.api_path or '/api'}"

    def basic_headers(self) -> Dict[str, str]:
        return {
            "Accept": "*/*",
            "X-Requested-With": "XMLHttpRequest",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }

    def send_headers(self, session: ModemSession) -> Dict[str, str]:
        headers = self.basic_headers()
        headers.update({
            "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
            "Cookie": f"SessionID={session.session_id}",
            "Host": self.config.modem_host or "192.168.8.1",
            "Origin": self.config.modem_url,
            "Referer": f"{self.config.modem_url}/html/smsinbox.html",
            "__RequestVerificationToken": session.token,
        })
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        timeout: float,
        data: Optional[bytes] = None,
    ) -> str:
        """Perform one HTTP request and return the body text."""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    headers=headers,
                    data=data,
                    timeout=aiohttp.ClientTimeout(total=timeout),
                ) as response:
                    text = await response.text()
                    if response.status >= 500:
                        raise TransientNetworkError(
                            f"Modem returned HTTP {response.status}", endpoint=url
                        )
                    return text
        except asyncio.TimeoutError as e:
            raise DeliveryTimeoutError(
                "Modem request timed out", endpoint=url, timeout_seconds=timeout
            ) from e
        except aiohttp.ClientError as e:
            raise TransientNetworkError(f"Modem request failed: {e}", endpoint=url) from e

    async def get_session_token(self) -> ModemSession:
        url = f"{self.api_url}{TOKEN_ENDPOINT}"
        text = await self._request(
            "GET", url, self.basic_headers(), timeout=self.config.token_timeout
        )
        return parse_token_response(text)

    async def submit(self, phone: str, message: str):
        """
        Authenticate and post one message.

        Raises:
            ModemSessionExpiredError: The modem rejected session or token
            ModemResponseError: Any other non-OK answer
            TransientNetworkError: Timeout, reset or 5xx
        """
        session = await self.get_session_token()
        url = f"{self.api_url}{SEND_ENDPOINT}"
        envelope = build_envelope(phone, message, self._clock())
        text = await self._request(
            "POST",
            url,
            self.send_headers(session),
            timeout=self.config.timeout,
            data=envelope.encode("utf-8"),
        )
        if is_ok_response(text):
            return

        code, error_message = extract_error(text)
        if code and code in self.config.session_error_codes:
            raise ModemSessionExpiredError("Modem session expired", endpoint=url, error_code=code)
        raise ModemResponseError(
            "Modem did not accept the message",
            error_code=code,
            error_message=error_message,
        )


class SmsChannel:
    """Modem implementation of NotificationChannel."""

    channel = DeliveryChannel.SMS

    def __init__(
        self,
        config: SmsConfig,
        client: Optional[ModemClient] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        self.config = config
        self.client = client or ModemClient(config)
        self._sleep = sleep or default_sleep
        self.last_error: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def retry_delay(self, attempt: int, error: Exception) -> float:
        """Delay before the retry that follows the given zero-based attempt."""
        if isinstance(error, ModemSessionExpiredError):
            return self.config.session_retry_delay
        if isinstance(error, TransientNetworkError):
            return self.config.network_retry_delay
        if attempt < len(self.config.retry_delays):
            return self.config.retry_delays[attempt]
        return FALLBACK_RETRY_DELAY

    async def send_to_recipient(self, phone: str, message: str) -> bool:
        attempts = self.config.max_retries + 1
        for attempt in range(attempts):
            try:
                await self.client.submit(phone, message)
                logger.info(f"SMS sent to {phone}")
                return True
            except (TransientNetworkError, ModemResponseError) as e:
                self.last_error = str(e)
                if attempt + 1 >= attempts:
                    logger.error(f"SMS to {phone} failed after {attempts} attempts: {e}")
                    return False
                delay = self.retry_delay(attempt, e)
                logger.warning(
                    f"SMS to {phone} failed (attempt {attempt + 1}/{attempts}): {e}. "
                    f"Retrying in {delay}s"
                )
                await self._sleep(delay)
        return False

    async def send(self, recipients: Sequence[str], message: RenderedMessage) -> DispatchResult:
        skipped = precheck(self.channel, self.is_configured, recipients, message)
        if skipped:
            logger.warning(f"SMS skipped: {skipped.reason.value}")
            return skipped

        phones = [format_phone(r) for r in recipients]
        result = DispatchResult(channel=self.channel, recipient_count=len(phones))
        logger.info(f"Sending SMS to {len(phones)} recipients")

        for index, phone in enumerate(phones):
            try:
                sent = await self.send_to_recipient(phone, message.short_text)
            except Exception as e:
                logger.exception(f"Unexpected error sending SMS to {phone}: {e}")
                self.last_error = str(e)
                sent = False

            result.recipients[phone] = sent
            if sent:
                result.sent_count += 1
            else:
                result.failed_count += 1
                result.error = self.last_error

            if index < len(phones) - 1:
                await self._sleep(self.config.time_between_recipients)

        logger.info(f"SMS result: {result.sent_count} sent, {result.failed_count} failed")
        return result
