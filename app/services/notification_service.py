"""
Outbound delivery of verification codes.

The verification workflow only sees ``NotificationSender.send``; which
provider sits behind each channel is decided here from settings.
"""

import logging
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Dict, Optional

import httpx
from fastapi_mail.errors import ConnectionErrors
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.configs.settings import Settings, settings as app_settings
from app.models.verification_state import VerificationChannel
from app.services.email_service import EmailService

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """A code could not be handed to the provider."""

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"{channel} delivery failed: {reason}")


class NotificationSender(ABC):

    @abstractmethod
    async def send(self, recipient: str, code: str, channel: str) -> None:
        """Deliver ``code`` to ``recipient``; raise NotificationError on failure."""


class EmailOtpSender(NotificationSender):

    def __init__(self, email_service: Optional[EmailService] = None, expire_minutes: Optional[int] = None):
        self.email_service = email_service or EmailService()
        self.expire_minutes = expire_minutes or app_settings.OTP_EXPIRE_MINUTES

    async def send(self, recipient: str, code: str, channel: str = VerificationChannel.EMAIL.value) -> None:
        try:
            await self.email_service.send_verification_code(recipient, code, self.expire_minutes)
        except (ConnectionErrors, OSError) as e:
            raise NotificationError(channel, str(e)) from e
        logger.info("Verification email sent to %s", recipient)


twilio_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)


class TwilioMessagingClient:
    """Minimal client for the Twilio Messages API (SMS and WhatsApp)."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        base_url: str = "https://api.twilio.com/2010-04-01",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.base_url = base_url.rstrip("/")
        self.transport = transport
        self.timeout = timeout

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/Accounts/{self.account_sid}/Messages.json"

    @twilio_retry
    async def _post(self, data: Dict[str, str]) -> Dict:
        async with httpx.AsyncClient(
            auth=(self.account_sid, self.auth_token),
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            resp = await client.post(self.messages_url, data=data)
            resp.raise_for_status()
            return resp.json()

    async def send_message(self, to: str, from_: str, body: str) -> Dict:
        return await self._post({"To": to, "From": from_, "Body": body})


def _otp_text(code: str, expire_minutes: int) -> str:
    return (
        f"Your {app_settings.APP_NAME} verification code is {code}. "
        f"It expires in {expire_minutes} minutes. Do not share it with anyone."
    )


class SmsOtpSender(NotificationSender):

    def __init__(self, client: TwilioMessagingClient, from_number: str, expire_minutes: Optional[int] = None):
        self.client = client
        self.from_number = from_number
        self.expire_minutes = expire_minutes or app_settings.OTP_EXPIRE_MINUTES

    def _address(self, number: str) -> str:
        return number

    async def send(self, recipient: str, code: str, channel: str = VerificationChannel.SMS.value) -> None:
        try:
            result = await self.client.send_message(
                to=self._address(recipient),
                from_=self._address(self.from_number),
                body=_otp_text(code, self.expire_minutes),
            )
        except httpx.HTTPStatusError as e:
            raise NotificationError(channel, f"provider returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise NotificationError(channel, str(e) or e.__class__.__name__) from e
        except ValueError as e:
            # 2xx with a body that is not JSON (proxy or gateway page)
            raise NotificationError(channel, "invalid provider response") from e
        logger.info("Verification %s sent to %s (sid=%s)", channel, recipient, result.get("sid"))


class WhatsAppOtpSender(SmsOtpSender):
    """Same Messages API; Twilio routes ``whatsapp:``-prefixed addresses to WhatsApp."""

    def _address(self, number: str) -> str:
        return number if number.startswith("whatsapp:") else f"whatsapp:{number}"

    async def send(self, recipient: str, code: str, channel: str = VerificationChannel.WHATSAPP.value) -> None:
        await super().send(recipient, code, channel)


class ConsoleOtpSender(NotificationSender):
    """
    Development stand-in for channels without a configured provider: the code
    goes to the log. Refuses to run in production.
    """

    def __init__(self, production: bool = False):
        self.production = production

    async def send(self, recipient: str, code: str, channel: str) -> None:
        if self.production:
            raise NotificationError(channel, "no provider configured")
        logger.warning("[dev] %s verification code for %s: %s", channel.upper(), recipient, code)


class ChannelNotificationSender(NotificationSender):
    """Routes each send to the sender registered for its channel."""

    def __init__(self, senders: Dict[str, NotificationSender]):
        self.senders = senders

    async def send(self, recipient: str, code: str, channel: str) -> None:
        sender = self.senders.get(channel)
        if sender is None:
            raise NotificationError(channel, "unsupported channel")
        await sender.send(recipient, code, channel)


def build_notification_sender(config: Settings = app_settings) -> ChannelNotificationSender:
    fallback = ConsoleOtpSender(production=config.is_production)
    senders: Dict[str, NotificationSender] = {
        VerificationChannel.EMAIL.value: EmailOtpSender() if config.mail_configured else fallback,
        VerificationChannel.SMS.value: fallback,
        VerificationChannel.WHATSAPP.value: fallback,
    }

    if config.twilio_configured:
        client = TwilioMessagingClient(
            config.TWILIO_ACCOUNT_SID,
            config.TWILIO_AUTH_TOKEN,
            base_url=config.TWILIO_API_BASE_URL,
        )
        if config.TWILIO_SMS_FROM:
            senders[VerificationChannel.SMS.value] = SmsOtpSender(client, config.TWILIO_SMS_FROM)
        if config.TWILIO_WHATSAPP_FROM:
            senders[VerificationChannel.WHATSAPP.value] = WhatsAppOtpSender(client, config.TWILIO_WHATSAPP_FROM)

    for channel, sender in senders.items():
        if sender is fallback:
            logger.warning("No provider configured for %s verification; using %s", channel, type(sender).__name__)
    return ChannelNotificationSender(senders)


@lru_cache
def get_notification_sender() -> NotificationSender:
    """FastAPI dependency; overridden in tests."""
    return build_notification_sender(app_settings)
