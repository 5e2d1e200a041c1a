"""WhatsApp delivery through the Twilio API."""

from __future__ import annotations

import asyncio
import logging
import re

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from cuidador.channels.base import NotificationChannel, SendResult, normalize_address
from cuidador.utils.constants import DEFAULT_COUNTRY_CODE, WHATSAPP_SCHEME

logger = logging.getLogger(__name__)


def to_whatsapp_address(address: str) -> str:
    """Format a stored (already normalized) phone address the way Twilio expects it.

    Raises:
        ValueError: if the address has no digits
    """
    if address.lower().startswith(WHATSAPP_SCHEME):
        return address
    digits = re.sub(r"\D", "", address)
    if not digits:
        raise ValueError(f"Invalid phone address: {address!r}")
    return f"{WHATSAPP_SCHEME}+{digits}"


class WhatsAppChannel(NotificationChannel):
    """High level helper around the Twilio client for WhatsApp messages."""

    name = "whatsapp"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        country_code: str = DEFAULT_COUNTRY_CODE,
        client: Client | None = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.country_code = country_code
        self._client = client

    @property
    def configured(self) -> bool:
        has_credentials = bool(self.account_sid and self.auth_token) or self._client is not None
        return has_credentials and bool(self.from_number)

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    @property
    def sender(self) -> str:
        if self.from_number.startswith(WHATSAPP_SCHEME):
            return self.from_number
        return to_whatsapp_address(normalize_address(self.from_number, self.country_code))

    async def send(self, address: str, body: str) -> SendResult:
        """Send a WhatsApp message; missing credentials yield a failed result."""
        if not self.configured:
            logger.error("Twilio client not available")
            return SendResult(success=False, error="Twilio not configured")

        try:
            to = to_whatsapp_address(address)
        except ValueError as e:
            logger.error(f"Cannot send WhatsApp message: {e}")
            return SendResult(success=False, error=str(e))

        logger.debug(f"Sending WhatsApp from {self.sender} to {to}: {body[:100]}")

        try:
            # The Twilio client is blocking; keep it off the event loop
            message = await asyncio.to_thread(
                self.client.messages.create, to=to, from_=self.sender, body=body
            )
        except (TwilioException, OSError) as e:
            logger.error(f"Twilio error sending to {to}: {e}")
            return SendResult(success=False, error=str(e))

        logger.info(f"WhatsApp message sent to {to}: {message.sid}")
        return SendResult(success=True, provider_id=message.sid, status=message.status)
