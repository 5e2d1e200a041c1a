"""Notification channel interface and address handling."""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable

from cuidador.utils.constants import (
    DEFAULT_COUNTRY_CODE,
    TELEGRAM_SCHEME,
    WHATSAPP_SCHEME,
)

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


@dataclass
class SendResult:
    """Outcome of one outbound message."""

    success: bool
    provider_id: str | None = None
    status: str | None = None
    error: str | None = None


def normalize_address(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Normalize a messaging address to the form stored on records.

    Telegram chats keep their scheme (``telegram:<chat id>``). Anything else
    is a phone number: the ``whatsapp:`` prefix, ``+`` and punctuation are
    stripped. National numbers (10 or 11 digits, written without ``+`` or
    ``whatsapp:``) get the country code.

    Examples:
        "whatsapp:+5511999998888" -> "5511999998888"
        "(11) 99999-8888" -> "5511999998888"
        "telegram:12345" -> "telegram:12345"

    Raises:
        ValueError: if no address can be extracted
    """
    value = (raw or "").strip()

    if value.lower().startswith(TELEGRAM_SCHEME):
        chat_id = value[len(TELEGRAM_SCHEME):].strip()
        if not re.fullmatch(r"-?\d+", chat_id):
            raise ValueError(f"Invalid Telegram address: {raw!r}")
        return f"{TELEGRAM_SCHEME}{chat_id}"

    international = value.startswith("+")
    if value.lower().startswith(WHATSAPP_SCHEME):
        value = value[len(WHATSAPP_SCHEME):]
        international = True

    digits = _NON_DIGITS.sub("", value)
    if not digits:
        raise ValueError(f"Invalid phone address: {raw!r}")

    if not international and len(digits) in (10, 11):
        digits = f"{country_code}{digits}"

    return digits


def is_telegram_address(address: str) -> bool:
    return address.lower().startswith(TELEGRAM_SCHEME)


class NotificationChannel(ABC):
    """Sends a text message to a destination address."""

    name: str = "channel"

    @property
    @abstractmethod
    def configured(self) -> bool:
        """Whether the channel has the credentials it needs."""

    @abstractmethod
    async def send(self, address: str, body: str) -> SendResult:
        """Send ``body`` to ``address``.

        Implementations report failures through ``SendResult`` instead of
        raising.
        """


class ChannelRouter(NotificationChannel):
    """Route each address to the channel that owns its scheme.

    ``telegram:`` addresses go to the Telegram channel, everything else to
    the phone (WhatsApp) channel.
    """

    name = "router"

    def __init__(
        self,
        phone: NotificationChannel | None = None,
        telegram: NotificationChannel | None = None,
    ):
        self.phone = phone
        self.telegram = telegram

    @property
    def configured(self) -> bool:
        return any(c is not None and c.configured for c in (self.phone, self.telegram))

    def status(self) -> dict[str, bool]:
        """Configured flag per underlying channel."""
        return {
            "whatsapp": bool(self.phone and self.phone.configured),
            "telegram": bool(self.telegram and self.telegram.configured),
        }

    async def send(self, address: str, body: str) -> SendResult:
        channel = self.telegram if is_telegram_address(address) else self.phone
        if channel is None:
            logger.error(f"No channel available for address {address}")
            return SendResult(success=False, error="No channel for address")
        return await channel.send(address, body)


async def send_all(
    channel: NotificationChannel, messages: Iterable[tuple[str, str]]
) -> list[SendResult]:
    """Send many messages concurrently and wait for all of them.

    An exception escaping one send becomes a failed result for that message
    only.
    """
    batch = list(messages)
    if not batch:
        return []

    outcomes = await asyncio.gather(
        *(channel.send(address, body) for address, body in batch),
        return_exceptions=True,
    )

    results: list[SendResult] = []
    for (address, _), outcome in zip(batch, outcomes):
        if isinstance(outcome, BaseException):
            logger.error(f"Send to {address} raised: {outcome}")
            results.append(SendResult(success=False, error=str(outcome)))
        else:
            results.append(outcome)
    return results
