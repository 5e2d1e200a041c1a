"""Telegram delivery through the bot API."""

import logging

from telegram import Bot
from telegram.error import TelegramError

from cuidador.channels.base import NotificationChannel, SendResult
from cuidador.utils.constants import TELEGRAM_SCHEME

logger = logging.getLogger(__name__)


def telegram_address(chat_id: int) -> str:
    """Address stored on records for a Telegram chat."""
    return f"{TELEGRAM_SCHEME}{chat_id}"


class TelegramChannel(NotificationChannel):
    """Sends messages to ``telegram:<chat id>`` addresses."""

    name = "telegram"

    def __init__(self, bot: Bot | None):
        self.bot = bot

    @property
    def configured(self) -> bool:
        return self.bot is not None

    async def send(self, address: str, body: str) -> SendResult:
        if self.bot is None:
            return SendResult(success=False, error="Telegram not configured")

        try:
            chat_id = int(address[len(TELEGRAM_SCHEME):])
        except ValueError:
            logger.error(f"Invalid Telegram address: {address}")
            return SendResult(success=False, error=f"Invalid Telegram address: {address}")

        try:
            sent_message = await self.bot.send_message(chat_id=chat_id, text=body)
        except TelegramError as e:
            logger.error(f"Failed to send Telegram message to {chat_id}: {e}")
            return SendResult(success=False, error=str(e))

        return SendResult(success=True, provider_id=str(sent_message.message_id))
