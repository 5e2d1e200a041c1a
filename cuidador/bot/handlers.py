"""Telegram command and message handlers."""

import logging

from telegram import Update
from telegram.ext import ContextTypes

from cuidador.bot.formatters import format_help_message
from cuidador.channels.telegram import telegram_address
from cuidador.services import Services

logger = logging.getLogger(__name__)


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start command - tell the user which address to register."""
    if not update.effective_chat or not update.message:
        return

    services: Services = context.bot_data["services"]
    address = telegram_address(update.effective_chat.id)

    subject = await services.repo.get_subject_by_address(address)
    if subject and subject.active:
        greeting = f"Hi {subject.name}! 👋 Your reminders are active on this chat."
    else:
        greeting = "Hi! 👋 This chat is not linked to anyone yet."

    await update.message.reply_text(
        f"{greeting}\n\n"
        f"Reminder address for this chat:\n{address}\n\n"
        "Give it to your caregiver to receive medication reminders here."
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help command."""
    if not update.message:
        return

    services: Services = context.bot_data["services"]
    await update.message.reply_text(format_help_message(services.config.opt_out_keywords[0]))


async def handle_plain_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Feed a plain text message into the reply state machine.

    The responder answers through the channel router, so nothing is replied
    here directly.
    """
    if not update.effective_chat or not update.message or not update.message.text:
        return

    services: Services = context.bot_data["services"]
    address = telegram_address(update.effective_chat.id)

    outcome = await services.responder.handle(address, update.message.text)
    logger.info(
        f"Telegram reply from {address}: {outcome.action.value}"
        + (f" ({outcome.detail})" if outcome.detail else "")
    )
