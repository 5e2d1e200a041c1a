"""Global error handler for the bot and scheduled jobs."""

import logging
import traceback

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import ContextTypes

logger = logging.getLogger(__name__)


def describe_error(error: BaseException | None) -> str:
    """User-facing text for a handler failure."""
    text = str(error)
    if "Forbidden" in text or "Unauthorized" in text:
        return "❌ I can't send you messages here. Please /start the bot first."
    if "Timed out" in text or "Timeout" in text:
        return "⏱️ Request timed out. Please try again in a moment."
    if "Network" in text:
        return "🌐 Network error. Please try again in a moment."
    return (
        "😅 Oops! Something went wrong.\n\n"
        "The error has been logged. Please try again or use /help."
    )


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Log the failure and tell the user when the update came from a chat."""
    logger.error("Exception while handling an update:", exc_info=context.error)

    if context.error is not None:
        tb_string = "".join(
            traceback.format_exception(None, context.error, context.error.__traceback__)
        )
        logger.debug(f"Traceback:\n{tb_string}")

    if isinstance(update, Update) and update.effective_message:
        try:
            await update.effective_message.reply_text(describe_error(context.error))
        except TelegramError as e:
            logger.error(f"Failed to send error message to user: {e}")
