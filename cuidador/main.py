"""Main entry point for the Cuidador reminder service."""

import asyncio
import logging
import sys
from datetime import time
from zoneinfo import ZoneInfo

from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

from cuidador.api.http_server import serve
from cuidador.bot.handlers import handle_plain_text, help_command, start_command
from cuidador.channels.base import ChannelRouter
from cuidador.channels.telegram import TelegramChannel
from cuidador.channels.whatsapp import WhatsAppChannel
from cuidador.config import Config
from cuidador.db.migrations import run_migrations
from cuidador.db.repository import Repository
from cuidador.services import Services, build_services
from cuidador.utils.error_handler import error_handler
from cuidador.utils.time_utils import normalize_time_label

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, level, logging.INFO),
        stream=sys.stdout,
    )
    # Keep the bot's long polling out of INFO logs
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def scheduler_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    """Job callback for the per-minute reminder tick."""
    services: Services = context.bot_data["services"]
    try:
        result = await services.scheduler.tick()
    except Exception as e:
        logger.exception(f"Scheduler tick failed: {e}")
        return

    if result.created or result.followups:
        logger.info(
            f"Tick {result.time_label}: {result.created} created, "
            f"{result.followups} follow-ups, {result.sent} sent, {result.failed} failed"
        )


async def sweeper_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    """Job callback for the unanswered-reminder sweep."""
    services: Services = context.bot_data["services"]
    try:
        result = await services.sweeper.sweep()
    except Exception as e:
        logger.exception(f"Escalation sweep failed: {e}")
        return

    if result.found:
        logger.info(
            f"Sweep: {result.escalated} escalated, {result.skipped} skipped, "
            f"{result.alerts_sent} alerts sent, {result.alerts_failed} failed"
        )


async def daily_report_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    """Job callback for the guardians' daily summary."""
    services: Services = context.bot_data["services"]
    try:
        sent = await services.reports.send_daily_reports()
    except Exception as e:
        logger.exception(f"Daily reports failed: {e}")
        return
    logger.info(f"Daily reports sent: {sent}")


def schedule_jobs(application: Application, services: Services) -> None:
    job_queue = application.job_queue
    if job_queue is None:
        logger.warning("JobQueue not available, periodic jobs disabled")
        return

    config = services.config

    # Align ticks with the start of each minute
    job_queue.run_repeating(
        scheduler_job,
        interval=config.scheduler_interval,
        first=services.clock.seconds_until_next_minute(),
        name="scheduler",
    )
    logger.info(f"Scheduler job scheduled (interval: {config.scheduler_interval}s)")

    job_queue.run_repeating(
        sweeper_job,
        interval=config.sweeper_interval,
        first=config.sweeper_interval,
        name="sweeper",
    )
    logger.info(f"Sweeper job scheduled (interval: {config.sweeper_interval}s)")

    hours, minutes = (int(part) for part in normalize_time_label(config.daily_report_time).split(":"))
    job_queue.run_daily(
        daily_report_job,
        time=time(hours, minutes, tzinfo=ZoneInfo(config.timezone)),
        name="daily_reports",
    )
    logger.info(f"Daily reports scheduled at {config.daily_report_time} {config.timezone}")


async def post_init(application: Application) -> None:
    """Initialize resources after the application is created."""
    config: Config = application.bot_data["config"]

    await run_migrations(config.database_path)

    repo = Repository(config.database_path)
    await repo.connect()

    whatsapp = WhatsAppChannel(
        config.twilio_account_sid,
        config.twilio_auth_token,
        config.twilio_phone_number,
        config.default_country_code,
    )
    if not whatsapp.configured:
        logger.warning("Twilio credentials missing, WhatsApp messages will not be sent")

    channel = ChannelRouter(phone=whatsapp, telegram=TelegramChannel(application.bot))
    services = build_services(config, repo, channel)
    application.bot_data["services"] = services

    schedule_jobs(application, services)

    shutdown_event = asyncio.Event()
    application.bot_data["http_shutdown"] = shutdown_event
    application.bot_data["http_task"] = asyncio.create_task(serve(services, shutdown_event))

    logger.info("Cuidador initialized successfully")


async def post_shutdown(application: Application) -> None:
    """Stop the HTTP API and close the database."""
    shutdown_event: asyncio.Event | None = application.bot_data.get("http_shutdown")
    http_task: asyncio.Task | None = application.bot_data.get("http_task")
    if shutdown_event and http_task:
        shutdown_event.set()
        try:
            await http_task
        except Exception as e:
            logger.error(f"HTTP API stopped with error: {e}")

    services: Services | None = application.bot_data.get("services")
    if services:
        await services.repo.close()

    logger.info("Cuidador shut down")


def main() -> None:
    """Start the service."""
    config = Config.from_env()
    configure_logging(config.log_level)

    try:
        config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    application = (
        Application.builder()
        .token(config.telegram_bot_token)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )
    application.bot_data["config"] = config

    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("help", help_command))

    # Replies to reminders (must be last)
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_plain_text))

    application.add_error_handler(error_handler)

    logger.info("Starting Cuidador...")
    application.run_polling(allowed_updates=["message"])


if __name__ == "__main__":
    main()
