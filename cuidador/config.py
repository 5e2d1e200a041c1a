"""Configuration management from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from cuidador.utils.constants import (
    DEFAULT_COUNTRY_CODE,
    DEFAULT_OPT_OUT_KEYWORDS,
    DEFAULT_TIMEZONE,
)
from cuidador.utils.time_utils import normalize_time_label


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Config:
    """Application configuration.

    Built once by ``from_env`` and handed to every component explicitly.
    """

    # Telegram
    telegram_bot_token: str = ""

    # Twilio WhatsApp
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    default_country_code: str = DEFAULT_COUNTRY_CODE

    # Database
    database_path: Path = Path("./data/cuidador.db")

    # Logging
    log_level: str = "INFO"

    # Calendar
    timezone: str = DEFAULT_TIMEZONE

    # Engine
    scheduler_interval: int = 60  # seconds
    sweeper_interval: int = 300  # seconds
    unanswered_threshold_minutes: int = 20
    reply_lookback_minutes: int = 30
    snooze_delay_minutes: int = 10
    opt_out_keywords: tuple[str, ...] = field(default=DEFAULT_OPT_OUT_KEYWORDS)
    daily_report_time: str = "08:00"

    # HTTP
    http_host: str = "0.0.0.0"
    http_port: int = 8080

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from the environment (and a .env file if present)."""
        load_dotenv()

        # Fast test mode shortens the snooze delay so the flow can be watched live
        fast_test = _env_bool("FAST_TEST_MODE")
        snooze_default = "1" if fast_test else "10"

        keywords_raw = os.getenv("OPT_OUT_KEYWORDS")
        if keywords_raw:
            keywords = tuple(k.strip().upper() for k in keywords_raw.split(",") if k.strip())
        else:
            keywords = DEFAULT_OPT_OUT_KEYWORDS

        return cls(
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
            twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER", ""),
            default_country_code=os.getenv("DEFAULT_COUNTRY_CODE", DEFAULT_COUNTRY_CODE),
            database_path=Path(os.getenv("DATABASE_PATH", "./data/cuidador.db")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            timezone=os.getenv("TIMEZONE", DEFAULT_TIMEZONE),
            scheduler_interval=int(os.getenv("SCHEDULER_INTERVAL", "60")),
            sweeper_interval=int(os.getenv("SWEEPER_INTERVAL", "300")),
            unanswered_threshold_minutes=int(os.getenv("UNANSWERED_THRESHOLD_MINUTES", "20")),
            reply_lookback_minutes=int(os.getenv("REPLY_LOOKBACK_MINUTES", "30")),
            snooze_delay_minutes=int(os.getenv("SNOOZE_DELAY_MINUTES", snooze_default)),
            opt_out_keywords=keywords,
            daily_report_time=os.getenv("DAILY_REPORT_TIME", "08:00"),
            http_host=os.getenv("HTTP_HOST", "0.0.0.0"),
            http_port=int(os.getenv("HTTP_PORT", "8080")),
        )

    @property
    def twilio_configured(self) -> bool:
        return bool(
            self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number
        )

    def validate(self) -> None:
        """Validate required configuration."""
        if not self.telegram_bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN environment variable is required")

        if not self.opt_out_keywords:
            raise ValueError("OPT_OUT_KEYWORDS must contain at least one keyword")

        for name in (
            "scheduler_interval",
            "sweeper_interval",
            "unanswered_threshold_minutes",
            "reply_lookback_minutes",
            "snooze_delay_minutes",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be a positive integer")

        # Raises ValueError on a malformed HH:MM value
        normalize_time_label(self.daily_report_time)

        # Ensure database directory exists
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
