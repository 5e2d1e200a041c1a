"""Constants and default values."""

from dataclasses import dataclass


@dataclass
class PlanLimits:
    """Maximum subjects and medications a guardian's plan allows (None = unlimited)."""

    subjects: int | None
    medications: int | None


# Subscription plans
PLAN_LIMITS = {
    "free": PlanLimits(subjects=1, medications=2),
    "basic": PlanLimits(subjects=1, medications=5),
    "family": PlanLimits(subjects=3, medications=15),
    "premium": PlanLimits(subjects=None, medications=None),
}

DEFAULT_PLAN = "free"

# Reply tokens understood by the response state machine
TOKEN_TAKEN = "1"
TOKEN_NOT_TAKEN = "2"
TOKEN_SNOOZE = "3"
RESPONSE_TOKENS = (TOKEN_TAKEN, TOKEN_NOT_TAKEN, TOKEN_SNOOZE)

DEFAULT_OPT_OUT_KEYWORDS = ("SAIR", "STOP")
OPT_OUT_REASON = "user_request"

# Address schemes
TELEGRAM_SCHEME = "telegram:"
WHATSAPP_SCHEME = "whatsapp:"

# Default country code for national phone numbers (Brazil)
DEFAULT_COUNTRY_CODE = "55"

# Default timezone
DEFAULT_TIMEZONE = "America/Sao_Paulo"

# Limits
MAX_CSV_ROWS = 5000
DEFAULT_EXPORT_DAYS = 30
