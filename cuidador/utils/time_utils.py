"""Time and timezone utilities."""

import re
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

UTC = ZoneInfo("UTC")

_TIME_LABEL_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})")


def to_utc(dt: datetime, tz: str) -> datetime:
    """Convert a timezone-aware datetime to UTC."""
    if dt.tzinfo is None:
        # Assume it's in the given timezone
        dt = dt.replace(tzinfo=ZoneInfo(tz))
    return dt.astimezone(UTC)


def from_utc(dt: datetime, tz: str) -> datetime:
    """Convert a UTC datetime to the given timezone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(ZoneInfo(tz))


def normalize_time_label(value: str) -> str:
    """Normalize a time of day to an ``HH:MM`` label.

    Examples:
        "8:00" -> "08:00"
        "08:00:00" -> "08:00"

    Raises:
        ValueError: if the value is not a valid time of day
    """
    match = _TIME_LABEL_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid time of day: {value!r}")

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time of day: {value!r}")

    return f"{hour:02d}:{minute:02d}"


def format_duration(minutes: int) -> str:
    """Format minutes into a human-readable duration.

    Examples:
        1 -> "1 minute"
        10 -> "10 minutes"
        60 -> "1 hour"
        90 -> "1.5 hours"
    """
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    hours = minutes / 60
    if hours == int(hours):
        return f"{int(hours)} hour{'s' if hours != 1 else ''}"
    return f"{hours:.1f} hours"


class Clock:
    """Calendar adapter for the configured time zone.

    Weekdays follow the 0 = Sunday ... 6 = Saturday convention used by
    medication schedules.
    """

    def __init__(self, timezone: str):
        self.timezone = timezone
        self.tz = ZoneInfo(timezone)

    def now(self) -> datetime:
        """Current instant (UTC)."""
        return datetime.now(UTC)

    def local(self, dt: datetime | None = None) -> datetime:
        """Convert an instant (default: now) to local time."""
        return from_utc(dt if dt is not None else self.now(), self.timezone)

    def time_label(self, dt: datetime | None = None) -> str:
        """Local ``HH:MM`` label, truncated to the minute."""
        return self.local(dt).strftime("%H:%M")

    def weekday(self, dt: datetime | None = None) -> int:
        """Local day of week, 0 = Sunday."""
        return self.local(dt).isoweekday() % 7

    def today(self, dt: datetime | None = None) -> date:
        return self.local(dt).date()

    def date_bounds(self, day: date) -> tuple[datetime, datetime]:
        """UTC [start, end) of a local calendar day."""
        start = datetime.combine(day, time.min, tzinfo=self.tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self.tz)
        return start.astimezone(UTC), end.astimezone(UTC)

    def day_bounds(self, dt: datetime | None = None) -> tuple[datetime, datetime]:
        """UTC [start, end) of the local calendar day containing ``dt``."""
        return self.date_bounds(self.today(dt))

    def seconds_until_next_minute(self, dt: datetime | None = None) -> float:
        """Seconds until the next wall-clock minute boundary."""
        current = dt if dt is not None else self.now()
        return 60 - current.second - current.microsecond / 1_000_000
