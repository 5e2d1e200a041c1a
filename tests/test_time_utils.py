"""Tests for time utilities."""

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from cuidador.utils.time_utils import (
    UTC,
    Clock,
    format_duration,
    from_utc,
    normalize_time_label,
    to_utc,
)


def test_to_utc():
    """Test timezone conversion to UTC."""
    dt = datetime(2026, 3, 4, 8, 0, tzinfo=ZoneInfo("America/Sao_Paulo"))
    utc_dt = to_utc(dt, "America/Sao_Paulo")

    assert utc_dt.tzinfo == UTC
    # BRT is UTC-3, so 08:00 BRT = 11:00 UTC
    assert utc_dt.hour == 11


def test_to_utc_naive_uses_given_zone():
    utc_dt = to_utc(datetime(2026, 3, 4, 8, 0), "America/Sao_Paulo")
    assert utc_dt.hour == 11


def test_from_utc():
    """Test timezone conversion from UTC."""
    dt = datetime(2026, 3, 4, 11, 30, tzinfo=UTC)
    local = from_utc(dt, "America/Sao_Paulo")

    assert local.tzinfo == ZoneInfo("America/Sao_Paulo")
    assert (local.hour, local.minute) == (8, 30)


def test_normalize_time_label():
    assert normalize_time_label("8:00") == "08:00"
    assert normalize_time_label("08:00") == "08:00"
    assert normalize_time_label("20:15:00") == "20:15"
    assert normalize_time_label(" 7:05") == "07:05"

    for bad in ("", "8", "8h", "24:00", "12:60", "ab:cd"):
        with pytest.raises(ValueError):
            normalize_time_label(bad)


def test_format_duration():
    """Test duration formatting."""
    assert format_duration(1) == "1 minute"
    assert format_duration(10) == "10 minutes"
    assert format_duration(60) == "1 hour"
    assert format_duration(90) == "1.5 hours"
    assert format_duration(120) == "2 hours"


def test_clock_labels():
    clock = Clock("America/Sao_Paulo")
    # Wednesday 08:00:45 local
    dt = datetime(2026, 3, 4, 11, 0, 45, tzinfo=UTC)

    assert clock.time_label(dt) == "08:00"
    assert clock.weekday(dt) == 3
    assert clock.today(dt) == date(2026, 3, 4)
    assert clock.seconds_until_next_minute(dt) == 15


def test_clock_weekday_starts_on_sunday():
    clock = Clock("America/Sao_Paulo")

    assert clock.weekday(datetime(2026, 3, 1, 15, 0, tzinfo=UTC)) == 0  # Sunday
    assert clock.weekday(datetime(2026, 3, 7, 15, 0, tzinfo=UTC)) == 6  # Saturday


def test_clock_local_day_crosses_utc_midnight():
    """22:30 local on Tuesday is already Wednesday in UTC."""
    clock = Clock("America/Sao_Paulo")
    dt = datetime(2026, 3, 4, 1, 30, tzinfo=UTC)

    assert clock.today(dt) == date(2026, 3, 3)
    assert clock.weekday(dt) == 2


def test_date_bounds():
    clock = Clock("America/Sao_Paulo")

    start, end = clock.date_bounds(date(2026, 3, 4))

    assert start == datetime(2026, 3, 4, 3, 0, tzinfo=UTC)
    assert end == datetime(2026, 3, 5, 3, 0, tzinfo=UTC)
    assert clock.day_bounds(datetime(2026, 3, 4, 11, 0, tzinfo=UTC)) == (start, end)
