"""Tests for message formatting."""

import pytest

from cuidador.bot.formatters import (
    format_confirmation_message,
    format_daily_report,
    format_emergency_alert,
    format_reminder_message,
)
from cuidador.db.models import OccurrenceStatus
from cuidador.engine.reporting import ReportStats
from cuidador.utils.error_handler import describe_error


def test_reminder_message():
    message = format_reminder_message("Maria", "Losartan", "50mg")
    assert "Maria" in message
    assert "Losartan (50mg)" in message
    assert "1️⃣" in message and "3️⃣" in message

    assert "Losartan\n" in format_reminder_message("Maria", "Losartan", "")


def test_confirmation_messages():
    assert "took Losartan" in format_confirmation_message(
        "Maria", "Losartan", OccurrenceStatus.TAKEN, 10
    )
    assert "not taken" in format_confirmation_message(
        "Maria", "Losartan", OccurrenceStatus.NOT_TAKEN, 10
    )
    assert "1 hour" in format_confirmation_message(
        "Maria", "Losartan", OccurrenceStatus.SNOOZED, 60
    )


@pytest.mark.parametrize(
    "status",
    [
        OccurrenceStatus.SCHEDULED,
        OccurrenceStatus.SENT,
        OccurrenceStatus.UNANSWERED,
        OccurrenceStatus.ERROR,
    ],
)
def test_confirmation_rejects_non_response_status(status):
    with pytest.raises(ValueError):
        format_confirmation_message("Maria", "Losartan", status, 10)


def test_emergency_alert():
    alert = format_emergency_alert("Maria", "Losartan", "08:00")
    assert alert.startswith("⚠️ MEDICATION ALERT")
    assert "Maria did not confirm Losartan scheduled for 08:00" in alert


def test_daily_report():
    report = format_daily_report("Maria", ReportStats(total=5, taken=3, not_taken=1, unanswered=1))
    assert "Daily report - Maria" in report
    assert "✅ Taken: 3" in report
    assert "Adherence rate: 75%" in report


def test_describe_error():
    assert "/start" in describe_error(Exception("Forbidden: bot was blocked by the user"))
    assert "timed out" in describe_error(Exception("Timed out"))
    assert "Something went wrong" in describe_error(RuntimeError("boom"))
    assert "Something went wrong" in describe_error(None)
