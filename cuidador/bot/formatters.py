"""Message text formatters."""

from typing import TYPE_CHECKING

from cuidador.db.models import OccurrenceStatus
from cuidador.utils.time_utils import format_duration

if TYPE_CHECKING:
    from cuidador.engine.reporting import ReportStats


def format_welcome_message(subject_name: str, opt_out_keyword: str) -> str:
    """Welcome message sent once a subject is registered."""
    return f"""
🎉 Hello {subject_name}! Welcome to Cuidador 👵👴

From now on you will receive automatic reminders for your medications. 💊

When a reminder arrives, reply:
1️⃣ if you took it
2️⃣ if you did not take it
3️⃣ to be reminded again later

To stop the reminders, send "{opt_out_keyword}".

Let's take care of your health together! 💙
""".strip()


def format_reminder_message(subject_name: str, medication_name: str, dosage: str) -> str:
    """Format a medication reminder."""
    dosage_text = f" ({dosage})" if dosage else ""
    return (
        f"⏰ Hi {subject_name} 👋 it's time for {medication_name}{dosage_text}\n\n"
        "Reply:\n"
        "1️⃣ ✅ Taken\n"
        "2️⃣ ❌ Not taken\n"
        "3️⃣ ⏳ Remind me later"
    )


def format_confirmation_message(
    subject_name: str,
    medication_name: str,
    status: OccurrenceStatus,
    snooze_minutes: int,
) -> str:
    """Format the reply to a medication response, by resolved status."""
    match status:
        case OccurrenceStatus.TAKEN:
            return f"Perfect, {subject_name}! ✔️ We recorded that you took {medication_name}. Thank you! 💙"
        case OccurrenceStatus.NOT_TAKEN:
            return (
                f"Understood, {subject_name}. We recorded that {medication_name} was not taken. "
                "If you need help, talk to your caregiver. 🤗"
            )
        case OccurrenceStatus.SNOOZED:
            return (
                f"Ok, {subject_name}! We'll remind you again in {format_duration(snooze_minutes)}. "
                "Reply 1 when you take it 😊"
            )
        case (
            OccurrenceStatus.SCHEDULED
            | OccurrenceStatus.SENT
            | OccurrenceStatus.UNANSWERED
            | OccurrenceStatus.ERROR
        ):
            raise ValueError(f"No confirmation for status {status.value}")
    raise ValueError(f"Unhandled status: {status!r}")


def format_unrecognized_message(body: str, opt_out_keyword: str) -> str:
    """Help message for a reply we could not understand."""
    return (
        f'Sorry, I did not understand "{body}". 🤔\n\n'
        "For medication reminders, reply:\n"
        "1️⃣ 2️⃣ or 3️⃣\n\n"
        f'To stop the reminders, send "{opt_out_keyword}".'
    )


def format_no_pending_message(subject_name: str) -> str:
    """Informational reply when there is no recent reminder to answer."""
    return (
        f"Hi {subject_name}! I couldn't find any recent pending reminder.\n\n"
        "If you just took a medication, that's fine! 😊"
    )


def format_emergency_alert(subject_name: str, medication_name: str, time_label: str) -> str:
    """Alert for guardians and emergency contacts about an unanswered reminder."""
    return (
        "⚠️ MEDICATION ALERT\n\n"
        f"{subject_name} did not confirm {medication_name} scheduled for {time_label}.\n\n"
        "Please check that everything is ok. 🚨"
    )


def format_opt_out_confirmation(subject_name: str) -> str:
    """Confirmation sent to a subject who opted out."""
    return (
        f"{subject_name}, your reminders have been stopped as requested. ✋\n\n"
        "To turn them back on, talk to your caregiver.\n\n"
        "Take care! 💙"
    )


def format_guardian_opt_out_notice(subject_name: str) -> str:
    """Notice for the guardian of a subject who opted out."""
    return (
        "ℹ️ Important notice\n\n"
        f"{subject_name} asked to stop the medication reminders.\n\n"
        "To turn them back on, use the admin panel or contact us."
    )


def format_daily_report(subject_name: str, stats: "ReportStats") -> str:
    """Daily summary for the guardian."""
    return "\n".join(
        [
            f"📊 Daily report - {subject_name}",
            "",
            f"✅ Taken: {stats.taken}",
            f"❌ Not taken: {stats.not_taken}",
            f"⏳ Snoozed: {stats.snoozed}",
            f"🔕 Unanswered: {stats.unanswered}",
            f"📋 Total reminders: {stats.total}",
            "",
            f"Adherence rate: {stats.adherence_rate}%",
        ]
    )


def format_help_message(opt_out_keyword: str) -> str:
    """Help text for the Telegram bot."""
    return f"""
Cuidador 💊

When a medication reminder arrives, reply with:
1 - I took it
2 - I did not take it
3 - Remind me again later

Send "{opt_out_keyword}" to stop all reminders.

/start - Show your reminder address
/help - This message
""".strip()
