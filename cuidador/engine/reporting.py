"""Adherence statistics, daily reports and CSV export."""

import csv
import io
import logging
import math
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Iterable

from cuidador.bot.formatters import format_daily_report
from cuidador.channels.base import NotificationChannel
from cuidador.db.models import Occurrence, OccurrenceStatus
from cuidador.db.repository import Repository
from cuidador.utils.constants import DEFAULT_EXPORT_DAYS, MAX_CSV_ROWS
from cuidador.utils.time_utils import Clock

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "due_at",
    "status",
    "medication_id",
    "medication_name",
    "response",
    "attempts",
    "time_label",
    "rescheduled",
]


@dataclass
class ReportStats:
    """Occurrence counts by status."""

    total: int = 0
    scheduled: int = 0
    sent: int = 0
    taken: int = 0
    not_taken: int = 0
    snoozed: int = 0
    unanswered: int = 0
    error: int = 0

    @property
    def adherence_rate(self) -> int:
        """Percentage of answered reminders that were taken (0 with no answers)."""
        return adherence_rate(self.taken, self.not_taken)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["adherence_rate"] = self.adherence_rate
        return data


def adherence_rate(taken: int, not_taken: int) -> int:
    """Rounded ``taken / (taken + not_taken)`` as a percentage, 0 when nothing was answered."""
    answered = taken + not_taken
    if answered == 0:
        return 0
    # Round half up
    return math.floor(taken / answered * 100 + 0.5)


def summarize(occurrences: Iterable[Occurrence]) -> ReportStats:
    """Partition occurrences by status and count them."""
    stats = ReportStats()
    for occurrence in occurrences:
        stats.total += 1
        match occurrence.status:
            case OccurrenceStatus.SCHEDULED:
                stats.scheduled += 1
            case OccurrenceStatus.SENT:
                stats.sent += 1
            case OccurrenceStatus.TAKEN:
                stats.taken += 1
            case OccurrenceStatus.NOT_TAKEN:
                stats.not_taken += 1
            case OccurrenceStatus.SNOOZED:
                stats.snoozed += 1
            case OccurrenceStatus.UNANSWERED:
                stats.unanswered += 1
            case OccurrenceStatus.ERROR:
                stats.error += 1
    return stats


@dataclass
class DailyReport:
    subject_id: int
    day: date
    stats: ReportStats
    occurrences: list[Occurrence]


class ReportService:
    """Read-only aggregation over a subject's occurrences."""

    def __init__(self, repo: Repository, channel: NotificationChannel, clock: Clock):
        self.repo = repo
        self.channel = channel
        self.clock = clock

    async def daily_report(self, subject_id: int, day: date | None = None) -> DailyReport:
        """Occurrences due on a local calendar day (default today) and their stats."""
        if day is None:
            day = self.clock.today()
        start, end = self.clock.date_bounds(day)
        occurrences = await self.repo.get_occurrences_for_subject(subject_id, start, end)
        return DailyReport(
            subject_id=subject_id,
            day=day,
            stats=summarize(occurrences),
            occurrences=occurrences,
        )

    async def export_csv(self, subject_id: int, days: int = DEFAULT_EXPORT_DAYS) -> str:
        """CSV of the subject's occurrences over the last ``days`` days, newest first."""
        end = self.clock.now()
        start = end - timedelta(days=days)
        occurrences = await self.repo.get_occurrences_for_subject(
            subject_id, start, end + timedelta(microseconds=1), limit=MAX_CSV_ROWS
        )

        medications = await self.repo.get_medications(
            sorted({o.medication_id for o in occurrences})
        )

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for occurrence in occurrences:
            medication = medications.get(occurrence.medication_id)
            writer.writerow(
                [
                    occurrence.due_at.isoformat(),
                    occurrence.status.value,
                    occurrence.medication_id,
                    medication.name if medication else "Unknown",
                    occurrence.response or "",
                    occurrence.attempts,
                    occurrence.time_label,
                    "true" if occurrence.rescheduled else "false",
                ]
            )
        return buffer.getvalue()

    async def send_daily_reports(self, day: date | None = None) -> int:
        """Send each guardian a summary of the day (default yesterday).

        Returns:
            Number of reports sent
        """
        if day is None:
            day = self.clock.today() - timedelta(days=1)

        sent = 0
        for subject in await self.repo.get_active_subjects():
            try:
                report = await self.daily_report(subject.id, day)  # type: ignore
                if report.stats.total == 0:
                    continue

                guardian = await self.repo.get_guardian(subject.guardian_id)
                if not guardian:
                    logger.warning(f"Guardian {subject.guardian_id} not found for subject {subject.id}")
                    continue

                result = await self.channel.send(
                    guardian.address, format_daily_report(subject.name, report.stats)
                )
                if result.success:
                    sent += 1
                    logger.info(f"Daily report sent for {subject.name} to {guardian.name}")

            except Exception as e:
                logger.error(f"Error sending daily report for subject {subject.id}: {e}")
                continue

        return sent
