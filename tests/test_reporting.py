"""Tests for adherence statistics and reports."""

import csv
import io
from datetime import date, timedelta

import pytest

from conftest import GUARDIAN_PHONE, seed_subject
from cuidador.db.models import Occurrence, OccurrenceStatus
from cuidador.engine.reporting import CSV_COLUMNS, adherence_rate, summarize


def _occurrence(status: OccurrenceStatus, **kwargs) -> Occurrence:
    defaults = dict(medication_id=1, subject_id=1, time_label="08:00", due_at=None)
    defaults.update(kwargs)
    return Occurrence(status=status, **defaults)


def test_adherence_rate():
    assert adherence_rate(0, 0) == 0
    assert adherence_rate(3, 1) == 75
    assert adherence_rate(1, 0) == 100
    assert adherence_rate(0, 4) == 0
    # 2/3 = 66.67 rounds up, 1/8 = 12.5 rounds half up
    assert adherence_rate(2, 1) == 67
    assert adherence_rate(1, 7) == 13


def test_summarize_counts_by_status():
    stats = summarize(
        [
            _occurrence(OccurrenceStatus.TAKEN),
            _occurrence(OccurrenceStatus.TAKEN),
            _occurrence(OccurrenceStatus.TAKEN),
            _occurrence(OccurrenceStatus.NOT_TAKEN),
            _occurrence(OccurrenceStatus.SNOOZED),
            _occurrence(OccurrenceStatus.UNANSWERED),
            _occurrence(OccurrenceStatus.SENT),
            _occurrence(OccurrenceStatus.ERROR),
            _occurrence(OccurrenceStatus.SCHEDULED),
        ]
    )

    assert stats.total == 9
    assert stats.taken == 3
    assert stats.not_taken == 1
    assert stats.snoozed == 1
    assert stats.unanswered == 1
    assert stats.sent == 1
    assert stats.error == 1
    assert stats.scheduled == 1
    # Snoozed and unanswered do not count against adherence
    assert stats.adherence_rate == 75


def test_summarize_empty():
    stats = summarize([])
    assert stats.total == 0
    assert stats.adherence_rate == 0
    assert stats.to_dict()["adherence_rate"] == 0


async def _seed_history(repo, clock):
    """Three taken and one not taken on Wednesday, one taken the day before."""
    _, subject, medications, _ = await seed_subject(repo)
    medication = medications[0]
    base = clock.current

    statuses = [
        (OccurrenceStatus.TAKEN, base - timedelta(hours=3)),
        (OccurrenceStatus.TAKEN, base - timedelta(hours=2)),
        (OccurrenceStatus.TAKEN, base - timedelta(hours=1)),
        (OccurrenceStatus.NOT_TAKEN, base - timedelta(minutes=30)),
        (OccurrenceStatus.TAKEN, base - timedelta(days=1)),
    ]
    await repo.create_occurrences(
        [
            Occurrence(
                medication_id=medication.id,
                subject_id=subject.id,
                time_label="08:00",
                status=status,
                due_at=due_at,
            )
            for status, due_at in statuses
        ]
    )
    return subject


@pytest.mark.asyncio
async def test_daily_report(services, repo, clock):
    subject = await _seed_history(repo, clock)

    report = await services.reports.daily_report(subject.id)

    assert report.day == date(2026, 3, 4)
    assert report.stats.total == 4
    assert report.stats.taken == 3
    assert report.stats.not_taken == 1
    assert report.stats.adherence_rate == 75
    # Newest first
    assert report.occurrences[0].status == OccurrenceStatus.NOT_TAKEN


@pytest.mark.asyncio
async def test_daily_report_for_other_day(services, repo, clock):
    subject = await _seed_history(repo, clock)

    report = await services.reports.daily_report(subject.id, date(2026, 3, 3))

    assert report.stats.total == 1
    assert report.stats.adherence_rate == 100


@pytest.mark.asyncio
async def test_daily_report_without_occurrences(services, repo):
    _, subject, _, _ = await seed_subject(repo)

    report = await services.reports.daily_report(subject.id)

    assert report.stats.total == 0
    assert report.stats.adherence_rate == 0


@pytest.mark.asyncio
async def test_export_csv(services, repo, clock):
    subject = await _seed_history(repo, clock)

    text = await services.reports.export_csv(subject.id, days=30)
    rows = list(csv.reader(io.StringIO(text)))

    assert rows[0] == CSV_COLUMNS
    assert len(rows) == 6
    assert rows[1][1] == "not_taken"
    assert rows[1][3] == "Losartan"
    assert rows[1][7] == "false"
    assert rows[-1][1] == "taken"


@pytest.mark.asyncio
async def test_export_csv_window(services, repo, clock):
    subject = await _seed_history(repo, clock)

    clock.advance(days=40)
    text = await services.reports.export_csv(subject.id, days=30)

    assert text.strip().splitlines() == [",".join(CSV_COLUMNS)]


@pytest.mark.asyncio
async def test_send_daily_reports(services, repo, channel, clock):
    await _seed_history(repo, clock)
    await seed_subject(repo, name="Jose", address="5511999990009")

    sent = await services.reports.send_daily_reports(date(2026, 3, 4))

    # Jose has no occurrences that day
    assert sent == 1
    reports = channel.to(GUARDIAN_PHONE)
    assert len(reports) == 1
    assert "Daily report - Maria" in reports[0]
    assert "Adherence rate: 75%" in reports[0]


@pytest.mark.asyncio
async def test_send_daily_reports_defaults_to_yesterday(services, repo, channel, clock):
    await _seed_history(repo, clock)

    sent = await services.reports.send_daily_reports()

    assert sent == 1
    assert "Adherence rate: 100%" in channel.to(GUARDIAN_PHONE)[0]
