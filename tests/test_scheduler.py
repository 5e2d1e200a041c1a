"""Tests for the reminder scheduler."""

import pytest

from conftest import SATURDAY_8AM, SUBJECT_PHONE, FakeChannel, seed_subject
from cuidador.channels.base import SendResult
from cuidador.db.models import OccurrenceStatus
from cuidador.services import build_services

OTHER_PHONE = "5511999990009"


@pytest.mark.asyncio
async def test_tick_creates_one_occurrence_per_due_medication(services, repo, channel):
    """A due medication yields one sent occurrence and one message."""
    _, subject, medications, _ = await seed_subject(repo)

    result = await services.scheduler.tick()

    assert result.time_label == "08:00"
    assert result.weekday == 3
    assert result.created == 1
    assert result.sent == 1
    assert result.failed == 0

    occurrence = await repo.get_occurrence(result.occurrence_ids[0])
    assert occurrence.status == OccurrenceStatus.SENT
    assert occurrence.medication_id == medications[0].id
    assert occurrence.subject_id == subject.id
    assert occurrence.time_label == "08:00"
    assert occurrence.send_success is True
    assert occurrence.provider_id == "SM1"

    messages = channel.to(SUBJECT_PHONE)
    assert len(messages) == 1
    assert "Losartan (50mg)" in messages[0]


@pytest.mark.asyncio
async def test_second_tick_in_same_minute_creates_nothing(services, repo, channel, clock):
    await seed_subject(repo)

    first = await services.scheduler.tick()
    clock.advance(seconds=30)
    second = await services.scheduler.tick()

    assert first.created == 1
    assert second.due == 1
    assert second.created == 0
    assert second.sent == 0
    assert len(channel.sent) == 1


@pytest.mark.asyncio
async def test_weekday_schedule(services, repo, clock):
    """Weekdays Monday-Friday at 08:00: Wednesday fires, Saturday does not."""
    await seed_subject(repo, medications=[("Metformin", ["08:00"], [1, 2, 3, 4, 5])])

    wednesday = await services.scheduler.tick()
    assert wednesday.created == 1

    clock.current = SATURDAY_8AM
    saturday = await services.scheduler.tick()
    assert saturday.weekday == 6
    assert saturday.due == 0
    assert saturday.created == 0


@pytest.mark.asyncio
async def test_not_due_at_other_minutes(services, repo, clock):
    await seed_subject(repo)
    clock.advance(minutes=1)

    result = await services.scheduler.tick()

    assert result.time_label == "08:01"
    assert result.created == 0


@pytest.mark.asyncio
async def test_inactive_subject_is_skipped(services, repo, channel):
    _, subject, _, _ = await seed_subject(repo)
    await repo.db.execute("UPDATE subjects SET active = 0 WHERE id = ?", (subject.id,))
    await repo.db.commit()

    result = await services.scheduler.tick()

    assert result.due == 1
    assert result.created == 0
    assert channel.sent == []


@pytest.mark.asyncio
async def test_failed_send_marks_occurrence_as_error(services, repo, channel):
    await seed_subject(repo)
    channel.failing.add(SUBJECT_PHONE)

    result = await services.scheduler.tick()

    assert result.created == 1
    assert result.sent == 0
    assert result.failed == 1

    occurrence = await repo.get_occurrence(result.occurrence_ids[0])
    assert occurrence.status == OccurrenceStatus.ERROR
    assert occurrence.send_success is False
    assert occurrence.send_error == "delivery failed"


@pytest.mark.asyncio
async def test_several_medications_sent_concurrently(services, repo, channel):
    await seed_subject(
        repo,
        medications=[
            ("Losartan", ["08:00"], [3]),
            ("Aspirin", ["08:00", "20:00"], [0, 3]),
            ("Vitamin D", ["09:00"], [3]),
        ],
    )

    result = await services.scheduler.tick()

    assert result.due == 2
    assert result.created == 2
    assert result.sent == 2
    assert len(channel.to(SUBJECT_PHONE)) == 2


@pytest.mark.asyncio
async def test_snooze_followup_is_promoted_when_due(services, repo, channel, clock):
    await seed_subject(repo)
    tick = await services.scheduler.tick()
    origin_id = tick.occurrence_ids[0]

    clock.advance(minutes=2)
    outcome = await services.responder.handle(f"whatsapp:+{SUBJECT_PHONE}", "3")

    # Not due yet
    clock.advance(minutes=5)
    early = await services.scheduler.tick()
    assert early.followups == 0
    assert (await repo.get_occurrence(outcome.followup_id)).status == OccurrenceStatus.SCHEDULED

    clock.advance(minutes=5)
    due = await services.scheduler.tick()
    assert due.created == 0
    assert due.followups == 1
    assert due.occurrence_ids == [outcome.followup_id]

    followup = await repo.get_occurrence(outcome.followup_id)
    assert followup.status == OccurrenceStatus.SENT
    assert followup.origin_id == origin_id
    assert followup.send_success is True

    # Promoted only once
    again = await services.scheduler.tick()
    assert again.followups == 0


@pytest.mark.asyncio
async def test_send_manual(services, repo, channel):
    _, subject, medications, _ = await seed_subject(repo)

    result = await services.scheduler.send_manual(subject.id, medications[0].id)

    assert result.found is True
    assert result.sent is True
    occurrence = await repo.get_occurrence(result.occurrence_id)
    assert occurrence.manual is True
    assert occurrence.status == OccurrenceStatus.SENT
    assert len(channel.to(SUBJECT_PHONE)) == 1


@pytest.mark.asyncio
async def test_send_manual_unknown_records(services):
    result = await services.scheduler.send_manual(999, 999)
    assert result.found is False
    assert result.occurrence_id is None


@pytest.mark.asyncio
async def test_followup_read_failure_still_dispatches_batch(services, repo, channel, monkeypatch):
    await seed_subject(repo)

    async def broken_followups(now):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(repo, "get_due_followups", broken_followups)

    result = await services.scheduler.tick()

    assert result.created == 1
    assert result.followups == 0
    assert result.sent == 1
    assert len(channel.to(SUBJECT_PHONE)) == 1
    occurrence = await repo.get_occurrence(result.occurrence_ids[0])
    assert occurrence.send_success is True


@pytest.mark.asyncio
async def test_catalog_read_failure_aborts_tick(services, repo, channel, monkeypatch):
    await seed_subject(repo)

    async def broken_catalog():
        raise RuntimeError("no such table: medications")

    monkeypatch.setattr(repo, "get_active_medications", broken_catalog)

    with pytest.raises(RuntimeError):
        await services.scheduler.tick()
    assert channel.sent == []


@pytest.mark.asyncio
async def test_failing_medication_check_does_not_stop_others(services, repo, channel, monkeypatch):
    _, first, _, _ = await seed_subject(repo)
    _, second, _, _ = await seed_subject(repo, name="Jose", address=OTHER_PHONE)
    get_subject = repo.get_subject

    async def flaky_get_subject(subject_id):
        if subject_id == first.id:
            raise RuntimeError("disk I/O error")
        return await get_subject(subject_id)

    monkeypatch.setattr(repo, "get_subject", flaky_get_subject)

    result = await services.scheduler.tick()

    assert result.due == 2
    assert result.created == 1
    assert result.sent == 1
    occurrence = await repo.get_occurrence(result.occurrence_ids[0])
    assert occurrence.subject_id == second.id
    assert channel.to(SUBJECT_PHONE) == []
    assert len(channel.to(OTHER_PHONE)) == 1


class RaisingChannel(FakeChannel):
    async def send(self, address: str, body: str) -> SendResult:
        if address == SUBJECT_PHONE:
            raise ConnectionError("connection reset by peer")
        return await super().send(address, body)


@pytest.mark.asyncio
async def test_raising_send_counts_as_failed(config, repo, clock):
    channel = RaisingChannel()
    services = build_services(config, repo, channel, clock)
    _, first, _, _ = await seed_subject(repo)
    _, second, _, _ = await seed_subject(repo, name="Jose", address=OTHER_PHONE)

    result = await services.scheduler.tick()

    assert result.created == 2
    assert result.sent == 1
    assert result.failed == 1

    occurrences = [await repo.get_occurrence(i) for i in result.occurrence_ids]
    by_subject = {o.subject_id: o for o in occurrences}
    assert by_subject[first.id].status == OccurrenceStatus.ERROR
    assert by_subject[first.id].send_success is False
    assert "connection reset" in by_subject[first.id].send_error
    assert by_subject[second.id].status == OccurrenceStatus.SENT
    assert by_subject[second.id].send_success is True
    assert len(channel.to(OTHER_PHONE)) == 1
