"""Reminder scheduler - the tick that creates and dispatches occurrences."""

import asyncio
import logging
from dataclasses import dataclass, field

from cuidador.bot.formatters import format_reminder_message
from cuidador.channels.base import NotificationChannel, SendResult
from cuidador.config import Config
from cuidador.db.models import Medication, Occurrence, OccurrenceStatus, Subject
from cuidador.db.repository import Repository
from cuidador.utils.time_utils import Clock

logger = logging.getLogger(__name__)


@dataclass
class Dispatch:
    """An occurrence ready to be sent, with the records needed to word it."""

    occurrence: Occurrence
    subject: Subject
    medication: Medication


@dataclass
class TickResult:
    """Summary of one scheduler tick."""

    time_label: str
    weekday: int
    due: int = 0
    created: int = 0
    followups: int = 0
    sent: int = 0
    failed: int = 0
    occurrence_ids: list[int] = field(default_factory=list)


@dataclass
class ManualResult:
    """Outcome of a manually triggered reminder."""

    found: bool
    occurrence_id: int | None = None
    sent: bool = False
    provider_id: str | None = None
    error: str | None = None


class Scheduler:
    """Finds medications due this minute and sends their reminders.

    Each tick:
    1. Reads the active medication catalog (a failure aborts the tick)
    2. Queues one ``sent`` occurrence per due slot not yet served today
    3. Commits all queued occurrences in one batch
    4. Promotes snooze follow-ups whose time has come
    5. Sends every reminder concurrently and records each outcome
    """

    def __init__(
        self,
        repo: Repository,
        channel: NotificationChannel,
        config: Config,
        clock: Clock,
    ):
        self.repo = repo
        self.channel = channel
        self.config = config
        self.clock = clock

    async def tick(self) -> TickResult:
        now = self.clock.now()
        time_label = self.clock.time_label(now)
        weekday = self.clock.weekday(now)
        day_start, day_end = self.clock.day_bounds(now)
        result = TickResult(time_label=time_label, weekday=weekday)

        logger.debug(f"Scheduler tick: local time {time_label}, weekday {weekday}")

        medications = await self.repo.get_active_medications()
        if not medications:
            logger.debug("No active medications")

        pending: list[Dispatch] = []
        for medication in medications:
            if not medication.is_due(weekday, time_label):
                continue

            result.due += 1
            try:
                subject = await self.repo.get_subject(medication.subject_id)
                if not subject:
                    logger.warning(
                        f"Subject {medication.subject_id} not found for medication {medication.id}"
                    )
                    continue

                if not subject.active:
                    logger.info(f"Subject {subject.id} inactive, skipping {medication.name}")
                    continue

                if await self.repo.occurrence_exists(
                    medication.id,  # type: ignore
                    subject.id,  # type: ignore
                    time_label,
                    day_start,
                    day_end,
                ):
                    logger.info(f"Reminder already sent for {medication.name} at {time_label}")
                    continue

                occurrence = Occurrence(
                    medication_id=medication.id,  # type: ignore
                    subject_id=subject.id,  # type: ignore
                    time_label=time_label,
                    status=OccurrenceStatus.SENT,
                    due_at=now,
                    attempts=1,
                    created_at=now,
                )
                pending.append(Dispatch(occurrence, subject, medication))

            except Exception as e:
                logger.error(f"Error checking medication {medication.id}: {e}")
                continue

        # All records for this tick are committed before any send goes out
        if pending:
            created = await self.repo.create_occurrences([d.occurrence for d in pending])
            for dispatch, occurrence in zip(pending, created):
                dispatch.occurrence = occurrence
            result.created = len(created)
            logger.info(f"Created {len(created)} reminder occurrences for {time_label}")

        # The committed batch is dispatched even if follow-ups cannot be read
        try:
            followups = await self._promote_followups(now)
        except Exception as e:
            logger.error(f"Error reading snooze follow-ups: {e}")
            followups = []
        result.followups = len(followups)

        batch = pending + followups
        outcomes = await asyncio.gather(
            *(self._dispatch(d) for d in batch), return_exceptions=True
        )
        for dispatch, outcome in zip(batch, outcomes):
            result.occurrence_ids.append(dispatch.occurrence.id)  # type: ignore
            if outcome is True:
                result.sent += 1
            else:
                result.failed += 1
                if isinstance(outcome, BaseException):
                    logger.error(
                        f"Error dispatching occurrence {dispatch.occurrence.id}: {outcome}"
                    )

        if batch:
            logger.info(
                f"Scheduler tick {time_label} complete: "
                f"{result.sent} sent, {result.failed} failed"
            )
        return result

    async def send_manual(self, subject_id: int, medication_id: int) -> ManualResult:
        """Create and dispatch a reminder right now, outside the schedule."""
        subject, medication = await asyncio.gather(
            self.repo.get_subject(subject_id),
            self.repo.get_medication(medication_id),
        )
        if not subject or not medication:
            logger.warning(f"Manual reminder: subject {subject_id} or medication {medication_id} not found")
            return ManualResult(found=False)

        now = self.clock.now()
        occurrence = await self.repo.create_occurrence(
            Occurrence(
                medication_id=medication.id,  # type: ignore
                subject_id=subject.id,  # type: ignore
                time_label=self.clock.time_label(now),
                status=OccurrenceStatus.SENT,
                due_at=now,
                manual=True,
                created_at=now,
            )
        )
        logger.info(f"Manual reminder {occurrence.id} for {subject.name} - {medication.name}")

        message = format_reminder_message(subject.name, medication.name, medication.dosage)
        send_result = await self.channel.send(subject.address, message)
        await self.repo.record_send_result(
            occurrence.id,  # type: ignore
            send_result.success,
            provider_id=send_result.provider_id,
            error=send_result.error,
        )
        return ManualResult(
            found=True,
            occurrence_id=occurrence.id,
            sent=send_result.success,
            provider_id=send_result.provider_id,
            error=send_result.error,
        )

    async def _promote_followups(self, now) -> list[Dispatch]:
        """Move due snooze follow-ups from ``scheduled`` to ``sent``."""
        promoted: list[Dispatch] = []

        for occurrence in await self.repo.get_due_followups(now):
            try:
                subject, medication = await asyncio.gather(
                    self.repo.get_subject(occurrence.subject_id),
                    self.repo.get_medication(occurrence.medication_id),
                )
                if not subject or not medication:
                    logger.warning(f"Records missing for follow-up {occurrence.id}, skipping")
                    continue

                # Another tick may have promoted it already
                if not await self.repo.transition_occurrence(
                    occurrence.id,  # type: ignore
                    OccurrenceStatus.SCHEDULED,
                    OccurrenceStatus.SENT,
                ):
                    continue

                occurrence.status = OccurrenceStatus.SENT
                promoted.append(Dispatch(occurrence, subject, medication))
                logger.info(f"Follow-up {occurrence.id} due for {medication.name}")

            except Exception as e:
                logger.error(f"Error promoting follow-up {occurrence.id}: {e}")
                continue

        return promoted

    async def _dispatch(self, dispatch: Dispatch) -> bool:
        """Send one reminder and record the result on its occurrence."""
        subject, medication = dispatch.subject, dispatch.medication
        message = format_reminder_message(subject.name, medication.name, medication.dosage)

        try:
            send_result = await self.channel.send(subject.address, message)
        except Exception as e:
            logger.error(f"Channel raised sending occurrence {dispatch.occurrence.id}: {e}")
            send_result = SendResult(success=False, error=str(e))

        await self.repo.record_send_result(
            dispatch.occurrence.id,  # type: ignore
            send_result.success,
            provider_id=send_result.provider_id,
            error=send_result.error,
        )

        logger.info(
            f"Reminder to {subject.name} ({medication.name}): "
            f"{'sent' if send_result.success else 'failed: ' + str(send_result.error)}"
        )
        return send_result.success
