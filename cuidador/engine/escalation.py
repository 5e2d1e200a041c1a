"""Escalation sweeper - alerts caregivers about unanswered reminders."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta

from cuidador.bot.formatters import format_emergency_alert
from cuidador.channels.base import NotificationChannel, send_all
from cuidador.config import Config
from cuidador.db.models import Occurrence, OccurrenceStatus
from cuidador.db.repository import Repository
from cuidador.utils.time_utils import Clock

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Summary of one sweep."""

    found: int = 0
    escalated: int = 0
    skipped: int = 0
    alerts_sent: int = 0
    alerts_failed: int = 0


class EscalationSweeper:
    """Marks stale ``sent`` occurrences as ``unanswered`` and raises the alarm.

    An occurrence is stale once its due time is ``unanswered_threshold_minutes``
    old. The ``sent -> unanswered`` update is conditional, so an occurrence is
    escalated (and its contacts notified) at most once.
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

    @property
    def threshold(self) -> timedelta:
        return timedelta(minutes=self.config.unanswered_threshold_minutes)

    async def sweep(self) -> SweepResult:
        now = self.clock.now()
        result = SweepResult()

        stale = await self.repo.get_unanswered_occurrences(now - self.threshold)
        result.found = len(stale)

        if not stale:
            logger.debug("No emergency alerts needed")
            return result

        logger.info(f"Sweep: {len(stale)} unanswered reminders")

        for occurrence in stale:
            try:
                await self._escalate(occurrence, now, result)
            except Exception as e:
                logger.error(f"Error escalating occurrence {occurrence.id}: {e}")
                result.skipped += 1
                continue

        return result

    async def _escalate(self, occurrence: Occurrence, now, result: SweepResult) -> None:
        subject, medication = await asyncio.gather(
            self.repo.get_subject(occurrence.subject_id),
            self.repo.get_medication(occurrence.medication_id),
        )
        if not subject or not medication:
            logger.warning(f"Subject or medication missing for occurrence {occurrence.id}, skipping")
            result.skipped += 1
            return

        if not await self.repo.transition_occurrence(
            occurrence.id,  # type: ignore
            OccurrenceStatus.SENT,
            OccurrenceStatus.UNANSWERED,
            escalated_at=now,
        ):
            logger.info(f"Occurrence {occurrence.id} answered before escalation")
            result.skipped += 1
            return
        result.escalated += 1

        contacts, guardian = await asyncio.gather(
            self.repo.get_contacts(subject.id),  # type: ignore
            self.repo.get_guardian(subject.guardian_id),
        )

        alert = format_emergency_alert(subject.name, medication.name, occurrence.time_label)
        recipients = [contact.address for contact in contacts]
        if guardian:
            recipients.append(guardian.address)
        else:
            logger.warning(f"Guardian {subject.guardian_id} not found for subject {subject.id}")

        send_results = await send_all(self.channel, [(address, alert) for address in recipients])
        sent = sum(1 for r in send_results if r.success)
        result.alerts_sent += sent
        result.alerts_failed += len(send_results) - sent

        logger.info(
            f"Emergency alert for {subject.name} - {medication.name}: "
            f"{sent}/{len(send_results)} delivered"
        )
