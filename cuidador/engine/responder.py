"""Response state machine: turns an inbound reply into an occurrence transition."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from cuidador.bot.formatters import (
    format_confirmation_message,
    format_no_pending_message,
    format_unrecognized_message,
)
from cuidador.channels.base import NotificationChannel, normalize_address
from cuidador.config import Config
from cuidador.db.models import Occurrence, OccurrenceStatus
from cuidador.db.repository import Repository
from cuidador.engine.opt_out import OptOutHandler
from cuidador.utils.constants import RESPONSE_TOKENS
from cuidador.utils.time_utils import Clock

logger = logging.getLogger(__name__)


class ReplyAction(str, Enum):
    OPT_OUT = "opt-out"
    MEDICATION_RESPONSE = "medication-response"
    UNRECOGNIZED = "unknown-response"


@dataclass
class ReplyOutcome:
    """What the state machine did with one reply."""

    action: ReplyAction
    response: str | None = None
    subject_id: int | None = None
    occurrence_id: int | None = None
    status: OccurrenceStatus | None = None
    followup_id: int | None = None
    detail: str | None = None  # why nothing changed, when nothing changed


def classify_reply(body: str, opt_out_keywords: tuple[str, ...]) -> tuple[ReplyAction, str | None]:
    """Decide what kind of reply ``body`` is.

    Opt-out keywords win over everything else (case-insensitive, anywhere in
    the text). Otherwise only an exact response token counts.

    Returns:
        Tuple of (action, response token or None)
    """
    upper = body.upper()
    if any(keyword.upper() in upper for keyword in opt_out_keywords):
        return ReplyAction.OPT_OUT, None

    token = body.strip()
    if token in RESPONSE_TOKENS:
        return ReplyAction.MEDICATION_RESPONSE, token

    return ReplyAction.UNRECOGNIZED, None


def status_for_token(token: str) -> OccurrenceStatus:
    """Map a response token to the terminal status it resolves to."""
    match token:
        case "1":
            return OccurrenceStatus.TAKEN
        case "2":
            return OccurrenceStatus.NOT_TAKEN
        case "3":
            return OccurrenceStatus.SNOOZED
    raise ValueError(f"Unknown response token: {token!r}")


class ResponseHandler:
    """Resolves a reply to the subject's most recent outstanding occurrence.

    The linkage is loose: the latest ``sent`` occurrence due
    within ``reply_lookback_minutes`` wins (ties go to the newest row). Two
    reminders sent inside the window for the same subject can make a reply
    land on the other one.
    """

    def __init__(
        self,
        repo: Repository,
        channel: NotificationChannel,
        config: Config,
        clock: Clock,
        opt_out: OptOutHandler,
    ):
        self.repo = repo
        self.channel = channel
        self.config = config
        self.clock = clock
        self.opt_out = opt_out

    @property
    def lookback(self) -> timedelta:
        return timedelta(minutes=self.config.reply_lookback_minutes)

    @property
    def snooze_delay(self) -> timedelta:
        return timedelta(minutes=self.config.snooze_delay_minutes)

    async def handle(self, sender: str, body: str) -> ReplyOutcome:
        """Process one inbound reply.

        Raises:
            ValueError: if ``sender`` is not a usable address
        """
        address = normalize_address(sender, self.config.default_country_code)
        action, token = classify_reply(body, self.config.opt_out_keywords)
        logger.info(f"Reply from {address}: {action.value}")

        match action:
            case ReplyAction.OPT_OUT:
                result = await self.opt_out.handle(address)
                return ReplyOutcome(
                    action=action,
                    subject_id=result.subject_id,
                    detail=None if result.subject_id else "subject_not_found",
                )
            case ReplyAction.MEDICATION_RESPONSE:
                return await self._handle_response(address, token)  # type: ignore
            case ReplyAction.UNRECOGNIZED:
                await self.channel.send(
                    address,
                    format_unrecognized_message(body.strip(), self.config.opt_out_keywords[0]),
                )
                return ReplyOutcome(action=action)
        raise ValueError(f"Unhandled reply action: {action!r}")

    async def _handle_response(self, address: str, token: str) -> ReplyOutcome:
        outcome = ReplyOutcome(action=ReplyAction.MEDICATION_RESPONSE, response=token)

        subject = await self.repo.get_subject_by_address(address)
        if not subject:
            logger.warning(f"No subject found for address {address}")
            outcome.detail = "subject_not_found"
            return outcome
        outcome.subject_id = subject.id

        now = self.clock.now()
        occurrence = await self.repo.find_pending_occurrence(
            subject.id, now - self.lookback  # type: ignore
        )
        if not occurrence:
            logger.info(f"No recent pending reminder for subject {subject.id}")
            await self.channel.send(subject.address, format_no_pending_message(subject.name))
            outcome.detail = "no_pending_occurrence"
            return outcome
        outcome.occurrence_id = occurrence.id

        medication = await self.repo.get_medication(occurrence.medication_id)
        if not medication:
            logger.warning(f"Medication {occurrence.medication_id} not found for occurrence {occurrence.id}")
            outcome.detail = "medication_not_found"
            return outcome

        new_status = status_for_token(token)
        applied = await self.repo.transition_occurrence(
            occurrence.id,  # type: ignore
            OccurrenceStatus.SENT,
            new_status,
            response=token,
            responded_at=now,
        )
        if not applied:
            # The sweeper (or a concurrent reply) resolved it first
            logger.info(f"Occurrence {occurrence.id} already resolved, ignoring reply {token}")
            outcome.detail = "already_resolved"
            return outcome

        outcome.status = new_status
        logger.info(f"Occurrence {occurrence.id} -> {new_status.value}")

        if new_status is OccurrenceStatus.SNOOZED:
            followup = await self._schedule_followup(occurrence, now)
            outcome.followup_id = followup.id

        await self.channel.send(
            subject.address,
            format_confirmation_message(
                subject.name,
                medication.name,
                new_status,
                self.config.snooze_delay_minutes,
            ),
        )
        return outcome

    async def _schedule_followup(self, origin: Occurrence, now) -> Occurrence:
        """Spawn the ``scheduled`` occurrence that re-asks after a snooze."""
        followup = await self.repo.create_occurrence(
            Occurrence(
                medication_id=origin.medication_id,
                subject_id=origin.subject_id,
                time_label=origin.time_label,
                status=OccurrenceStatus.SCHEDULED,
                due_at=now + self.snooze_delay,
                attempts=1,
                rescheduled=True,
                origin_id=origin.id,
                created_at=now,
            )
        )
        logger.info(
            f"Rescheduled occurrence {origin.id} as {followup.id} "
            f"for {self.config.snooze_delay_minutes} minutes later"
        )
        return followup
