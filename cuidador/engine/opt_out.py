"""Opt-out handling: a subject asks to stop all reminders."""

import logging
from dataclasses import dataclass

from cuidador.bot.formatters import (
    format_guardian_opt_out_notice,
    format_opt_out_confirmation,
)
from cuidador.channels.base import NotificationChannel
from cuidador.db.repository import Repository
from cuidador.utils.constants import OPT_OUT_REASON
from cuidador.utils.time_utils import Clock

logger = logging.getLogger(__name__)


@dataclass
class OptOutResult:
    subject_id: int | None = None
    deactivated: int = 0
    guardian_notified: bool = False


class OptOutHandler:
    """Deactivates a subject and every active medication it owns.

    There is no automated way back: reactivation is an admin action.
    """

    def __init__(self, repo: Repository, channel: NotificationChannel, clock: Clock):
        self.repo = repo
        self.channel = channel
        self.clock = clock

    async def handle(self, address: str) -> OptOutResult:
        """Process an opt-out for an already-normalized address."""
        logger.info(f"Processing opt-out for {address}")

        subject = await self.repo.get_subject_by_address(address)
        if not subject:
            logger.warning(f"No subject found for opt-out: {address}")
            return OptOutResult()

        deactivated = await self.repo.opt_out_subject(
            subject.id,  # type: ignore
            OPT_OUT_REASON,
            self.clock.now(),
        )
        logger.info(f"Deactivated {deactivated} medications for subject {subject.id}")

        await self.channel.send(subject.address, format_opt_out_confirmation(subject.name))

        result = OptOutResult(subject_id=subject.id, deactivated=deactivated)

        guardian = await self.repo.get_guardian(subject.guardian_id)
        if guardian:
            notice = await self.channel.send(
                guardian.address, format_guardian_opt_out_notice(subject.name)
            )
            result.guardian_notified = notice.success
        else:
            logger.warning(f"Guardian {subject.guardian_id} not found for subject {subject.id}")

        return result
