"""Subject registration with subscription plan limits."""

import logging
from dataclasses import dataclass, field

from cuidador.bot.formatters import format_welcome_message
from cuidador.channels.base import NotificationChannel, normalize_address
from cuidador.config import Config
from cuidador.db.models import EmergencyContact, Guardian, Medication, Subject
from cuidador.db.repository import Repository
from cuidador.utils.constants import DEFAULT_PLAN, PLAN_LIMITS, PlanLimits

logger = logging.getLogger(__name__)


class PlanLimitExceeded(Exception):
    """A registration would go over the guardian's plan limits."""

    def __init__(self, plan: str, resource: str, current: int, limit: int):
        self.plan = plan
        self.resource = resource
        self.current = current
        self.limit = limit
        super().__init__(
            f"Plan limit exceeded. Your {plan} plan allows {limit} {resource}, "
            f"but you already have {current}."
        )


def get_plan_limits(plan: str) -> PlanLimits:
    """Get limits for a plan (unknown plans get the free tier)."""
    return PLAN_LIMITS.get(plan, PLAN_LIMITS[DEFAULT_PLAN])


@dataclass
class RegistrationResult:
    guardian: Guardian
    subject: Subject
    contacts: list[EmergencyContact] = field(default_factory=list)
    medications: list[Medication] = field(default_factory=list)
    welcome_sent: bool = False
    welcome_provider_id: str | None = None


class RegistrationService:
    """Creates a subject with its contacts and medications for a guardian."""

    def __init__(self, repo: Repository, channel: NotificationChannel, config: Config):
        self.repo = repo
        self.channel = channel
        self.config = config

    async def check_plan_limits(self, guardian: Guardian, new_medications: int) -> None:
        """Raise PlanLimitExceeded if one more subject (with its medications) does not fit."""
        limits = get_plan_limits(guardian.plan)
        if guardian.id is None:
            current_subjects, current_medications = 0, 0
        else:
            current_subjects = await self.repo.count_subjects_for_guardian(guardian.id)
            current_medications = await self.repo.count_active_medications_for_guardian(guardian.id)

        if limits.subjects is not None and current_subjects >= limits.subjects:
            raise PlanLimitExceeded(guardian.plan, "subject(s)", current_subjects, limits.subjects)

        if limits.medications is not None and current_medications + new_medications > limits.medications:
            raise PlanLimitExceeded(
                guardian.plan, "medication(s)", current_medications, limits.medications
            )

    async def register(
        self,
        guardian: Guardian,
        subject: Subject,
        contacts: list[EmergencyContact],
        medications: list[Medication],
    ) -> RegistrationResult:
        """Register a subject and send the welcome message.

        An existing guardian (matched by address) is reused along with its plan.

        Raises:
            PlanLimitExceeded: if the guardian's plan does not allow it
            ValueError: on invalid addresses or medication schedules
        """
        cc = self.config.default_country_code
        guardian.address = normalize_address(guardian.address, cc)
        subject.address = normalize_address(subject.address, cc)
        for contact in contacts:
            contact.address = normalize_address(contact.address, cc)
        for medication in medications:
            medication.validate()

        existing = await self.repo.get_guardian_by_address(guardian.address)
        if existing:
            logger.info(f"Using existing guardian {existing.id}")
            guardian = existing

        await self.check_plan_limits(guardian, len(medications))

        guardian, subject, contacts, medications = await self.repo.create_registration(
            guardian, subject, contacts, medications
        )
        logger.info(
            f"Registered subject {subject.id} for guardian {guardian.id}: "
            f"{len(medications)} medications, {len(contacts)} contacts"
        )

        welcome = await self.channel.send(
            subject.address,
            format_welcome_message(subject.name, self.config.opt_out_keywords[0]),
        )

        return RegistrationResult(
            guardian=guardian,
            subject=subject,
            contacts=contacts,
            medications=medications,
            welcome_sent=welcome.success,
            welcome_provider_id=welcome.provider_id,
        )
