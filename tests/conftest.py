"""Shared fixtures: temporary database, fixed clock and a recording channel."""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from cuidador.channels.base import NotificationChannel, SendResult
from cuidador.config import Config
from cuidador.db.migrations import run_migrations
from cuidador.db.models import EmergencyContact, Guardian, Medication, Subject
from cuidador.db.repository import Repository
from cuidador.services import build_services
from cuidador.utils.time_utils import UTC, Clock

# Wednesday 2026-03-04, 08:00 in Sao Paulo (UTC-3)
WEDNESDAY_8AM = datetime(2026, 3, 4, 11, 0, tzinfo=UTC)
SATURDAY_8AM = datetime(2026, 3, 7, 11, 0, tzinfo=UTC)

SUBJECT_PHONE = "5511999990001"
GUARDIAN_PHONE = "5511999990002"
CONTACT_PHONE = "5511999990003"


class FixedClock(Clock):
    """Clock whose current instant is set by the test."""

    def __init__(self, current: datetime, timezone: str = "America/Sao_Paulo"):
        super().__init__(timezone)
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class FakeChannel(NotificationChannel):
    """Records every send; addresses in ``failing`` get a failed result."""

    name = "fake"

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.failing: set[str] = set()

    @property
    def configured(self) -> bool:
        return True

    async def send(self, address: str, body: str) -> SendResult:
        self.sent.append((address, body))
        if address in self.failing:
            return SendResult(success=False, error="delivery failed")
        return SendResult(success=True, provider_id=f"SM{len(self.sent)}", status="queued")

    def to(self, address: str) -> list[str]:
        return [body for addr, body in self.sent if addr == address]


@pytest.fixture
def config():
    return Config(telegram_bot_token="test-token", timezone="America/Sao_Paulo")


@pytest.fixture
def clock():
    return FixedClock(WEDNESDAY_8AM)


@pytest.fixture
def channel():
    return FakeChannel()


@pytest_asyncio.fixture
async def repo(tmp_path):
    db_path = tmp_path / "test.db"
    await run_migrations(db_path)
    repository = Repository(db_path)
    await repository.connect()
    yield repository
    await repository.close()


@pytest.fixture
def services(config, repo, channel, clock):
    return build_services(config, repo, channel, clock)


async def seed_subject(
    repo: Repository,
    *,
    name: str = "Maria",
    address: str = SUBJECT_PHONE,
    guardian_address: str = GUARDIAN_PHONE,
    medications: list[tuple[str, list[str], list[int]]] | None = None,
    contacts: list[str] | None = None,
):
    """Create a guardian, a subject, its contacts and medications.

    Returns:
        Tuple of (guardian, subject, medications, contacts)
    """
    if medications is None:
        medications = [("Losartan", ["08:00"], [1, 2, 3, 4, 5])]
    if contacts is None:
        contacts = [CONTACT_PHONE]

    guardian = await repo.get_guardian_by_address(guardian_address)
    if guardian is None:
        guardian = Guardian(name="Ana", address=guardian_address, plan="premium")

    guardian, subject, created_contacts, created_medications = await repo.create_registration(
        guardian,
        Subject(guardian_id=0, name=name, address=address),
        [EmergencyContact(subject_id=0, name="Neighbor", address=c) for c in contacts],
        [
            Medication(subject_id=0, name=med_name, dosage="50mg", times=times, weekdays=weekdays)
            for med_name, times, weekdays in medications
        ],
    )
    return guardian, subject, created_medications, created_contacts
