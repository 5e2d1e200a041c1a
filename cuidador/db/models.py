"""Data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from cuidador.utils.time_utils import normalize_time_label


class OccurrenceStatus(str, Enum):
    """Lifecycle status of a reminder occurrence."""

    SCHEDULED = "scheduled"  # snooze follow-up waiting for its due time
    SENT = "sent"
    TAKEN = "taken"
    NOT_TAKEN = "not_taken"
    SNOOZED = "snoozed"
    UNANSWERED = "unanswered"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        """True when no further automated transition leaves this status."""
        match self:
            case OccurrenceStatus.SCHEDULED | OccurrenceStatus.SENT:
                return False
            case (
                OccurrenceStatus.TAKEN
                | OccurrenceStatus.NOT_TAKEN
                | OccurrenceStatus.SNOOZED
                | OccurrenceStatus.UNANSWERED
                | OccurrenceStatus.ERROR
            ):
                return True
        raise ValueError(f"Unhandled status: {self!r}")


ALLOWED_TRANSITIONS: dict[OccurrenceStatus, frozenset[OccurrenceStatus]] = {
    OccurrenceStatus.SCHEDULED: frozenset({OccurrenceStatus.SENT}),
    OccurrenceStatus.SENT: frozenset(
        {
            OccurrenceStatus.TAKEN,
            OccurrenceStatus.NOT_TAKEN,
            OccurrenceStatus.SNOOZED,
            OccurrenceStatus.UNANSWERED,
            OccurrenceStatus.ERROR,
        }
    ),
}


def can_transition(source: OccurrenceStatus, target: OccurrenceStatus) -> bool:
    """Check whether ``source -> target`` is a legal status transition."""
    return target in ALLOWED_TRANSITIONS.get(source, frozenset())


@dataclass
class Guardian:
    """Responsible party who owns one or more subjects."""

    name: str
    address: str
    plan: str = "free"
    created_at: datetime | None = None
    id: int | None = None


@dataclass
class Subject:
    """Person receiving medication reminders."""

    guardian_id: int
    name: str
    address: str
    active: bool = True
    created_at: datetime | None = None
    id: int | None = None


@dataclass
class EmergencyContact:
    """Secondary notification target for a subject."""

    subject_id: int
    name: str
    address: str
    id: int | None = None


@dataclass
class Medication:
    """A prescribed drug with its weekly schedule."""

    subject_id: int
    name: str
    dosage: str
    times: list[str] = field(default_factory=list)  # HH:MM, local time
    weekdays: list[int] = field(default_factory=list)  # 0 = Sunday
    active: bool = True
    deactivated_at: datetime | None = None  # UTC
    deactivation_reason: str | None = None
    created_at: datetime | None = None
    id: int | None = None

    def validate(self) -> None:
        """Normalize the schedule and check it is usable.

        Raises:
            ValueError: on an empty schedule for an active medication,
                a malformed time or an out-of-range weekday
        """
        self.times = sorted({normalize_time_label(t) for t in self.times})
        self.weekdays = sorted(set(self.weekdays))

        for day in self.weekdays:
            if not 0 <= day <= 6:
                raise ValueError(f"Invalid weekday {day} (expected 0=Sunday .. 6=Saturday)")

        if self.active and (not self.times or not self.weekdays):
            raise ValueError(f"Medication {self.name!r} needs at least one time and one weekday")

    def is_due(self, weekday: int, time_label: str) -> bool:
        """Check whether this medication has a slot at (weekday, HH:MM)."""
        if not self.active or weekday not in self.weekdays:
            return False
        return any(normalize_time_label(t) == time_label for t in self.times)


@dataclass
class Occurrence:
    """One instance of 'this medication is due now for this subject'."""

    medication_id: int
    subject_id: int
    time_label: str  # HH:MM slot this occurrence answers for
    status: OccurrenceStatus
    due_at: datetime  # UTC, when it was (or will be) dispatched
    attempts: int = 1
    rescheduled: bool = False
    origin_id: int | None = None  # set on snooze follow-ups
    manual: bool = False
    response: str | None = None
    responded_at: datetime | None = None  # UTC
    escalated_at: datetime | None = None  # UTC
    send_success: bool | None = None  # None = send outcome not yet recorded
    provider_id: str | None = None
    send_error: str | None = None
    created_at: datetime | None = None
    id: int | None = None
