"""Request models and response serializers for the HTTP API."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ManualReminderRequest(BaseModel):
    subject_id: int
    medication_id: int


class OutboundMessageRequest(BaseModel):
    to: str = Field(min_length=1)
    message: str = Field(default="✅ Cuidador test message", min_length=1)


class PersonIn(BaseModel):
    name: str = Field(min_length=1)
    address: str = Field(min_length=1)


class GuardianIn(PersonIn):
    plan: str = "free"


class MedicationIn(BaseModel):
    name: str = Field(min_length=1)
    dosage: str = ""
    times: list[str] = Field(min_length=1)
    weekdays: list[int] = Field(min_length=1)


class RegistrationRequest(BaseModel):
    guardian: GuardianIn
    subject: PersonIn
    contacts: list[PersonIn] = Field(default_factory=list)
    medications: list[MedicationIn] = Field(min_length=1)
    consent: bool


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def serialize(record: Any) -> dict[str, Any]:
    """Dataclass record -> JSON-friendly dict."""
    return {key: _jsonable(value) for key, value in asdict(record).items()}
