"""Database repository - all SQL queries."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, List

import aiosqlite

from cuidador.db.models import (
    EmergencyContact,
    Guardian,
    Medication,
    Occurrence,
    OccurrenceStatus,
    Subject,
    can_transition,
)
from cuidador.utils.time_utils import UTC

logger = logging.getLogger(__name__)


def _ts(dt: datetime | None) -> str | None:
    """Serialize a datetime as a sortable UTC ISO string."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Repository:
    """Database access layer.

    Write paths go through ``transaction()`` so a multi-row batch commits or
    rolls back as a unit even though coroutines share one connection.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open database connection."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        logger.info(f"Connected to database at {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Database connection closed")

    @property
    def db(self) -> aiosqlite.Connection:
        """Get the database connection."""
        if self._db is None:
            raise RuntimeError("Database not connected")
        return self._db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a group of writes atomically."""
        async with self._write_lock:
            try:
                yield self.db
            except BaseException:
                await self.db.rollback()
                raise
            else:
                await self.db.commit()

    # Guardian operations

    async def create_guardian(self, guardian: Guardian) -> Guardian:
        """Create a new guardian."""
        async with self.transaction():
            return await self._insert_guardian(guardian)

    async def get_guardian(self, guardian_id: int) -> Guardian | None:
        """Get guardian by database ID."""
        async with self.db.execute(
            "SELECT * FROM guardians WHERE id = ?", (guardian_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_guardian(row) if row else None

    async def get_guardian_by_address(self, address: str) -> Guardian | None:
        """Get guardian by messaging address."""
        async with self.db.execute(
            "SELECT * FROM guardians WHERE address = ?", (address,)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_guardian(row) if row else None

    # Subject operations

    async def create_subject(self, subject: Subject) -> Subject:
        """Create a new subject."""
        async with self.transaction():
            return await self._insert_subject(subject)

    async def get_subject(self, subject_id: int) -> Subject | None:
        """Get subject by database ID."""
        async with self.db.execute(
            "SELECT * FROM subjects WHERE id = ?", (subject_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_subject(row) if row else None

    async def get_subject_by_address(self, address: str) -> Subject | None:
        """Get the subject registered under a messaging address.

        An address re-registered after an opt-out has several rows; the
        newest active one wins.
        """
        async with self.db.execute(
            "SELECT * FROM subjects WHERE address = ? ORDER BY active DESC, id DESC LIMIT 1",
            (address,),
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_subject(row) if row else None

    async def get_active_subjects(self) -> List[Subject]:
        """Get all active subjects."""
        async with self.db.execute(
            "SELECT * FROM subjects WHERE active = 1 ORDER BY id"
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_subject(row) for row in rows]

    async def count_subjects_for_guardian(self, guardian_id: int) -> int:
        """Count subjects owned by a guardian (active or not)."""
        async with self.db.execute(
            "SELECT COUNT(*) FROM subjects WHERE guardian_id = ?", (guardian_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return row[0]

    # Emergency contact operations

    async def create_contact(self, contact: EmergencyContact) -> EmergencyContact:
        """Create an emergency contact."""
        async with self.transaction():
            return await self._insert_contact(contact)

    async def get_contacts(self, subject_id: int) -> List[EmergencyContact]:
        """Get all emergency contacts for a subject."""
        async with self.db.execute(
            "SELECT * FROM emergency_contacts WHERE subject_id = ? ORDER BY id",
            (subject_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [
                EmergencyContact(
                    id=row["id"],
                    subject_id=row["subject_id"],
                    name=row["name"],
                    address=row["address"],
                )
                for row in rows
            ]

    # Medication operations

    async def create_medication(self, medication: Medication) -> Medication:
        """Create a new medication."""
        async with self.transaction():
            return await self._insert_medication(medication)

    async def get_medication(self, medication_id: int) -> Medication | None:
        """Get a medication by ID."""
        async with self.db.execute(
            "SELECT * FROM medications WHERE id = ?", (medication_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_medication(row) if row else None

    async def get_medications(self, medication_ids: list[int]) -> dict[int, Medication]:
        """Get several medications keyed by ID (missing IDs are omitted)."""
        if not medication_ids:
            return {}
        placeholders = ", ".join("?" for _ in medication_ids)
        async with self.db.execute(
            f"SELECT * FROM medications WHERE id IN ({placeholders})",
            tuple(medication_ids),
        ) as cursor:
            rows = await cursor.fetchall()
            return {row["id"]: self._row_to_medication(row) for row in rows}

    async def get_active_medications(self) -> List[Medication]:
        """Get every active medication (scheduler catalog query)."""
        async with self.db.execute(
            "SELECT * FROM medications WHERE active = 1 ORDER BY id"
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_medication(row) for row in rows]

    async def get_medications_by_subject(
        self, subject_id: int, active_only: bool = False
    ) -> List[Medication]:
        """Get all medications for a subject, optionally only active ones."""
        if active_only:
            query = "SELECT * FROM medications WHERE subject_id = ? AND active = 1 ORDER BY id"
        else:
            query = "SELECT * FROM medications WHERE subject_id = ? ORDER BY id"

        async with self.db.execute(query, (subject_id,)) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_medication(row) for row in rows]

    async def count_active_medications_for_guardian(self, guardian_id: int) -> int:
        """Count active medications across all of a guardian's subjects."""
        async with self.db.execute(
            """
            SELECT COUNT(*) FROM medications m
            JOIN subjects s ON s.id = m.subject_id
            WHERE s.guardian_id = ? AND m.active = 1
            """,
            (guardian_id,),
        ) as cursor:
            row = await cursor.fetchone()
            return row[0]

    async def opt_out_subject(self, subject_id: int, reason: str, now: datetime) -> int:
        """Deactivate a subject and all of its active medications in one batch.

        Returns:
            Number of medications deactivated
        """
        async with self.transaction() as db:
            cursor = await db.execute(
                """
                UPDATE medications SET
                    active = 0,
                    deactivated_at = ?,
                    deactivation_reason = ?
                WHERE subject_id = ? AND active = 1
                """,
                (_ts(now), reason, subject_id),
            )
            deactivated = cursor.rowcount
            await db.execute("UPDATE subjects SET active = 0 WHERE id = ?", (subject_id,))
            return deactivated

    # Registration

    async def create_registration(
        self,
        guardian: Guardian,
        subject: Subject,
        contacts: list[EmergencyContact],
        medications: list[Medication],
    ) -> tuple[Guardian, Subject, list[EmergencyContact], list[Medication]]:
        """Create a subject with its contacts and medications atomically.

        The guardian is created when it has no ID yet; ``subject_id`` and
        ``guardian_id`` on the children are filled in here.
        """
        async with self.transaction():
            if guardian.id is None:
                guardian = await self._insert_guardian(guardian)
            subject.guardian_id = guardian.id  # type: ignore
            subject = await self._insert_subject(subject)

            created_contacts = []
            for contact in contacts:
                contact.subject_id = subject.id  # type: ignore
                created_contacts.append(await self._insert_contact(contact))

            created_medications = []
            for medication in medications:
                medication.subject_id = subject.id  # type: ignore
                created_medications.append(await self._insert_medication(medication))

            return guardian, subject, created_contacts, created_medications

    # Occurrence operations

    async def create_occurrence(self, occurrence: Occurrence) -> Occurrence:
        """Create a single occurrence."""
        async with self.transaction():
            return await self._insert_occurrence(occurrence)

    async def create_occurrences(self, occurrences: list[Occurrence]) -> list[Occurrence]:
        """Create several occurrences in one atomic batch."""
        if not occurrences:
            return []
        async with self.transaction():
            return [await self._insert_occurrence(o) for o in occurrences]

    async def get_occurrence(self, occurrence_id: int) -> Occurrence | None:
        """Get an occurrence by ID."""
        async with self.db.execute(
            "SELECT * FROM occurrences WHERE id = ?", (occurrence_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_occurrence(row) if row else None

    async def get_followups(self, origin_id: int) -> List[Occurrence]:
        """Get occurrences spawned by snoozing ``origin_id``."""
        async with self.db.execute(
            "SELECT * FROM occurrences WHERE origin_id = ? ORDER BY id", (origin_id,)
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_occurrence(row) for row in rows]

    async def occurrence_exists(
        self,
        medication_id: int,
        subject_id: int,
        time_label: str,
        start: datetime,
        end: datetime,
    ) -> bool:
        """Check whether a slot already produced an occurrence in [start, end)."""
        async with self.db.execute(
            """
            SELECT 1 FROM occurrences
            WHERE medication_id = ?
            AND subject_id = ?
            AND time_label = ?
            AND due_at >= ?
            AND due_at < ?
            LIMIT 1
            """,
            (medication_id, subject_id, time_label, _ts(start), _ts(end)),
        ) as cursor:
            return await cursor.fetchone() is not None

    async def record_send_result(
        self,
        occurrence_id: int,
        success: bool,
        provider_id: str | None = None,
        error: str | None = None,
    ) -> None:
        """Store the outbound send result; a failed send moves ``sent`` to ``error``."""
        async with self.transaction() as db:
            if success:
                await db.execute(
                    """
                    UPDATE occurrences SET
                        send_success = 1, provider_id = ?, send_error = NULL
                    WHERE id = ?
                    """,
                    (provider_id, occurrence_id),
                )
            else:
                await db.execute(
                    """
                    UPDATE occurrences SET
                        send_success = 0,
                        send_error = ?,
                        status = CASE WHEN status = ? THEN ? ELSE status END
                    WHERE id = ?
                    """,
                    (
                        error,
                        OccurrenceStatus.SENT.value,
                        OccurrenceStatus.ERROR.value,
                        occurrence_id,
                    ),
                )

    async def transition_occurrence(
        self,
        occurrence_id: int,
        source: OccurrenceStatus,
        target: OccurrenceStatus,
        *,
        response: str | None = None,
        responded_at: datetime | None = None,
        escalated_at: datetime | None = None,
    ) -> bool:
        """Conditionally move an occurrence from ``source`` to ``target``.

        Returns:
            True if this call performed the transition, False if the
            occurrence was not in ``source`` any more (or does not exist)
        """
        if not can_transition(source, target):
            raise ValueError(f"Illegal transition {source.value} -> {target.value}")

        updates = ["status = ?"]
        params: list = [target.value]
        if response is not None:
            updates.append("response = ?")
            params.append(response)
        if responded_at is not None:
            updates.append("responded_at = ?")
            params.append(_ts(responded_at))
        if escalated_at is not None:
            updates.append("escalated_at = ?")
            params.append(_ts(escalated_at))
        params.extend([occurrence_id, source.value])

        async with self.transaction() as db:
            cursor = await db.execute(
                f"UPDATE occurrences SET {', '.join(updates)} WHERE id = ? AND status = ?",
                params,
            )
            return cursor.rowcount == 1

    async def find_pending_occurrence(
        self, subject_id: int, since: datetime
    ) -> Occurrence | None:
        """Most recent ``sent`` occurrence for a subject due at or after ``since``.

        Ties on due time go to the most recently created row.
        """
        async with self.db.execute(
            """
            SELECT * FROM occurrences
            WHERE subject_id = ?
            AND status = ?
            AND due_at >= ?
            ORDER BY due_at DESC, id DESC
            LIMIT 1
            """,
            (subject_id, OccurrenceStatus.SENT.value, _ts(since)),
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_occurrence(row) if row else None

    async def get_unanswered_occurrences(self, due_before: datetime) -> List[Occurrence]:
        """Get ``sent`` occurrences due at or before ``due_before`` (sweeper query)."""
        async with self.db.execute(
            """
            SELECT * FROM occurrences
            WHERE status = ?
            AND due_at <= ?
            ORDER BY due_at
            """,
            (OccurrenceStatus.SENT.value, _ts(due_before)),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_occurrence(row) for row in rows]

    async def get_due_followups(self, now: datetime) -> List[Occurrence]:
        """Get ``scheduled`` follow-ups whose due time has passed.

        Follow-ups for deactivated medications or subjects are left alone.
        """
        async with self.db.execute(
            """
            SELECT o.* FROM occurrences o
            JOIN medications m ON m.id = o.medication_id
            JOIN subjects s ON s.id = o.subject_id
            WHERE o.status = ?
            AND o.due_at <= ?
            AND m.active = 1
            AND s.active = 1
            ORDER BY o.due_at
            """,
            (OccurrenceStatus.SCHEDULED.value, _ts(now)),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_occurrence(row) for row in rows]

    async def get_occurrences_for_subject(
        self,
        subject_id: int,
        start: datetime,
        end: datetime,
        limit: int | None = None,
    ) -> List[Occurrence]:
        """Get a subject's occurrences due in [start, end), newest first."""
        query = """
            SELECT * FROM occurrences
            WHERE subject_id = ?
            AND due_at >= ?
            AND due_at < ?
            ORDER BY due_at DESC, id DESC
        """
        params: tuple = (subject_id, _ts(start), _ts(end))
        if limit is not None:
            query += " LIMIT ?"
            params += (limit,)

        async with self.db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_occurrence(row) for row in rows]

    # Health

    async def get_counts(self) -> dict[str, int]:
        """Record counts for the health endpoint."""
        queries = {
            "guardians": "SELECT COUNT(*) FROM guardians",
            "subjects": "SELECT COUNT(*) FROM subjects",
            "active_subjects": "SELECT COUNT(*) FROM subjects WHERE active = 1",
            "active_medications": "SELECT COUNT(*) FROM medications WHERE active = 1",
            "pending_occurrences": (
                "SELECT COUNT(*) FROM occurrences "
                f"WHERE status IN ('{OccurrenceStatus.SCHEDULED.value}', "
                f"'{OccurrenceStatus.SENT.value}')"
            ),
        }
        counts = {}
        for key, query in queries.items():
            async with self.db.execute(query) as cursor:
                row = await cursor.fetchone()
                counts[key] = row[0]
        return counts

    # Insert helpers (caller owns the transaction)

    async def _insert_guardian(self, guardian: Guardian) -> Guardian:
        async with self.db.execute(
            "INSERT INTO guardians (name, address, plan, created_at) VALUES (?, ?, ?, ?) RETURNING *",
            (guardian.name, guardian.address, guardian.plan, _ts(guardian.created_at or _utcnow())),
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_guardian(row)

    async def _insert_subject(self, subject: Subject) -> Subject:
        async with self.db.execute(
            """
            INSERT INTO subjects (guardian_id, name, address, active, created_at)
            VALUES (?, ?, ?, ?, ?)
            RETURNING *
            """,
            (
                subject.guardian_id,
                subject.name,
                subject.address,
                1 if subject.active else 0,
                _ts(subject.created_at or _utcnow()),
            ),
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_subject(row)

    async def _insert_contact(self, contact: EmergencyContact) -> EmergencyContact:
        async with self.db.execute(
            "INSERT INTO emergency_contacts (subject_id, name, address) VALUES (?, ?, ?) RETURNING *",
            (contact.subject_id, contact.name, contact.address),
        ) as cursor:
            row = await cursor.fetchone()
            return EmergencyContact(
                id=row["id"],
                subject_id=row["subject_id"],
                name=row["name"],
                address=row["address"],
            )

    async def _insert_medication(self, medication: Medication) -> Medication:
        medication.validate()
        async with self.db.execute(
            """
            INSERT INTO medications (
                subject_id, name, dosage, times, weekdays, active, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING *
            """,
            (
                medication.subject_id,
                medication.name,
                medication.dosage,
                json.dumps(medication.times),
                json.dumps(medication.weekdays),
                1 if medication.active else 0,
                _ts(medication.created_at or _utcnow()),
            ),
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_medication(row)

    async def _insert_occurrence(self, occurrence: Occurrence) -> Occurrence:
        async with self.db.execute(
            """
            INSERT INTO occurrences (
                medication_id, subject_id, time_label, status, due_at, attempts,
                rescheduled, origin_id, manual, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING *
            """,
            (
                occurrence.medication_id,
                occurrence.subject_id,
                occurrence.time_label,
                occurrence.status.value,
                _ts(occurrence.due_at),
                occurrence.attempts,
                1 if occurrence.rescheduled else 0,
                occurrence.origin_id,
                1 if occurrence.manual else 0,
                _ts(occurrence.created_at or _utcnow()),
            ),
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_occurrence(row)

    # Helper methods

    def _row_to_guardian(self, row: aiosqlite.Row) -> Guardian:
        return Guardian(
            id=row["id"],
            name=row["name"],
            address=row["address"],
            plan=row["plan"],
            created_at=_dt(row["created_at"]),
        )

    def _row_to_subject(self, row: aiosqlite.Row) -> Subject:
        return Subject(
            id=row["id"],
            guardian_id=row["guardian_id"],
            name=row["name"],
            address=row["address"],
            active=bool(row["active"]),
            created_at=_dt(row["created_at"]),
        )

    def _row_to_medication(self, row: aiosqlite.Row) -> Medication:
        return Medication(
            id=row["id"],
            subject_id=row["subject_id"],
            name=row["name"],
            dosage=row["dosage"],
            times=json.loads(row["times"]),
            weekdays=json.loads(row["weekdays"]),
            active=bool(row["active"]),
            deactivated_at=_dt(row["deactivated_at"]),
            deactivation_reason=row["deactivation_reason"],
            created_at=_dt(row["created_at"]),
        )

    def _row_to_occurrence(self, row: aiosqlite.Row) -> Occurrence:
        """Convert a database row to an Occurrence object."""
        return Occurrence(
            id=row["id"],
            medication_id=row["medication_id"],
            subject_id=row["subject_id"],
            time_label=row["time_label"],
            status=OccurrenceStatus(row["status"]),
            due_at=_dt(row["due_at"]),  # type: ignore
            attempts=row["attempts"],
            rescheduled=bool(row["rescheduled"]),
            origin_id=row["origin_id"],
            manual=bool(row["manual"]),
            response=row["response"],
            responded_at=_dt(row["responded_at"]),
            escalated_at=_dt(row["escalated_at"]),
            send_success=None if row["send_success"] is None else bool(row["send_success"]),
            provider_id=row["provider_id"],
            send_error=row["send_error"],
            created_at=_dt(row["created_at"]),
        )
