from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
import logging
import secrets
from typing import Protocol, Sequence
import uuid

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from trackmyfix.models import JobNoteRecord, JobRecord, JobTaskRecord, OwnerRecord
from trackmyfix.services.jobs.types import (
    AssignedTechnician,
    Job,
    JobNote,
    JobTask,
    Owner,
    ViewerRole,
)

DEFAULT_NOTE_AUTHOR = "Technician"
NOTE_INSERT_ATTEMPTS = 5

logger = logging.getLogger(__name__)


class TaskNotFoundError(LookupError):
    pass


class JobLookup(Protocol):
    """Read side consumed by the stream sessions."""

    def get_job_by_id(self, job_id: str) -> Job | None:
        ...

    def get_owner(self, owner_id: str) -> Owner | None:
        ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _new_token() -> str:
    return secrets.token_hex(16)


def _clean_names(items: Sequence[str]) -> list[str]:
    cleaned: list[str] = []
    for item in items:
        name = item.strip()
        if name and name not in cleaned:
            cleaned.append(name)
    return cleaned


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _to_owner(record: OwnerRecord) -> Owner:
    return Owner(
        id=record.id,
        name=record.name,
        email=record.email,
        business_name=record.business_name,
        business_phone=record.business_phone,
    )


def _assigned_technician(record: JobRecord) -> AssignedTechnician | None:
    if not record.assigned_technician_id or not record.assigned_technician_name:
        return None
    return AssignedTechnician(
        id=record.assigned_technician_id,
        name=record.assigned_technician_name,
        phone=record.assigned_technician_phone,
    )


def _load_jobs(session: Session, records: Sequence[JobRecord]) -> list[Job]:
    """Hydrate job records with one query for all their tasks and one for all their notes."""
    if not records:
        return []

    job_ids = [record.id for record in records]
    tasks_by_job: dict[str, list[JobTaskRecord]] = defaultdict(list)
    for task in session.scalars(
        select(JobTaskRecord)
        .where(JobTaskRecord.job_id.in_(job_ids))
        .order_by(JobTaskRecord.position.asc(), JobTaskRecord.id.asc())
    ):
        tasks_by_job[task.job_id].append(task)

    notes_by_job: dict[str, list[JobNoteRecord]] = defaultdict(list)
    for note in session.scalars(
        select(JobNoteRecord)
        .where(JobNoteRecord.job_id.in_(job_ids))
        .order_by(
            JobNoteRecord.position.asc(),
            JobNoteRecord.created_at.asc(),
            JobNoteRecord.id.asc(),
        )
    ):
        notes_by_job[note.job_id].append(note)

    return [
        _to_job(record, tasks_by_job[record.id], notes_by_job[record.id])
        for record in records
    ]


def _load_job(session: Session, record: JobRecord) -> Job:
    return _load_jobs(session, [record])[0]


def _next_note_position(session: Session, job_id: str) -> int:
    position = session.scalar(
        select(func.coalesce(func.max(JobNoteRecord.position), -1) + 1)
        .where(JobNoteRecord.job_id == job_id)
    )
    return int(position or 0)


def _to_job(
    record: JobRecord,
    tasks: list[JobTaskRecord],
    notes: list[JobNoteRecord],
) -> Job:
    return Job(
        id=record.id,
        owner_id=record.owner_id,
        title=record.title,
        business_name=record.business_name,
        business_phone=record.business_phone,
        customer_name=record.customer_name,
        customer_phone=record.customer_phone,
        location=record.location,
        assigned_technician=_assigned_technician(record),
        tasks=tuple(
            JobTask(
                id=task.id,
                name=task.name,
                completed=task.completed,
                updated_at=task.updated_at,
            )
            for task in tasks
        ),
        notes=tuple(
            JobNote(
                id=note.id,
                author_name=note.author_name,
                author_technician_id=note.author_technician_id,
                message=note.message,
                created_at=note.created_at,
            )
            for note in notes
        ),
        technician_token=record.technician_token,
        customer_token=record.customer_token,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class SqlJobRepository:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def get_owner(self, owner_id: str) -> Owner | None:
        with Session(self._engine) as session:
            record = session.get(OwnerRecord, owner_id)
            return _to_owner(record) if record is not None else None

    def get_job_by_id(self, job_id: str) -> Job | None:
        with Session(self._engine) as session:
            record = session.get(JobRecord, job_id)
            if record is None:
                return None
            return _load_job(session, record)

    def get_job_by_token(self, role: ViewerRole, token: str) -> Job | None:
        if not token:
            return None

        column = JobRecord.customer_token if role is ViewerRole.CUSTOMER else JobRecord.technician_token
        with Session(self._engine) as session:
            record = session.scalar(select(JobRecord).where(column == token).limit(1))
            if record is None:
                return None
            return _load_job(session, record)

    def list_jobs(self, owner_id: str) -> list[Job]:
        with Session(self._engine) as session:
            records = session.scalars(
                select(JobRecord)
                .where(JobRecord.owner_id == owner_id)
                .order_by(JobRecord.updated_at.desc(), JobRecord.id.asc())
            ).all()
            return _load_jobs(session, records)

    def create_job(
        self,
        *,
        owner_id: str,
        title: str,
        customer_name: str,
        location: str,
        tasks: Sequence[str],
        customer_phone: str | None = None,
        assigned_technician: AssignedTechnician | None = None,
    ) -> Job:
        title = title.strip()
        customer_name = customer_name.strip()
        location = location.strip()
        task_names = _clean_names(tasks)

        if not title or not customer_name or not location or not task_names:
            raise ValueError("Job title, customer, location, and at least one task are required.")

        with Session(self._engine) as session:
            owner = session.get(OwnerRecord, owner_id)
            if owner is None:
                raise ValueError("Owner account not found.")

            timestamp = _now()
            record = JobRecord(
                id=_new_id(),
                owner_id=owner_id,
                title=title,
                business_name=owner.business_name,
                business_phone=owner.business_phone,
                customer_name=customer_name,
                customer_phone=_optional(customer_phone),
                location=location,
                technician_token=_new_token(),
                customer_token=_new_token(),
                created_at=timestamp,
                updated_at=timestamp,
            )
            if assigned_technician is not None:
                record.assigned_technician_id = assigned_technician.id
                record.assigned_technician_name = assigned_technician.name
                record.assigned_technician_phone = assigned_technician.phone
            session.add(record)
            session.flush()
            session.add_all(
                [
                    JobTaskRecord(
                        id=_new_id(),
                        job_id=record.id,
                        position=position,
                        name=name,
                        completed=False,
                        updated_at=timestamp,
                    )
                    for position, name in enumerate(task_names)
                ]
            )
            session.commit()
            return _load_job(session, record)

    def delete_job(self, owner_id: str, job_id: str) -> Job | None:
        with Session(self._engine) as session:
            record = session.get(JobRecord, job_id)
            if record is None or record.owner_id != owner_id:
                return None

            deleted = _load_job(session, record)
            session.execute(delete(JobTaskRecord).where(JobTaskRecord.job_id == job_id))
            session.execute(delete(JobNoteRecord).where(JobNoteRecord.job_id == job_id))
            session.delete(record)
            session.commit()
            return deleted

    def assign_technician(
        self,
        owner_id: str,
        job_id: str,
        technician: AssignedTechnician | None,
    ) -> Job | None:
        with Session(self._engine) as session:
            record = session.get(JobRecord, job_id)
            if record is None or record.owner_id != owner_id:
                return None

            record.assigned_technician_id = technician.id if technician is not None else None
            record.assigned_technician_name = technician.name if technician is not None else None
            record.assigned_technician_phone = technician.phone if technician is not None else None
            record.updated_at = _now()
            session.commit()
            return _load_job(session, record)

    def _job_for_technician(self, session: Session, technician_token: str) -> JobRecord | None:
        if not technician_token:
            return None
        return session.scalar(
            select(JobRecord).where(JobRecord.technician_token == technician_token).limit(1)
        )

    def update_task(
        self,
        technician_token: str,
        task_id: str,
        completed: bool | None = None,
    ) -> Job | None:
        """Set one task's completion; ``completed=None`` toggles it."""
        with Session(self._engine) as session:
            record = self._job_for_technician(session, technician_token)
            if record is None:
                return None

            task = session.scalar(
                select(JobTaskRecord)
                .where(JobTaskRecord.job_id == record.id)
                .where(JobTaskRecord.id == task_id)
            )
            if task is None:
                raise TaskNotFoundError("Task not found.")

            timestamp = _now()
            task.completed = (not task.completed) if completed is None else completed
            task.updated_at = timestamp
            record.updated_at = timestamp
            session.commit()
            return _load_job(session, record)

    def set_all_tasks(self, technician_token: str, completed: bool) -> Job | None:
        with Session(self._engine) as session:
            record = self._job_for_technician(session, technician_token)
            if record is None:
                return None

            timestamp = _now()
            for task in session.scalars(
                select(JobTaskRecord).where(JobTaskRecord.job_id == record.id)
            ):
                task.completed = completed
                task.updated_at = timestamp
            record.updated_at = timestamp
            session.commit()
            return _load_job(session, record)

    def add_note(self, technician_token: str, message: str) -> Job | None:
        """Append a note at the next position for its job.

        Two writers can compute the same next position; the unique
        ``(job_id, position)`` constraint rejects the loser, which recomputes
        and tries again.
        """
        message = message.strip()
        if not message:
            raise ValueError("Note cannot be empty.")

        attempt = 1
        while True:
            with Session(self._engine) as session:
                record = self._job_for_technician(session, technician_token)
                if record is None:
                    return None

                next_position = _next_note_position(session, record.id)
                timestamp = _now()
                session.add(
                    JobNoteRecord(
                        id=_new_id(),
                        job_id=record.id,
                        position=next_position,
                        author_name=record.assigned_technician_name or DEFAULT_NOTE_AUTHOR,
                        author_technician_id=record.assigned_technician_id,
                        message=message,
                        created_at=timestamp,
                    )
                )
                record.updated_at = timestamp
                job_id = record.id
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    if attempt >= NOTE_INSERT_ATTEMPTS:
                        raise
                    logger.info(
                        "note position taken job_id=%s position=%s attempt=%d; retrying",
                        job_id,
                        next_position,
                        attempt,
                    )
                    attempt += 1
                    continue
                return _load_job(session, record)
