from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class ViewerRole(str, Enum):
    CUSTOMER = "customer"
    TECHNICIAN = "technician"

    @classmethod
    def parse(cls, value: str | None) -> ViewerRole | None:
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None

    def token_of(self, job: Job) -> str:
        if self is ViewerRole.CUSTOMER:
            return job.customer_token
        return job.technician_token

    def matches(self, job: Job, token: str) -> bool:
        expected = self.token_of(job)
        return bool(expected) and expected == token


@dataclass(frozen=True)
class AssignedTechnician:
    id: str
    name: str
    phone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "phone": self.phone}


@dataclass(frozen=True)
class JobTask:
    id: str
    name: str
    completed: bool
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "completed": self.completed,
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class JobNote:
    id: str
    author_name: str
    message: str
    created_at: datetime
    author_technician_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "author_name": self.author_name,
            "author_technician_id": self.author_technician_id,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Owner:
    id: str
    name: str
    email: str
    business_name: str
    business_phone: str


@dataclass(frozen=True)
class Job:
    id: str
    owner_id: str
    title: str
    business_name: str
    business_phone: str
    customer_name: str
    customer_phone: str | None
    location: str
    assigned_technician: AssignedTechnician | None
    tasks: tuple[JobTask, ...]
    notes: tuple[JobNote, ...]
    technician_token: str
    customer_token: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class JobSnapshot:
    id: str
    title: str
    business_name: str
    business_phone: str
    customer_name: str
    customer_phone: str | None
    location: str
    assigned_technician: AssignedTechnician | None
    notes: tuple[JobNote, ...]
    tasks: tuple[JobTask, ...]
    updated_at: datetime
    completed_tasks: int
    total_tasks: int
    progress_percent: int
    all_completed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "business_name": self.business_name,
            "business_phone": self.business_phone,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "location": self.location,
            "assigned_technician": (
                self.assigned_technician.to_dict() if self.assigned_technician is not None else None
            ),
            "notes": [note.to_dict() for note in self.notes],
            "tasks": [task.to_dict() for task in self.tasks],
            "updated_at": self.updated_at.isoformat(),
            "completed_tasks": self.completed_tasks,
            "total_tasks": self.total_tasks,
            "progress_percent": self.progress_percent,
            "all_completed": self.all_completed,
        }
