from trackmyfix.services.jobs.projector import project_job
from trackmyfix.services.jobs.repository import JobLookup, SqlJobRepository, TaskNotFoundError
from trackmyfix.services.jobs.types import (
    AssignedTechnician,
    Job,
    JobNote,
    JobSnapshot,
    JobTask,
    Owner,
    ViewerRole,
)

__all__ = [
    "AssignedTechnician",
    "Job",
    "JobLookup",
    "JobNote",
    "JobSnapshot",
    "JobTask",
    "Owner",
    "SqlJobRepository",
    "TaskNotFoundError",
    "ViewerRole",
    "project_job",
]
