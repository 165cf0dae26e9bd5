from functools import lru_cache
import logging
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from trackmyfix.auth import AccessError, ManagerIdentity, authorize_owner_access, get_manager_identity
from trackmyfix.config import get_settings
from trackmyfix.db import dispose_engine, get_engine
from trackmyfix.logging_config import configure_logging
from trackmyfix.services.jobs import (
    AssignedTechnician,
    Job,
    SqlJobRepository,
    TaskNotFoundError,
    ViewerRole,
    project_job,
)
from trackmyfix.services.realtime import (
    JobStreamSession,
    MutationNotifier,
    OwnerStreamSession,
    SequenceCounterStore,
    stream_response,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="TrackMyFix API", version="0.1.0")


class TechnicianPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    phone: str | None = None

    def to_domain(self) -> AssignedTechnician:
        phone = self.phone.strip() if self.phone else None
        return AssignedTechnician(id=self.id, name=self.name.strip(), phone=phone or None)


class JobCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    customer_name: str
    customer_phone: str | None = None
    location: str
    tasks: list[str] = Field(default_factory=list)
    assigned_technician: TechnicianPayload | None = None


class AssignmentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    assigned_technician: TechnicianPayload | None = None


class TaskUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_id: str = Field(min_length=1)
    completed: bool | None = None


class AllTasksUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    completed: bool


class NoteCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    notes: str


@app.on_event("startup")
def startup() -> None:
    configure_logging(get_settings().log_level)
    get_engine()


@app.on_event("shutdown")
def shutdown() -> None:
    if get_notifier.cache_info().currsize:
        get_notifier().shutdown()
    get_notifier.cache_clear()
    get_sequence_store.cache_clear()
    dispose_engine()


@lru_cache
def get_sequence_store() -> SequenceCounterStore:
    settings = get_settings()
    return SequenceCounterStore(
        get_engine(),
        retry_attempts=settings.sequence_retry_attempts,
        retry_base_seconds=settings.sequence_retry_base_seconds,
        retry_max_seconds=settings.sequence_retry_max_seconds,
    )


@lru_cache
def get_notifier() -> MutationNotifier:
    return MutationNotifier(
        get_sequence_store(),
        max_workers=get_settings().notifier_max_workers,
    )


def get_job_repository() -> SqlJobRepository:
    return SqlJobRepository(get_engine())


Jobs = Annotated[SqlJobRepository, Depends(get_job_repository)]
Notifier = Annotated[MutationNotifier, Depends(get_notifier)]
Counters = Annotated[SequenceCounterStore, Depends(get_sequence_store)]
Manager = Annotated[ManagerIdentity, Depends(get_manager_identity)]


def _job_response(job: Job) -> dict[str, Any]:
    return {"job": project_job(job).to_dict()}


def _job_summary(job: Job) -> dict[str, Any]:
    snapshot = project_job(job)
    return {
        "id": job.id,
        "title": job.title,
        "customer_name": job.customer_name,
        "location": job.location,
        "assigned_technician": (
            job.assigned_technician.to_dict() if job.assigned_technician is not None else None
        ),
        "completed_tasks": snapshot.completed_tasks,
        "total_tasks": snapshot.total_tasks,
        "progress_percent": snapshot.progress_percent,
        "all_completed": snapshot.all_completed,
        "technician_token": job.technician_token,
        "customer_token": job.customer_token,
        "created_at": job.created_at.isoformat(),
        "updated_at": job.updated_at.isoformat(),
    }


def _require_owner(jobs: SqlJobRepository, owner_id: str, manager: ManagerIdentity) -> None:
    try:
        authorize_owner_access(jobs, owner_id, manager)
    except AccessError as exc:
        raise exc.to_http() from exc


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/session/{role}/{token}")
def get_job_session(role: str, token: str, jobs: Jobs) -> dict[str, Any]:
    viewer_role = ViewerRole.parse(role)
    if viewer_role is None:
        raise HTTPException(status_code=404, detail="Unsupported role.")

    job = jobs.get_job_by_token(viewer_role, token)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found.")
    return _job_response(job)


@app.patch("/session/technician/{token}/task")
def update_task(token: str, request: TaskUpdateRequest, jobs: Jobs, notifier: Notifier) -> dict[str, Any]:
    try:
        job = jobs.update_task(token, request.task_id, request.completed)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if job is None:
        raise HTTPException(status_code=404, detail="Job not found.")

    notifier.notify_job_mutated(job.id, job.owner_id)
    return _job_response(job)


@app.patch("/session/technician/{token}/tasks")
def update_all_tasks(
    token: str,
    request: AllTasksUpdateRequest,
    jobs: Jobs,
    notifier: Notifier,
) -> dict[str, Any]:
    job = jobs.set_all_tasks(token, request.completed)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found.")

    notifier.notify_job_mutated(job.id, job.owner_id)
    return _job_response(job)


@app.patch("/session/technician/{token}/notes")
def add_note(token: str, request: NoteCreateRequest, jobs: Jobs, notifier: Notifier) -> dict[str, Any]:
    try:
        job = jobs.add_note(token, request.notes)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if job is None:
        raise HTTPException(status_code=404, detail="Job not found.")

    notifier.notify_job_mutated(job.id, job.owner_id)
    return _job_response(job)


@app.get("/owners/{owner_id}/jobs")
def list_owner_jobs(owner_id: str, jobs: Jobs, manager: Manager) -> list[dict[str, Any]]:
    _require_owner(jobs, owner_id, manager)
    return [_job_summary(job) for job in jobs.list_jobs(owner_id)]


@app.post("/owners/{owner_id}/jobs")
def create_owner_job(
    owner_id: str,
    request: JobCreateRequest,
    jobs: Jobs,
    notifier: Notifier,
    manager: Manager,
) -> JSONResponse:
    _require_owner(jobs, owner_id, manager)

    technician = request.assigned_technician
    try:
        job = jobs.create_job(
            owner_id=owner_id,
            title=request.title,
            customer_name=request.customer_name,
            customer_phone=request.customer_phone,
            location=request.location,
            tasks=request.tasks,
            assigned_technician=technician.to_domain() if technician is not None else None,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    notifier.notify_owner_mutated(owner_id)
    logger.info("job created job_id=%s owner_id=%s tasks=%d", job.id, owner_id, len(job.tasks))
    return JSONResponse(status_code=201, content=_job_summary(job))


@app.patch("/owners/{owner_id}/jobs/{job_id}/assignment")
def assign_job_technician(
    owner_id: str,
    job_id: str,
    request: AssignmentRequest,
    jobs: Jobs,
    notifier: Notifier,
    manager: Manager,
) -> dict[str, Any]:
    _require_owner(jobs, owner_id, manager)

    technician = request.assigned_technician
    job = jobs.assign_technician(
        owner_id,
        job_id,
        technician.to_domain() if technician is not None else None,
    )
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found.")

    notifier.notify_job_mutated(job.id, job.owner_id)
    return _job_response(job)


@app.delete("/owners/{owner_id}/jobs/{job_id}")
def delete_owner_job(
    owner_id: str,
    job_id: str,
    jobs: Jobs,
    notifier: Notifier,
    manager: Manager,
) -> dict[str, str]:
    _require_owner(jobs, owner_id, manager)

    deleted = jobs.delete_job(owner_id, job_id)
    if deleted is None:
        raise HTTPException(status_code=404, detail="Job not found.")

    notifier.notify_owner_mutated(owner_id)
    logger.info("job deleted job_id=%s owner_id=%s", job_id, owner_id)
    return {"id": deleted.id, "status": "deleted"}


@app.get("/events/jobs/{job_id}")
async def job_events(
    job_id: str,
    jobs: Jobs,
    counters: Counters,
    role: str | None = Query(default=None),
    token: str | None = Query(default=None),
) -> StreamingResponse:
    settings = get_settings()
    session = JobStreamSession(
        job_id,
        ViewerRole.parse(role),
        token,
        jobs=jobs,
        counters=counters,
        poll_seconds=settings.stream_poll_seconds,
        keepalive_seconds=settings.stream_keepalive_seconds,
    )
    try:
        await session.open()
    except AccessError as exc:
        raise exc.to_http() from exc
    return stream_response(session)


@app.get("/events/owners/{owner_id}")
async def owner_events(
    owner_id: str,
    jobs: Jobs,
    counters: Counters,
    manager: Manager,
) -> StreamingResponse:
    settings = get_settings()
    session = OwnerStreamSession(
        owner_id,
        manager,
        jobs=jobs,
        counters=counters,
        poll_seconds=settings.stream_poll_seconds,
        keepalive_seconds=settings.stream_keepalive_seconds,
    )
    try:
        await session.open()
    except AccessError as exc:
        raise exc.to_http() from exc
    return stream_response(session)


def run() -> None:
    import uvicorn

    uvicorn.run("trackmyfix.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
