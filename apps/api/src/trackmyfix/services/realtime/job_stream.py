from __future__ import annotations

import logging
from typing import Any

from starlette.concurrency import run_in_threadpool

from trackmyfix.auth import AccessError
from trackmyfix.services.jobs.projector import project_job
from trackmyfix.services.jobs.repository import JobLookup
from trackmyfix.services.jobs.types import Job, ViewerRole
from trackmyfix.services.realtime.sequence import SequenceCounters, job_key
from trackmyfix.services.realtime.session import StreamSession

logger = logging.getLogger(__name__)


class JobStreamSession(StreamSession):
    """Live snapshots of one job for a customer or technician link."""

    def __init__(
        self,
        job_id: str,
        role: ViewerRole | None,
        token: str | None,
        *,
        jobs: JobLookup,
        counters: SequenceCounters,
        poll_seconds: float = 1.0,
        keepalive_seconds: float = 15.0,
    ) -> None:
        super().__init__(
            counters=counters,
            counter_key=job_key(job_id),
            poll_seconds=poll_seconds,
            keepalive_seconds=keepalive_seconds,
        )
        self.job_id = job_id
        self.role = role
        self._token = token or ""
        self._jobs = jobs

    async def _load_job(self) -> Job | None:
        return await run_in_threadpool(self._jobs.get_job_by_id, self.job_id)

    async def _authorize(self) -> dict[str, Any]:
        if self.role is None or not self._token:
            raise AccessError(401, "Unauthorized")

        job = await self._load_job()
        if job is None:
            raise AccessError(404, "Not found")
        if not self.role.matches(job, self._token):
            logger.info("job stream rejected job_id=%s role=%s", self.job_id, self.role.value)
            raise AccessError(401, "Unauthorized")

        return {"type": "connected", "job": project_job(job).to_dict()}

    async def _on_change(self, sequence: int) -> dict[str, Any] | None:
        job = await self._load_job()
        if job is None:
            logger.warning("job stream target vanished job_id=%s sequence=%d", self.job_id, sequence)
            return None
        return {"type": "job.updated", "job": project_job(job).to_dict()}
