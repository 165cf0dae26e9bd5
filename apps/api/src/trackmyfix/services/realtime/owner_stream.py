from __future__ import annotations

from typing import Any

from starlette.concurrency import run_in_threadpool

from trackmyfix.auth import ManagerIdentity, authorize_owner_access
from trackmyfix.services.jobs.repository import JobLookup
from trackmyfix.services.realtime.sequence import SequenceCounters, owner_key
from trackmyfix.services.realtime.session import StreamSession


class OwnerStreamSession(StreamSession):
    # Owners can have many jobs, so this channel only says "refetch your list".

    def __init__(
        self,
        owner_id: str,
        manager: ManagerIdentity,
        *,
        jobs: JobLookup,
        counters: SequenceCounters,
        poll_seconds: float = 1.0,
        keepalive_seconds: float = 15.0,
    ) -> None:
        super().__init__(
            counters=counters,
            counter_key=owner_key(owner_id),
            poll_seconds=poll_seconds,
            keepalive_seconds=keepalive_seconds,
        )
        self.owner_id = owner_id
        self.manager = manager
        self._jobs = jobs

    async def _authorize(self) -> dict[str, Any]:
        await run_in_threadpool(authorize_owner_access, self._jobs, self.owner_id, self.manager)
        return {"type": "connected", "owner_id": self.owner_id}

    async def _on_change(self, sequence: int) -> dict[str, Any] | None:
        return {"type": "owner.updated", "owner_id": self.owner_id, "changed": True}
