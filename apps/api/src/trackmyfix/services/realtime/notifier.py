from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
import logging
from threading import Lock

from trackmyfix.services.realtime.sequence import SequenceCounters, job_key, owner_key

logger = logging.getLogger(__name__)


class MutationNotifier:
    """Bumps change counters off the request path.

    Callers get control back immediately; counter writes run on a small thread
    pool and any failure ends up in the log, never in the caller.
    """

    def __init__(self, counters: SequenceCounters, *, max_workers: int = 4) -> None:
        self._counters = counters
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="mutation-notifier",
        )
        self._pending: set[Future[None]] = set()
        self._lock = Lock()

    def notify_job_mutated(self, job_id: str, owner_id: str) -> None:
        self._submit(job_key(job_id), owner_key(owner_id))

    def notify_owner_mutated(self, owner_id: str) -> None:
        self._submit(owner_key(owner_id))

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for queued notifications; returns False if the timeout hit first."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, *, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)

    def _submit(self, *keys: str) -> None:
        try:
            future = self._executor.submit(self._bump, keys)
        except RuntimeError as exc:
            logger.warning("notification dropped keys=%s error=%r", ",".join(keys), exc)
            return

        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._finished)

    def _bump(self, keys: tuple[str, ...]) -> None:
        for key in keys:
            self._counters.increment(key)

    def _finished(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("notification failed error=%r", exc, exc_info=exc)
