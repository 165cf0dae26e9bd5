from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Coroutine
from enum import Enum
import json
import logging
import time
from typing import Any

from starlette.concurrency import run_in_threadpool
from starlette.responses import StreamingResponse

from trackmyfix.services.realtime.sequence import SequenceCounters

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = ": ping\n\n"

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


class SessionState(str, Enum):
    AUTHORIZING = "authorizing"
    CONNECTED = "connected"
    CLOSED = "closed"


class StreamSession:
    """One push-stream connection watching a single change counter.

    ``open()`` authorizes the viewer, records the current counter value and
    queues the ``connected`` event. ``frames()`` starts two timers, a poll timer
    that compares the shared counter against ``last_sequence`` and a keep-alive
    timer that writes a comment frame once the stream has been silent for a
    full keep-alive interval, then yields the encoded frames until ``close()``.
    Once closed the session never emits again.

    Polls never overlap. A tick that fires while the previous poll is still
    waiting on the database is dropped, so a burst of mutations between two
    ticks surfaces as one push of the latest state.
    """

    def __init__(
        self,
        *,
        counters: SequenceCounters,
        counter_key: str,
        poll_seconds: float = 1.0,
        keepalive_seconds: float = 15.0,
    ) -> None:
        self.counter_key = counter_key
        self.state = SessionState.AUTHORIZING
        self.last_sequence = 0
        self.push_count = 0
        self.skipped_polls = 0
        self._counters = counters
        self._poll_seconds = poll_seconds
        self._keepalive_seconds = keepalive_seconds
        self._outbox: asyncio.Queue[str | None] = asyncio.Queue()
        self._tasks: set[asyncio.Task[None]] = set()
        self._polling = False
        self._last_write = time.monotonic()

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    async def open(self) -> None:
        if self.state is not SessionState.AUTHORIZING:
            raise RuntimeError("stream session can only be opened once")

        try:
            # read before loading so a mutation racing the connect is seen by the first poll
            self.last_sequence = await self._read_sequence()
            payload = await self._authorize()
        except BaseException:
            self.close()
            raise

        self.state = SessionState.CONNECTED
        self._push(payload)
        logger.info("stream connected key=%s sequence=%d", self.counter_key, self.last_sequence)

    async def frames(self) -> AsyncIterator[str]:
        # Timers belong to the consumer: a response body that is never iterated
        # leaves nothing running behind it.
        try:
            if self.state is SessionState.CONNECTED and not self._tasks:
                self._spawn(self._every(self._poll_seconds, self._on_poll_tick))
                self._spawn(self._keepalive_loop())
            while not self.closed:
                frame = await self._outbox.get()
                if frame is None or self.closed:
                    break
                yield frame
        finally:
            self.close()

    def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return

        was_connected = self.state is SessionState.CONNECTED
        self.state = SessionState.CLOSED
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        self._outbox.put_nowait(None)
        if was_connected:
            logger.info(
                "stream closed key=%s pushes=%d skipped_polls=%d",
                self.counter_key,
                self.push_count,
                self.skipped_polls,
            )

    async def poll_once(self) -> bool:
        """Check the counter once; returns True if a fresh event was pushed."""
        if self.closed:
            return False
        if self._polling:
            self.skipped_polls += 1
            return False

        self._polling = True
        try:
            current = await self._read_sequence()
            if current <= self.last_sequence:
                return False

            payload = await self._on_change(current)
            self.last_sequence = current
            if payload is None:
                return False
            return self._push(payload)
        except Exception:
            logger.exception("stream poll failed key=%s", self.counter_key)
            return False
        finally:
            self._polling = False

    async def _authorize(self) -> dict[str, Any]:
        raise NotImplementedError

    async def _on_change(self, sequence: int) -> dict[str, Any] | None:
        raise NotImplementedError

    async def _read_sequence(self) -> int:
        return await run_in_threadpool(self._counters.read, self.counter_key)

    def _push(self, payload: dict[str, Any]) -> bool:
        if self.closed:
            return False
        self._write(format_event(payload))
        self.push_count += 1
        return True

    def _on_poll_tick(self) -> None:
        self._spawn(self.poll_once())

    def _write(self, frame: str) -> None:
        self._outbox.put_nowait(frame)
        self._last_write = time.monotonic()

    async def _keepalive_loop(self) -> None:
        # deadline runs from the last frame queued, so an idle gap never exceeds one interval
        while not self.closed:
            remaining = self._last_write + self._keepalive_seconds - time.monotonic()
            if remaining > 0:
                await asyncio.sleep(remaining)
                continue
            self._write(KEEPALIVE_FRAME)

    async def _every(self, interval: float, callback: Callable[[], None]) -> None:
        while not self.closed:
            await asyncio.sleep(interval)
            if self.closed:
                return
            callback()

    def _spawn(self, coroutine: Coroutine[Any, Any, Any]) -> None:
        if self.closed:
            coroutine.close()
            return
        task = asyncio.create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def stream_response(session: StreamSession) -> StreamingResponse:
    return StreamingResponse(
        session.frames(),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )
