import asyncio
from collections.abc import Iterator
import json
from typing import Any
from urllib.parse import urlencode

import anyio
import pytest
from fastapi.testclient import TestClient

from trackmyfix.config import get_settings
from trackmyfix.main import app, get_notifier


@pytest.mark.parametrize(
    "params",
    [
        {"role": "technician", "token": "wrong"},
        {"role": "customer", "token": "tech-job-1"},
        {"role": "manager", "token": "tech-job-1"},
        {"role": "technician"},
        {},
    ],
)
def test_job_stream_rejects_bad_credentials_before_streaming(
    client: TestClient,
    make_owner,
    make_job,
    params: dict[str, str],
) -> None:
    make_owner()
    make_job()

    response = client.get("/events/jobs/job-1", params=params)

    assert response.status_code == 401
    assert response.headers["content-type"].startswith("application/json")
    assert "data:" not in response.text


def test_job_stream_for_missing_job_is_not_found(client: TestClient, make_owner) -> None:
    make_owner()

    response = client.get("/events/jobs/missing", params={"role": "technician", "token": "tech-missing"})

    assert response.status_code == 404
    assert response.json() == {"detail": "Not found"}


def test_owner_stream_requires_manager_identity(client: TestClient, make_owner) -> None:
    make_owner()

    response = client.get("/events/owners/owner-1")

    assert response.status_code == 401


def test_owner_stream_rejects_other_managers(client: TestClient, make_owner) -> None:
    make_owner()

    forbidden = client.get("/events/owners/owner-1", headers={"X-Manager-Email": "intruder@example.com"})
    missing = client.get("/events/owners/owner-2", headers={"X-Manager-Email": "manager@example.com"})

    assert forbidden.status_code == 403
    assert missing.status_code == 404


class StreamingCall:
    """Drives one HTTP request through the ASGI app, keeping the response open."""

    def __init__(
        self,
        method: str,
        path: str,
        *,
        query: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
    ) -> None:
        raw_body = json.dumps(body).encode() if body is not None else b""
        header_items = {"host": "testserver", **(headers or {})}
        if body is not None:
            header_items["content-type"] = "application/json"
            header_items["content-length"] = str(len(raw_body))
        self.scope = {
            "type": "http",
            "asgi": {"version": "3.0", "spec_version": "2.3"},
            "http_version": "1.1",
            "method": method,
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "query_string": urlencode(query or {}).encode(),
            "root_path": "",
            "headers": [(key.lower().encode(), value.encode()) for key, value in header_items.items()],
            "client": ("127.0.0.1", 50000),
            "server": ("testserver", 80),
        }
        self.messages: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._body = raw_body
        self._body_sent = False
        self._disconnected = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        self._task = asyncio.create_task(app(self.scope, self._receive, self.messages.put))

    async def response_start(self) -> dict[str, Any]:
        message = await self.messages.get()
        assert message["type"] == "http.response.start"
        return message

    async def next_event(self) -> dict[str, Any]:
        while True:
            message = await self.messages.get()
            assert message["type"] == "http.response.body"
            frame = message["body"].decode()
            if frame.startswith("data: "):
                return json.loads(frame[len("data: "):])

    async def json_body(self) -> Any:
        chunks: list[bytes] = []
        while True:
            message = await self.messages.get()
            if message["type"] == "http.response.body":
                chunks.append(message.get("body", b""))
                if not message.get("more_body", False):
                    return json.loads(b"".join(chunks))

    async def disconnect(self) -> None:
        self._disconnected.set()
        assert self._task is not None
        await self._task

    async def _receive(self) -> dict[str, Any]:
        if not self._body_sent:
            self._body_sent = True
            return {"type": "http.request", "body": self._body, "more_body": False}
        await self._disconnected.wait()
        return {"type": "http.disconnect"}


async def _call(method: str, path: str, **kwargs: Any) -> tuple[int, Any]:
    call = StreamingCall(method, path, **kwargs)
    call.start()
    start = await call.response_start()
    body = await call.json_body()
    await call.disconnect()
    return start["status"], body


@pytest.fixture
def fast_polling(monkeypatch: pytest.MonkeyPatch, engine) -> Iterator[None]:
    monkeypatch.setenv("STREAM_POLL_SECONDS", "0.05")
    get_settings.cache_clear()
    yield
    if get_notifier.cache_info().currsize:
        get_notifier().shutdown()


@pytest.mark.anyio
async def test_job_stream_pushes_connected_then_update_after_a_task_route(
    fast_polling,
    make_owner,
    make_job,
) -> None:
    make_owner()
    make_job()
    stream = StreamingCall(
        "GET",
        "/events/jobs/job-1",
        query={"role": "customer", "token": "cust-job-1"},
    )

    with anyio.fail_after(5):
        stream.start()
        start = await stream.response_start()
        headers = {key.decode(): value.decode() for key, value in start["headers"]}
        connected = await stream.next_event()

        status_code, body = await _call(
            "PATCH",
            "/session/technician/tech-job-1/tasks",
            body={"completed": True},
        )
        updated = await stream.next_event()
        await stream.disconnect()

    assert start["status"] == 200
    assert headers["content-type"].startswith("text/event-stream")
    assert headers["cache-control"] == "no-cache, no-transform"
    assert headers["x-accel-buffering"] == "no"
    assert connected["type"] == "connected"
    assert connected["job"]["progress_percent"] == 0
    assert status_code == 200
    assert body["job"]["all_completed"] is True
    assert updated["type"] == "job.updated"
    assert updated["job"]["progress_percent"] == 100
    assert updated["job"]["all_completed"] is True


@pytest.mark.anyio
async def test_owner_stream_signals_after_a_job_mutation(
    fast_polling,
    make_owner,
    make_job,
    manager_headers,
) -> None:
    make_owner()
    make_job()
    stream = StreamingCall("GET", "/events/owners/owner-1", headers=manager_headers)

    with anyio.fail_after(5):
        stream.start()
        start = await stream.response_start()
        connected = await stream.next_event()

        status_code, _ = await _call(
            "PATCH",
            "/session/technician/tech-job-1/task",
            body={"task_id": "job-1-task-0", "completed": True},
        )
        updated = await stream.next_event()
        await stream.disconnect()

    assert start["status"] == 200
    assert connected == {"type": "connected", "owner_id": "owner-1"}
    assert status_code == 200
    assert updated == {"type": "owner.updated", "owner_id": "owner-1", "changed": True}
