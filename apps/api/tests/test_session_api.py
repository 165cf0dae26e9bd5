from fastapi.testclient import TestClient

from trackmyfix.main import get_notifier, get_sequence_store


def _counter(key: str) -> int:
    assert get_notifier().drain(timeout=5)
    return get_sequence_store().read(key)


def test_health_returns_ok(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_session_view_for_customer_and_technician(client: TestClient, make_owner, make_job) -> None:
    make_owner()
    make_job()

    customer = client.get("/session/customer/cust-job-1")
    technician = client.get("/session/technician/tech-job-1")

    assert customer.status_code == 200
    assert technician.status_code == 200
    assert customer.json() == technician.json()
    job = customer.json()["job"]
    assert job["id"] == "job-1"
    assert job["total_tasks"] == 4
    assert job["progress_percent"] == 0
    assert [task["name"] for task in job["tasks"]] == [
        "Shut off water",
        "Replace valve",
        "Test pressure",
        "Clean up",
    ]
    assert "technician_token" not in job


def test_session_view_rejects_unknown_role_and_token(client: TestClient, make_owner, make_job) -> None:
    make_owner()
    make_job()

    assert client.get("/session/manager/tech-job-1").status_code == 404
    assert client.get("/session/customer/tech-job-1").status_code == 404
    assert client.get("/session/technician/nope").status_code == 404


def test_checking_a_task_updates_progress_and_bumps_counters(
    client: TestClient,
    make_owner,
    make_job,
) -> None:
    make_owner()
    make_job()

    first = client.patch(
        "/session/technician/tech-job-1/task",
        json={"task_id": "job-1-task-0", "completed": True},
    )
    second = client.patch("/session/technician/tech-job-1/task", json={"task_id": "job-1-task-1"})

    assert first.status_code == 200
    assert second.status_code == 200
    job = second.json()["job"]
    assert job["completed_tasks"] == 2
    assert job["progress_percent"] == 50
    assert job["all_completed"] is False
    assert _counter("job:job-1") == 2
    assert _counter("owner:owner-1") == 2


def test_toggling_without_completed_flips_the_task(client: TestClient, make_owner, make_job) -> None:
    make_owner()
    make_job()

    client.patch("/session/technician/tech-job-1/task", json={"task_id": "job-1-task-0"})
    response = client.patch("/session/technician/tech-job-1/task", json={"task_id": "job-1-task-0"})

    assert response.json()["job"]["tasks"][0]["completed"] is False


def test_task_update_errors(client: TestClient, make_owner, make_job) -> None:
    make_owner()
    make_job()

    unknown_task = client.patch("/session/technician/tech-job-1/task", json={"task_id": "missing"})
    customer_token = client.patch("/session/technician/cust-job-1/task", json={"task_id": "job-1-task-0"})
    missing_body = client.patch("/session/technician/tech-job-1/task", json={})

    assert unknown_task.status_code == 400
    assert unknown_task.json() == {"detail": "Task not found."}
    assert customer_token.status_code == 404
    assert missing_body.status_code == 422
    assert _counter("job:job-1") == 0


def test_mark_all_complete_is_one_logical_mutation(client: TestClient, make_owner, make_job) -> None:
    make_owner()
    make_job()

    response = client.patch("/session/technician/tech-job-1/tasks", json={"completed": True})

    assert response.status_code == 200
    job = response.json()["job"]
    assert job["progress_percent"] == 100
    assert job["all_completed"] is True
    assert _counter("job:job-1") == 1
    assert _counter("owner:owner-1") == 1


def test_notes_are_appended_newest_first(client: TestClient, make_owner, make_job) -> None:
    make_owner()
    make_job()

    client.patch("/session/technician/tech-job-1/notes", json={"notes": "Arrived on site"})
    response = client.patch("/session/technician/tech-job-1/notes", json={"notes": "  Valve replaced  "})

    assert response.status_code == 200
    notes = response.json()["job"]["notes"]
    assert [note["message"] for note in notes] == ["Valve replaced", "Arrived on site"]
    assert notes[0]["author_name"] == "Technician"
    assert _counter("job:job-1") == 2


def test_empty_note_is_rejected_without_notification(client: TestClient, make_owner, make_job) -> None:
    make_owner()
    make_job()

    response = client.patch("/session/technician/tech-job-1/notes", json={"notes": "   "})

    assert response.status_code == 400
    assert response.json() == {"detail": "Note cannot be empty."}
    assert _counter("job:job-1") == 0
