from collections.abc import Iterator
from datetime import datetime, timezone
import logging
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from trackmyfix.config import get_settings
from trackmyfix.db import Base, get_engine
from trackmyfix.main import app, get_notifier, get_sequence_store
from trackmyfix.models import JobRecord, JobTaskRecord, OwnerRecord

MANAGER_EMAIL = "manager@example.com"


@pytest.fixture(autouse=True)
def reset_api_caches() -> Iterator[None]:
    root_logger = logging.getLogger()
    root_handlers = root_logger.handlers[:]
    root_level = root_logger.level
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_sequence_store.cache_clear()
    get_notifier.cache_clear()
    yield
    # app startup installs its own root handler
    root_logger.handlers[:] = root_handlers
    root_logger.setLevel(root_level)
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_sequence_store.cache_clear()
    get_notifier.cache_clear()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[Engine]:
    sqlite_db_path = tmp_path / "api-tests.db"
    monkeypatch.setenv("API_DATABASE_URL", f"sqlite+pysqlite:///{sqlite_db_path}")
    monkeypatch.setenv("API_DB_ECHO", "false")
    monkeypatch.setenv("SEQUENCE_RETRY_ATTEMPTS", "1")

    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def client(engine: Engine) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def seed_owner(engine: Engine, owner_id: str = "owner-1", email: str = MANAGER_EMAIL) -> str:
    with Session(engine) as session:
        session.add(
            OwnerRecord(
                id=owner_id,
                name="Dana Owner",
                email=email,
                business_name="Fix-It Plumbing",
                business_phone="555-0100",
            )
        )
        session.commit()
    return owner_id


def seed_job(
    engine: Engine,
    *,
    job_id: str = "job-1",
    owner_id: str = "owner-1",
    task_names: tuple[str, ...] = ("Shut off water", "Replace valve", "Test pressure", "Clean up"),
    technician_token: str | None = None,
    customer_token: str | None = None,
) -> str:
    timestamp = datetime(2026, 10, 1, 8, 0, 0, tzinfo=timezone.utc)
    with Session(engine) as session:
        session.add(
            JobRecord(
                id=job_id,
                owner_id=owner_id,
                title="Kitchen sink repair",
                business_name="Fix-It Plumbing",
                business_phone="555-0100",
                customer_name="Casey Customer",
                location="12 Elm St",
                technician_token=technician_token or f"tech-{job_id}",
                customer_token=customer_token or f"cust-{job_id}",
                created_at=timestamp,
                updated_at=timestamp,
            )
        )
        session.flush()
        session.add_all(
            [
                JobTaskRecord(
                    id=f"{job_id}-task-{position}",
                    job_id=job_id,
                    position=position,
                    name=name,
                    completed=False,
                    updated_at=timestamp,
                )
                for position, name in enumerate(task_names)
            ]
        )
        session.commit()
    return job_id


@pytest.fixture
def make_owner(engine: Engine):
    def _make(owner_id: str = "owner-1", email: str = MANAGER_EMAIL) -> str:
        return seed_owner(engine, owner_id, email)

    return _make


@pytest.fixture
def make_job(engine: Engine):
    def _make(**kwargs) -> str:
        return seed_job(engine, **kwargs)

    return _make


@pytest.fixture
def manager_headers() -> dict[str, str]:
    return {"X-Manager-Email": MANAGER_EMAIL}
