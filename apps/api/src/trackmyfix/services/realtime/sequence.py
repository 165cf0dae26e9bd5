from __future__ import annotations

import logging
from random import random
from time import sleep
from typing import Protocol

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

_INCREMENT_SQL = text(
    """
    INSERT INTO sequence_counters (counter_key, value, updated_at)
    VALUES (:counter_key, 1, CURRENT_TIMESTAMP)
    ON CONFLICT(counter_key) DO UPDATE
    SET value = sequence_counters.value + 1,
        updated_at = CURRENT_TIMESTAMP
    """
)

_READ_SQL = text("SELECT value FROM sequence_counters WHERE counter_key = :counter_key")


def job_key(job_id: str) -> str:
    return f"job:{job_id}"


def owner_key(owner_id: str) -> str:
    return f"owner:{owner_id}"


class SequenceCounters(Protocol):
    def increment(self, key: str) -> None: ...

    def read(self, key: str) -> int: ...


class SequenceCounterStore:
    """Cross-process change counters kept in the shared database.

    Failures degrade instead of raising: ``increment`` gives up after its retry
    budget and ``read`` reports 0, which a stream session treats as "no change".
    """

    def __init__(
        self,
        engine: Engine,
        *,
        retry_attempts: int = 3,
        retry_base_seconds: float = 0.2,
        retry_max_seconds: float = 2.0,
    ) -> None:
        self._engine = engine
        self._retry_attempts = max(1, retry_attempts)
        self._retry_base_seconds = retry_base_seconds
        self._retry_max_seconds = retry_max_seconds

    def increment(self, key: str) -> None:
        delay = self._retry_base_seconds
        attempt = 1

        while True:
            try:
                with self._engine.begin() as connection:
                    connection.execute(_INCREMENT_SQL, {"counter_key": key})
                return
            except SQLAlchemyError as exc:
                if attempt >= self._retry_attempts:
                    logger.warning(
                        "sequence increment dropped key=%s attempts=%d error=%r",
                        key,
                        attempt,
                        exc,
                    )
                    return
                logger.info(
                    "sequence increment failed key=%s attempt=%d error=%r; retrying in %.2fs",
                    key,
                    attempt,
                    exc,
                    delay,
                )
                sleep(delay + random() * 0.2 * delay)
                delay = min(delay * 2, self._retry_max_seconds)
                attempt += 1

    def read(self, key: str) -> int:
        try:
            with self._engine.connect() as connection:
                value = connection.execute(_READ_SQL, {"counter_key": key}).scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.warning("sequence read failed key=%s error=%r", key, exc)
            return 0

        if value is None:
            return 0
        return max(0, int(value))
