"""Runtime configuration for the task queue."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from task_queue.storage.common import sqlite_url

DEFAULT_DB_PATH = Path(".task_queue.db")


@dataclass(slots=True)
class WorkerSettings:
    """Worker pool settings."""

    worker_count: int = 3
    poll_interval_seconds: float = 1.0
    work_min_seconds: float = 2.0
    work_max_seconds: float = 4.0
    shutdown_timeout_seconds: float = 10.0


@dataclass(slots=True)
class IdempotencySettings:
    """How long a losing caller waits for the winner to publish its task id."""

    wait_seconds: float = 5.0
    poll_interval_seconds: float = 0.05


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    database_url: str = sqlite_url(DEFAULT_DB_PATH)
    sqlite_busy_timeout_ms: int = 5_000
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    idempotency: IdempotencySettings = field(default_factory=IdempotencySettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            database_url=_resolve_database_url(db_path),
            sqlite_busy_timeout_ms=int(os.getenv("TASK_QUEUE_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            worker=WorkerSettings(
                worker_count=int(os.getenv("TASK_QUEUE_WORKER_COUNT", "3")),
                poll_interval_seconds=float(
                    os.getenv("TASK_QUEUE_POLL_INTERVAL_SECONDS", "1.0"),
                ),
                work_min_seconds=float(os.getenv("TASK_QUEUE_WORK_MIN_SECONDS", "2.0")),
                work_max_seconds=float(os.getenv("TASK_QUEUE_WORK_MAX_SECONDS", "4.0")),
                shutdown_timeout_seconds=float(
                    os.getenv("TASK_QUEUE_SHUTDOWN_TIMEOUT_SECONDS", "10.0"),
                ),
            ),
            idempotency=IdempotencySettings(
                wait_seconds=float(os.getenv("TASK_QUEUE_IDEMPOTENCY_WAIT_SECONDS", "5.0")),
                poll_interval_seconds=float(
                    os.getenv("TASK_QUEUE_IDEMPOTENCY_POLL_SECONDS", "0.05"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the queue cannot run with."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("TASK_QUEUE_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.worker.worker_count <= 0:
            raise ValueError("TASK_QUEUE_WORKER_COUNT must be > 0.")
        if self.worker.poll_interval_seconds <= 0:
            raise ValueError("TASK_QUEUE_POLL_INTERVAL_SECONDS must be > 0.")
        if self.worker.work_min_seconds < 0:
            raise ValueError("TASK_QUEUE_WORK_MIN_SECONDS must be >= 0.")
        if self.worker.work_max_seconds < self.worker.work_min_seconds:
            raise ValueError(
                "TASK_QUEUE_WORK_MAX_SECONDS must be >= TASK_QUEUE_WORK_MIN_SECONDS.",
            )
        if self.worker.shutdown_timeout_seconds <= 0:
            raise ValueError("TASK_QUEUE_SHUTDOWN_TIMEOUT_SECONDS must be > 0.")
        if self.idempotency.wait_seconds <= 0:
            raise ValueError("TASK_QUEUE_IDEMPOTENCY_WAIT_SECONDS must be > 0.")
        if self.idempotency.poll_interval_seconds <= 0:
            raise ValueError("TASK_QUEUE_IDEMPOTENCY_POLL_SECONDS must be > 0.")


def _resolve_database_url(db_path: Path | None) -> str:
    if db_path is not None:
        return sqlite_url(db_path)
    explicit = os.getenv("TASK_QUEUE_DATABASE_URL", "").strip()
    if explicit:
        return explicit
    return sqlite_url(Path(os.getenv("TASK_QUEUE_DB_PATH", str(DEFAULT_DB_PATH))))
