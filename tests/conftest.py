"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from task_queue.engine.idempotency import IdempotencyLedger
from task_queue.engine.models import TaskCreate, TaskView
from task_queue.engine.repository import TaskRepository
from task_queue.engine.services import TaskService
from task_queue.storage.common import sqlite_url


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[TaskRepository]:
    """Migrated SQLite-backed repository in a per-test database file."""

    repository = TaskRepository(sqlite_url(tmp_path / "tasks.db"))
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@pytest.fixture()
def service(repository: TaskRepository) -> TaskService:
    return TaskService(
        repository=repository,
        ledger=IdempotencyLedger(
            repository=repository,
            wait_seconds=10.0,
            poll_interval_seconds=0.01,
        ),
    )


@pytest.fixture()
def seed_tasks(repository: TaskRepository) -> Callable[[list[int]], list[TaskView]]:
    """Create one pending task per priority, in order."""

    def _seed(priorities: list[int]) -> list[TaskView]:
        return [
            repository.create(TaskCreate(title=f"Task {index}", priority=priority))
            for index, priority in enumerate(priorities, start=1)
        ]

    return _seed
