"""Controllers for task queue CLI commands."""

from __future__ import annotations

import json
import logging
import random
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.engine import make_url

from task_queue.config import Settings
from task_queue.engine.idempotency import IdempotencyLedger
from task_queue.engine.models import TaskCreate, TaskUpdate, TaskView
from task_queue.engine.repository import TaskRepository
from task_queue.engine.services import TaskService
from task_queue.engine.stats import render_stats_lines, stats_to_dict
from task_queue.engine.worker import SimulatedWork, WorkerPool, signal_handlers

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InitDbCommand:
    """CLI input for schema migration."""

    db_path: Path | None


@dataclass(slots=True)
class CreateTaskCommand:
    """CLI input for task creation."""

    db_path: Path | None
    title: str
    priority: int
    idempotency_key: str | None = None


@dataclass(slots=True)
class GetTaskCommand:
    """CLI input for task inspection or deletion."""

    db_path: Path | None
    task_id: int


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    limit: int | None


@dataclass(slots=True)
class UpdateTaskCommand:
    """CLI input for a version-guarded edit."""

    db_path: Path | None
    task_id: int
    title: str
    priority: int
    version: int


@dataclass(slots=True)
class SeedTasksCommand:
    """CLI input for demo data: count tasks with random priorities."""

    db_path: Path | None
    count: int
    key_prefix: str = "seed"


@dataclass(slots=True)
class StatsCommand:
    """CLI input for queue stats."""

    db_path: Path | None
    as_json: bool = False


@dataclass(slots=True)
class RunWorkersCommand:
    """CLI input for running the worker pool."""

    db_path: Path | None
    workers: int | None
    poll_interval_seconds: float | None
    run_seconds: float | None


class TaskCliController:
    """Coordinates task CRUD, stats, and worker pool CLI operations."""

    def init_db(self, command: InitDbCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings):
            pass
        return [f"Schema is up to date: {_redact_url(settings.database_url)}"]

    def create(self, command: CreateTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            task = service.create(
                TaskCreate(title=command.title, priority=command.priority),
                dedup_key=command.idempotency_key,
            )
        return [f"Task created: {format_task(task)}"]

    def get(self, command: GetTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            task = service.get(command.task_id)
        return [
            f"Task: {task.task_id}",
            f"Title: {task.title}",
            f"Status: {task.status.value}",
            f"Priority: {task.priority}",
            f"Version: {task.version}",
            f"Created: {task.created_at.isoformat()}",
            f"Updated: {task.updated_at.isoformat()}",
            f"Started: {task.started_at.isoformat() if task.started_at else '-'}",
            f"Completed: {task.completed_at.isoformat() if task.completed_at else '-'}",
        ]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            tasks = service.list_tasks(status=command.status, limit=command.limit)
        if not tasks:
            return ["No tasks found."]
        return [format_task(task) for task in tasks]

    def update(self, command: UpdateTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            task = service.update(
                TaskUpdate(
                    task_id=command.task_id,
                    title=command.title,
                    priority=command.priority,
                    version=command.version,
                ),
            )
        return [f"Task updated: {format_task(task)}"]

    def delete(self, command: GetTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            service.delete(command.task_id)
        return [f"Task deleted: task_id={command.task_id}"]

    def seed(self, command: SeedTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        rng = random.Random()  # noqa: S311
        payloads = [
            (
                TaskCreate(title=f"Task {index}", priority=rng.randint(1, 10)),
                f"{command.key_prefix}-{index}",
            )
            for index in range(1, command.count + 1)
        ]
        with _service(settings) as service, ThreadPoolExecutor(max_workers=8) as executor:
            tasks = list(
                executor.map(lambda item: service.create(item[0], dedup_key=item[1]), payloads),
            )
        distinct = {task.task_id for task in tasks}
        return [f"Seeded tasks: requested={command.count} distinct={len(distinct)}"]

    def stats(self, command: StatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            stats = service.stats()
        if command.as_json:
            return [json.dumps(stats_to_dict(stats), sort_keys=True)]
        return render_stats_lines(stats)

    def run_workers(self, command: RunWorkersCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if command.workers is not None:
            settings.worker.worker_count = command.workers
        if command.poll_interval_seconds is not None:
            settings.worker.poll_interval_seconds = command.poll_interval_seconds
        settings.validate()

        with _repository(settings) as repository:
            pool = WorkerPool(
                repository=repository,
                worker_count=settings.worker.worker_count,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
                work=SimulatedWork(
                    min_seconds=settings.worker.work_min_seconds,
                    max_seconds=settings.worker.work_max_seconds,
                ),
            )

            def _on_signal(name: str) -> None:
                logger.info("Received %s, shutting down worker pool", name)
                pool.request_stop()

            with signal_handlers(_on_signal):
                pool.start()
                try:
                    pool.wait(timeout=command.run_seconds)
                finally:
                    stopped = pool.stop(timeout=settings.worker.shutdown_timeout_seconds)
            summary = pool.summary()

        lines = [
            "Worker pool finished: "
            f"workers={settings.worker.worker_count} processed={summary.processed} "
            f"completed={summary.completed} reverted={summary.reverted} "
            f"failed={summary.failed} idle_polls={summary.idle_polls}",
        ]
        if not stopped:
            lines.append(
                "Warning: some worker loops did not exit within "
                f"{settings.worker.shutdown_timeout_seconds:g}s.",
            )
        return lines


def format_task(task: TaskView) -> str:
    return (
        f"task_id={task.task_id} status={task.status.value} priority={task.priority} "
        f"version={task.version} title={task.title!r}"
    )


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(
        settings.database_url,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _service(settings: Settings) -> Iterator[TaskService]:
    with _repository(settings) as repository:
        yield TaskService(
            repository=repository,
            ledger=IdempotencyLedger(
                repository=repository,
                wait_seconds=settings.idempotency.wait_seconds,
                poll_interval_seconds=settings.idempotency.poll_interval_seconds,
            ),
        )


def _redact_url(database_url: str) -> str:
    return make_url(database_url).render_as_string(hide_password=True)
