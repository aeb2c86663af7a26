"""CLI entrypoint for task-queue."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from task_queue import __version__
from task_queue.engine.controllers import (
    CreateTaskCommand,
    GetTaskCommand,
    InitDbCommand,
    ListTasksCommand,
    RunWorkersCommand,
    SeedTasksCommand,
    StatsCommand,
    TaskCliController,
    UpdateTaskCommand,
)
from task_queue.engine.errors import TaskQueueError

click.rich_click.USE_MARKDOWN = True
TASK_CONTROLLER = TaskCliController()

_DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path. Overrides TASK_QUEUE_DATABASE_URL.",
)


@click.group()
@click.version_option(version=__version__, prog_name="task-queue")
def task_queue() -> None:
    """Task queue CLI."""


@task_queue.group()
def db() -> None:
    """Schema commands."""


@db.command("init")
@_DB_PATH_OPTION
def db_init(db_path: Path | None) -> None:
    """Apply schema migrations up to head."""

    _emit(lambda: TASK_CONTROLLER.init_db(InitDbCommand(db_path=db_path)))


@task_queue.group()
def tasks() -> None:
    """Task commands."""


@tasks.command("create")
@_DB_PATH_OPTION
@click.option("--title", required=True, help="Task title (must not be blank).")
@click.option(
    "--priority",
    type=int,
    default=5,
    show_default=True,
    help="Priority 1-10; higher is claimed first.",
)
@click.option(
    "--idempotency-key",
    default=None,
    help="Dedup key: repeated calls with the same key return the same task.",
)
def tasks_create(
    db_path: Path | None,
    title: str,
    priority: int,
    idempotency_key: str | None,
) -> None:
    """Create a pending task."""

    _emit(
        lambda: TASK_CONTROLLER.create(
            CreateTaskCommand(
                db_path=db_path,
                title=title,
                priority=priority,
                idempotency_key=idempotency_key,
            ),
        ),
    )


@tasks.command("get")
@_DB_PATH_OPTION
@click.argument("task_id", type=int)
def tasks_get(db_path: Path | None, task_id: int) -> None:
    """Show one task."""

    _emit(lambda: TASK_CONTROLLER.get(GetTaskCommand(db_path=db_path, task_id=task_id)))


@tasks.command("list")
@_DB_PATH_OPTION
@click.option(
    "--status",
    type=click.Choice(["pending", "processing", "completed"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=int,
    default=None,
    help="Max tasks to show (1-100, default 20).",
)
def tasks_list(db_path: Path | None, status: str | None, limit: int | None) -> None:
    """List tasks, newest first."""

    _emit(
        lambda: TASK_CONTROLLER.list_tasks(
            ListTasksCommand(db_path=db_path, status=status, limit=limit),
        ),
    )


@tasks.command("update")
@_DB_PATH_OPTION
@click.argument("task_id", type=int)
@click.option("--title", required=True, help="New title.")
@click.option("--priority", type=int, required=True, help="New priority 1-10.")
@click.option(
    "--version",
    "version",
    type=int,
    required=True,
    help="Version you last read; the edit is rejected if the task changed since.",
)
def tasks_update(  # noqa: PLR0913
    db_path: Path | None,
    task_id: int,
    title: str,
    priority: int,
    version: int,
) -> None:
    """Edit title and priority with an optimistic version check."""

    _emit(
        lambda: TASK_CONTROLLER.update(
            UpdateTaskCommand(
                db_path=db_path,
                task_id=task_id,
                title=title,
                priority=priority,
                version=version,
            ),
        ),
    )


@tasks.command("delete")
@_DB_PATH_OPTION
@click.argument("task_id", type=int)
def tasks_delete(db_path: Path | None, task_id: int) -> None:
    """Delete one task."""

    _emit(lambda: TASK_CONTROLLER.delete(GetTaskCommand(db_path=db_path, task_id=task_id)))


@tasks.command("seed")
@_DB_PATH_OPTION
@click.argument("count", type=click.IntRange(min=1, max=10_000), default=20)
@click.option(
    "--key-prefix",
    default="seed",
    show_default=True,
    help="Idempotency key prefix; re-running with the same prefix creates nothing new.",
)
def tasks_seed(db_path: Path | None, count: int, key_prefix: str) -> None:
    """Create COUNT demo tasks with random priorities, concurrently."""

    _emit(
        lambda: TASK_CONTROLLER.seed(
            SeedTasksCommand(db_path=db_path, count=count, key_prefix=key_prefix),
        ),
    )


@tasks.command("stats")
@_DB_PATH_OPTION
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON.")
def tasks_stats(db_path: Path | None, as_json: bool) -> None:
    """Show counts per status and mean processing time."""

    _emit(lambda: TASK_CONTROLLER.stats(StatsCommand(db_path=db_path, as_json=as_json)))


@task_queue.group()
def worker() -> None:
    """Worker pool commands."""


@worker.command("run")
@_DB_PATH_OPTION
@click.option(
    "--workers",
    type=click.IntRange(min=1, max=64),
    default=None,
    help="Worker loops to run. Defaults to TASK_QUEUE_WORKER_COUNT.",
)
@click.option(
    "--poll-interval",
    "poll_interval_seconds",
    type=click.FloatRange(min=0.01),
    default=None,
    help="Seconds between claim attempts per loop.",
)
@click.option(
    "--run-seconds",
    type=click.FloatRange(min=0.0),
    default=None,
    help="Stop after this many seconds. Runs until SIGINT/SIGTERM when omitted.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging level.",
)
def worker_run(
    db_path: Path | None,
    workers: int | None,
    poll_interval_seconds: float | None,
    run_seconds: float | None,
    log_level: str,
) -> None:
    """Run the worker pool until stopped."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )
    _emit(
        lambda: TASK_CONTROLLER.run_workers(
            RunWorkersCommand(
                db_path=db_path,
                workers=workers,
                poll_interval_seconds=poll_interval_seconds,
                run_seconds=run_seconds,
            ),
        ),
    )


def _emit(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (TaskQueueError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    task_queue()
