"""Use-case services exposed to the request layer."""

from __future__ import annotations

from task_queue.engine.errors import TaskValidationError
from task_queue.engine.idempotency import IdempotencyLedger
from task_queue.engine.models import TaskCreate, TaskStats, TaskStatus, TaskUpdate, TaskView
from task_queue.engine.repository import DEFAULT_LIST_LIMIT, TaskRepository
from task_queue.storage.sqlmodel_models import MAX_PRIORITY, MIN_PRIORITY

MAX_LIST_LIMIT = 100


class TaskService:
    """Validates input and routes calls to the repository and idempotency ledger."""

    def __init__(
        self,
        *,
        repository: TaskRepository,
        ledger: IdempotencyLedger | None = None,
    ) -> None:
        self.repository = repository
        self.ledger = ledger or IdempotencyLedger(repository=repository)

    def create(self, payload: TaskCreate, dedup_key: str | None = None) -> TaskView:
        """Create a task, or replay the task already created for dedup_key."""

        validate_task_fields(title=payload.title, priority=payload.priority)
        return self.ledger.resolve(dedup_key, lambda: self.repository.create(payload))

    def get(self, task_id: int) -> TaskView:
        return self.repository.get(task_id)

    def list_tasks(
        self,
        *,
        status: str | TaskStatus | None = None,
        limit: int | None = None,
    ) -> list[TaskView]:
        """List newest tasks; out-of-range limits fall back to the default page size."""

        if limit is None or limit <= 0 or limit > MAX_LIST_LIMIT:
            limit = DEFAULT_LIST_LIMIT
        return self.repository.list_tasks(status=parse_status(status), limit=limit)

    def update(self, payload: TaskUpdate) -> TaskView:
        """Apply an edit guarded by payload.version. Conflicts are never retried here."""

        validate_task_fields(title=payload.title, priority=payload.priority)
        return self.repository.update(payload)

    def delete(self, task_id: int) -> None:
        self.repository.delete(task_id)

    def stats(self) -> TaskStats:
        return self.repository.aggregate_stats()


def validate_task_fields(*, title: str, priority: int) -> None:
    """Raise TaskValidationError for a blank title or a priority outside [1, 10]."""

    if not isinstance(title, str) or not title.strip():
        raise TaskValidationError("Task title must not be empty.")
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise TaskValidationError(f"Task priority must be an integer, got {priority!r}.")
    if priority < MIN_PRIORITY or priority > MAX_PRIORITY:
        raise TaskValidationError(
            f"Task priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {priority}.",
        )


def parse_status(value: str | TaskStatus | None) -> TaskStatus | None:
    if value is None or isinstance(value, TaskStatus):
        return value
    normalized = value.strip().lower()
    if not normalized:
        return None
    try:
        return TaskStatus(normalized)
    except ValueError as error:
        allowed = ", ".join(status.value for status in TaskStatus)
        raise TaskValidationError(
            f"Unknown task status {value!r}; expected one of: {allowed}.",
        ) from error
