"""Error taxonomy surfaced by the task queue core."""

from __future__ import annotations


class TaskQueueError(Exception):
    """Base class for task queue errors."""


class TaskValidationError(TaskQueueError, ValueError):
    """Rejected input: blank title, out-of-range priority, unknown status."""


class TaskNotFoundError(TaskQueueError, LookupError):
    """No task with the requested id."""

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class VersionConflictError(TaskQueueError):
    """The stored version no longer matches the version presented by the editor."""

    def __init__(self, task_id: int, expected_version: int) -> None:
        super().__init__(
            f"Task {task_id} was modified concurrently or deleted "
            f"(expected version={expected_version}); re-fetch and retry.",
        )
        self.task_id = task_id
        self.expected_version = expected_version


class IdempotencyKeyPendingError(TaskQueueError):
    """The key is reserved but its task id was not published in time."""

    def __init__(self, key: str, waited_seconds: float) -> None:
        super().__init__(
            f"Idempotency key {key!r} is reserved by another request that has not "
            f"finished after {waited_seconds:.2f}s.",
        )
        self.key = key
