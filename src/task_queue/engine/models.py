"""Domain models for the task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"


@dataclass(slots=True)
class TaskCreate:
    """Input payload for creating a task."""

    title: str
    priority: int


@dataclass(slots=True)
class TaskUpdate:
    """Editable fields guarded by the version the editor last observed."""

    task_id: int
    title: str
    priority: int
    version: int


@dataclass(slots=True)
class TaskView:
    """Readable task view for services, workers and CLI."""

    task_id: int
    title: str
    priority: int
    status: TaskStatus
    version: int
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class IdempotencyEntry:
    """Dedup key mapping; resource_id stays None until the reserving caller publishes it."""

    key: str
    resource_id: int | None
    created_at: datetime


@dataclass(slots=True)
class TaskStats:
    """Read-only aggregate over current task rows."""

    by_status: dict[TaskStatus, int] = field(
        default_factory=lambda: dict.fromkeys(TaskStatus, 0),
    )
    total_tasks: int = 0
    avg_processing: timedelta | None = None
