from __future__ import annotations

from collections.abc import Callable

import allure
import pytest

from task_queue.engine.errors import TaskNotFoundError, TaskValidationError, VersionConflictError
from task_queue.engine.models import TaskCreate, TaskStatus, TaskUpdate, TaskView
from task_queue.engine.repository import TaskRepository
from task_queue.engine.services import TaskService, parse_status, validate_task_fields

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Task Service"),
]


@pytest.mark.parametrize("priority", [0, 11, -3, 100])
def test_create_rejects_out_of_range_priority(service: TaskService, priority: int) -> None:
    with pytest.raises(TaskValidationError, match="between 1 and 10"):
        service.create(TaskCreate(title="Task", priority=priority))
    assert service.repository.count_tasks() == 0


@pytest.mark.parametrize("priority", [1, 10])
def test_create_accepts_priority_bounds(service: TaskService, priority: int) -> None:
    task = service.create(TaskCreate(title="Task", priority=priority))

    assert task.priority == priority
    assert task.status == TaskStatus.PENDING
    assert task.version == 1


@pytest.mark.parametrize("title", ["", "   ", "\t\n"])
def test_create_rejects_blank_title(service: TaskService, title: str) -> None:
    with pytest.raises(TaskValidationError, match="must not be empty"):
        service.create(TaskCreate(title=title, priority=5))


def test_validation_rejects_non_integer_priority() -> None:
    with pytest.raises(TaskValidationError, match="must be an integer"):
        validate_task_fields(title="ok", priority=True)
    with pytest.raises(TaskValidationError, match="must be an integer"):
        validate_task_fields(title="ok", priority="5")  # type: ignore[arg-type]


def test_validation_failure_does_not_reserve_the_key(service: TaskService) -> None:
    with pytest.raises(TaskValidationError):
        service.create(TaskCreate(title=" ", priority=5), dedup_key="bad-input")

    assert service.repository.find_idempotency_key("bad-input") is None


def test_create_with_key_replays(service: TaskService) -> None:
    first = service.create(TaskCreate(title="Once", priority=4), dedup_key="client-1")
    second = service.create(TaskCreate(title="Twice", priority=9), dedup_key="client-1")

    assert second == first
    assert service.repository.count_tasks() == 1


def test_update_rejects_invalid_fields_before_touching_store(service: TaskService) -> None:
    task = service.create(TaskCreate(title="Task", priority=5))

    with pytest.raises(TaskValidationError):
        service.update(TaskUpdate(task_id=task.task_id, title="Task", priority=0, version=1))
    assert service.get(task.task_id).version == 1


def test_update_conflict_is_surfaced_not_retried(service: TaskService) -> None:
    task = service.create(TaskCreate(title="Task", priority=5))
    service.update(TaskUpdate(task_id=task.task_id, title="New", priority=6, version=1))

    with pytest.raises(VersionConflictError):
        service.update(TaskUpdate(task_id=task.task_id, title="Old", priority=6, version=1))
    assert service.get(task.task_id).version == 2


def test_delete_and_get_missing(service: TaskService) -> None:
    task = service.create(TaskCreate(title="Task", priority=5))
    service.delete(task.task_id)

    with pytest.raises(TaskNotFoundError):
        service.get(task.task_id)
    with pytest.raises(TaskNotFoundError):
        service.delete(task.task_id)


@pytest.mark.parametrize(
    ("limit", "expected"),
    [
        (None, 20),
        (0, 20),
        (-1, 20),
        (101, 20),
        (5, 5),
        (100, 25),
    ],
)
def test_list_limit_falls_back_to_default_page(
    service: TaskService,
    seed_tasks: Callable[[list[int]], list[TaskView]],
    limit: int | None,
    expected: int,
) -> None:
    seed_tasks([5] * 25)

    assert len(service.list_tasks(limit=limit)) == expected


def test_list_filters_by_status_string(
    service: TaskService,
    repository: TaskRepository,
    seed_tasks: Callable[[list[int]], list[TaskView]],
) -> None:
    seed_tasks([3, 7])
    claimed = repository.claim_next()
    assert claimed is not None

    processing = service.list_tasks(status="Processing")
    assert [task.task_id for task in processing] == [claimed.task_id]
    assert len(service.list_tasks(status="pending")) == 1
    assert service.list_tasks(status="completed") == []


def test_unknown_status_is_rejected() -> None:
    with pytest.raises(TaskValidationError, match="Unknown task status 'archived'"):
        parse_status("archived")
    assert parse_status(None) is None
    assert parse_status("") is None
    assert parse_status(TaskStatus.COMPLETED) is TaskStatus.COMPLETED


def test_stats_reflect_service_activity(service: TaskService, repository: TaskRepository) -> None:
    for index in range(3):
        service.create(TaskCreate(title=f"Task {index}", priority=5))
    claimed = repository.claim_next()
    assert claimed is not None
    repository.complete(claimed.task_id)

    stats = service.stats()
    assert stats.total_tasks == 3
    assert stats.by_status[TaskStatus.PENDING] == 2
    assert stats.by_status[TaskStatus.COMPLETED] == 1
    assert stats.avg_processing is not None
