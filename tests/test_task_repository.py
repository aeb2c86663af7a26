from __future__ import annotations

import allure
import pytest

from task_queue.engine.errors import TaskNotFoundError, TaskValidationError, VersionConflictError
from task_queue.engine.models import TaskCreate, TaskStatus, TaskUpdate
from task_queue.engine.repository import TaskRepository

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Task Repository"),
]


def test_create_then_get_round_trips_all_fields(repository: TaskRepository) -> None:
    created = repository.create(TaskCreate(title="Write report", priority=7))

    assert created.task_id > 0
    assert created.status == TaskStatus.PENDING
    assert created.version == 1
    assert created.started_at is None
    assert created.completed_at is None
    assert created.created_at == created.updated_at

    fetched = repository.get(created.task_id)
    assert fetched == created


def test_ids_are_monotonic(repository: TaskRepository) -> None:
    first = repository.create(TaskCreate(title="first", priority=1))
    second = repository.create(TaskCreate(title="second", priority=1))

    assert second.task_id > first.task_id


def test_get_missing_task_raises_not_found(repository: TaskRepository) -> None:
    with pytest.raises(TaskNotFoundError, match="Task not found: 404"):
        repository.get(404)


@pytest.mark.parametrize(
    ("title", "priority"),
    [
        ("   ", 5),
        ("", 5),
        ("ok", 0),
        ("ok", 11),
    ],
)
def test_store_constraints_reject_invalid_rows(
    repository: TaskRepository,
    title: str,
    priority: int,
) -> None:
    with pytest.raises(TaskValidationError, match="store constraints"):
        repository.create(TaskCreate(title=title, priority=priority))
    assert repository.count_tasks() == 0


def test_list_is_newest_first_with_status_filter_and_limit(repository: TaskRepository) -> None:
    tasks = [repository.create(TaskCreate(title=f"t{index}", priority=5)) for index in range(5)]
    claimed = repository.claim_next()
    assert claimed is not None

    listed = repository.list_tasks(limit=3)
    assert [task.task_id for task in listed] == [
        tasks[4].task_id,
        tasks[3].task_id,
        tasks[2].task_id,
    ]

    processing = repository.list_tasks(status=TaskStatus.PROCESSING)
    assert [task.task_id for task in processing] == [claimed.task_id]

    pending = repository.list_tasks(status=TaskStatus.PENDING, limit=100)
    assert len(pending) == 4
    assert claimed.task_id not in {task.task_id for task in pending}


def test_update_applies_on_matching_version_and_bumps_by_one(
    repository: TaskRepository,
) -> None:
    task = repository.create(TaskCreate(title="draft", priority=3))

    updated = repository.update(
        TaskUpdate(task_id=task.task_id, title="final", priority=9, version=1),
    )
    assert updated.title == "final"
    assert updated.priority == 9
    assert updated.version == 2
    assert updated.status == TaskStatus.PENDING
    assert updated.updated_at >= task.updated_at
    assert updated.created_at == task.created_at

    again = repository.update(
        TaskUpdate(task_id=task.task_id, title="final v3", priority=9, version=2),
    )
    assert again.version == 3


def test_update_with_stale_version_is_rejected_without_side_effects(
    repository: TaskRepository,
) -> None:
    task = repository.create(TaskCreate(title="draft", priority=3))
    repository.update(TaskUpdate(task_id=task.task_id, title="v2", priority=4, version=1))

    with pytest.raises(VersionConflictError) as conflict:
        repository.update(TaskUpdate(task_id=task.task_id, title="stale", priority=8, version=1))
    assert conflict.value.task_id == task.task_id
    assert conflict.value.expected_version == 1

    stored = repository.get(task.task_id)
    assert stored.title == "v2"
    assert stored.priority == 4
    assert stored.version == 2


def test_update_of_deleted_task_reports_conflict(repository: TaskRepository) -> None:
    task = repository.create(TaskCreate(title="gone soon", priority=3))
    repository.delete(task.task_id)

    with pytest.raises(VersionConflictError):
        repository.update(TaskUpdate(task_id=task.task_id, title="x", priority=3, version=1))


def test_update_rejected_by_store_constraints(repository: TaskRepository) -> None:
    task = repository.create(TaskCreate(title="draft", priority=3))

    with pytest.raises(TaskValidationError):
        repository.update(TaskUpdate(task_id=task.task_id, title="x", priority=42, version=1))
    assert repository.get(task.task_id).version == 1


def test_delete_removes_row_and_second_delete_is_not_found(repository: TaskRepository) -> None:
    task = repository.create(TaskCreate(title="temp", priority=2))

    repository.delete(task.task_id)
    with pytest.raises(TaskNotFoundError):
        repository.get(task.task_id)
    with pytest.raises(TaskNotFoundError):
        repository.delete(task.task_id)


def test_claim_picks_highest_priority_then_oldest(repository: TaskRepository) -> None:
    low = repository.create(TaskCreate(title="low", priority=2))
    high_old = repository.create(TaskCreate(title="high old", priority=8))
    high_new = repository.create(TaskCreate(title="high new", priority=8))

    order = []
    while (claimed := repository.claim_next()) is not None:
        assert claimed.status == TaskStatus.PROCESSING
        assert claimed.started_at is not None
        order.append(claimed.task_id)

    assert order == [high_old.task_id, high_new.task_id, low.task_id]


def test_claim_on_empty_queue_returns_none(repository: TaskRepository) -> None:
    assert repository.claim_next() is None

    task = repository.create(TaskCreate(title="only", priority=5))
    assert repository.claim_next() is not None
    assert repository.claim_next() is None
    assert repository.get(task.task_id).status == TaskStatus.PROCESSING


def test_claim_does_not_touch_version(repository: TaskRepository) -> None:
    task = repository.create(TaskCreate(title="v", priority=5))

    claimed = repository.claim_next()

    assert claimed is not None
    assert claimed.version == task.version


def test_complete_only_applies_to_processing_tasks(repository: TaskRepository) -> None:
    task = repository.create(TaskCreate(title="work", priority=5))
    assert repository.complete(task.task_id) is False

    repository.claim_next()
    assert repository.complete(task.task_id) is True
    assert repository.complete(task.task_id) is False

    completed = repository.get(task.task_id)
    assert completed.status == TaskStatus.COMPLETED
    assert completed.completed_at is not None
    assert completed.started_at is not None
    assert completed.completed_at >= completed.started_at
    assert completed.version == 1


def test_revert_returns_task_to_pending_and_bumps_version(repository: TaskRepository) -> None:
    task = repository.create(TaskCreate(title="work", priority=5))
    repository.claim_next()

    assert repository.revert_to_pending(task.task_id) is True
    assert repository.revert_to_pending(task.task_id) is False

    reverted = repository.get(task.task_id)
    assert reverted.status == TaskStatus.PENDING
    assert reverted.started_at is None
    assert reverted.version == 2

    with pytest.raises(VersionConflictError):
        repository.update(TaskUpdate(task_id=task.task_id, title="stale", priority=5, version=1))

    reclaimed = repository.claim_next()
    assert reclaimed is not None
    assert reclaimed.task_id == task.task_id


def test_completed_task_cannot_be_reverted(repository: TaskRepository) -> None:
    task = repository.create(TaskCreate(title="done", priority=5))
    repository.claim_next()
    repository.complete(task.task_id)

    assert repository.revert_to_pending(task.task_id) is False
    assert repository.get(task.task_id).status == TaskStatus.COMPLETED
    assert repository.claim_next() is None


def test_aggregate_stats_counts_by_status_and_average_latency(
    repository: TaskRepository,
) -> None:
    empty = repository.aggregate_stats()
    assert empty.total_tasks == 0
    assert empty.by_status == dict.fromkeys(TaskStatus, 0)
    assert empty.avg_processing is None

    for index in range(4):
        repository.create(TaskCreate(title=f"t{index}", priority=5))
    first = repository.claim_next()
    second = repository.claim_next()
    assert first is not None
    assert second is not None
    repository.complete(first.task_id)

    stats = repository.aggregate_stats()
    assert stats.total_tasks == 4
    assert stats.by_status == {
        TaskStatus.PENDING: 2,
        TaskStatus.PROCESSING: 1,
        TaskStatus.COMPLETED: 1,
    }
    assert stats.avg_processing is not None
    assert stats.avg_processing.total_seconds() >= 0


def test_idempotency_key_primitives(repository: TaskRepository) -> None:
    assert repository.find_idempotency_key("k") is None
    assert repository.reserve_idempotency_key("k") is True
    assert repository.reserve_idempotency_key("k") is False

    reserved = repository.find_idempotency_key("k")
    assert reserved is not None
    assert reserved.resource_id is None

    task = repository.create(TaskCreate(title="keyed", priority=5))
    assert repository.publish_idempotency_key("k", task.task_id) is True
    assert repository.publish_idempotency_key("k", task.task_id + 1) is False
    assert repository.release_idempotency_key("k") is False

    published = repository.find_idempotency_key("k")
    assert published is not None
    assert published.resource_id == task.task_id
