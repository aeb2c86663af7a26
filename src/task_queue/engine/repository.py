"""Persistent task repository: CRUD, claim protocol, and idempotency key primitives."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import insert as sa_insert
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from task_queue.engine.errors import TaskNotFoundError, TaskValidationError, VersionConflictError
from task_queue.engine.models import (
    IdempotencyEntry,
    TaskCreate,
    TaskStats,
    TaskStatus,
    TaskUpdate,
    TaskView,
)
from task_queue.storage.alembic_runner import upgrade_head
from task_queue.storage.common import (
    build_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from task_queue.storage.sqlmodel_models import IdempotencyKey, Task

DEFAULT_LIST_LIMIT = 20

_TASKS = Task.__table__  # type: ignore[attr-defined]
_KEYS = IdempotencyKey.__table__  # type: ignore[attr-defined]


class TaskRepository:
    """Task persistence facade backed by SQLModel.

    Every method opens its own short-lived session, so one instance can be
    shared by request handlers and worker threads. All cross-caller
    coordination happens inside single conditional statements.
    """

    def __init__(self, database_url: str, *, busy_timeout_ms: int = 5000) -> None:
        self.database_url = database_url
        self.engine = build_engine(database_url=database_url, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.database_url)

    def create(self, payload: TaskCreate) -> TaskView:
        """Insert a pending task with version 1."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = Task(
                title=payload.title,
                priority=payload.priority,
                status=TaskStatus.PENDING.value,
                version=1,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise TaskValidationError(
                    f"Task rejected by store constraints: {error.orig}",
                ) from error
            session.refresh(row)
            return _to_task_view(row)

    def get(self, task_id: int) -> TaskView:
        """Fetch one task by id."""

        with Session(self.engine) as session:
            row = session.get(Task, task_id)
            if row is None:
                raise TaskNotFoundError(task_id)
            return _to_task_view(row)

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[TaskView]:
        """List tasks newest first, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(Task)
            if status is not None:
                statement = statement.where(Task.status == status.value)
            statement = statement.order_by(
                col(Task.created_at).desc(),
                col(Task.id).desc(),
            ).limit(limit)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def update(self, payload: TaskUpdate) -> TaskView:
        """Apply title/priority only if the stored version equals payload.version."""

        now = to_db_datetime(utc_now())
        statement = (
            sa_update(_TASKS)
            .where(
                _TASKS.c.id == payload.task_id,
                _TASKS.c.version == payload.version,
            )
            .values(
                title=payload.title,
                priority=payload.priority,
                version=_TASKS.c.version + 1,
                updated_at=now,
            )
            .returning(*_TASKS.c)
        )
        with Session(self.engine) as session:
            try:
                row = session.exec(statement).one_or_none()
            except IntegrityError as error:
                session.rollback()
                raise TaskValidationError(
                    f"Task rejected by store constraints: {error.orig}",
                ) from error
            if row is None:
                session.rollback()
                raise VersionConflictError(payload.task_id, payload.version)
            session.commit()
        return _to_task_view(row)

    def delete(self, task_id: int) -> None:
        """Remove one task row."""

        with Session(self.engine) as session:
            result = session.exec(sa_delete(_TASKS).where(_TASKS.c.id == task_id))
            if result.rowcount != 1:
                session.rollback()
                raise TaskNotFoundError(task_id)
            session.commit()

    def claim_next(self) -> TaskView | None:
        """Atomically move the best pending task to processing and return it.

        The candidate subquery locks with ``FOR UPDATE SKIP LOCKED`` where the
        backend supports it, so concurrent claimers move on to the next row
        instead of queueing. SQLite serialises writers, which makes the single
        statement atomic there as well.
        """

        now = to_db_datetime(utc_now())
        candidate = (
            select(_TASKS.c.id)
            .where(_TASKS.c.status == TaskStatus.PENDING.value)
            .order_by(
                _TASKS.c.priority.desc(),
                _TASKS.c.created_at.asc(),
                _TASKS.c.id.asc(),
            )
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        statement = (
            sa_update(_TASKS)
            .where(
                _TASKS.c.id == candidate,
                _TASKS.c.status == TaskStatus.PENDING.value,
            )
            .values(
                status=TaskStatus.PROCESSING.value,
                started_at=now,
                completed_at=None,
                updated_at=now,
            )
            .returning(*_TASKS.c)
        )
        with Session(self.engine) as session:
            row = session.exec(statement).one_or_none()
            session.commit()
        if row is None:
            return None
        return _to_task_view(row)

    def complete(self, task_id: int) -> bool:
        """Mark a processing task as completed. No version check."""

        now = to_db_datetime(utc_now())
        return self._transition(
            task_id=task_id,
            status_from=TaskStatus.PROCESSING,
            values={
                "status": TaskStatus.COMPLETED.value,
                "completed_at": now,
                "updated_at": now,
            },
        )

    def revert_to_pending(self, task_id: int) -> bool:
        """Return a processing task to pending so it can be claimed again.

        The version is bumped so editors holding the pre-claim version get a
        conflict instead of silently overwriting a re-opened task.
        """

        now = to_db_datetime(utc_now())
        return self._transition(
            task_id=task_id,
            status_from=TaskStatus.PROCESSING,
            values={
                "status": TaskStatus.PENDING.value,
                "started_at": None,
                "version": _TASKS.c.version + 1,
                "updated_at": now,
            },
        )

    def aggregate_stats(self) -> TaskStats:
        """Counts per status, total, and mean processing latency of completed tasks."""

        stats = TaskStats()
        with Session(self.engine) as session:
            counts = session.exec(
                select(Task.status, func.count(col(Task.id))).group_by(Task.status),
            ).all()
            durations = session.exec(
                select(Task.started_at, Task.completed_at).where(
                    Task.status == TaskStatus.COMPLETED.value,
                    col(Task.started_at).is_not(None),
                    col(Task.completed_at).is_not(None),
                ),
            ).all()

        for status, count in counts:
            stats.by_status[TaskStatus(status)] = int(count)
            stats.total_tasks += int(count)
        if durations:
            total = sum(
                (
                    to_utc_aware_datetime(completed_at) - to_utc_aware_datetime(started_at)
                    for started_at, completed_at in durations
                ),
                start=timedelta(),
            )
            stats.avg_processing = total / len(durations)
        return stats

    def reserve_idempotency_key(self, key: str) -> bool:
        """Insert an empty mapping for key; False when another caller already holds it."""

        statement = sa_insert(_KEYS).values(
            key=key,
            resource_id=None,
            created_at=to_db_datetime(utc_now()),
        )
        with Session(self.engine) as session:
            try:
                session.exec(statement)
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
        return True

    def publish_idempotency_key(self, key: str, task_id: int) -> bool:
        """Fill the reserved mapping exactly once."""

        statement = (
            sa_update(_KEYS)
            .where(_KEYS.c.key == key, _KEYS.c.resource_id.is_(None))
            .values(resource_id=task_id)
        )
        with Session(self.engine) as session:
            result = session.exec(statement)
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
        return True

    def release_idempotency_key(self, key: str) -> bool:
        """Drop a reservation that was never published."""

        statement = sa_delete(_KEYS).where(_KEYS.c.key == key, _KEYS.c.resource_id.is_(None))
        with Session(self.engine) as session:
            result = session.exec(statement)
            session.commit()
        return result.rowcount == 1

    def find_idempotency_key(self, key: str) -> IdempotencyEntry | None:
        with Session(self.engine) as session:
            row = session.get(IdempotencyKey, key)
            if row is None:
                return None
            return IdempotencyEntry(
                key=row.key,
                resource_id=row.resource_id,
                created_at=to_utc_aware_datetime(row.created_at),
            )

    def count_tasks(self) -> int:
        with Session(self.engine) as session:
            return int(session.exec(select(func.count(col(Task.id)))).one())

    def _transition(
        self,
        *,
        task_id: int,
        status_from: TaskStatus,
        values: dict[str, Any],
    ) -> bool:
        statement = (
            sa_update(_TASKS)
            .where(_TASKS.c.id == task_id, _TASKS.c.status == status_from.value)
            .values(**values)
        )
        with Session(self.engine) as session:
            result = session.exec(statement)
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
        return True


def _to_task_view(row: Any) -> TaskView:
    return TaskView(
        task_id=row.id,
        title=row.title,
        priority=row.priority,
        status=TaskStatus(row.status),
        version=row.version,
        started_at=to_utc_aware_datetime(row.started_at) if row.started_at is not None else None,
        completed_at=(
            to_utc_aware_datetime(row.completed_at) if row.completed_at is not None else None
        ),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
