"""Reservation-first idempotent task creation."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from task_queue.engine.errors import IdempotencyKeyPendingError
from task_queue.engine.models import TaskView
from task_queue.engine.repository import TaskRepository

logger = logging.getLogger(__name__)


class IdempotencyLedger:
    """Resolves a client dedup key to exactly one task.

    The key row is inserted before the task exists and its primary key decides
    which caller creates the task. Every other caller waits for the winner to
    publish the task id and returns that task instead of creating its own.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        wait_seconds: float = 5.0,
        poll_interval_seconds: float = 0.05,
    ) -> None:
        self.repository = repository
        self.wait_seconds = wait_seconds
        self.poll_interval_seconds = poll_interval_seconds

    def resolve(self, key: str | None, factory: Callable[[], TaskView]) -> TaskView:
        """Return the task for key, creating it with factory only if this caller wins.

        A blank or missing key disables deduplication and always calls factory.
        """

        normalized = (key or "").strip()
        if not normalized:
            return factory()

        started = time.monotonic()
        while True:
            if self.repository.reserve_idempotency_key(normalized):
                return self._create_and_publish(key=normalized, factory=factory)

            resource_id = self._wait_for_publication(key=normalized, started=started)
            if resource_id is not None:
                logger.debug("Idempotency key %r replayed task %s", normalized, resource_id)
                return self.repository.get(resource_id)
            # The previous holder failed and released the reservation.
            logger.info("Idempotency key %r was released; competing again", normalized)

    def _create_and_publish(self, *, key: str, factory: Callable[[], TaskView]) -> TaskView:
        try:
            task = factory()
        except Exception:
            self.repository.release_idempotency_key(key)
            raise

        if not self.repository.publish_idempotency_key(key, task.task_id):
            raise RuntimeError(
                f"Idempotency key {key!r} lost its reservation before task "
                f"{task.task_id} could be published.",
            )
        logger.debug("Idempotency key %r resolved to new task %s", key, task.task_id)
        return task

    def _wait_for_publication(self, *, key: str, started: float) -> int | None:
        deadline = started + self.wait_seconds
        while True:
            entry = self.repository.find_idempotency_key(key)
            if entry is None:
                return None
            if entry.resource_id is not None:
                return entry.resource_id
            if time.monotonic() >= deadline:
                raise IdempotencyKeyPendingError(key, time.monotonic() - started)
            time.sleep(self.poll_interval_seconds)
