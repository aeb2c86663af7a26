"""Polling worker loops that claim, execute, and complete queued tasks."""

from __future__ import annotations

import logging
import random
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from task_queue.engine.models import TaskView
from task_queue.engine.repository import TaskRepository

logger = logging.getLogger(__name__)

WorkFunction = Callable[[TaskView, threading.Event], None]

REVERT_ATTEMPTS = 5


class WorkCancelledError(Exception):
    """Raised by a work function that observed the stop signal before finishing."""


@dataclass(slots=True)
class SimulatedWork:
    """Stand-in unit of work: waits a random duration, aborting early on stop."""

    min_seconds: float = 2.0
    max_seconds: float = 4.0
    rng: random.Random = field(default_factory=random.Random)

    def __call__(self, task: TaskView, stop_event: threading.Event) -> None:
        duration = self.rng.uniform(self.min_seconds, self.max_seconds)
        if stop_event.wait(timeout=duration):
            raise WorkCancelledError(f"Task {task.task_id} cancelled by shutdown.")


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters."""

    processed: int = 0
    completed: int = 0
    reverted: int = 0
    failed: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.completed += other.completed
        self.reverted += other.reverted
        self.failed += other.failed
        self.idle_polls += other.idle_polls


class TaskWorker:
    """One polling loop: claim a task, run it, then complete or revert it."""

    def __init__(
        self,
        *,
        repository: TaskRepository,
        worker_id: str,
        work: WorkFunction | None = None,
        stop_event: threading.Event | None = None,
        poll_interval_seconds: float = 1.0,
        revert_backoff_seconds: float = 0.05,
    ) -> None:
        self.repository = repository
        self.worker_id = worker_id
        self.work = work or SimulatedWork()
        self.stop_event = stop_event or threading.Event()
        self.poll_interval_seconds = poll_interval_seconds
        self.revert_backoff_seconds = revert_backoff_seconds

    def run_once(self) -> WorkerRunSummary:
        """Process at most one task from the queue."""

        summary = WorkerRunSummary()
        if self.stop_event.is_set():
            summary.idle_polls = 1
            return summary

        task = self.repository.claim_next()
        if task is None:
            logger.debug("Worker %s found no pending task", self.worker_id)
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        logger.info(
            "Worker %s claimed task %s (priority=%s, title=%r)",
            self.worker_id,
            task.task_id,
            task.priority,
            task.title,
        )
        started = time.monotonic()
        try:
            self.work(task, self.stop_event)
        except WorkCancelledError:
            if self._revert(task):
                summary.reverted = 1
            return summary
        except Exception:
            logger.exception("Worker %s failed task %s", self.worker_id, task.task_id)
            summary.failed = 1
            if self._revert(task):
                summary.reverted = 1
            return summary

        try:
            completed = self.repository.complete(task.task_id)
        except Exception:
            # Finished work is not re-run; the row stays processing for reconciliation.
            logger.exception(
                "Worker %s finished task %s but could not mark it completed",
                self.worker_id,
                task.task_id,
            )
            summary.failed = 1
            return summary
        if completed:
            summary.completed = 1
            logger.info(
                "Worker %s completed task %s in %.2fs",
                self.worker_id,
                task.task_id,
                time.monotonic() - started,
            )
        else:
            logger.warning(
                "Worker %s could not complete task %s: it is no longer processing",
                self.worker_id,
                task.task_id,
            )
        return summary

    def run_loop(self) -> WorkerRunSummary:
        """Poll until the stop event is set. Errors are logged, never fatal."""

        aggregate = WorkerRunSummary()
        while not self.stop_event.is_set():
            try:
                aggregate.add(self.run_once())
            except Exception:
                logger.exception("Worker %s poll failed", self.worker_id)
            self.stop_event.wait(timeout=self.poll_interval_seconds)
        return aggregate

    def _revert(self, task: TaskView) -> bool:
        """Return task to pending, retrying transient store errors with backoff.

        The stop event is usually already set here, so the backoff sleeps
        instead of waiting on it.
        """

        delay = self.revert_backoff_seconds
        for attempt in range(1, REVERT_ATTEMPTS + 1):
            try:
                reverted = self.repository.revert_to_pending(task.task_id)
            except Exception:
                if attempt == REVERT_ATTEMPTS:
                    logger.exception(
                        "Worker %s gave up returning task %s to pending after %d attempts",
                        self.worker_id,
                        task.task_id,
                        attempt,
                    )
                    return False
                logger.warning(
                    "Worker %s could not return task %s to pending (attempt %d/%d); "
                    "retrying in %.2fs",
                    self.worker_id,
                    task.task_id,
                    attempt,
                    REVERT_ATTEMPTS,
                    delay,
                    exc_info=True,
                )
                time.sleep(delay)
                delay *= 2
                continue
            if reverted:
                logger.warning(
                    "Worker %s returned task %s to pending",
                    self.worker_id,
                    task.task_id,
                )
            return reverted
        return False


class WorkerPool:
    """Fixed set of worker threads started and stopped together."""

    def __init__(
        self,
        *,
        repository: TaskRepository,
        worker_count: int,
        poll_interval_seconds: float = 1.0,
        work: WorkFunction | None = None,
        name_prefix: str = "task-worker",
    ) -> None:
        if worker_count < 1:
            raise ValueError(f"worker_count must be >= 1, got {worker_count}.")
        if poll_interval_seconds <= 0:
            raise ValueError(
                f"poll_interval_seconds must be > 0, got {poll_interval_seconds}.",
            )
        self.repository = repository
        self.worker_count = worker_count
        self.poll_interval_seconds = poll_interval_seconds
        self.work = work or SimulatedWork()
        self.name_prefix = name_prefix
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self._summary = WorkerRunSummary()

    @property
    def running(self) -> bool:
        with self._lock:
            return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        """Spawn every worker loop."""

        with self._lock:
            if self._threads:
                raise RuntimeError("Worker pool is already running.")
            self._stop.clear()
            self._summary = WorkerRunSummary()
            for index in range(self.worker_count):
                worker = TaskWorker(
                    repository=self.repository,
                    worker_id=f"{self.name_prefix}-{index}",
                    work=self.work,
                    stop_event=self._stop,
                    poll_interval_seconds=self.poll_interval_seconds,
                )
                thread = threading.Thread(
                    target=self._run_worker,
                    args=(worker,),
                    name=worker.worker_id,
                    daemon=True,
                )
                self._threads.append(thread)
            for thread in self._threads:
                thread.start()
        logger.info("Starting worker pool with %d workers", self.worker_count)

    def stop(self, timeout: float | None = None) -> bool:
        """Signal every loop to stop and join them.

        In-flight work observes the same event and is cancelled cooperatively.
        Returns False if some loop was still alive when ``timeout`` elapsed.
        """

        logger.info("Stopping worker pool...")
        self._stop.set()
        with self._lock:
            threads = list(self._threads)

        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(timeout=remaining)

        alive = [thread.name for thread in threads if thread.is_alive()]
        if alive:
            logger.warning("Worker pool stop timed out; still running: %s", ", ".join(alive))
            return False
        with self._lock:
            self._threads = []
        logger.info("Worker pool stopped")
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until stop is requested or timeout elapses. True if stop was requested."""

        return self._stop.wait(timeout=timeout)

    def request_stop(self) -> None:
        """Set the stop signal without joining; pair with stop() from the owner thread."""

        self._stop.set()

    def summary(self) -> WorkerRunSummary:
        """Counters of loops that have exited so far."""

        with self._lock:
            snapshot = WorkerRunSummary()
            snapshot.add(self._summary)
            return snapshot

    def __enter__(self) -> WorkerPool:
        self.start()
        return self

    def __exit__(self, *_: object) -> None:
        self.stop()

    def _run_worker(self, worker: TaskWorker) -> None:
        summary = worker.run_loop()
        with self._lock:
            self._summary.add(summary)


@contextmanager
def signal_handlers(on_signal: Callable[[str], None]) -> Iterator[None]:
    """Route SIGINT/SIGTERM to on_signal while the block runs.

    Outside the main thread Python refuses to install handlers, so the block
    then runs with the process defaults.
    """

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, _: object | None) -> None:
        on_signal(signal.Signals(signum).name)

    watched = [
        sig
        for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None))
        if sig is not None
    ]
    previous = {sig: signal.signal(sig, _handler) for sig in watched}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            if handler is not None:
                signal.signal(sig, handler)
