"""Operator-facing rendering of task queue statistics."""

from __future__ import annotations

from datetime import timedelta

from task_queue.engine.models import TaskStats, TaskStatus


def render_stats_lines(stats: TaskStats) -> list[str]:
    """Render stats lines for CLI output."""

    return [
        "Task queue stats",
        "Status: " + _fmt_status_counts(stats.by_status),
        f"Total tasks: {stats.total_tasks}",
        f"Avg processing: {_fmt_duration(stats.avg_processing)}",
    ]


def stats_to_dict(stats: TaskStats) -> dict[str, object]:
    """JSON-friendly form of the stats snapshot."""

    return {
        "by_status": {status.value: count for status, count in stats.by_status.items()},
        "total_tasks": stats.total_tasks,
        "avg_processing_seconds": (
            round(stats.avg_processing.total_seconds(), 3)
            if stats.avg_processing is not None
            else None
        ),
    }


def _fmt_status_counts(counts: dict[TaskStatus, int]) -> str:
    return " ".join(f"{status.value}={counts.get(status, 0)}" for status in TaskStatus)


def _fmt_duration(value: timedelta | None) -> str:
    if value is None:
        return "n/a"
    return f"{value.total_seconds():.2f}s"
