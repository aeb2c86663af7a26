"""SQLModel ORM tables for task queue storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, Index, Integer, Text
from sqlmodel import Field, SQLModel

TASK_STATUSES = ("pending", "processing", "completed")
MIN_PRIORITY = 1
MAX_PRIORITY = 10


class Task(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        CheckConstraint("length(trim(title)) > 0", name="ck_tasks_title_not_blank"),
        CheckConstraint(
            f"priority BETWEEN {MIN_PRIORITY} AND {MAX_PRIORITY}",
            name="ck_tasks_priority_range",
        ),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed')",
            name="ck_tasks_status",
        ),
        CheckConstraint("version >= 1", name="ck_tasks_version_positive"),
        Index("idx_tasks_claim", "status", "priority", "created_at"),
        Index("idx_tasks_keyset", "created_at", "id"),
    )

    id: int | None = Field(
        default=None,
        sa_column=Column(
            BigInteger().with_variant(Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
    )
    title: str = Field(sa_column=Column(Text, nullable=False))
    priority: int = Field(nullable=False)
    status: str = Field(default="pending", nullable=False)
    version: int = Field(default=1, nullable=False)
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class IdempotencyKey(SQLModel, table=True):
    __tablename__ = "idempotency_keys"  # type: ignore[bad-override]

    key: str = Field(sa_column=Column(Text, primary_key=True))
    resource_id: int | None = Field(
        default=None,
        sa_column=Column(BigInteger().with_variant(Integer(), "sqlite"), nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
