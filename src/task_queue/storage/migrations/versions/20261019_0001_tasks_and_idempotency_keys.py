"""Create tasks and idempotency_keys tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

_ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("id", _ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), server_default="pending", nullable=False),
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("length(trim(title)) > 0", name="ck_tasks_title_not_blank"),
        sa.CheckConstraint("priority BETWEEN 1 AND 10", name="ck_tasks_priority_range"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed')",
            name="ck_tasks_status",
        ),
        sa.CheckConstraint("version >= 1", name="ck_tasks_version_positive"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_tasks_claim",
        "tasks",
        ["status", "priority", "created_at"],
        unique=False,
    )
    op.create_index("idx_tasks_keyset", "tasks", ["created_at", "id"], unique=False)

    op.create_table(
        "idempotency_keys",
        sa.Column("key", sa.Text(), nullable=False),
        sa.Column("resource_id", _ID_TYPE, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    op.drop_table("idempotency_keys")
    op.drop_index("idx_tasks_keyset", table_name="tasks")
    op.drop_index("idx_tasks_claim", table_name="tasks")
    op.drop_table("tasks")
