"""Initial task queue schema."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("route", sa.String(), nullable=False),
        sa.Column("params_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("claimed", sa.Boolean(), nullable=True),
        sa.Column("claimed_by", sa.String(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("seq"),
    )
    op.create_index("ix_tasks_task_id", "tasks", ["task_id"], unique=True)
    op.create_index("ix_tasks_route", "tasks", ["route"], unique=False)
    op.create_index("ix_tasks_claimed_by", "tasks", ["claimed_by"], unique=False)
    op.create_index("idx_tasks_claim", "tasks", ["claimed", "seq"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_tasks_claim", table_name="tasks")
    op.drop_index("ix_tasks_claimed_by", table_name="tasks")
    op.drop_index("ix_tasks_route", table_name="tasks")
    op.drop_index("ix_tasks_task_id", table_name="tasks")
    op.drop_table("tasks")
