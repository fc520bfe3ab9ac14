"""create task tables

Revision ID: 202610190006
Revises: 202610190005
Create Date: 2026-10-19 09:50:00
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "202610190006"
down_revision: str | None = "202610190005"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

LIVE = "deleted_at IS NULL"
JSONB = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
HOURS = sa.Numeric(10, 2)


def _enum(name: str) -> sa.types.TypeEngine:
    return sa.Text().with_variant(postgresql.ENUM(name=name, create_type=False), "postgresql")


def _audited_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_by", sa.Uuid(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.Uuid(), nullable=True),
    ]


def _audited_constraints() -> list[sa.SchemaItem]:
    return [
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("version > 0", name="valid_version"),
        sa.CheckConstraint(
            "(deleted_at IS NULL AND deleted_by IS NULL) OR (deleted_at IS NOT NULL AND deleted_by IS NOT NULL)",
            name="valid_deletion",
        ),
        sa.CheckConstraint("updated_at >= created_at", name="valid_update"),
    ]


def _live_index(name: str, table: str, columns: list[str], *, unique: bool = False) -> None:
    op.create_index(
        name,
        table,
        columns,
        unique=unique,
        postgresql_where=sa.text(LIVE),
        sqlite_where=sa.text(LIVE),
    )


def upgrade() -> None:
    op.create_table(
        "task_boards",
        *_audited_columns(),
        sa.Column("board_number", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("workspace_id", sa.Uuid(), nullable=True),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("board_type", _enum("board_type"), nullable=False),
        sa.Column("settings", JSONB, nullable=False),
        sa.Column("is_template", sa.Boolean(), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False),
        sa.Column("access_level", _enum("access_level"), nullable=False),
        sa.Column("shared_with", JSONB, nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.CheckConstraint("board_number ~ '^BRD-[0-9]{6}$'", name="valid_board_number").ddl_if(dialect="postgresql"),
    )
    _live_index("idx_task_boards_number", "task_boards", ["board_number"], unique=True)
    _live_index("idx_task_boards_workspace", "task_boards", ["workspace_id"])
    _live_index("idx_task_boards_owner", "task_boards", ["owner_id"])

    op.create_table(
        "task_lists",
        *_audited_columns(),
        sa.Column("board_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("list_type", _enum("list_type"), nullable=False),
        sa.Column("wip_limit", sa.Integer(), nullable=True),
        sa.Column("auto_close", sa.Boolean(), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False),
        sa.Column("settings", JSONB, nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["board_id"], ["task_boards.id"]),
        sa.CheckConstraint("position >= 0", name="valid_list_position"),
        sa.CheckConstraint("wip_limit IS NULL OR wip_limit > 0", name="valid_wip_limit"),
    )
    _live_index("idx_task_lists_board", "task_lists", ["board_id"])

    op.create_table(
        "tasks",
        *_audited_columns(),
        sa.Column("task_number", sa.String(20), nullable=False),
        sa.Column("list_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("task_type", _enum("task_type"), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("priority", _enum("task_priority"), nullable=True),
        sa.Column("status", _enum("task_status"), nullable=False),
        sa.Column("estimated_hours", HOURS, nullable=True),
        sa.Column("actual_hours", HOURS, nullable=True),
        sa.Column("completion_percentage", sa.Integer(), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False),
        sa.Column("is_locked", sa.Boolean(), nullable=False),
        sa.Column("checklists", JSONB, nullable=False),
        sa.Column("links", JSONB, nullable=False),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["list_id"], ["task_lists.id"]),
        sa.CheckConstraint("position >= 0", name="valid_task_position"),
        sa.CheckConstraint("completion_percentage BETWEEN 0 AND 100", name="valid_completion"),
        sa.CheckConstraint("start_date IS NULL OR due_date IS NULL OR start_date <= due_date", name="valid_task_dates"),
        sa.CheckConstraint(
            "(estimated_hours IS NULL OR estimated_hours >= 0) AND (actual_hours IS NULL OR actual_hours >= 0)",
            name="valid_hours",
        ),
        sa.CheckConstraint("task_number ~ '^TSK-[0-9]{6}$'", name="valid_task_number").ddl_if(dialect="postgresql"),
    )
    _live_index("idx_tasks_number", "tasks", ["task_number"], unique=True)
    _live_index("idx_tasks_list", "tasks", ["list_id"])
    _live_index("idx_tasks_status", "tasks", ["status"])
    _live_index("idx_tasks_due", "tasks", ["due_date"])

    op.create_table(
        "task_assignments",
        *_audited_columns(),
        sa.Column("task_id", sa.Uuid(), nullable=False),
        sa.Column("assignee_id", sa.Uuid(), nullable=False),
        sa.Column("role", _enum("assignment_role"), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("estimated_hours", HOURS, nullable=True),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
    )
    _live_index("idx_task_assignments_unique", "task_assignments", ["task_id", "assignee_id", "role"], unique=True)
    _live_index("idx_task_assignments_assignee", "task_assignments", ["assignee_id"])

    op.create_table(
        "task_dependencies",
        *_audited_columns(),
        sa.Column("predecessor_id", sa.Uuid(), nullable=False),
        sa.Column("successor_id", sa.Uuid(), nullable=False),
        sa.Column("dependency_type", _enum("dependency_type"), nullable=False),
        sa.Column("lag_time", sa.Integer(), nullable=False),
        sa.Column("is_blocking", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["predecessor_id"], ["tasks.id"]),
        sa.ForeignKeyConstraint(["successor_id"], ["tasks.id"]),
        sa.CheckConstraint("predecessor_id <> successor_id", name="different_tasks"),
    )
    _live_index("idx_task_dependencies_pair", "task_dependencies", ["predecessor_id", "successor_id"], unique=True)
    _live_index("idx_task_dependencies_successor", "task_dependencies", ["successor_id"])

    op.create_table(
        "task_comments",
        *_audited_columns(),
        sa.Column("task_id", sa.Uuid(), nullable=False),
        sa.Column("parent_id", sa.Uuid(), nullable=True),
        sa.Column("comment_text", sa.Text(), nullable=False),
        sa.Column("mentions", JSONB, nullable=False),
        sa.Column("is_edited", sa.Boolean(), nullable=False),
        sa.Column("is_resolved", sa.Boolean(), nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
        sa.ForeignKeyConstraint(["parent_id"], ["task_comments.id"]),
        sa.CheckConstraint("length(comment_text) > 0", name="valid_comment_text"),
    )
    _live_index("idx_task_comments_task", "task_comments", ["task_id"])

    op.create_table(
        "task_time_entries",
        *_audited_columns(),
        sa.Column("task_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_billable", sa.Boolean(), nullable=False),
        sa.Column("billing_rate", HOURS, nullable=True),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
        sa.CheckConstraint("end_time IS NULL OR end_time >= start_time", name="valid_time_range"),
        sa.CheckConstraint("billing_rate IS NULL OR billing_rate >= 0", name="valid_billing_rate"),
    )
    _live_index("idx_task_time_entries_task", "task_time_entries", ["task_id"])
    _live_index("idx_task_time_entries_user", "task_time_entries", ["user_id"])


def downgrade() -> None:
    for table in (
        "task_time_entries",
        "task_comments",
        "task_dependencies",
        "task_assignments",
        "tasks",
        "task_lists",
        "task_boards",
    ):
        op.drop_table(table)
