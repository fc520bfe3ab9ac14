from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from crmhub.core.database import Base
from crmhub.enums import AccessLevel, AssignmentRole, BoardType, DependencyType, ListType, TaskPriority, TaskStatus, TaskType, db_enum
from crmhub.platform.persistence import AuditedMixin, JSONDocument, audited_table_args, live_index, live_unique_index, pg_check, utcnow


HOURS = Numeric(10, 2)


class TaskBoard(AuditedMixin, Base):
    __tablename__ = "task_boards"

    board_number: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    workspace_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    board_type: Mapped[BoardType] = mapped_column(db_enum(BoardType), nullable=False, default=BoardType.KANBAN)
    settings: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    is_template: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    access_level: Mapped[AccessLevel] = mapped_column(db_enum(AccessLevel), nullable=False, default=AccessLevel.PRIVATE)
    shared_with: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    board_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        pg_check("board_number ~ '^BRD-[0-9]{6}$'", name="valid_board_number"),
        live_unique_index("idx_task_boards_number", "board_number"),
        live_index("idx_task_boards_workspace", "workspace_id"),
        live_index("idx_task_boards_owner", "owner_id"),
    )


class TaskList(AuditedMixin, Base):
    __tablename__ = "task_lists"

    board_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("task_boards.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    list_type: Mapped[ListType] = mapped_column(db_enum(ListType), nullable=False, default=ListType.TODO)
    wip_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    auto_close: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    settings: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    list_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("position >= 0", name="valid_list_position"),
        CheckConstraint("wip_limit IS NULL OR wip_limit > 0", name="valid_wip_limit"),
        live_index("idx_task_lists_board", "board_id"),
    )


class Task(AuditedMixin, Base):
    __tablename__ = "tasks"

    task_number: Mapped[str] = mapped_column(String(20), nullable=False)
    list_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("task_lists.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    task_type: Mapped[TaskType] = mapped_column(db_enum(TaskType), nullable=False, default=TaskType.OTHER)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reminder_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    priority: Mapped[TaskPriority | None] = mapped_column(db_enum(TaskPriority), nullable=True)
    status: Mapped[TaskStatus] = mapped_column(db_enum(TaskStatus), nullable=False, default=TaskStatus.BACKLOG)
    estimated_hours: Mapped[Decimal | None] = mapped_column(HOURS, nullable=True)
    actual_hours: Mapped[Decimal | None] = mapped_column(HOURS, nullable=True)
    completion_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    checklists: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    links: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    tags: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    task_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("position >= 0", name="valid_task_position"),
        CheckConstraint("completion_percentage BETWEEN 0 AND 100", name="valid_completion"),
        CheckConstraint("start_date IS NULL OR due_date IS NULL OR start_date <= due_date", name="valid_task_dates"),
        CheckConstraint(
            "(estimated_hours IS NULL OR estimated_hours >= 0) AND (actual_hours IS NULL OR actual_hours >= 0)",
            name="valid_hours",
        ),
        pg_check("task_number ~ '^TSK-[0-9]{6}$'", name="valid_task_number"),
        live_unique_index("idx_tasks_number", "task_number"),
        live_index("idx_tasks_list", "list_id"),
        live_index("idx_tasks_status", "status"),
        live_index("idx_tasks_due", "due_date"),
    )


class TaskAssignment(AuditedMixin, Base):
    __tablename__ = "task_assignments"

    task_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("tasks.id"), nullable=False)
    assignee_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    role: Mapped[AssignmentRole] = mapped_column(db_enum(AssignmentRole), nullable=False, default=AssignmentRole.ASSIGNEE)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_hours: Mapped[Decimal | None] = mapped_column(HOURS, nullable=True)

    __table_args__ = audited_table_args(
        live_unique_index("idx_task_assignments_unique", "task_id", "assignee_id", "role"),
        live_index("idx_task_assignments_assignee", "assignee_id"),
    )


class TaskDependency(AuditedMixin, Base):
    __tablename__ = "task_dependencies"

    predecessor_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("tasks.id"), nullable=False)
    successor_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("tasks.id"), nullable=False)
    dependency_type: Mapped[DependencyType] = mapped_column(
        db_enum(DependencyType),
        nullable=False,
        default=DependencyType.FINISH_TO_START,
    )
    lag_time: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_blocking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = audited_table_args(
        CheckConstraint("predecessor_id <> successor_id", name="different_tasks"),
        live_unique_index("idx_task_dependencies_pair", "predecessor_id", "successor_id"),
        live_index("idx_task_dependencies_successor", "successor_id"),
    )


class TaskComment(AuditedMixin, Base):
    __tablename__ = "task_comments"

    task_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("tasks.id"), nullable=False)
    parent_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("task_comments.id"), nullable=True)
    comment_text: Mapped[str] = mapped_column(Text, nullable=False)
    mentions: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    is_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = audited_table_args(
        CheckConstraint("length(comment_text) > 0", name="valid_comment_text"),
        live_index("idx_task_comments_task", "task_id"),
    )


class TaskTimeEntry(AuditedMixin, Base):
    __tablename__ = "task_time_entries"
    __duration_columns__ = (("start_time",), ("end_time",))

    task_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("tasks.id"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_billable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    billing_rate: Mapped[Decimal | None] = mapped_column(HOURS, nullable=True)

    __table_args__ = audited_table_args(
        CheckConstraint("end_time IS NULL OR end_time >= start_time", name="valid_time_range"),
        CheckConstraint("billing_rate IS NULL OR billing_rate >= 0", name="valid_billing_rate"),
        live_index("idx_task_time_entries_task", "task_id"),
        live_index("idx_task_time_entries_user", "user_id"),
    )
